"""Per-instrument learned characteristics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SESSION_NAMES = ('asia', 'london', 'new_york')
PROFILE_EMA_ALPHA = 0.05


def session_index(timestamp: datetime) -> int:
    """Trading session for a timestamp: 0 Asia (00-08 UTC), 1 London (08-16), 2 New York (16-24)."""
    return min(timestamp.hour // 8, len(SESSION_NAMES) - 1)


def _ema(previous: float, value: float, alpha: float = PROFILE_EMA_ALPHA) -> float:
    return previous + alpha * (value - previous)


@dataclass
class SymbolProfile:
    """
    Running characteristics of one instrument, learned from virtual-trade outcomes.

    All fields are scalars so the record persists with a fixed layout.
    """

    avg_daily_range: float = 0.0
    spike_probability: float = 0.0
    reversion_speed: float = 0.0
    trend_persistence: float = 0.5
    session_volatility: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    sample_count: int = 0

    def observe_trade(
        self,
        max_unrealized_profit: float,
        max_unrealized_loss: float,
        initial_risk: float,
        profit: float,
        timestamp: datetime,
    ) -> None:
        """
        Fold a closed trade into the profile.

        Args:
            max_unrealized_profit: Best unrealized P/L seen while open (>= 0)
            max_unrealized_loss: Worst unrealized P/L seen while open (<= 0)
            initial_risk: Distance from entry to stop (already floored)
            profit: Realised signed price distance
            timestamp: Close time, used to pick the session bucket
        """
        excursion = max(0.0, max_unrealized_profit) + abs(min(0.0, max_unrealized_loss))
        excursion = max(excursion, abs(profit))

        # Spike test runs against the average before this sample is folded in
        is_spike = self.sample_count > 0 and excursion > 2.0 * self.avg_daily_range

        self.sample_count += 1
        self.avg_daily_range += (excursion - self.avg_daily_range) / self.sample_count
        self.spike_probability = _ema(self.spike_probability, 1.0 if is_spike else 0.0)

        if profit <= 0:
            # How far the trade ran in our favour (in R) before reverting into a loss
            favourable_r = max(0.0, max_unrealized_profit) / initial_risk if initial_risk > 0 else 0.0
            self.reversion_speed = _ema(self.reversion_speed, min(favourable_r, 1.0))
            self.trend_persistence = _ema(self.trend_persistence, 0.0)
        else:
            clean = initial_risk > 0 and abs(min(0.0, max_unrealized_loss)) / initial_risk < 0.3
            self.trend_persistence = _ema(self.trend_persistence, 1.0 if clean else 0.0)

        idx = session_index(timestamp)
        self.session_volatility[idx] = _ema(self.session_volatility[idx], excursion)

    def as_dict(self) -> dict[str, object]:
        return {
            'avg_daily_range': self.avg_daily_range,
            'spike_probability': self.spike_probability,
            'reversion_speed': self.reversion_speed,
            'trend_persistence': self.trend_persistence,
            'session_volatility': dict(zip(SESSION_NAMES, self.session_volatility)),
            'sample_count': self.sample_count,
        }
