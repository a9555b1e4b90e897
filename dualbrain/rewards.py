"""
Reward shaping for the dual-brain engine.

Two independent reward functions live here:

- the parameter-tuning reward, scoring a change in influence weights by the
  change in recent trading performance it coincided with;
- the sniper reward, scoring a closed trade by its R-multiple while
  penalising wins that first came close to the stop.
"""

from __future__ import annotations

import math
import statistics
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class PerformanceMetrics:
    """Derived trading statistics; recomputed from history, never authoritative."""

    performance_score: float = 0.5
    win_rate: float = 0.0
    profit_factor: float = 1.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    total_trades: int = 0


class PerformanceTracker:
    """
    Rolling trade history from which PerformanceMetrics are recomputed.

    Returns are measured against an equity curve that starts at
    ``initial_equity`` and accumulates every recorded P/L.
    """

    def __init__(self, window_size: int = 200, initial_equity: float = 10000.0, periods_per_year: int = 252):
        if window_size < 2:
            raise ValueError(f'window_size must be >= 2, got {window_size}')
        if initial_equity <= 0:
            raise ValueError(f'initial_equity must be positive, got {initial_equity}')
        self.window_size = window_size
        self.initial_equity = initial_equity
        self.periods_per_year = periods_per_year
        self._pnls: deque[float] = deque(maxlen=window_size)

    def __len__(self) -> int:
        return len(self._pnls)

    def record_trade(self, pnl: float) -> None:
        if math.isfinite(pnl):
            self._pnls.append(float(pnl))

    def compute(self) -> PerformanceMetrics:
        pnls = list(self._pnls)
        if not pnls:
            return PerformanceMetrics()

        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p <= 0]
        win_rate = len(wins) / len(pnls)

        gross_profit = sum(wins)
        gross_loss = abs(sum(losses))
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            # No losses: cap instead of reporting infinity
            profit_factor = 3.0 if gross_profit > 0 else 1.0

        equity = self.initial_equity
        peak = equity
        max_drawdown = 0.0
        returns: list[float] = []
        for pnl in pnls:
            previous = equity
            equity += pnl
            if previous > 0:
                returns.append(pnl / previous)
            peak = max(peak, equity)
            if peak > 0:
                max_drawdown = max(max_drawdown, (peak - equity) / peak)

        sharpe = 0.0
        if len(returns) >= 2:
            std_return = statistics.stdev(returns)
            if std_return > 0:
                sharpe = statistics.mean(returns) / std_return * math.sqrt(self.periods_per_year)

        consecutive_wins = 0
        consecutive_losses = 0
        for pnl in reversed(pnls):
            if pnl > 0 and consecutive_losses == 0:
                consecutive_wins += 1
            elif pnl <= 0 and consecutive_wins == 0:
                consecutive_losses += 1
            else:
                break

        score = (
            0.4 * win_rate
            + 0.3 * min(profit_factor / 3.0, 1.0)
            + 0.3 * (1.0 - min(max_drawdown / 0.3, 1.0))
        )

        return PerformanceMetrics(
            performance_score=max(0.0, min(1.0, score)),
            win_rate=win_rate,
            profit_factor=profit_factor,
            max_drawdown=max_drawdown,
            sharpe_ratio=sharpe,
            consecutive_wins=consecutive_wins,
            consecutive_losses=consecutive_losses,
            total_trades=len(pnls),
        )


class RewardModel:
    """Reward functions for weight tuning and for closed trades."""

    def __init__(self, min_risk_distance: float = 1e-5):
        if min_risk_distance <= 0:
            raise ValueError(f'min_risk_distance must be positive, got {min_risk_distance}')
        self.min_risk_distance = min_risk_distance

    def tuning_reward(
        self,
        previous: PerformanceMetrics,
        current: PerformanceMetrics,
        parameter_deltas: Sequence[float] = (),
    ) -> float:
        """
        Score a parameter adjustment by the performance change that followed it.

        Args:
            previous: Metrics before the adjustment
            current: Metrics after the adjustment
            parameter_deltas: Signed change of every tuned parameter

        Returns:
            Reward clipped to [-1, 1]
        """
        reward = (current.performance_score - previous.performance_score) * 1.5
        reward += current.win_rate - previous.win_rate

        if current.profit_factor > 1.5:
            reward += 0.3
        elif current.profit_factor < 1.0:
            reward -= 0.3

        if current.max_drawdown > 0.15:
            reward -= 0.4
        elif current.max_drawdown < 0.08:
            reward += 0.2

        if current.consecutive_wins >= 3:
            reward += 0.15
        if current.consecutive_losses >= 3:
            reward -= 0.2

        # Oscillating parameters are penalised
        churn = sum(abs(delta) for delta in parameter_deltas if math.isfinite(delta))
        reward -= min(0.5, 0.15 * churn)

        if current.sharpe_ratio > 1.5:
            reward += 0.25
        elif current.sharpe_ratio < 0.5:
            reward -= 0.25

        return max(-1.0, min(1.0, reward))

    def initial_risk(self, entry_price: float, stop_price: float) -> float:
        return max(abs(entry_price - stop_price), self.min_risk_distance)

    def sniper_reward(
        self,
        profit: float,
        entry_price: float,
        stop_price: float,
        max_unrealized_loss: float = 0.0,
    ) -> float:
        """
        Reward a closed trade.

        Losses score -1. Wins score ``min(1, 0.5 * R + (1 - drawdown_penalty))``
        where the penalty is the worst adverse excursion in R; a win whose
        excursion exceeded 0.8R scores 0.1 regardless of its R-multiple.

        Args:
            profit: Signed price distance captured by the trade
            entry_price: Open price
            stop_price: Stop-loss price at open
            max_unrealized_loss: Worst unrealized P/L seen while open (<= 0)
        """
        if not math.isfinite(profit) or profit <= 0:
            return -1.0

        risk = self.initial_risk(entry_price, stop_price)
        r_multiple = profit / risk
        drawdown_penalty = abs(max_unrealized_loss) / risk if math.isfinite(max_unrealized_loss) else 1.0

        if drawdown_penalty > 0.8:
            return 0.1
        return min(1.0, r_multiple * 0.5 + (1.0 - drawdown_penalty))
