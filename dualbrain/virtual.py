"""
Virtual (paper) trading that turns simulated outcomes into training signal.

Positions opened here are never sent to a broker. Every tick the engine
checks stop-loss and take-profit levels; a closed trade is scored with the
sniper reward and credited to the brain that opened it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import numpy as np

from .brain import NUM_ACTIONS, BrainKind
from .data import Bar
from .features import FeatureEncoder, FeatureVector
from .rewards import RewardModel
from .state import EngineState

logger = logging.getLogger(__name__)


class Direction(Enum):
    BUY = 1
    SELL = -1


@dataclass
class VirtualTrade:
    """Simulated position tracked tick by tick until its stop or target is touched."""

    ticket: int
    open_time: datetime
    direction: Direction
    open_price: float
    sl: float
    tp: float
    lot: float
    tag: str
    state_id: int
    action_id: int
    brain_kind: BrainKind
    active: bool = True
    max_unrealized_loss: float = 0.0
    max_unrealized_profit: float = 0.0

    def unrealized(self, bid: float, ask: float) -> float:
        """Signed price distance the trade would realise if closed now."""
        if self.direction is Direction.BUY:
            return bid - self.open_price
        return self.open_price - ask


@dataclass(frozen=True)
class TradeOutcome:
    """Terminal result of a virtual trade."""

    ticket: int
    brain_kind: BrainKind
    tag: str
    exit_reason: str  # 'tp' or 'sl'
    close_price: float
    close_time: datetime
    profit: float
    pnl: float
    reward: float
    max_unrealized_loss: float


class VirtualTradingEngine:
    """
    Opens, tracks and closes simulated positions.

    Responsibilities:
    - Allocate trades from a reusable slot pool with monotonic tickets
    - Encode the entry state and pick an action with the owning brain
    - Track adverse/favourable excursion every tick
    - Credit closed trades to their brain and the replay buffer
    - Seed the Q-tables from historical candles before live operation
    """

    PRETRAIN_LOOKBACK = 14
    PRETRAIN_MOMENTUM_BARS = 5
    PRETRAIN_HORIZON = 20
    PRETRAIN_STOP_RANGES = 1.0
    PRETRAIN_TARGET_RANGES = 1.5

    def __init__(
        self,
        state: EngineState,
        encoder: FeatureEncoder | None = None,
        reward_model: RewardModel | None = None,
    ):
        self.state = state
        self.config = state.config
        self.encoder = encoder or FeatureEncoder()
        self.reward_model = reward_model or RewardModel(state.config.min_risk_distance)
        self._slots: list[VirtualTrade] = []

    @property
    def pool_size(self) -> int:
        return len(self._slots)

    def active_trades(self) -> list[VirtualTrade]:
        return [trade for trade in self._slots if trade.active]

    def get(self, ticket: int) -> VirtualTrade | None:
        for trade in self._slots:
            if trade.ticket == ticket:
                return trade
        return None

    def open(
        self,
        direction: Direction,
        price: float,
        sl: float,
        tp: float,
        tag: str,
        features: FeatureVector,
        kind: BrainKind,
        lot: float = 1.0,
        now: datetime | None = None,
    ) -> int:
        """
        Open a virtual trade.

        Args:
            direction: BUY or SELL
            price: Entry price
            sl: Stop-loss price
            tp: Take-profit price
            tag: Signal tag carried for reporting and gating
            features: Feature snapshot at entry
            kind: Brain credited with the outcome
            lot: Position size used for P/L bookkeeping
            now: Open time (defaults to current UTC time)

        Returns:
            Ticket of the new trade
        """
        for value, name in ((price, 'price'), (sl, 'sl'), (tp, 'tp'), (lot, 'lot')):
            if not math.isfinite(value):
                raise ValueError(f'{name} must be finite, got {value}')
        if lot <= 0:
            raise ValueError(f'lot must be positive, got {lot}')

        performance_score = self.state.tracker.compute().performance_score
        state_id = self.encoder.encode(features.clamped(), performance_score)
        brain = self.state.brain(kind)
        action_id = brain.select_action(state_id, training=True)

        trade = VirtualTrade(
            ticket=self.state.allocate_ticket(),
            open_time=now or datetime.now(timezone.utc),
            direction=direction,
            open_price=float(price),
            sl=float(sl),
            tp=float(tp),
            lot=float(lot),
            tag=tag,
            state_id=state_id,
            action_id=action_id,
            brain_kind=kind,
        )

        for idx, slot in enumerate(self._slots):
            if not slot.active:
                self._slots[idx] = trade
                break
        else:
            self._slots.append(trade)

        logger.debug(
            f'Virtual trade #{trade.ticket} opened: {direction.name} {tag!r} @ {price} '
            f'(brain={kind.name}, state={state_id}, action={action_id})'
        )
        return trade.ticket

    def manage_tick(self, bid: float, ask: float, now: datetime | None = None) -> list[TradeOutcome]:
        """
        Check every active trade against the current quote.

        Stops are checked before targets, so a quote through both closes at the stop.

        Returns:
            Outcomes of the trades closed on this tick
        """
        if not (math.isfinite(bid) and math.isfinite(ask)):
            logger.debug(f'Ignoring tick with non-finite quote bid={bid} ask={ask}')
            return []

        now = now or datetime.now(timezone.utc)
        outcomes: list[TradeOutcome] = []
        for trade in self._slots:
            if not trade.active:
                continue

            unrealized = trade.unrealized(bid, ask)
            trade.max_unrealized_loss = min(trade.max_unrealized_loss, unrealized)
            trade.max_unrealized_profit = max(trade.max_unrealized_profit, unrealized)

            exit_reason = self._exit_reason(trade, bid, ask)
            if exit_reason is None:
                continue

            close_price = bid if trade.direction is Direction.BUY else ask
            outcomes.append(self._close(trade, unrealized, close_price, exit_reason, now))

        return outcomes

    @staticmethod
    def _exit_reason(trade: VirtualTrade, bid: float, ask: float) -> str | None:
        if trade.direction is Direction.BUY:
            if bid <= trade.sl:
                return 'sl'
            if bid >= trade.tp:
                return 'tp'
        else:
            if ask >= trade.sl:
                return 'sl'
            if ask <= trade.tp:
                return 'tp'
        return None

    def _close(
        self, trade: VirtualTrade, profit: float, close_price: float, exit_reason: str, now: datetime
    ) -> TradeOutcome:
        config = self.config
        brain = self.state.brain(trade.brain_kind)

        reward = self.reward_model.sniper_reward(profit, trade.open_price, trade.sl, trade.max_unrealized_loss)
        delta = brain.credit_trade(
            trade.state_id,
            trade.action_id,
            reward,
            alpha=self.state.effective_learning_rate,
            gamma=config.discount_factor,
            lam=config.trace_decay,
        )
        brain.record_outcome(profit)
        self.state.update_counter += 1

        self.state.buffer.store(
            trade.state_id,
            trade.action_id,
            reward,
            trade.state_id,
            terminal=True,
            td_error=delta,
            brain=trade.brain_kind,
        )

        pnl = profit * trade.lot
        self.state.tracker.record_trade(pnl)
        self.state.profile.observe_trade(
            max_unrealized_profit=trade.max_unrealized_profit,
            max_unrealized_loss=trade.max_unrealized_loss,
            initial_risk=self.reward_model.initial_risk(trade.open_price, trade.sl),
            profit=profit,
            timestamp=now,
        )
        trade.active = False

        logger.debug(
            f'Virtual trade #{trade.ticket} closed at {exit_reason}: profit={profit:.5f} reward={reward:.3f}'
        )
        return TradeOutcome(
            ticket=trade.ticket,
            brain_kind=trade.brain_kind,
            tag=trade.tag,
            exit_reason=exit_reason,
            close_price=close_price,
            close_time=now,
            profit=profit,
            pnl=pnl,
            reward=reward,
            max_unrealized_loss=trade.max_unrealized_loss,
        )

    # ------------------------------------------------------------------
    # Pre-training
    # ------------------------------------------------------------------

    @staticmethod
    def heuristic_action(momentum_ratio: float, range_ratio: float) -> int:
        """Deterministic action from a 3x3 grid of momentum strength and range expansion."""
        strength = abs(momentum_ratio)
        momentum_bin = 0 if strength < 0.5 else 2 if strength > 1.5 else 1
        range_bin = 0 if range_ratio < 0.8 else 2 if range_ratio > 1.2 else 1
        return min(momentum_bin * 3 + range_bin, NUM_ACTIONS - 1)

    def _pretrain_features(self, bars: Sequence[Bar], i: int, avg_range: float) -> tuple[FeatureVector, float, float]:
        current = bars[i]
        momentum = current.close - bars[i - self.PRETRAIN_MOMENTUM_BARS].close
        momentum_ratio = momentum / avg_range
        range_ratio = current.range / avg_range
        drift = (current.close - bars[i - self.PRETRAIN_LOOKBACK + 1].close) / (avg_range * self.PRETRAIN_LOOKBACK)

        features = FeatureVector.from_mapping(
            {
                'trend_strength': abs(momentum_ratio) / 3.0,
                'volatility': range_ratio / 2.0,
                'momentum': 0.5 + momentum_ratio / 6.0,
                'higher_tf_trend': 0.5 + drift,
            }
        )
        return features, momentum_ratio, range_ratio

    def _simulate_forward(
        self, bars: Sequence[Bar], i: int, direction: int, entry: float, stop: float, target: float
    ) -> tuple[float, float]:
        """Walk forward until stop or target; returns (profit, worst adverse excursion)."""
        worst = 0.0
        last = min(len(bars) - 1, i + self.PRETRAIN_HORIZON)
        for bar in bars[i + 1 : last + 1]:
            if direction > 0:
                worst = min(worst, bar.low - entry)
                if bar.low <= stop:
                    return stop - entry, worst
                if bar.high >= target:
                    return target - entry, worst
            else:
                worst = min(worst, entry - bar.high)
                if bar.high >= stop:
                    return entry - stop, worst
                if bar.low <= target:
                    return entry - target, worst
        return direction * (bars[last].close - entry), worst

    def pre_train(self, bars: Sequence[Bar], force: bool = False) -> dict[str, Any]:
        """
        Seed both Q-tables from a bounded historical window.

        Uses a deterministic range/momentum heuristic to pick trades and their
        actions; only Q-tables and traces are touched, never accuracy or the
        trade count. Skipped when persisted brains were already loaded.

        Args:
            bars: Historical candles, oldest first
            force: Seed even if persisted brains were loaded

        Returns:
            Dict with keys: status, bars_processed, simulated_trades, wins, per_brain
        """
        if self.state.brains_loaded and not force:
            logger.info('Pre-training skipped: persisted brains already loaded')
            return {'status': 'skipped', 'bars_processed': 0, 'simulated_trades': 0}

        window = list(bars[-self.config.pretrain_max_candles :])
        minimum = self.PRETRAIN_LOOKBACK + 2
        if len(window) < minimum:
            logger.info(f'Pre-training skipped: {len(window)} candles, need at least {minimum}')
            return {'status': 'insufficient_data', 'bars_processed': len(window), 'simulated_trades': 0}

        config = self.config
        alpha = self.state.effective_learning_rate
        simulated_trades = 0
        wins = 0
        per_brain = {kind.name: 0 for kind in BrainKind}

        for i in range(self.PRETRAIN_LOOKBACK - 1, len(window) - 1):
            ranges = [bar.range for bar in window[i - self.PRETRAIN_LOOKBACK + 1 : i + 1]]
            avg_range = max(float(np.mean(ranges)), config.min_risk_distance)

            features, momentum_ratio, range_ratio = self._pretrain_features(window, i, avg_range)
            if momentum_ratio == 0:
                continue

            kind = BrainKind.for_features(features, config.trend_gate_threshold)
            direction = 1 if momentum_ratio > 0 else -1
            if kind is BrainKind.REVERSAL:
                direction = -direction

            entry = window[i].close
            stop = entry - direction * avg_range * self.PRETRAIN_STOP_RANGES
            target = entry + direction * avg_range * self.PRETRAIN_TARGET_RANGES
            profit, worst = self._simulate_forward(window, i, direction, entry, stop, target)

            # Performance score is unknown historically; encode it as neutral
            state_id = self.encoder.encode(features)
            action_id = self.heuristic_action(momentum_ratio, range_ratio)
            reward = self.reward_model.sniper_reward(profit, entry, stop, worst)
            self.state.brain(kind).credit_trade(
                state_id, action_id, reward, alpha=alpha, gamma=config.discount_factor, lam=config.trace_decay
            )

            simulated_trades += 1
            per_brain[kind.name] += 1
            if profit > 0:
                wins += 1

        logger.info(
            f'Pre-training complete: {len(window)} candles, {simulated_trades} simulated trades, '
            f'trend={per_brain["TREND"]}, reversal={per_brain["REVERSAL"]}'
        )
        return {
            'status': 'complete',
            'bars_processed': len(window),
            'simulated_trades': simulated_trades,
            'wins': wins,
            'win_rate': wins / simulated_trades if simulated_trades else 0.0,
            'per_brain': per_brain,
        }
