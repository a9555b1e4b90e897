"""
Adaptive decision engine facade.

This is the entry point a host strategy talks to:
1. Encodes collaborator features into a state and picks an action
2. Gates proposed trades on brain accuracy and feature alignment
3. Runs virtual trades that generate training signal every tick
4. Replays prioritized experience and watches for overfitting
5. Adapts influence weights and exploration at each adaptation step
6. Persists learned state on a timer and at shutdown

Every public method runs under one re-entrant lock, so a multi-threaded host
can call in from any thread; the components underneath are lock-free.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import numpy as np

from .brain import BrainKind
from .config import EngineConfig
from .data import Bar
from .features import FeatureEncoder, FeatureVector
from .gate import ConfidenceGate
from .overfit import OverfitDetector, OverfitReport
from .persistence import PersistenceStore
from .rewards import RewardModel
from .state import EngineState, PendingTuning
from .virtual import Direction, TradeOutcome, VirtualTradingEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Engine output for one proposed trade."""

    action: int
    confidence: float
    allowed: bool
    reason: str
    state_id: int
    brain_kind: BrainKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdaptiveEngine:
    """Dual-brain reinforcement-learning decision engine for one instrument."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        state: EngineState | None = None,
        store: PersistenceStore | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.config = config or (state.config if state is not None else EngineConfig())
        self.config.validate()
        self.state = state or EngineState.create(self.config, rng=rng)
        self.store = store
        self.encoder = FeatureEncoder()
        self.reward_model = RewardModel(self.config.min_risk_distance)
        self.virtual = VirtualTradingEngine(self.state, self.encoder, self.reward_model)
        self.gate = ConfidenceGate(self.config)
        self.overfit = OverfitDetector(self.config)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self, history: Sequence[Bar] | None = None, now: datetime | None = None) -> dict[str, Any]:
        """
        Restore persisted brains or seed fresh ones.

        Args:
            history: Candles used for pre-training when nothing was loaded
            now: Current wall-clock time

        Returns:
            Dict with keys: loaded, pretraining
        """
        with self._lock:
            now = now or _utcnow()
            self.state.reset_session()
            self.overfit.reset()
            self.state.last_save_time = now
            self.state.last_replay_time = now

            loaded = False
            if self.config.enable_persistence and self.store is not None:
                loaded = self.store.load(self.state.trend, self.state.reversal, self.state.profile)
            self.state.brains_loaded = loaded

            pretraining: dict[str, Any] = {'status': 'disabled'}
            if self.config.enable_pretraining:
                pretraining = self.virtual.pre_train(history or [])

            return {'loaded': loaded, 'pretraining': pretraining}

    def shutdown(self) -> bool:
        """Save learned state; returns False when persistence is off or the save failed."""
        with self._lock:
            return self.save()

    def save(self, now: datetime | None = None) -> bool:
        with self._lock:
            if not self.config.enable_persistence or self.store is None:
                return False
            saved = self.store.save(self.state.trend, self.state.reversal, self.state.profile)
            if saved:
                self.state.last_save_time = now or _utcnow()
            return saved

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def select_brain(self, features: FeatureVector) -> BrainKind:
        return BrainKind.for_features(features, self.config.trend_gate_threshold)

    def encode(self, features: FeatureVector) -> int:
        performance_score = self.state.tracker.compute().performance_score
        return self.encoder.encode(features.clamped(), performance_score)

    def decide(self, features: FeatureVector, tag: str, kind: BrainKind | None = None) -> Decision:
        """
        Evaluate a proposed trade.

        Args:
            features: Current feature vector
            tag: Signal tag of the proposed trade
            kind: Brain to consult; chosen from trend strength when omitted

        Returns:
            Decision with the selected action, confidence and gate verdict
        """
        with self._lock:
            features = features.clamped()
            kind = kind or self.select_brain(features)
            brain = self.state.brain(kind)
            state_id = self.encode(features)
            action = brain.select_action(state_id, training=True)
            verdict = self.gate.check(tag, brain, self.state.profile, features)
            return Decision(
                action=action,
                confidence=verdict.confidence,
                allowed=verdict.allowed,
                reason=verdict.reason,
                state_id=state_id,
                brain_kind=kind,
            )

    def open_virtual(
        self,
        direction: Direction,
        price: float,
        sl: float,
        tp: float,
        tag: str,
        features: FeatureVector,
        kind: BrainKind | None = None,
        lot: float = 1.0,
        now: datetime | None = None,
    ) -> int:
        with self._lock:
            kind = kind or self.select_brain(features.clamped())
            return self.virtual.open(direction, price, sl, tp, tag, features, kind, lot=lot, now=now)

    # ------------------------------------------------------------------
    # Tick processing
    # ------------------------------------------------------------------

    def on_tick(self, bid: float, ask: float, now: datetime | None = None) -> list[TradeOutcome]:
        """
        Process one price update.

        Closes virtual trades that touched their levels, then runs the replay
        pass and the autosave when their intervals have elapsed.
        """
        with self._lock:
            now = now or _utcnow()
            outcomes = self.virtual.manage_tick(bid, ask, now=now)

            last_replay = self.state.last_replay_time
            if last_replay is None or (now - last_replay).total_seconds() >= self.config.replay_interval_seconds:
                self.replay()
                self.state.last_replay_time = now

            if (
                self.config.enable_persistence
                and self.store is not None
                and self.store.autosave_due(self.state.last_save_time, now)
            ):
                # Timer restarts even on failure so a broken disk is not retried every tick
                self.save(now=now)
                self.state.last_save_time = now

            return outcomes

    def replay(self, batch_size: int | None = None) -> dict[str, Any]:
        """
        Learn from a prioritized sample of stored experience, then check for overfitting.

        Returns:
            Dict with keys: replayed, mean_abs_td, overfit (OverfitReport or None)
        """
        with self._lock:
            batch_size = batch_size or self.config.replay_batch_size
            buffer = self.state.buffer
            if not buffer.is_ready(batch_size):
                return {'replayed': 0, 'mean_abs_td': 0.0, 'overfit': None}

            alpha = self.state.effective_learning_rate
            gamma = self.config.discount_factor
            experiences, indices = buffer.sample(batch_size)
            td_total = 0.0
            for experience, index in zip(experiences, indices):
                brain = self.state.brain(experience.brain)
                td_error = brain.update(
                    experience.state,
                    experience.action,
                    experience.reward,
                    experience.next_state,
                    experience.terminal,
                    alpha=alpha,
                    gamma=gamma,
                )
                buffer.update_priority(index, td_error)
                td_total += abs(td_error)
                self.state.update_counter += 1

            report = self.overfit.check(buffer, self.state.brains)
            if report.newly_flagged:
                self._mitigate_overfit(report)

            mean_abs_td = td_total / len(experiences)
            logger.debug(f'Replay pass: {len(experiences)} samples, mean |td|={mean_abs_td:.4f}')
            return {'replayed': len(experiences), 'mean_abs_td': mean_abs_td, 'overfit': report}

    def _mitigate_overfit(self, report: OverfitReport) -> None:
        self.state.learning_rate_scale = max(
            self.config.min_learning_rate_scale, self.state.learning_rate_scale * 0.5
        )
        removed = self.state.buffer.prune_oldest(self.config.overfit_prune_fraction)
        logger.warning(
            f'Overfit mitigation: learning rate now {self.state.effective_learning_rate:.5f}, '
            f'pruned {removed} oldest experiences',
            extra={'validation_error': report.validation_error, 'training_error': report.training_error},
        )

    # ------------------------------------------------------------------
    # Weight adaptation
    # ------------------------------------------------------------------

    def adapt(self, features: FeatureVector, regime: Hashable | None = None) -> int:
        """
        Run one adaptation step of the influence-weight tuning loop.

        Decays exploration on both brains (boosting it after a regime change),
        rewards the previous tuning action, then picks and applies a new one.

        Args:
            features: Current feature vector
            regime: Externally supplied market regime label

        Returns:
            The action applied to the influence weights
        """
        with self._lock:
            features = features.clamped()
            regime_changed = (
                regime is not None and self.state.last_regime is not None and regime != self.state.last_regime
            )
            for brain in self.state.brains.values():
                brain.decay_exploration()
                if regime_changed:
                    brain.boost_exploration()
            if regime_changed:
                logger.debug(f'Regime change {self.state.last_regime!r} -> {regime!r}: exploration boosted')
            if regime is not None:
                self.state.last_regime = regime

            metrics = self.state.tracker.compute()
            kind = self.select_brain(features)
            state_id = self.encoder.encode(features, metrics.performance_score)

            pending = self.state.pending_tuning
            if pending is not None:
                reward = self.reward_model.tuning_reward(pending.metrics, metrics, list(pending.deltas.values()))
                brain = self.state.brain(pending.brain)
                td_error = brain.update(
                    pending.state,
                    pending.action,
                    reward,
                    state_id,
                    terminal=False,
                    alpha=self.state.effective_learning_rate,
                    gamma=self.config.discount_factor,
                )
                self.state.buffer.store(
                    pending.state, pending.action, reward, state_id, terminal=False, td_error=td_error, brain=pending.brain
                )
                self.state.update_counter += 1

            action = self.state.brain(kind).select_action(state_id, training=True)
            deltas = self.state.weights.apply(action)
            self.state.pending_tuning = PendingTuning(
                state=state_id, action=action, brain=kind, metrics=metrics, deltas=deltas
            )
            return action

    def score(self, features: FeatureVector) -> float:
        """Setup score in [0, 1] under the current influence weights."""
        with self._lock:
            return self.state.weights.weighted_score(features.clamped())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                'trend': self.state.trend.get_stats(),
                'reversal': self.state.reversal.get_stats(),
                'buffer': self.state.buffer.get_stats(),
                'profile': self.state.profile.as_dict(),
                'weights': dict(self.state.weights.weights),
                'learning_rate': self.state.effective_learning_rate,
                'update_counter': self.state.update_counter,
                'overfitting': self.overfit.overfitting,
                'active_virtual_trades': len(self.virtual.active_trades()),
            }
