"""Explicit engine state shared by every component.

One ``EngineState`` is created by the host and handed to every engine call;
nothing in the package keeps module-level mutable state.
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from .brain import Brain, BrainKind
from .buffers import ExperienceReplayBuffer, ReplayBufferProtocol
from .config import EngineConfig
from .profile import SymbolProfile
from .rewards import PerformanceMetrics, PerformanceTracker
from .tuning import WeightAdapter


@dataclass
class PendingTuning:
    """A tuning action awaiting its reward at the next adaptation step."""

    state: int
    action: int
    brain: BrainKind
    metrics: PerformanceMetrics
    deltas: dict[str, float]


@dataclass
class EngineState:
    """
    Process-wide learned and bookkeeping state.

    Counters and timers reset on :meth:`reset_session` (startup); the brains,
    buffer and profile persist across sessions through the store.
    """

    config: EngineConfig
    trend: Brain
    reversal: Brain
    buffer: ReplayBufferProtocol
    profile: SymbolProfile = field(default_factory=SymbolProfile)
    tracker: PerformanceTracker = field(default_factory=PerformanceTracker)
    weights: WeightAdapter = field(default_factory=WeightAdapter)

    # Session counters
    next_ticket: int = 1
    update_counter: int = 0
    learning_rate_scale: float = 1.0
    brains_loaded: bool = False

    # Elapsed-time timers evaluated on each tick
    last_save_time: datetime | None = None
    last_replay_time: datetime | None = None

    last_regime: Hashable | None = None
    pending_tuning: PendingTuning | None = None

    @classmethod
    def create(
        cls,
        config: EngineConfig,
        rng: np.random.Generator | None = None,
        buffer: ReplayBufferProtocol | None = None,
    ) -> EngineState:
        """Fresh state; ``buffer`` replaces the default prioritized replay buffer."""
        config.validate()
        rng = rng if rng is not None else np.random.default_rng()
        if buffer is None:
            buffer = ExperienceReplayBuffer(config.replay_capacity, config.priority_epsilon, rng=rng)
        elif not isinstance(buffer, ReplayBufferProtocol):
            raise TypeError(f'{type(buffer).__name__} does not implement the replay buffer interface')
        return cls(
            config=config,
            trend=Brain(BrainKind.TREND, config, rng=rng),
            reversal=Brain(BrainKind.REVERSAL, config, rng=rng),
            buffer=buffer,
            weights=WeightAdapter(config.weight_step, config.weight_bounds),
        )

    def brain(self, kind: BrainKind) -> Brain:
        return self.trend if kind is BrainKind.TREND else self.reversal

    @property
    def brains(self) -> dict[BrainKind, Brain]:
        return {BrainKind.TREND: self.trend, BrainKind.REVERSAL: self.reversal}

    @property
    def effective_learning_rate(self) -> float:
        return self.config.learning_rate * self.learning_rate_scale

    def allocate_ticket(self) -> int:
        ticket = self.next_ticket
        self.next_ticket += 1
        return ticket

    def reset_session(self) -> None:
        """Reset counters and timers; tickets stay monotonic for the process lifetime."""
        self.update_counter = 0
        self.learning_rate_scale = 1.0
        self.last_save_time = None
        self.last_replay_time = None
        self.last_regime = None
        self.pending_tuning = None
