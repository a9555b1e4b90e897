"""Overfit detection over the replay buffer."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .brain import Brain, BrainKind
from .buffers import Experience, ReplayBufferProtocol
from .config import EngineConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverfitReport:
    """Outcome of one overfit check."""

    checked: bool
    training_error: float = 0.0
    validation_error: float = 0.0
    qualifying: bool = False
    counter: int = 0
    overfitting: bool = False
    newly_flagged: bool = False


class OverfitDetector:
    """
    Tracks training vs validation error of the Q-tables against stored rewards.

    The buffer is split by order (oldest 80% train, newest 20% validate).
    A check qualifies when validation error grew by at least the configured
    fraction since the previous check and exceeds ``overfit_ratio`` times the
    training error. Qualifying checks increment a counter, others decrement it;
    the flag rises at ``overfit_patience`` and clears only at zero.
    """

    def __init__(self, config: EngineConfig):
        self.config = config
        self.counter = 0
        self.overfitting = False
        self.previous_validation_error: float | None = None

    @staticmethod
    def mean_squared_error(experiences: Sequence[Experience], brains: Mapping[BrainKind, Brain]) -> float:
        if not experiences:
            return 0.0
        total = 0.0
        for experience in experiences:
            q = brains[experience.brain].q_value(experience.state, experience.action)
            total += (q - experience.reward) ** 2
        return total / len(experiences)

    def split(self, buffer: ReplayBufferProtocol) -> tuple[list[Experience], list[Experience]]:
        ordered = buffer.ordered()
        cut = int(len(ordered) * (1.0 - self.config.validation_ratio))
        return ordered[:cut], ordered[cut:]

    def check(self, buffer: ReplayBufferProtocol, brains: Mapping[BrainKind, Brain]) -> OverfitReport:
        """Run one check; returns ``checked=False`` until enough experiences exist."""
        if len(buffer) < self.config.overfit_min_experiences:
            return OverfitReport(checked=False, counter=self.counter, overfitting=self.overfitting)

        training, validation = self.split(buffer)
        training_error = self.mean_squared_error(training, brains)
        validation_error = self.mean_squared_error(validation, brains)
        return self.observe(training_error, validation_error)

    def observe(self, training_error: float, validation_error: float) -> OverfitReport:
        """Apply the hysteresis rule to one (training, validation) error pair."""
        previous = self.previous_validation_error
        if previous is None:
            grew = False
        elif previous == 0.0:
            grew = validation_error > 0.0
        else:
            grew = validation_error >= previous * (1.0 + self.config.overfit_validation_growth)
        qualifying = grew and validation_error > self.config.overfit_ratio * training_error
        self.previous_validation_error = validation_error

        was_overfitting = self.overfitting
        if qualifying:
            self.counter += 1
            if self.counter >= self.config.overfit_patience:
                self.overfitting = True
        else:
            self.counter = max(0, self.counter - 1)
            if self.counter == 0:
                self.overfitting = False

        newly_flagged = self.overfitting and not was_overfitting
        if newly_flagged:
            logger.warning(
                f'Overfitting detected: validation_mse={validation_error:.6f}, '
                f'training_mse={training_error:.6f}, counter={self.counter}'
            )
        elif was_overfitting and not self.overfitting:
            logger.info('Overfitting flag cleared')

        return OverfitReport(
            checked=True,
            training_error=training_error,
            validation_error=validation_error,
            qualifying=qualifying,
            counter=self.counter,
            overfitting=self.overfitting,
            newly_flagged=newly_flagged,
        )

    def reset(self) -> None:
        self.counter = 0
        self.overfitting = False
        self.previous_validation_error = None
