"""Base protocol and record type for experience replay buffers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..brain import BrainKind


@dataclass
class Experience:
    """Single (s, a, r, s', terminal) training tuple with its sampling priority."""

    state: int
    action: int
    reward: float
    next_state: int
    terminal: bool
    priority: float
    brain: BrainKind = BrainKind.TREND


@runtime_checkable
class ReplayBufferProtocol(Protocol):
    """Protocol defining the replay buffer interface."""

    def store(
        self,
        state: int,
        action: int,
        reward: float,
        next_state: int,
        terminal: bool,
        td_error: float,
        brain: BrainKind = BrainKind.TREND,
    ) -> None:
        """Add a transition; its priority becomes |td_error| + epsilon."""
        ...

    def sample(self, batch_size: int) -> tuple[list[Experience], list[int]]:
        """Sample a batch of transitions.

        Returns:
            Tuple of (experiences, slot indices for priority updates)
        """
        ...

    def update_priority(self, index: int, td_error: float) -> None:
        """Refresh the priority of a sampled slot."""
        ...

    def __len__(self) -> int:
        """Return the current number of transitions in the buffer."""
        ...

    def is_ready(self, min_size: int | None = None) -> bool:
        """Check if buffer has enough transitions for training."""
        ...

    def ordered(self) -> list[Experience]:
        """Live transitions, oldest first."""
        ...

    def prune_oldest(self, fraction: float) -> int:
        """Drop the oldest ``fraction`` of transitions; returns how many were removed."""
        ...

    def get_stats(self) -> dict[str, float]:
        ...
