"""Prioritized experience replay buffer.

Fixed-capacity circular store. Sampling is fitness-proportionate over the
whole live buffer: the priority total is recomputed for every pass and each
draw walks the slots accumulating priority until the draw is exceeded.

Reference: Schaul et al. (2015) "Prioritized Experience Replay"
"""

from __future__ import annotations

import math

import numpy as np

from ..brain import BrainKind
from .base import Experience


class ExperienceReplayBuffer:
    """Experience replay buffer with priority-weighted sampling.

    Transitions are sampled with probability proportional to their
    priority (|TD error| + epsilon). Once full, the oldest entry is
    overwritten first.
    """

    def __init__(self, capacity: int = 1000, priority_epsilon: float = 0.01, rng: np.random.Generator | None = None):
        """Initialize the buffer.

        Args:
            capacity: Maximum number of transitions to store
            priority_epsilon: Floor added to every priority so none reaches zero
            rng: Random generator used for sampling
        """
        if capacity <= 0:
            raise ValueError(f'capacity must be positive, got {capacity}')
        if priority_epsilon <= 0:
            raise ValueError(f'priority_epsilon must be positive, got {priority_epsilon}')

        self.capacity = capacity
        self.priority_epsilon = priority_epsilon
        self.rng = rng if rng is not None else np.random.default_rng()

        self._data: list[Experience | None] = [None] * capacity
        self._write_idx = 0
        self._size = 0

    def __len__(self) -> int:
        """Return current number of transitions."""
        return self._size

    def _priority_for(self, td_error: float) -> float:
        magnitude = abs(td_error)
        if not math.isfinite(magnitude):
            magnitude = 0.0
        return magnitude + self.priority_epsilon

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
        """Insert at the write cursor, overwriting the oldest entry once full."""
        self._data[self._write_idx] = Experience(
            state=int(state),
            action=int(action),
            reward=float(reward),
            next_state=int(next_state),
            terminal=bool(terminal),
            priority=self._priority_for(td_error),
            brain=brain,
        )
        self._write_idx = (self._write_idx + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)

    def _oldest_idx(self) -> int:
        return (self._write_idx - self._size) % self.capacity

    def ordered(self) -> list[Experience]:
        """Live experiences from oldest to newest."""
        start = self._oldest_idx()
        return [self._data[(start + i) % self.capacity] for i in range(self._size)]  # type: ignore[misc]

    def total_priority(self) -> float:
        return float(sum(self._data[i].priority for i in range(self._size)))  # type: ignore[union-attr]

    def sample(self, batch_size: int) -> tuple[list[Experience], list[int]]:
        """Sample a batch of transitions with roulette-wheel selection.

        Draws are independent, so one experience may appear more than once.

        Args:
            batch_size: Number of transitions to sample

        Returns:
            Tuple of (experiences, slot indices)
        """
        if batch_size <= 0:
            raise ValueError(f'batch_size must be positive, got {batch_size}')
        if self._size == 0:
            raise ValueError('Cannot sample from an empty buffer')

        # Live entries always occupy slots [0, size)
        priorities = [self._data[i].priority for i in range(self._size)]  # type: ignore[union-attr]
        total_priority = float(sum(priorities))

        experiences: list[Experience] = []
        indices: list[int] = []
        for _ in range(batch_size):
            draw = self.rng.uniform(0.0, total_priority)
            chosen = self._size - 1
            cumulative = 0.0
            for idx, priority in enumerate(priorities):
                cumulative += priority
                if cumulative > draw:
                    chosen = idx
                    break
            experiences.append(self._data[chosen])  # type: ignore[arg-type]
            indices.append(chosen)

        return experiences, indices

    def update_priority(self, index: int, td_error: float) -> None:
        """Refresh a slot's priority to |td_error| + epsilon.

        Args:
            index: Slot index returned by :meth:`sample`
            td_error: New TD error for the stored transition
        """
        if not 0 <= index < self._size:
            raise IndexError(f'index must be in [0, {self._size}), got {index}')
        self._data[index].priority = self._priority_for(td_error)  # type: ignore[union-attr]

    def prune_oldest(self, fraction: float) -> int:
        """Drop the oldest ``fraction`` of live entries, keeping FIFO order of the rest.

        Returns:
            Number of entries removed
        """
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f'fraction must be in [0, 1], got {fraction}')
        removed = int(self._size * fraction)
        if removed == 0:
            return 0

        survivors = self.ordered()[removed:]
        self._data = [None] * self.capacity
        for idx, experience in enumerate(survivors):
            self._data[idx] = experience
        self._size = len(survivors)
        self._write_idx = self._size % self.capacity
        return removed

    def clear(self) -> None:
        self._data = [None] * self.capacity
        self._write_idx = 0
        self._size = 0

    def is_ready(self, min_size: int | None = None) -> bool:
        """Check if buffer has enough transitions for training.

        Args:
            min_size: Minimum required transitions (defaults to 1)

        Returns:
            True if len(buffer) >= min_size
        """
        threshold = min_size if min_size is not None else 1
        return self._size >= threshold

    def get_stats(self) -> dict[str, float]:
        """Get buffer statistics."""
        if self._size == 0:
            return {'size': 0, 'capacity': self.capacity, 'total_priority': 0.0, 'max_priority': 0.0, 'min_priority': 0.0}
        priorities = [self._data[i].priority for i in range(self._size)]  # type: ignore[union-attr]
        return {
            'size': self._size,
            'capacity': self.capacity,
            'total_priority': float(sum(priorities)),
            'max_priority': float(max(priorities)),
            'min_priority': float(min(priorities)),
        }
