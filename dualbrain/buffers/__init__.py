"""Experience replay buffers for brain training."""

from .base import Experience, ReplayBufferProtocol
from .prioritized import ExperienceReplayBuffer

__all__ = [
    'Experience',
    'ExperienceReplayBuffer',
    'ReplayBufferProtocol',
]
