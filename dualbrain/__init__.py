"""
DualBrain - adaptive decision engine for pattern-driven trading strategies.

This package provides:
- Feature discretisation into a 729-bucket state space
- Two Q-learning brains (Trend, Reversal) with eligibility traces
- Prioritized experience replay
- Virtual (paper) trading that turns simulated outcomes into training signal
- Fail-closed binary persistence of learned state
- Overfit detection and confidence gating of proposed trades
"""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import brain as brain
    from . import buffers as buffers
    from . import config as config
    from . import data as data
    from . import engine as engine
    from . import features as features
    from . import gate as gate
    from . import log_config as log_config
    from . import overfit as overfit
    from . import persistence as persistence
    from . import profile as profile
    from . import rewards as rewards
    from . import runtime_settings as runtime_settings
    from . import state as state
    from . import tuning as tuning
    from . import virtual as virtual

__version__ = '1.0.0'
__all__ = [
    'brain',
    'buffers',
    'config',
    'data',
    'engine',
    'features',
    'gate',
    'log_config',
    'overfit',
    'persistence',
    'profile',
    'rewards',
    'runtime_settings',
    'state',
    'tuning',
    'virtual',
]


def __getattr__(name: str) -> ModuleType:  # pragma: no cover
    """Lazy-load top-level module attributes to avoid importing pandas at package import time."""
    if name in __all__:
        module = importlib.import_module(f'{__name__}.{name}')
        globals()[name] = module
        return module
    raise AttributeError(f'module {__name__!r} has no attribute {name!r}')


def __dir__() -> list[str]:  # pragma: no cover
    return sorted(set(list(globals()) + __all__))
