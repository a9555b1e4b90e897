"""
Configuration for the adaptive decision engine.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any


@dataclass
class EngineConfig:
    """Tunable knobs of the dual-brain engine."""

    # Learning parameters
    learning_rate: float = 0.1
    discount_factor: float = 0.95
    trace_decay: float = 0.8  # lambda for Q(lambda) credit assignment
    trace_threshold: float = 0.01  # traces at or below this are not propagated

    # Exploration
    exploration_rate: float = 0.20
    exploration_decay: float = 0.995
    min_exploration_rate: float = 0.02
    curiosity_exploration_rate: float = 0.30  # floor applied for one step after a regime change

    # Experience replay
    replay_capacity: int = 1000
    replay_batch_size: int = 32
    priority_epsilon: float = 0.01
    replay_interval_seconds: float = 60.0

    # Overfit detection
    validation_ratio: float = 0.2
    overfit_min_experiences: int = 100
    overfit_validation_growth: float = 0.10
    overfit_ratio: float = 1.5
    overfit_patience: int = 3
    overfit_prune_fraction: float = 0.25
    min_learning_rate_scale: float = 0.01

    # Persistence
    enable_persistence: bool = True
    autosave_interval_seconds: float = 3600.0

    # Pre-training
    enable_pretraining: bool = True
    pretrain_max_candles: int = 5000

    # Confidence gate
    enable_confidence_gate: bool = True
    gate_min_trades: int = 10
    gate_min_accuracy: float = 0.45
    gate_max_spike_probability: float = 0.7
    trend_gate_threshold: float = 0.6

    # Reward / bookkeeping
    min_risk_distance: float = 1e-5  # smallest tradable price increment
    initial_accuracy: float = 0.5

    # Influence weight adaptation
    weight_step: float = 0.05
    weight_bounds: tuple[float, float] = (0.1, 3.0)

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If any parameter is invalid
        """
        if not 0.0 < self.learning_rate <= 1.0:
            raise ValueError(f'learning_rate must be in (0, 1], got {self.learning_rate}')

        if not 0.0 <= self.discount_factor <= 1.0:
            raise ValueError(f'discount_factor must be in [0, 1], got {self.discount_factor}')

        if not 0.0 <= self.trace_decay <= 1.0:
            raise ValueError(f'trace_decay must be in [0, 1], got {self.trace_decay}')

        if self.trace_threshold < 0:
            raise ValueError(f'trace_threshold must be non-negative, got {self.trace_threshold}')

        if not 0.0 <= self.exploration_rate <= 1.0:
            raise ValueError(f'exploration_rate must be in [0, 1], got {self.exploration_rate}')

        if not 0.0 < self.exploration_decay <= 1.0:
            raise ValueError(f'exploration_decay must be in (0, 1], got {self.exploration_decay}')

        if not 0.0 <= self.min_exploration_rate <= self.exploration_rate:
            raise ValueError(
                f'min_exploration_rate must be in [0, exploration_rate], '
                f'got {self.min_exploration_rate} (exploration_rate={self.exploration_rate})'
            )

        if not 0.0 <= self.curiosity_exploration_rate <= 1.0:
            raise ValueError(f'curiosity_exploration_rate must be in [0, 1], got {self.curiosity_exploration_rate}')

        if self.replay_capacity <= 0:
            raise ValueError(f'replay_capacity must be positive, got {self.replay_capacity}')

        if not 0 < self.replay_batch_size <= self.replay_capacity:
            raise ValueError(
                f'replay_batch_size must be in (0, replay_capacity], '
                f'got {self.replay_batch_size} (replay_capacity={self.replay_capacity})'
            )

        if self.priority_epsilon <= 0:
            raise ValueError(f'priority_epsilon must be positive, got {self.priority_epsilon}')

        if self.replay_interval_seconds < 0:
            raise ValueError(f'replay_interval_seconds must be non-negative, got {self.replay_interval_seconds}')

        if not 0.0 < self.validation_ratio < 1.0:
            raise ValueError(f'validation_ratio must be in (0, 1), got {self.validation_ratio}')

        if self.overfit_min_experiences < 2:
            raise ValueError(f'overfit_min_experiences must be >= 2, got {self.overfit_min_experiences}')

        if self.overfit_validation_growth < 0:
            raise ValueError(
                f'overfit_validation_growth must be non-negative, got {self.overfit_validation_growth}'
            )

        if self.overfit_ratio <= 0:
            raise ValueError(f'overfit_ratio must be positive, got {self.overfit_ratio}')

        if self.overfit_patience < 1:
            raise ValueError(f'overfit_patience must be >= 1, got {self.overfit_patience}')

        if not 0.0 <= self.overfit_prune_fraction < 1.0:
            raise ValueError(f'overfit_prune_fraction must be in [0, 1), got {self.overfit_prune_fraction}')

        if not 0.0 < self.min_learning_rate_scale <= 1.0:
            raise ValueError(f'min_learning_rate_scale must be in (0, 1], got {self.min_learning_rate_scale}')

        if self.autosave_interval_seconds <= 0:
            raise ValueError(f'autosave_interval_seconds must be positive, got {self.autosave_interval_seconds}')

        if not 0 < self.pretrain_max_candles <= 5000:
            raise ValueError(f'pretrain_max_candles must be in (0, 5000], got {self.pretrain_max_candles}')

        if self.gate_min_trades < 0:
            raise ValueError(f'gate_min_trades must be non-negative, got {self.gate_min_trades}')

        if not 0.0 <= self.gate_min_accuracy <= 1.0:
            raise ValueError(f'gate_min_accuracy must be in [0, 1], got {self.gate_min_accuracy}')

        if not 0.0 <= self.gate_max_spike_probability <= 1.0:
            raise ValueError(
                f'gate_max_spike_probability must be in [0, 1], got {self.gate_max_spike_probability}'
            )

        if not 0.0 <= self.trend_gate_threshold <= 1.0:
            raise ValueError(f'trend_gate_threshold must be in [0, 1], got {self.trend_gate_threshold}')

        if self.min_risk_distance <= 0:
            raise ValueError(f'min_risk_distance must be positive, got {self.min_risk_distance}')

        if not 0.0 <= self.initial_accuracy <= 1.0:
            raise ValueError(f'initial_accuracy must be in [0, 1], got {self.initial_accuracy}')

        if self.weight_step <= 0:
            raise ValueError(f'weight_step must be positive, got {self.weight_step}')

        low, high = self.weight_bounds
        if not 0.0 <= low < high:
            raise ValueError(f'weight_bounds must satisfy 0 <= low < high, got {self.weight_bounds}')

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> EngineConfig:
        """
        Build a validated config from a flat mapping of knob names.

        Unknown keys are ignored; values are coerced to the type of the
        field's default so strings from environment variables work.
        """
        defaults = cls()
        kwargs: dict[str, Any] = {}
        for field_info in fields(cls):
            if field_info.name not in values:
                continue
            raw = values[field_info.name]
            kwargs[field_info.name] = _coerce(field_info.name, raw, getattr(defaults, field_info.name))

        config = cls(**kwargs)
        config.validate()
        return config


def _coerce(name: str, raw: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in {'1', 'true', 'yes', 'on'}:
            return True
        if text in {'0', 'false', 'no', 'off'}:
            return False
        raise ValueError(f'{name} must be a boolean, got {raw!r}')
    if isinstance(default, tuple):
        parts = raw.split(',') if isinstance(raw, str) else list(raw)
        try:
            return tuple(float(part) for part in parts)
        except (TypeError, ValueError):
            raise ValueError(f'{name} must be a comma separated pair of numbers, got {raw!r}') from None
    try:
        if isinstance(default, int):
            return int(raw)
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be numeric, got {raw!r}') from None
