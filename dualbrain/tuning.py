"""Influence-weight adaptation driven by brain actions."""

from __future__ import annotations

from .brain import Action
from .features import FeatureVector

WEIGHT_NAMES = ('trend', 'volatility', 'momentum', 'risk')

# action -> (weight name, direction)
_ACTION_TARGETS: dict[Action, tuple[str, int]] = {
    Action.TREND_WEIGHT_UP: ('trend', 1),
    Action.TREND_WEIGHT_DOWN: ('trend', -1),
    Action.VOLATILITY_WEIGHT_UP: ('volatility', 1),
    Action.VOLATILITY_WEIGHT_DOWN: ('volatility', -1),
    Action.MOMENTUM_WEIGHT_UP: ('momentum', 1),
    Action.MOMENTUM_WEIGHT_DOWN: ('momentum', -1),
    Action.RISK_WEIGHT_UP: ('risk', 1),
    Action.RISK_WEIGHT_DOWN: ('risk', -1),
}


class WeightAdapter:
    """
    Holds the influence weights a host strategy uses to score setups and
    applies the nudges chosen by the tuning brain.
    """

    def __init__(self, step: float = 0.05, bounds: tuple[float, float] = (0.1, 3.0)):
        if step <= 0:
            raise ValueError(f'step must be positive, got {step}')
        low, high = bounds
        if not 0.0 <= low < high:
            raise ValueError(f'bounds must satisfy 0 <= low < high, got {bounds}')
        self.step = step
        self.bounds = (low, high)
        self.weights: dict[str, float] = dict.fromkeys(WEIGHT_NAMES, min(max(1.0, low), high))

    def apply(self, action: int) -> dict[str, float]:
        """
        Nudge the weight targeted by ``action``.

        Returns:
            Signed change of every weight (zero for HOLD or a clamped nudge)
        """
        deltas = dict.fromkeys(WEIGHT_NAMES, 0.0)
        target = _ACTION_TARGETS.get(Action(action))
        if target is None:
            return deltas

        name, direction = target
        low, high = self.bounds
        before = self.weights[name]
        after = min(high, max(low, before + direction * self.step))
        self.weights[name] = after
        deltas[name] = after - before
        return deltas

    def weighted_score(self, features: FeatureVector) -> float:
        """Weighted blend of the tuned features, normalised back to [0, 1]."""
        parts = {
            'trend': features.trend_strength,
            'volatility': features.volatility,
            'momentum': features.momentum,
            'risk': features.risk_sentiment,
        }
        total_weight = sum(self.weights.values())
        if total_weight <= 0:
            return 0.5
        return sum(self.weights[name] * value for name, value in parts.items()) / total_weight
