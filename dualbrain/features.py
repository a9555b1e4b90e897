"""Market feature vectors and their discretisation into engine states."""

from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Mapping
from dataclasses import dataclass, fields
from decimal import Decimal

import numpy as np

logger = logging.getLogger(__name__)

NUM_BINS = 3
NUM_ENCODED_FEATURES = 6
NUM_STATES = NUM_BINS**NUM_ENCODED_FEATURES  # 729

# Neutral value used when a collaborator cannot supply a feature.
# RSI=50 normalises to 0.5; everything else sits at the midpoint of [0, 1].
NEUTRAL_VALUE = 0.5


@dataclass(frozen=True)
class FeatureVector:
    """Normalised market features, each expected in [0, 1]."""

    trend_strength: float = NEUTRAL_VALUE
    volatility: float = NEUTRAL_VALUE
    momentum: float = NEUTRAL_VALUE
    volume_ratio: float = NEUTRAL_VALUE
    market_regime: float = NEUTRAL_VALUE
    time_of_day: float = NEUTRAL_VALUE
    heatmap_strength: float = NEUTRAL_VALUE
    orderflow_strength: float = NEUTRAL_VALUE
    structure_quality: float = NEUTRAL_VALUE
    risk_sentiment: float = NEUTRAL_VALUE
    higher_tf_trend: float = NEUTRAL_VALUE
    rsi: float = NEUTRAL_VALUE
    correlation: float = NEUTRAL_VALUE

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> FeatureVector:
        """
        Build a clamped feature vector from collaborator output.

        Missing, non-numeric and non-finite entries are replaced with the
        neutral value so a tick is never aborted for lack of data.
        """
        kwargs: dict[str, float] = {}
        substituted: list[str] = []
        for field_info in fields(cls):
            raw = values.get(field_info.name)
            value = _to_unit(raw)
            if value is None:
                substituted.append(field_info.name)
                value = NEUTRAL_VALUE
            kwargs[field_info.name] = value

        if substituted:
            logger.debug(f'Neutral defaults substituted for: {", ".join(substituted)}')
        return cls(**kwargs)

    def clamped(self) -> FeatureVector:
        """Return a copy with every value forced into [0, 1] (non-finite values become neutral)."""
        values = {}
        for field_info in fields(self):
            value = _to_unit(getattr(self, field_info.name))
            values[field_info.name] = NEUTRAL_VALUE if value is None else value
        return FeatureVector(**values)

    def as_dict(self) -> dict[str, float]:
        return {field_info.name: getattr(self, field_info.name) for field_info in fields(self)}


def _to_unit(raw: object) -> float | None:
    # numpy scalars register as numbers.Real; Decimal does not
    if isinstance(raw, (bool, np.bool_)) or not isinstance(raw, (numbers.Real, Decimal)):
        return None
    value = float(raw)
    if not math.isfinite(value):
        return None
    return max(0.0, min(1.0, value))


# Per-feature (centroid, min, max); centroids are fixed, not running statistics
ENCODED_FEATURE_BOUNDS: tuple[tuple[str, float, float, float], ...] = (
    ('trend_strength', 0.5, 0.0, 1.0),
    ('volatility', 0.5, 0.0, 1.0),
    ('momentum', 0.5, 0.0, 1.0),
    ('risk_sentiment', 0.5, 0.0, 1.0),
    ('performance_score', 0.5, 0.0, 1.0),
    ('higher_tf_trend', 0.5, 0.0, 1.0),
)


class FeatureEncoder:
    """
    Maps a FeatureVector to a discrete state in [0, 729).

    Six features are each quantised into {low, mid, high} with adaptive
    thresholds around a centroid and combined by mixed-radix encoding.
    """

    SPREAD = 0.4

    def __init__(self, bounds: tuple[tuple[str, float, float, float], ...] = ENCODED_FEATURE_BOUNDS):
        if len(bounds) != NUM_ENCODED_FEATURES:
            raise ValueError(f'expected {NUM_ENCODED_FEATURES} encoded features, got {len(bounds)}')
        self.bounds = bounds

    @classmethod
    def quantize(cls, value: float, centroid: float, min_val: float, max_val: float) -> int:
        """Ternary bin for a value: 0 below the low threshold, 2 above the high threshold, else 1."""
        low = centroid - (centroid - min_val) * cls.SPREAD
        high = centroid + (max_val - centroid) * cls.SPREAD
        if value < low:
            return 0
        if value > high:
            return 2
        # NaN compares false on both sides and lands in the middle bin
        return 1

    def digits(self, features: FeatureVector, performance_score: float = NEUTRAL_VALUE) -> list[int]:
        result = []
        for name, centroid, min_val, max_val in self.bounds:
            value = performance_score if name == 'performance_score' else getattr(features, name)
            result.append(self.quantize(value, centroid, min_val, max_val))
        return result

    def encode(self, features: FeatureVector, performance_score: float = NEUTRAL_VALUE) -> int:
        """
        Encode features into a state id.

        Args:
            features: Normalised feature vector
            performance_score: Derived performance score in [0, 1]

        Returns:
            State id in [0, NUM_STATES)
        """
        d0, d1, d2, d3, d4, d5 = self.digits(features, performance_score)
        state = d0 + NUM_BINS * (d1 + NUM_BINS * (d2 + NUM_BINS * (d3 + NUM_BINS * (d4 + NUM_BINS * d5))))
        if state >= NUM_STATES:
            state = NUM_STATES - 1
        return max(0, state)
