"""Confidence gating of proposed trades."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .brain import Brain
from .config import EngineConfig
from .features import FeatureVector
from .profile import SymbolProfile

logger = logging.getLogger(__name__)


def is_breakout(tag: str) -> bool:
    return 'breakout' in tag.lower()


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    confidence: float
    reason: str


class ConfidenceGate:
    """
    Combines brain accuracy with feature alignment into an allow/deny decision.

    Brains with fewer than ``gate_min_trades`` outcomes are exempt so a fresh
    engine can gather its first samples.
    """

    def __init__(self, config: EngineConfig):
        self.config = config

    @staticmethod
    def feature_alignment(features: FeatureVector) -> float:
        alignment = 0.0
        if features.trend_strength > 0.6 and features.momentum > 0.6:
            alignment += 0.3
        if features.structure_quality > 0.7:
            alignment += 0.2
        # Order flow and heatmap agreeing, bullish or bearish
        bullish = features.orderflow_strength > 0.6 and features.heatmap_strength > 0.6
        bearish = features.orderflow_strength < 0.4 and features.heatmap_strength < 0.4
        if bullish or bearish:
            alignment += 0.2
        return alignment

    def confidence(self, features: FeatureVector, brain: Brain) -> float:
        return (self.feature_alignment(features) + brain.accuracy) / 2.0

    def check(self, tag: str, brain: Brain, profile: SymbolProfile, features: FeatureVector) -> GateDecision:
        """
        Decide whether a proposed trade may proceed upstream.

        Args:
            tag: Signal tag of the proposed trade (breakout detection)
            brain: Brain the trade would be credited to
            profile: Learned characteristics of the instrument
            features: Current feature vector
        """
        confidence = self.confidence(features, brain)

        if not self.config.enable_confidence_gate:
            return GateDecision(True, confidence, 'gate_disabled')

        if brain.trade_count < self.config.gate_min_trades:
            return GateDecision(True, confidence, 'bootstrap')

        if brain.accuracy < self.config.gate_min_accuracy:
            logger.debug(f'Gate denied {tag!r}: accuracy {brain.accuracy:.3f} < {self.config.gate_min_accuracy}')
            return GateDecision(False, confidence, f'accuracy_too_low ({brain.accuracy:.2f})')

        if is_breakout(tag) and profile.spike_probability > self.config.gate_max_spike_probability:
            logger.debug(f'Gate denied {tag!r}: spike probability {profile.spike_probability:.3f}')
            return GateDecision(False, confidence, f'spike_risk ({profile.spike_probability:.2f})')

        return GateDecision(True, confidence, 'approved')
