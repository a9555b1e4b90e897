"""Tests for overfit detection."""

import pytest

from dualbrain.brain import Brain, BrainKind
from dualbrain.buffers import ExperienceReplayBuffer
from dualbrain.config import EngineConfig
from dualbrain.overfit import OverfitDetector


@pytest.fixture
def detector():
    return OverfitDetector(EngineConfig())


class TestOverfitDetector:
    def test_first_observation_never_qualifies(self, detector):
        report = detector.observe(1.0, 100.0)
        assert report.checked
        assert not report.qualifying
        assert report.counter == 0

    def test_flag_rises_at_patience(self, detector):
        detector.observe(1.0, 1.0)
        assert detector.observe(1.0, 2.0).counter == 1
        assert detector.observe(1.0, 3.0).counter == 2

        report = detector.observe(1.0, 4.0)
        assert report.counter == 3
        assert report.overfitting
        assert report.newly_flagged

    def test_flag_clears_only_at_zero(self, detector):
        for validation in (1.0, 2.0, 3.0, 4.0):
            detector.observe(1.0, validation)
        assert detector.overfitting

        report = detector.observe(1.0, 4.0)
        assert report.counter == 2
        assert report.overfitting
        assert not report.newly_flagged

        detector.observe(1.0, 4.0)
        report = detector.observe(1.0, 4.0)
        assert report.counter == 0
        assert not report.overfitting

    def test_growth_without_ratio_does_not_qualify(self, detector):
        detector.observe(10.0, 1.0)
        report = detector.observe(10.0, 5.0)
        assert not report.qualifying

    def test_growth_from_zero(self, detector):
        detector.observe(0.0, 0.0)
        assert detector.observe(0.0, 0.5).qualifying

    def test_counter_never_negative(self, detector):
        for _ in range(5):
            report = detector.observe(1.0, 1.0)
        assert report.counter == 0

    def test_check_requires_minimum_experiences(self, detector):
        config = EngineConfig()
        buffer = ExperienceReplayBuffer(capacity=200)
        brains = {kind: Brain(kind, config) for kind in BrainKind}
        for i in range(50):
            buffer.store(i, 0, 1.0, i, True, td_error=1.0)

        report = detector.check(buffer, brains)
        assert not report.checked

    def test_check_splits_by_order(self):
        config = EngineConfig(overfit_min_experiences=10)
        detector = OverfitDetector(config)
        buffer = ExperienceReplayBuffer(capacity=20)
        brains = {kind: Brain(kind, config) for kind in BrainKind}

        # Oldest eight rewards 0 (fit perfectly by zero Q), newest two rewards 1
        for i in range(10):
            buffer.store(i, 0, 0.0 if i < 8 else 1.0, i, True, td_error=0.0)

        training, validation = detector.split(buffer)
        assert len(training) == 8
        assert len(validation) == 2

        report = detector.check(buffer, brains)
        assert report.checked
        assert report.training_error == pytest.approx(0.0)
        assert report.validation_error == pytest.approx(1.0)

    def test_mean_squared_error_uses_owning_brain(self):
        config = EngineConfig()
        brains = {kind: Brain(kind, config) for kind in BrainKind}
        brains[BrainKind.REVERSAL].q_table[1, 0] = 1.0
        buffer = ExperienceReplayBuffer(capacity=5)
        buffer.store(1, 0, 1.0, 1, True, td_error=0.0, brain=BrainKind.REVERSAL)
        buffer.store(1, 0, 1.0, 1, True, td_error=0.0, brain=BrainKind.TREND)

        mse = OverfitDetector.mean_squared_error(buffer.ordered(), brains)
        assert mse == pytest.approx(0.5)

    def test_reset(self, detector):
        for validation in (1.0, 2.0, 3.0, 4.0):
            detector.observe(1.0, validation)
        detector.reset()
        assert detector.counter == 0
        assert not detector.overfitting
        assert detector.previous_validation_error is None
