"""Tests for reward shaping and performance metrics."""

import pytest

from dualbrain.rewards import PerformanceMetrics, PerformanceTracker, RewardModel


@pytest.fixture
def model():
    return RewardModel(min_risk_distance=1e-5)


class TestSniperReward:
    def test_clean_win_caps_at_one(self, model):
        assert model.sniper_reward(2.0, entry_price=100.0, stop_price=99.0, max_unrealized_loss=0.0) == 1.0

    def test_win_near_stop_scores_point_one(self, model):
        assert model.sniper_reward(2.0, 100.0, 99.0, max_unrealized_loss=-0.9) == pytest.approx(0.1)

    def test_partial_win(self, model):
        # 0.2R with a 0.5R drawdown: 0.1 + 0.5
        assert model.sniper_reward(0.2, 100.0, 99.0, max_unrealized_loss=-0.5) == pytest.approx(0.6)

    def test_loss_scores_minus_one(self, model):
        assert model.sniper_reward(-1.0, 100.0, 99.0) == -1.0

    def test_breakeven_scores_minus_one(self, model):
        assert model.sniper_reward(0.0, 100.0, 99.0) == -1.0

    def test_zero_risk_uses_floor(self, model):
        assert model.initial_risk(100.0, 100.0) == pytest.approx(1e-5)
        assert model.sniper_reward(0.001, 100.0, 100.0) == 1.0

    def test_invalid_floor(self):
        with pytest.raises(ValueError):
            RewardModel(min_risk_distance=0.0)


class TestTuningReward:
    def test_strong_improvement_clips_to_one(self, model):
        current = PerformanceMetrics(
            performance_score=0.8,
            win_rate=0.7,
            profit_factor=2.0,
            max_drawdown=0.05,
            sharpe_ratio=2.0,
            consecutive_wins=3,
        )
        assert model.tuning_reward(PerformanceMetrics(), current, [0.05]) == 1.0

    def test_deterioration_clips_to_minus_one(self, model):
        current = PerformanceMetrics(
            performance_score=0.2,
            win_rate=0.1,
            profit_factor=0.5,
            max_drawdown=0.2,
            sharpe_ratio=0.0,
            consecutive_losses=4,
        )
        assert model.tuning_reward(PerformanceMetrics(), current) == -1.0

    def test_churn_penalty(self, model):
        neutral = PerformanceMetrics(
            performance_score=0.5, win_rate=0.5, profit_factor=1.2, max_drawdown=0.1, sharpe_ratio=1.0
        )
        assert model.tuning_reward(neutral, neutral, []) == pytest.approx(0.0)
        assert model.tuning_reward(neutral, neutral, [0.05, -0.05]) == pytest.approx(-0.015)
        assert model.tuning_reward(neutral, neutral, [10.0]) == pytest.approx(-0.5)


class TestPerformanceTracker:
    def test_empty_history_is_neutral(self):
        metrics = PerformanceTracker().compute()
        assert metrics.performance_score == 0.5
        assert metrics.total_trades == 0

    def test_metrics_from_trades(self):
        tracker = PerformanceTracker(initial_equity=10000.0)
        for pnl in (100.0, -50.0, 100.0):
            tracker.record_trade(pnl)

        metrics = tracker.compute()
        drawdown = 50.0 / 10100.0
        assert metrics.win_rate == pytest.approx(2 / 3)
        assert metrics.profit_factor == pytest.approx(4.0)
        assert metrics.max_drawdown == pytest.approx(drawdown)
        assert metrics.consecutive_wins == 1
        assert metrics.consecutive_losses == 0
        assert metrics.performance_score == pytest.approx(0.4 * 2 / 3 + 0.3 + 0.3 * (1 - drawdown / 0.3))

    def test_all_wins_caps_profit_factor(self):
        tracker = PerformanceTracker()
        tracker.record_trade(10.0)
        tracker.record_trade(5.0)
        assert tracker.compute().profit_factor == 3.0

    def test_losing_streak(self):
        tracker = PerformanceTracker()
        for pnl in (10.0, -1.0, -2.0, 0.0):
            tracker.record_trade(pnl)
        metrics = tracker.compute()
        assert metrics.consecutive_losses == 3
        assert metrics.consecutive_wins == 0

    def test_window_is_bounded(self):
        tracker = PerformanceTracker(window_size=5)
        for _ in range(10):
            tracker.record_trade(1.0)
        assert len(tracker) == 5

    def test_non_finite_pnl_ignored(self):
        tracker = PerformanceTracker()
        tracker.record_trade(float('nan'))
        assert len(tracker) == 0
