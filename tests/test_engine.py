"""Tests for the AdaptiveEngine facade."""

import threading
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from dualbrain.brain import BrainKind
from dualbrain.buffers import ExperienceReplayBuffer
from dualbrain.config import EngineConfig
from dualbrain.engine import AdaptiveEngine, Decision
from dualbrain.features import NUM_STATES, FeatureVector
from dualbrain.overfit import OverfitReport
from dualbrain.persistence import PersistenceStore
from dualbrain.state import EngineState
from dualbrain.virtual import Direction

T0 = datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc)


def _config(**overrides):
    values = {
        'exploration_rate': 0.0,
        'min_exploration_rate': 0.0,
        'enable_persistence': False,
        'replay_batch_size': 1,
        'replay_interval_seconds': 0.0,
    }
    values.update(overrides)
    return EngineConfig(**values)


@pytest.fixture
def engine():
    eng = AdaptiveEngine(_config(), rng=np.random.default_rng(9))
    eng.startup(now=T0)
    return eng


class TestStartup:
    def test_fresh_startup(self):
        engine = AdaptiveEngine(_config())
        result = engine.startup(now=T0)
        assert result['loaded'] is False
        assert result['pretraining']['status'] == 'insufficient_data'
        assert engine.state.last_save_time == T0

    def test_pretraining_disabled(self):
        engine = AdaptiveEngine(_config(enable_pretraining=False))
        assert engine.startup(now=T0)['pretraining'] == {'status': 'disabled'}

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            AdaptiveEngine(EngineConfig(learning_rate=0.0))

    def test_injected_replay_buffer(self):
        config = _config()
        buffer = ExperienceReplayBuffer(capacity=5, rng=np.random.default_rng(3))
        engine = AdaptiveEngine(state=EngineState.create(config, buffer=buffer))
        engine.startup(now=T0)
        engine.adapt(FeatureVector())
        engine.adapt(FeatureVector())
        assert engine.state.buffer is buffer
        assert len(buffer) == 1

    def test_non_buffer_rejected(self):
        with pytest.raises(TypeError):
            EngineState.create(_config(), buffer=[])


class TestDecide:
    def test_decision_fields(self, engine):
        decision = engine.decide(FeatureVector(trend_strength=0.9), tag='breakout')
        assert isinstance(decision, Decision)
        assert 0 <= decision.state_id < NUM_STATES
        assert decision.brain_kind is BrainKind.TREND
        assert decision.allowed
        assert decision.reason == 'bootstrap'

    def test_brain_kind_override(self, engine):
        decision = engine.decide(FeatureVector(trend_strength=0.9), tag='x', kind=BrainKind.REVERSAL)
        assert decision.brain_kind is BrainKind.REVERSAL

    def test_greedy_action_follows_q_table(self, engine):
        state_id = engine.encode(FeatureVector())
        engine.state.reversal.q_table[state_id, 6] = 1.0
        assert engine.decide(FeatureVector(), tag='x').action == 6


class TestTickLoop:
    def test_closed_trade_is_replayed(self, engine):
        engine.open_virtual(Direction.BUY, 100.0, 99.0, 102.0, 'pullback', FeatureVector(), now=T0)

        outcomes = engine.on_tick(102.0, 102.01, now=T0 + timedelta(seconds=1))
        assert len(outcomes) == 1
        assert len(engine.state.buffer) == 1
        # One credit from the close plus one replayed sample
        assert engine.state.update_counter == 2
        assert engine.state.last_replay_time == T0 + timedelta(seconds=1)

    def test_replay_waits_for_interval(self):
        engine = AdaptiveEngine(_config(replay_interval_seconds=60.0))
        engine.startup(now=T0)
        engine.state.buffer.store(1, 0, 1.0, 1, True, td_error=1.0)

        engine.on_tick(100.0, 100.01, now=T0 + timedelta(seconds=30))
        assert engine.state.update_counter == 0
        engine.on_tick(100.0, 100.01, now=T0 + timedelta(seconds=60))
        assert engine.state.update_counter == 1

    def test_replay_refreshes_priority(self, engine):
        engine.state.buffer.store(1, 0, 1.0, 1, True, td_error=5.0)
        result = engine.replay()

        assert result['replayed'] == 1
        assert result['mean_abs_td'] == pytest.approx(1.0)
        # td measured against the pre-update Q of zero
        assert engine.state.buffer.ordered()[0].priority == pytest.approx(1.01)

    def test_replay_needs_a_full_batch(self):
        engine = AdaptiveEngine(_config(replay_batch_size=4))
        engine.state.buffer.store(1, 0, 1.0, 1, True, td_error=1.0)
        assert engine.replay()['replayed'] == 0

    def test_overfit_mitigation(self, engine, monkeypatch):
        for i in range(40):
            engine.state.buffer.store(i, 0, 1.0, i, True, td_error=1.0)
        monkeypatch.setattr(
            engine.overfit,
            'check',
            lambda buffer, brains: OverfitReport(checked=True, overfitting=True, newly_flagged=True),
        )

        engine.replay(batch_size=32)
        assert engine.state.learning_rate_scale == pytest.approx(0.5)
        assert engine.state.effective_learning_rate == pytest.approx(0.05)
        assert len(engine.state.buffer) == 30

    def test_learning_rate_scale_floor(self, engine, monkeypatch):
        engine.state.learning_rate_scale = 0.015
        engine.state.buffer.store(1, 0, 1.0, 1, True, td_error=1.0)
        monkeypatch.setattr(
            engine.overfit,
            'check',
            lambda buffer, brains: OverfitReport(checked=True, overfitting=True, newly_flagged=True),
        )
        engine.replay()
        assert engine.state.learning_rate_scale == pytest.approx(0.01)


class TestAdapt:
    def test_first_step_only_applies_action(self, engine):
        action = engine.adapt(FeatureVector())
        assert action == 0  # greedy on an empty table
        assert engine.state.pending_tuning is not None
        assert len(engine.state.buffer) == 0

    def test_second_step_rewards_previous_action(self, engine):
        engine.adapt(FeatureVector())
        engine.adapt(FeatureVector())

        assert len(engine.state.buffer) == 1
        experience = engine.state.buffer.ordered()[0]
        assert not experience.terminal
        assert engine.state.update_counter == 1

    def test_weights_follow_selected_action(self, engine):
        state_id = engine.encode(FeatureVector())
        engine.state.reversal.q_table[state_id, 1] = 5.0
        engine.adapt(FeatureVector())
        assert engine.state.weights.weights['trend'] == pytest.approx(1.05)

    def test_score_uses_tuned_weights(self, engine):
        features = FeatureVector(trend_strength=0.9)
        assert engine.score(features) == pytest.approx((0.9 + 1.5) / 4)

        engine.state.weights.apply(1)
        assert engine.score(features) == pytest.approx((1.05 * 0.9 + 1.5) / 4.05)
        assert engine.score(FeatureVector(trend_strength=2.0)) == pytest.approx((1.05 + 1.5) / 4.05)

    def test_regime_change_boosts_exploration(self):
        engine = AdaptiveEngine(_config(exploration_rate=0.2, min_exploration_rate=0.02))
        engine.startup(now=T0)

        engine.adapt(FeatureVector(), regime='trending')
        assert engine.state.trend.exploration_rate == pytest.approx(0.2 * 0.995)

        engine.adapt(FeatureVector(), regime='ranging')
        assert engine.state.trend.exploration_rate == pytest.approx(0.30)
        assert engine.state.reversal.exploration_rate == pytest.approx(0.30)

        engine.adapt(FeatureVector(), regime='ranging')
        assert engine.state.trend.exploration_rate == pytest.approx(0.30 * 0.995)


class TestPersistenceLifecycle:
    def test_shutdown_then_restart_restores(self, tmp_path):
        config = _config(enable_persistence=True)
        first = AdaptiveEngine(config, store=PersistenceStore(tmp_path, 'EURUSD'))
        first.startup(now=T0)
        first.state.trend.q_table[10, 3] = 0.75
        first.state.trend.trade_count = 12
        assert first.shutdown()

        second = AdaptiveEngine(_config(enable_persistence=True), store=PersistenceStore(tmp_path, 'EURUSD'))
        result = second.startup(now=T0)
        assert result['loaded'] is True
        assert result['pretraining']['status'] == 'skipped'
        assert second.state.brains_loaded
        assert second.state.trend.q_value(10, 3) == pytest.approx(0.75)
        assert second.state.trend.trade_count == 12

    def test_autosave_on_tick(self, tmp_path):
        config = _config(enable_persistence=True, autosave_interval_seconds=10.0)
        store = PersistenceStore(tmp_path, 'EURUSD', autosave_interval_seconds=10.0)
        engine = AdaptiveEngine(config, store=store)
        engine.startup(now=T0)

        engine.on_tick(100.0, 100.01, now=T0 + timedelta(seconds=5))
        assert not store.path.exists()
        engine.on_tick(100.0, 100.01, now=T0 + timedelta(seconds=11))
        assert store.path.exists()
        assert engine.state.last_save_time == T0 + timedelta(seconds=11)

    def test_unwritable_state_dir_does_not_break_ticks(self, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('occupied')
        config = _config(enable_persistence=True, autosave_interval_seconds=10.0)
        store = PersistenceStore(blocker / 'sub', 'EURUSD', autosave_interval_seconds=10.0)
        engine = AdaptiveEngine(config, store=store)
        engine.startup(now=T0)

        assert engine.on_tick(100.0, 100.01, now=T0 + timedelta(seconds=11)) == []
        assert engine.state.last_save_time == T0 + timedelta(seconds=11)
        assert engine.save() is False
        assert engine.shutdown() is False

    def test_shutdown_without_persistence(self, engine):
        assert engine.shutdown() is False


class TestConcurrency:
    def test_parallel_callers(self, engine):
        errors = []

        def worker(offset):
            try:
                for i in range(50):
                    now = T0 + timedelta(seconds=offset * 100 + i)
                    engine.open_virtual(Direction.BUY, 100.0, 99.0, 100.5, 'x', FeatureVector(), now=now)
                    engine.on_tick(100.5, 100.51, now=now)
                    engine.decide(FeatureVector(), tag='x')
            except Exception as exc:  # pragma: no cover
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert engine.state.reversal.trade_count == 200
        assert engine.state.next_ticket == 201
