"""
Tabular Q-learning brains.

Two brains live for the whole process: one specialising in trending
conditions, one in mean-reverting conditions. Each owns a dense
Q-table[729][9], an eligibility-trace table of the same shape and
accuracy/trade-count bookkeeping.
"""

from __future__ import annotations

from enum import Enum, IntEnum

import numpy as np

from .config import EngineConfig
from .features import NUM_STATES, FeatureVector


class Action(IntEnum):
    """Discrete parameter-nudge decisions emitted by the policy."""

    HOLD = 0
    TREND_WEIGHT_UP = 1
    TREND_WEIGHT_DOWN = 2
    VOLATILITY_WEIGHT_UP = 3
    VOLATILITY_WEIGHT_DOWN = 4
    MOMENTUM_WEIGHT_UP = 5
    MOMENTUM_WEIGHT_DOWN = 6
    RISK_WEIGHT_UP = 7
    RISK_WEIGHT_DOWN = 8


NUM_ACTIONS = len(Action)


class BrainKind(Enum):
    TREND = 0
    REVERSAL = 1

    @classmethod
    def for_features(cls, features: FeatureVector, threshold: float = 0.6) -> BrainKind:
        """Trend brain when trend strength exceeds the threshold, Reversal otherwise."""
        return cls.TREND if features.trend_strength > threshold else cls.REVERSAL


class Brain:
    """
    Q-learning brain with Watkins-style eligibility traces.

    State: one of NUM_STATES discretised market buckets
    Actions: the nine members of :class:`Action`
    Reward: supplied by the caller (sniper reward for trades, tuning reward for weights)
    """

    ACCURACY_DECAY = 0.99

    def __init__(self, kind: BrainKind, config: EngineConfig, rng: np.random.Generator | None = None):
        self.kind = kind
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng()

        self.q_table = np.zeros((NUM_STATES, NUM_ACTIONS), dtype=np.float64)
        self.traces = np.zeros((NUM_STATES, NUM_ACTIONS), dtype=np.float64)
        self.initialized = False
        self.accuracy = config.initial_accuracy
        self.trade_count = 0
        self.exploration_rate = config.exploration_rate

    def __repr__(self) -> str:
        return (
            f'Brain(kind={self.kind.name}, trades={self.trade_count}, '
            f'accuracy={self.accuracy:.3f}, epsilon={self.exploration_rate:.3f})'
        )

    @staticmethod
    def _check_state(state: int) -> int:
        if not 0 <= state < NUM_STATES:
            raise IndexError(f'state must be in [0, {NUM_STATES}), got {state}')
        return int(state)

    @staticmethod
    def _check_action(action: int) -> int:
        if not 0 <= action < NUM_ACTIONS:
            raise IndexError(f'action must be in [0, {NUM_ACTIONS}), got {action}')
        return int(action)

    def q_value(self, state: int, action: int) -> float:
        return float(self.q_table[self._check_state(state), self._check_action(action)])

    def trace(self, state: int, action: int) -> float:
        return float(self.traces[self._check_state(state), self._check_action(action)])

    def max_q(self, state: int) -> float:
        return float(np.max(self.q_table[self._check_state(state)]))

    def best_action(self, state: int) -> int:
        """Greedy action; ties resolve to the lowest action index."""
        # np.argmax returns the first maximal index
        return int(np.argmax(self.q_table[self._check_state(state)]))

    def select_action(self, state: int, training: bool = True) -> int:
        """
        Select action using epsilon-greedy policy.

        Args:
            state: Current state id
            training: If True, use exploration; if False, pure exploitation

        Returns:
            Selected action id
        """
        self._check_state(state)
        if training and self.rng.random() < self.exploration_rate:
            return int(self.rng.integers(NUM_ACTIONS))
        return self.best_action(state)

    def td_target(self, reward: float, next_state: int, terminal: bool, gamma: float) -> float:
        if terminal:
            return reward
        return reward + gamma * self.max_q(next_state)

    def update(
        self,
        state: int,
        action: int,
        reward: float,
        next_state: int,
        terminal: bool,
        alpha: float,
        gamma: float,
    ) -> float:
        """
        Update Q-value using Q-learning update rule.

        Q(s,a) <- Q(s,a) + alpha[r + gamma * max Q(s',a') - Q(s,a)]

        Returns:
            The TD error measured before the update (target - old Q)
        """
        state = self._check_state(state)
        action = self._check_action(action)
        target = self.td_target(reward, next_state, terminal, gamma)
        td_error = target - self.q_table[state, action]
        self.q_table[state, action] += alpha * td_error
        self.initialized = True
        return float(td_error)

    def credit_trade(self, state: int, action: int, reward: float, alpha: float, gamma: float, lam: float) -> float:
        """
        Credit a closed trade with a Q(lambda) trace sweep.

        Trade closure is a single terminal credit event: delta is measured
        against Q(s,a) without bootstrapping from a next state, then spread over
        every pair whose trace exceeds the threshold before the traces decay.

        Returns:
            delta = reward - Q(s,a) before the sweep
        """
        state = self._check_state(state)
        action = self._check_action(action)

        self.traces[state, action] += 1.0
        delta = reward - self.q_table[state, action]

        active = self.traces > self.config.trace_threshold
        self.q_table[active] += alpha * delta * self.traces[active]
        self.traces[active] *= gamma * lam
        self.initialized = True
        return float(delta)

    def record_outcome(self, profit: float) -> None:
        """Fold a realised trade result into the accuracy EMA and trade count."""
        self.accuracy = self.accuracy * self.ACCURACY_DECAY + (0.01 if profit > 0 else 0.0)
        self.trade_count += 1

    def decay_exploration(self) -> float:
        self.exploration_rate = max(
            self.config.min_exploration_rate, self.exploration_rate * self.config.exploration_decay
        )
        return self.exploration_rate

    def boost_exploration(self) -> float:
        """Curiosity boost after a regime change; later decays bring epsilon back down."""
        self.exploration_rate = max(self.exploration_rate, self.config.curiosity_exploration_rate)
        return self.exploration_rate

    def reset(self) -> None:
        self.q_table.fill(0.0)
        self.traces.fill(0.0)
        self.initialized = False
        self.accuracy = self.config.initial_accuracy
        self.trade_count = 0
        self.exploration_rate = self.config.exploration_rate

    def get_stats(self) -> dict[str, object]:
        visited = int(np.count_nonzero(np.any(self.q_table != 0.0, axis=1)))
        return {
            'kind': self.kind.name,
            'trade_count': self.trade_count,
            'accuracy': self.accuracy,
            'exploration_rate': self.exploration_rate,
            'initialized': self.initialized,
            'states_visited': visited,
            'active_traces': int(np.count_nonzero(self.traces > self.config.trace_threshold)),
        }
