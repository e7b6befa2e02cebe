"""Tests for evaluate_policy."""

import numpy as np
import pytest

from vibe_gym.algorithms.tabular import QLearning
from vibe_gym.env import make
from vibe_gym.errors import InvalidConfiguration
from vibe_gym.runner.evaluator import EvalMetrics, evaluate_policy


class ConstantPolicy:
    def __init__(self, action=0):
        self.action = action
        self.calls = []

    def predict(self, obs, deterministic=True):
        self.calls.append(deterministic)
        return self.action


class TestEvaluatePolicy:
    def test_fixed_episode(self, countdown_env):
        result = evaluate_policy(ConstantPolicy(), countdown_env(), n_eval_episodes=4)
        assert isinstance(result, EvalMetrics)
        assert result.mean_return == 3.0
        assert result.std_return == 0.0
        assert result.mean_length == 3.0
        assert result.episode_returns == [3.0] * 4
        assert result.episode_lengths == [3] * 4
        assert result.success_rate is None

    def test_seed_only_first_reset(self, countdown_env):
        env = countdown_env()
        evaluate_policy(ConstantPolicy(), env, n_eval_episodes=3, seed=11)
        assert env.reset_seeds == [11, None, None]

    def test_deterministic_flag_passed_through(self, countdown_env):
        policy = ConstantPolicy()
        evaluate_policy(policy, countdown_env(), n_eval_episodes=1, deterministic=False)
        assert policy.calls == [False, False, False]

    def test_max_steps_per_episode(self, countdown_env):
        result = evaluate_policy(ConstantPolicy(), countdown_env(10), n_eval_episodes=2, max_steps_per_episode=4)
        assert result.episode_lengths == [4, 4]
        assert result.mean_return == 4.0

    def test_success_rate(self, countdown_env):
        class Scored(countdown_env):
            def step(self, action):
                result = super().step(action)
                if result.terminated:
                    result.info["is_success"] = action == 1
                return result

        assert evaluate_policy(ConstantPolicy(1), Scored(), n_eval_episodes=2).success_rate == 1.0
        assert evaluate_policy(ConstantPolicy(0), Scored(), n_eval_episodes=2).success_rate == 0.0

    def test_time_limit_ends_episode(self):
        # Action 0 (left) never leaves the start tile.
        result = evaluate_policy(ConstantPolicy(0), make("FrozenLake-v1", is_slippery=False), n_eval_episodes=1)
        assert result.episode_lengths == [100]
        assert result.mean_return == 0.0

    def test_tabular_agent(self):
        agent = QLearning(make("FrozenLake-v1", is_slippery=False), seed=0)
        # Right, right, down, down, down, right.
        path = {0: 2, 1: 2, 2: 1, 6: 1, 10: 1, 14: 2}
        for state, action in path.items():
            agent.q_table[state, action] = 1.0
        result = evaluate_policy(agent, make("FrozenLake-v1", is_slippery=False), n_eval_episodes=2)
        np.testing.assert_array_equal(result.episode_returns, [1.0, 1.0])
        assert result.mean_length == 6.0

    @pytest.mark.parametrize("n", [0, -3])
    def test_rejects_nonpositive_episode_count(self, countdown_env, n):
        with pytest.raises(InvalidConfiguration):
            evaluate_policy(ConstantPolicy(), countdown_env(), n_eval_episodes=n)
