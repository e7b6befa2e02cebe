"""Tests for SyncVectorEnv and make_vec."""

import functools

import numpy as np
import pytest

from vibe_gym.env import AutoresetMode, Box, MultiDiscrete, make
from vibe_gym.errors import (
    InvalidConfiguration,
    InvalidNumEnvs,
    VectorEnvActionCountMismatch,
    VectorEnvClosed,
    VectorEnvNeedsReset,
)
from vibe_gym.vector import SyncVectorEnv, make_vec


@pytest.fixture
def lengths_env(countdown_env):
    """Two slots whose episodes end after 1 and 3 steps."""

    def build(mode=AutoresetMode.NEXT_STEP):
        return SyncVectorEnv(
            [functools.partial(countdown_env, 1), functools.partial(countdown_env, 3)],
            autoreset_mode=mode,
        )

    return build


class TestConstruction:
    def test_batched_spaces(self):
        envs = SyncVectorEnv([lambda: make("CartPole-v1") for _ in range(3)])
        assert envs.num_envs == 3
        assert envs.observation_space.shape == (3, 4)
        assert envs.action_space == MultiDiscrete([2, 2, 2])
        assert envs.spec.id == "CartPole-v1"
        envs.close()

    def test_empty_rejected(self):
        with pytest.raises(InvalidNumEnvs):
            SyncVectorEnv([])

    def test_mismatched_spaces_rejected(self):
        with pytest.raises(InvalidConfiguration):
            SyncVectorEnv([lambda: make("CartPole-v1"), lambda: make("GridWorld-v0")])


class TestStepping:
    def test_reset_seeds_each_slot(self, countdown_env):
        envs = SyncVectorEnv([countdown_env for _ in range(3)])
        obs, infos = envs.reset(seed=10)
        assert obs.shape == (3, 1)
        assert [e.reset_seeds[-1] for e in envs.envs] == [10, 11, 12]
        np.testing.assert_array_equal(infos["start"], [True, True, True])
        np.testing.assert_array_equal(infos["_start"], [True, True, True])

    def test_seed_list(self, countdown_env):
        envs = SyncVectorEnv([countdown_env, countdown_env])
        envs.reset(seed=[5, None])
        assert [e.reset_seeds[-1] for e in envs.envs] == [5, None]
        with pytest.raises(InvalidConfiguration):
            envs.reset(seed=[1, 2, 3])

    def test_seeded_vector_matches_single_envs(self):
        envs = make_vec("CartPole-v1", num_envs=2)
        obs, _ = envs.reset(seed=4)
        for i in range(2):
            single_obs, _ = make("CartPole-v1").reset(seed=4 + i)
            np.testing.assert_array_equal(obs[i], single_obs)

    def test_action_count_mismatch(self, countdown_env):
        envs = SyncVectorEnv([countdown_env, countdown_env])
        envs.reset()
        with pytest.raises(VectorEnvActionCountMismatch):
            envs.step(np.zeros(3, dtype=np.int64))

    def test_next_step_autoreset(self, lengths_env):
        envs = lengths_env()
        envs.reset()
        obs, rewards, terms, truncs, infos = envs.step([0, 0])
        np.testing.assert_array_equal(terms, [True, False])
        np.testing.assert_array_equal(obs, [[1.0], [1.0]])
        np.testing.assert_array_equal(infos["_final_observation"], [True, False])
        np.testing.assert_array_equal(infos["final_observation"][0], [1.0])
        assert infos["final_info"][1] is None
        np.testing.assert_array_equal(rewards, [1.0, 1.0])

        # Slot 0 is reset before its next action, slot 1 keeps going.
        obs, *_ = envs.step([0, 0])
        np.testing.assert_array_equal(obs, [[1.0], [2.0]])

    def test_same_step_autoreset(self, lengths_env):
        envs = lengths_env(AutoresetMode.SAME_STEP)
        envs.reset()
        obs, _, terms, _, infos = envs.step([0, 0])
        assert terms[0]
        np.testing.assert_array_equal(obs[0], [0.0])
        np.testing.assert_array_equal(infos["final_observation"][0], [1.0])

    def test_disabled_autoreset_needs_manual_reset(self, lengths_env):
        envs = lengths_env(AutoresetMode.DISABLED)
        envs.reset()
        envs.step([0, 0])
        with pytest.raises(VectorEnvNeedsReset):
            envs.step([0, 0])
        envs.reset()
        envs.step([0, 0])

    def test_step_returns_copy(self, countdown_env):
        envs = SyncVectorEnv([countdown_env], copy=True)
        envs.reset()
        first, *_ = envs.step([0])
        envs.step([0])
        np.testing.assert_array_equal(first, [[1.0]])

    def test_call_reads_attributes(self, countdown_env):
        envs = SyncVectorEnv([functools.partial(countdown_env, 4), functools.partial(countdown_env, 6)])
        assert envs.call("episode_length") == (4, 6)


class TestClose:
    def test_closed_env_faults(self, countdown_env):
        envs = SyncVectorEnv([countdown_env])
        envs.close()
        assert envs.envs[0].closed
        with pytest.raises(VectorEnvClosed):
            envs.reset()
        envs.close()

    def test_context_manager(self, countdown_env):
        with SyncVectorEnv([countdown_env]) as envs:
            envs.reset()
        assert envs.closed


class TestMakeVec:
    def test_modes(self):
        sync = make_vec("GridWorld-v0", num_envs=2)
        assert isinstance(sync, SyncVectorEnv)
        assert sync.single_observation_space == Box(0.0, 1.0, shape=(2,))
        sync.close()

    def test_invalid_mode(self):
        with pytest.raises(InvalidConfiguration):
            make_vec("GridWorld-v0", num_envs=2, vectorization_mode="process")

    def test_invalid_count(self):
        with pytest.raises(InvalidNumEnvs):
            make_vec("GridWorld-v0", num_envs=0)
