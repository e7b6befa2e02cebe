"""Tests for the thread-parallel AsyncVectorEnv."""

import functools
import time

import numpy as np
import pytest

from vibe_gym.env import AutoresetMode, make
from vibe_gym.errors import ActionOutsideSpace, InvalidConfiguration, VectorEnvClosed
from vibe_gym.vector import AsyncVectorEnv, SyncVectorEnv, make_vec


class TestAsyncVectorEnv:
    def test_matches_sync_executor(self):
        fns = [functools.partial(make, "CartPole-v1") for _ in range(3)]
        sync, par = SyncVectorEnv(fns), AsyncVectorEnv(fns)
        try:
            obs_s, _ = sync.reset(seed=0)
            obs_a, _ = par.reset(seed=0)
            np.testing.assert_array_equal(obs_s, obs_a)
            for t in range(30):
                actions = np.array([t % 2, 1, 0])
                a = sync.step(actions)
                b = par.step(actions)
                np.testing.assert_array_equal(a.observations, b.observations)
                np.testing.assert_array_equal(a.rewards, b.rewards)
                np.testing.assert_array_equal(a.terminations, b.terminations)
                np.testing.assert_array_equal(a.truncations, b.truncations)
        finally:
            sync.close()
            par.close()

    def test_results_sorted_by_slot(self, countdown_env):
        class SlowEnv(countdown_env):
            def step(self, action):
                # Earlier slots finish later.
                time.sleep(0.01 * (3 - self.episode_length))
                return super().step(action)

        fns = [functools.partial(SlowEnv, n) for n in (1, 2, 3)]
        with AsyncVectorEnv(fns) as envs:
            envs.reset()
            _, _, terms, _, infos = envs.step([0, 0, 0])
            np.testing.assert_array_equal(terms, [True, False, False])
            np.testing.assert_array_equal(infos["count"], [1, 1, 1])

    def test_autoreset_in_workers(self, countdown_env):
        with AsyncVectorEnv([functools.partial(countdown_env, 1)], AutoresetMode.SAME_STEP) as envs:
            envs.reset()
            obs, _, terms, _, infos = envs.step([0])
            assert terms[0]
            np.testing.assert_array_equal(obs, [[0.0]])
            np.testing.assert_array_equal(infos["final_observation"][0], [1.0])

    def test_worker_error_reraised(self):
        envs = AsyncVectorEnv([functools.partial(make, "CartPole-v1") for _ in range(2)])
        try:
            envs.reset(seed=0)
            with pytest.raises(ActionOutsideSpace):
                envs.step(np.array([0, 9]))
            # The failing batch left the workers usable.
            envs.step(np.array([0, 1]))
        finally:
            envs.close()

    def test_constructor_error_reraised(self):
        def broken():
            raise RuntimeError("cannot build")

        with pytest.raises(RuntimeError, match="cannot build"):
            AsyncVectorEnv([functools.partial(make, "CartPole-v1"), broken])

    def test_mismatched_spaces_rejected(self):
        with pytest.raises(InvalidConfiguration):
            AsyncVectorEnv([functools.partial(make, "CartPole-v1"), functools.partial(make, "GridWorld-v0")])

    def test_close_stops_workers(self, countdown_env):
        envs = AsyncVectorEnv([countdown_env, countdown_env])
        envs.close()
        assert all(not w.is_alive() for w in envs._workers)
        with pytest.raises(VectorEnvClosed):
            envs.step([0, 0])

    def test_make_vec_async(self):
        envs = make_vec("Pendulum-v1", num_envs=2, vectorization_mode="async")
        try:
            assert isinstance(envs, AsyncVectorEnv)
            obs, _ = envs.reset(seed=1)
            assert obs.shape == (2, 3)
        finally:
            envs.close()
