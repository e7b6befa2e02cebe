"""Tests for vibe_gym.dataprotocol.replay_buffer."""

import json

import jax.numpy as jnp
import numpy as np
import pytest

from vibe_gym.dataprotocol import ReplayBuffer
from vibe_gym.dataprotocol.replay_buffer import META_FILE
from vibe_gym.env.spaces import Box, Dict, Discrete
from vibe_gym.errors import (
    IncompatibleBufferConfig,
    InvalidCheckpoint,
    InvalidConfiguration,
    InvalidState,
    MissingCheckpointFile,
)

OBS_SPACE = Box(-10.0, 10.0, shape=(2,))
ACT_SPACE = Discrete(3)


def _fill(buf, n, start=0, truncate_every=None):
    """Add ``n`` transitions whose observation encodes the step index."""
    for i in range(start, start + n):
        truncated = truncate_every is not None and (i + 1) % truncate_every == 0
        buf.add(
            np.array([i, i], dtype=np.float32),
            i % 3,
            float(i),
            np.array([i + 1, i + 1], dtype=np.float32),
            False,
            truncated,
        )


def _assert_same_samples(buf, restored, batch_size=16):
    a = buf.sample(batch_size, np.random.default_rng(7))
    b = restored.sample(batch_size, np.random.default_rng(7))
    for field, x, y in zip(a._fields, a, b):
        np.testing.assert_array_equal(x, y, err_msg=field)


class TestCapacity:
    def test_fill_and_wrap(self):
        buf = ReplayBuffer(4, OBS_SPACE, ACT_SPACE)
        _fill(buf, 3)
        assert len(buf) == 3 and not buf.full
        _fill(buf, 2, start=3)
        assert len(buf) == 4 and buf.full
        assert buf.position == 1
        # Oldest row was overwritten by step 4.
        assert buf.observations[0, 0, 0] == 4.0

    def test_n_envs_splits_rows(self):
        buf = ReplayBuffer(10, OBS_SPACE, ACT_SPACE, n_envs=2)
        assert buf.buffer_size == 5
        assert buf.observations.shape == (5, 2, 2)

    def test_invalid_sizes(self):
        with pytest.raises(InvalidConfiguration):
            ReplayBuffer(0, OBS_SPACE, ACT_SPACE)
        with pytest.raises(InvalidConfiguration):
            ReplayBuffer(4, OBS_SPACE, ACT_SPACE, n_envs=0)

    def test_composite_observation_rejected(self):
        with pytest.raises(InvalidConfiguration):
            ReplayBuffer(4, Dict(a=Discrete(2)), ACT_SPACE)

    def test_reset_drops_contents(self):
        buf = ReplayBuffer(4, OBS_SPACE, ACT_SPACE)
        _fill(buf, 3)
        buf.reset()
        assert len(buf) == 0 and buf.position == 0


class TestSampling:
    def test_empty_buffer_faults(self):
        with pytest.raises(InvalidState):
            ReplayBuffer(4, OBS_SPACE, ACT_SPACE).sample(2)

    def test_batch_shapes_and_types(self):
        buf = ReplayBuffer(16, OBS_SPACE, ACT_SPACE, seed=0)
        _fill(buf, 10)
        batch = buf.sample(8)
        assert batch.obs.shape == (8, 2)
        assert batch.action.shape == (8,)
        assert batch.reward.shape == (8,)
        assert batch.done.shape == (8,)
        assert isinstance(batch.obs, jnp.ndarray)

    def test_samples_only_stored_rows(self):
        buf = ReplayBuffer(16, OBS_SPACE, ACT_SPACE, seed=0)
        _fill(buf, 5)
        batch = buf.sample(200)
        assert float(batch.obs.max()) <= 4.0
        np.testing.assert_allclose(batch.next_obs, batch.obs + 1.0)
        np.testing.assert_allclose(batch.reward, batch.obs[:, 0])

    def test_seeded_sampling_reproducible(self):
        a = ReplayBuffer(16, OBS_SPACE, ACT_SPACE, seed=3)
        b = ReplayBuffer(16, OBS_SPACE, ACT_SPACE, seed=3)
        _fill(a, 10)
        _fill(b, 10)
        np.testing.assert_array_equal(a.sample(6).obs, b.sample(6).obs)

    def test_to_transition(self):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE, seed=0)
        _fill(buf, 4)
        transition = buf.sample(2).to_transition()
        assert transition.obs.shape == (2, 2)


class TestTimeouts:
    def test_truncation_does_not_end_bootstrap(self):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE, seed=0)
        _fill(buf, 4, truncate_every=2)
        batch = buf.sample(100)
        assert float(batch.done.max()) == 0.0
        assert float(batch.timeout.max()) == 1.0

    def test_truncation_counts_as_done_when_not_handled(self):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE, handle_timeout_termination=False, seed=0)
        _fill(buf, 4, truncate_every=2)
        batch = buf.sample(100)
        obs, done = np.asarray(batch.obs), np.asarray(batch.done)
        truncated_rows = obs[:, 0] % 2 == 1
        assert truncated_rows.any()
        np.testing.assert_array_equal(done[truncated_rows], 1.0)

    def test_termination_stays_done(self):
        buf = ReplayBuffer(4, OBS_SPACE, ACT_SPACE, seed=0)
        buf.add(np.zeros(2), 0, 1.0, np.ones(2), True, True)
        batch = buf.sample(1)
        assert float(batch.done[0]) == 1.0
        assert float(batch.timeout[0]) == 0.0


class TestMemoryOptimized:
    def _buffer(self, size=4):
        return ReplayBuffer(
            size,
            OBS_SPACE,
            ACT_SPACE,
            optimize_memory_usage=True,
            handle_timeout_termination=False,
            seed=0,
        )

    def test_incompatible_with_timeout_handling(self):
        with pytest.raises(IncompatibleBufferConfig):
            ReplayBuffer(4, OBS_SPACE, ACT_SPACE, optimize_memory_usage=True)

    def test_needs_two_rows(self):
        with pytest.raises(InvalidConfiguration):
            ReplayBuffer(1, OBS_SPACE, ACT_SPACE, optimize_memory_usage=True, handle_timeout_termination=False)

    def test_next_obs_read_from_following_row(self):
        buf = self._buffer()
        assert buf.next_observations is None
        _fill(buf, 2)
        np.testing.assert_array_equal(buf.observations[2, 0], [2.0, 2.0])
        batch = buf.sample(50)
        np.testing.assert_allclose(batch.next_obs, batch.obs + 1.0)

    def test_overwritten_row_excluded_after_wrap(self):
        buf = self._buffer()
        _fill(buf, 6)
        # position == 2: row 2 holds the next_obs of step 5, not a transition.
        assert buf.position == 2 and buf.full
        batch = buf.sample(500)
        np.testing.assert_allclose(batch.next_obs, batch.obs + 1.0)
        assert 6.0 not in set(np.asarray(batch.obs[:, 0]).tolist())


class TestPersistence:
    def test_save_and_load(self, tmp_path):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE, seed=1)
        _fill(buf, 5, truncate_every=2)
        buf.save(tmp_path / "buf")
        meta = json.loads((tmp_path / "buf" / META_FILE).read_text())
        assert meta["position"] == 5 and meta["count"] == 5 and meta["isFull"] is False

        restored = ReplayBuffer.load(tmp_path / "buf", OBS_SPACE, ACT_SPACE)
        assert len(restored) == 5
        assert restored.position == buf.position
        assert restored.full == buf.full
        np.testing.assert_array_equal(restored.observations, buf.observations)
        np.testing.assert_array_equal(restored.timeouts, buf.timeouts)
        np.testing.assert_array_equal(restored.actions, buf.actions)
        _assert_same_samples(buf, restored)

    def test_wrapped_buffer_samples_match(self, tmp_path):
        buf = ReplayBuffer(4, OBS_SPACE, ACT_SPACE, seed=2)
        _fill(buf, 7, truncate_every=3)
        buf.save(tmp_path)
        restored = ReplayBuffer.load(tmp_path, OBS_SPACE, ACT_SPACE)
        assert (restored.position, restored.full) == (3, True)
        _assert_same_samples(buf, restored)

    def test_only_populated_rows_written(self, tmp_path):
        buf = ReplayBuffer(100, OBS_SPACE, ACT_SPACE)
        _fill(buf, 3)
        buf.save(tmp_path)
        assert np.load(tmp_path / "observations.npy").shape[0] == 3

    def test_memory_optimized_keeps_last_next_obs(self, tmp_path):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE, optimize_memory_usage=True, handle_timeout_termination=False)
        _fill(buf, 3)
        buf.save(tmp_path)
        restored = ReplayBuffer.load(tmp_path, OBS_SPACE, ACT_SPACE)
        np.testing.assert_array_equal(restored.observations[3, 0], [3.0, 3.0])

    def test_missing_meta(self, tmp_path):
        with pytest.raises(MissingCheckpointFile):
            ReplayBuffer.load(tmp_path, OBS_SPACE, ACT_SPACE)

    def test_missing_array(self, tmp_path):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE)
        _fill(buf, 2)
        buf.save(tmp_path)
        (tmp_path / "rewards.npy").unlink()
        with pytest.raises(MissingCheckpointFile):
            ReplayBuffer.load(tmp_path, OBS_SPACE, ACT_SPACE)

    def test_inconsistent_meta(self, tmp_path):
        buf = ReplayBuffer(8, OBS_SPACE, ACT_SPACE)
        _fill(buf, 2)
        buf.save(tmp_path)
        meta = json.loads((tmp_path / META_FILE).read_text())
        meta["count"] = 7
        (tmp_path / META_FILE).write_text(json.dumps(meta))
        with pytest.raises(InvalidCheckpoint):
            ReplayBuffer.load(tmp_path, OBS_SPACE, ACT_SPACE)
