"""Replay buffer for off-policy RL algorithms.

Storage and mutation use numpy; ``sample()`` returns jax arrays. This
keeps insertion O(1) on the host while the hot path (gradient
computation on sampled batches) stays in JAX. The buffer itself is not
jit-compatible and lives outside the compiled training step::

    for step in range(total_steps):
        action = select_action(obs)
        next_obs, reward, terminated, truncated, info = env.step(action)
        buffer.add(obs, action, reward, next_obs, terminated, truncated)
        if len(buffer) >= learning_starts:
            batch = buffer.sample(batch_size)
            state, metrics = update(state, batch.to_transition())

Arrays have shape ``(buffer_size, n_envs, ...)``: one row per insertion
step, one column per parallel environment.

With ``optimize_memory_usage`` the next observation of row ``i`` is not
stored separately but read from ``observations[(i + 1) % buffer_size]``,
halving observation memory. That is only valid while rows are written in
chronological order, so it cannot be combined with
``handle_timeout_termination``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import jax.numpy as jnp
import numpy as np

from vibe_gym.dataprotocol.transition import ReplayBatch
from vibe_gym.env.spaces import Box, Dict, Discrete, MultiBinary, MultiDiscrete, Space, Tuple
from vibe_gym.errors import (
    IncompatibleBufferConfig,
    InvalidCheckpoint,
    InvalidConfiguration,
    InvalidState,
    MissingCheckpointFile,
)
from vibe_gym.seeding import np_generator

logger = logging.getLogger(__name__)

META_FILE = "buffer_meta.json"


class ReplayBuffer:
    """Fixed-size circular buffer with uniform random sampling.

    Args:
        buffer_size: Total number of transitions; split evenly across
            ``n_envs`` columns (at least one row).
        observation_space: Space of a single observation.
        action_space: Space of a single action.
        n_envs: Number of parallel environments feeding the buffer.
        optimize_memory_usage: Share observation storage between
            consecutive rows.
        handle_timeout_termination: Clear the done flag of truncated
            transitions on sampling so their value is bootstrapped.
        seed: Seed of the buffer's own sampling generator.
    """

    def __init__(
        self,
        buffer_size: int,
        observation_space: Space,
        action_space: Space,
        *,
        n_envs: int = 1,
        optimize_memory_usage: bool = False,
        handle_timeout_termination: bool = True,
        seed: int | None = None,
    ) -> None:
        if buffer_size <= 0:
            raise InvalidConfiguration(f"buffer_size must be positive, got {buffer_size}")
        if n_envs <= 0:
            raise InvalidConfiguration(f"n_envs must be positive, got {n_envs}")
        if optimize_memory_usage and handle_timeout_termination:
            raise IncompatibleBufferConfig()
        if isinstance(observation_space, (Tuple, Dict)):
            raise InvalidConfiguration(
                f"ReplayBuffer does not support composite observation spaces, got {observation_space!r}"
            )

        self.requested_size = buffer_size
        self.buffer_size = max(buffer_size // n_envs, 1)
        if optimize_memory_usage and self.buffer_size < 2:
            raise InvalidConfiguration("optimize_memory_usage needs at least two rows")

        self.observation_space = observation_space
        self.action_space = action_space
        self.n_envs = n_envs
        self.optimize_memory_usage = optimize_memory_usage
        self.handle_timeout_termination = handle_timeout_termination
        self.seed = seed
        self.obs_shape = _shape_of(observation_space)
        self.action_shape = _shape_of(action_space)
        self._obs_dtype = observation_space.dtype
        self._action_dtype = action_space.dtype
        self._rng = np_generator(seed)

        self.position = 0
        self.full = False
        self._allocate()

    def _allocate(self) -> None:
        rows, n = self.buffer_size, self.n_envs
        self.observations = np.zeros((rows, n, *self.obs_shape), dtype=self._obs_dtype)
        self.next_observations: np.ndarray | None = (
            None
            if self.optimize_memory_usage
            else np.zeros((rows, n, *self.obs_shape), dtype=self._obs_dtype)
        )
        self.actions = np.zeros((rows, n, *self.action_shape), dtype=self._action_dtype)
        self.rewards = np.zeros((rows, n), dtype=np.float32)
        self.dones = np.zeros((rows, n), dtype=np.float32)
        self.timeouts = np.zeros((rows, n), dtype=np.float32)

    # ---- mutation ----

    def add(
        self,
        obs: Any,
        action: Any,
        reward: Any,
        next_obs: Any,
        terminated: Any,
        truncated: Any,
    ) -> None:
        """Store one step from each of the ``n_envs`` environments.

        With ``n_envs == 1`` unbatched values are accepted.
        """
        n = self.n_envs
        terminated = np.asarray(terminated, dtype=np.bool_).reshape(n)
        truncated = np.asarray(truncated, dtype=np.bool_).reshape(n)

        pos = self.position
        next_pos = (pos + 1) % self.buffer_size
        self.observations[pos] = np.asarray(obs).reshape((n, *self.obs_shape))
        self.actions[pos] = np.asarray(action).reshape((n, *self.action_shape))
        self.rewards[pos] = np.asarray(reward, dtype=np.float32).reshape(n)
        self.dones[pos] = terminated | truncated
        # Only timeout-only endings; a real termination keeps its done flag.
        self.timeouts[pos] = truncated & ~terminated

        next_obs = np.asarray(next_obs).reshape((n, *self.obs_shape))
        if self.next_observations is None:
            self.observations[next_pos] = next_obs
        else:
            self.next_observations[pos] = next_obs

        self.position = next_pos
        if next_pos == 0:
            self.full = True

    def reset(self) -> None:
        """Drop every stored transition."""
        self.position = 0
        self.full = False
        self._allocate()

    # ---- sampling ----

    @property
    def count(self) -> int:
        return self.buffer_size if self.full else self.position

    def __len__(self) -> int:
        return self.count

    def sample(self, batch_size: int, rng: np.random.Generator | None = None) -> ReplayBatch:
        """Uniformly sample ``batch_size`` transitions (with replacement)."""
        if self.count == 0:
            raise InvalidState("Cannot sample from an empty replay buffer")
        if batch_size <= 0:
            raise InvalidConfiguration(f"batch_size must be positive, got {batch_size}")
        rng = self._rng if rng is None else rng

        if self.optimize_memory_usage and self.full:
            # The row at ``position`` holds the newest next_obs, so its own
            # transition was overwritten: skip it.
            idx = rng.integers(0, self.buffer_size - 1, size=batch_size)
            idx = idx + (idx >= self.position)
        else:
            idx = rng.integers(0, self.count, size=batch_size)
        env_idx = rng.integers(0, self.n_envs, size=batch_size)
        return self._get_samples(idx, env_idx)

    def _get_samples(self, idx: np.ndarray, env_idx: np.ndarray) -> ReplayBatch:
        if self.next_observations is None:
            next_obs = self.observations[(idx + 1) % self.buffer_size, env_idx]
        else:
            next_obs = self.next_observations[idx, env_idx]
        dones = self.dones[idx, env_idx]
        timeouts = self.timeouts[idx, env_idx]
        if self.handle_timeout_termination:
            dones = dones * (1.0 - timeouts)
        return ReplayBatch(
            obs=jnp.asarray(self.observations[idx, env_idx]),
            action=jnp.asarray(self.actions[idx, env_idx]),
            reward=jnp.asarray(self.rewards[idx, env_idx]),
            next_obs=jnp.asarray(next_obs),
            done=jnp.asarray(dones),
            timeout=jnp.asarray(timeouts),
        )

    # ---- persistence ----

    def _arrays(self) -> dict[str, np.ndarray]:
        arrays = {
            "observations": self.observations,
            "actions": self.actions,
            "rewards": self.rewards,
            "dones": self.dones,
            "timeouts": self.timeouts,
        }
        if self.next_observations is not None:
            arrays["next_observations"] = self.next_observations
        return arrays

    def save(self, directory: str | Path) -> Path:
        """Write the populated rows as ``.npy`` files plus ``buffer_meta.json``."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        rows = self.count
        if self.optimize_memory_usage:
            # Keep the row holding the last next_obs.
            rows = min(rows + 1, self.buffer_size)
        for name, array in self._arrays().items():
            np.save(directory / f"{name}.npy", array[:rows])

        meta = {
            "bufferSize": self.requested_size,
            "optimizeMemoryUsage": self.optimize_memory_usage,
            "handleTimeoutTermination": self.handle_timeout_termination,
            "seed": self.seed,
            "position": self.position,
            "isFull": self.full,
            "count": self.count,
            "numEnvs": self.n_envs,
        }
        (directory / META_FILE).write_text(json.dumps(meta, indent=2, sort_keys=True))
        logger.info("Saved replay buffer (%d rows) to %s", self.count, directory)
        return directory

    @classmethod
    def load(
        cls,
        directory: str | Path,
        observation_space: Space,
        action_space: Space,
    ) -> ReplayBuffer:
        """Rebuild a buffer saved with :meth:`save`."""
        meta = _read_meta(Path(directory))
        buffer = cls(
            meta["bufferSize"],
            observation_space,
            action_space,
            n_envs=meta["numEnvs"],
            optimize_memory_usage=meta["optimizeMemoryUsage"],
            handle_timeout_termination=meta["handleTimeoutTermination"],
            seed=meta["seed"],
        )
        buffer.load_into(directory)
        return buffer

    def load_into(self, directory: str | Path) -> None:
        """Restore the contents saved in ``directory`` into this buffer."""
        directory = Path(directory)
        meta = _read_meta(directory)
        if meta["optimizeMemoryUsage"] != self.optimize_memory_usage:
            raise InvalidCheckpoint("optimize_memory_usage differs from the saved buffer")
        if meta["numEnvs"] != self.n_envs:
            raise InvalidCheckpoint(
                f"Saved buffer has {meta['numEnvs']} envs, this buffer has {self.n_envs}"
            )
        position, full, count = meta["position"], meta["isFull"], meta["count"]
        if not 0 <= position < self.buffer_size or count != (self.buffer_size if full else position):
            raise InvalidCheckpoint(
                f"Inconsistent buffer metadata: position={position}, isFull={full}, "
                f"count={count}, rows={self.buffer_size}"
            )

        loaded = {}
        for name, target in self._arrays().items():
            path = directory / f"{name}.npy"
            if not path.exists():
                raise MissingCheckpointFile(path.name)
            data = np.load(path)
            if data.shape[1:] != target.shape[1:] or data.shape[0] > target.shape[0]:
                raise InvalidCheckpoint(
                    f"{path.name} has shape {data.shape}, expected at most {target.shape}"
                )
            loaded[name] = data

        self._allocate()
        for name, target in self._arrays().items():
            data = loaded[name]
            target[: data.shape[0]] = data
        self.position = position
        self.full = full
        logger.info("Loaded replay buffer (%d rows) from %s", count, directory)

    def __repr__(self) -> str:
        return (
            f"ReplayBuffer(size={self.buffer_size}, n_envs={self.n_envs}, "
            f"count={self.count}, position={self.position})"
        )


def _shape_of(space: Space) -> tuple[int, ...]:
    if isinstance(space, (Box, Discrete, MultiDiscrete, MultiBinary)):
        return tuple(space.shape)
    raise InvalidConfiguration(f"Unsupported space for ReplayBuffer: {space!r}")


def _read_meta(directory: Path) -> dict[str, Any]:
    path = directory / META_FILE
    if not path.exists():
        raise MissingCheckpointFile(META_FILE)
    try:
        meta = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise InvalidCheckpoint(f"{META_FILE} is not valid JSON: {e}") from e
    required = (
        "bufferSize",
        "optimizeMemoryUsage",
        "handleTimeoutTermination",
        "seed",
        "position",
        "isFull",
        "count",
        "numEnvs",
    )
    missing = [k for k in required if k not in meta]
    if missing:
        raise InvalidCheckpoint(f"{META_FILE} is missing keys: {missing}")
    return meta
