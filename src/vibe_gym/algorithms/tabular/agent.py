"""Tabular temporal-difference control: Q-learning and SARSA.

The Q-table is a host-side ``np.ndarray`` of shape ``(n_states,
n_actions)``; no JAX is involved. ``Tuple(Discrete, ...)`` observations
are mapped to a flat state index with row-major strides.

Usage::

    from vibe_gym import make
    from vibe_gym.algorithms.tabular import QLearning, TabularConfig

    agent = QLearning(make("FrozenLake-v1"), TabularConfig(epsilon_decay=0.995), seed=0)
    agent.learn(100_000)
    action = agent.predict(obs)
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

from vibe_gym.algorithms.tabular.config import TabularConfig
from vibe_gym.checkpoint import AlgorithmCheckpoint, AlgorithmKind
from vibe_gym.env.core import Env
from vibe_gym.env.spaces import Discrete, Space, Tuple, space_from_dict, space_to_dict
from vibe_gym.env.wrappers import resets_within_step
from vibe_gym.errors import (
    InvalidCheckpoint,
    InvalidConfiguration,
    InvalidState,
    MissingCheckpointFile,
)
from vibe_gym.metrics import log_step_progress
from vibe_gym.runner.callbacks import BaseCallback, CallbackLocals, as_callback
from vibe_gym.seeding import np_generator, random_seed

logger = logging.getLogger(__name__)

Q_TABLE_FILE = "q_table.npy"


class UpdateRule(str, Enum):
    Q_LEARNING = "q_learning"
    SARSA = "sarsa"


def state_space_info(space: Space) -> tuple[int, list[int], list[int]]:
    """``(n_states, strides, starts)`` of a Discrete or Tuple(Discrete) space.

    ``strides`` is empty for a plain ``Discrete``.
    """
    if isinstance(space, Discrete):
        return space.n, [], [space.start]
    if isinstance(space, Tuple) and len(space) > 0:
        if not all(isinstance(s, Discrete) for s in space.spaces):
            raise InvalidConfiguration(
                f"All Tuple components must be Discrete for tabular methods, got {space!r}"
            )
        dims = [s.n for s in space.spaces]
        strides = [1] * len(dims)
        for i in range(len(dims) - 2, -1, -1):
            strides[i] = strides[i + 1] * dims[i + 1]
        return int(np.prod(dims)), strides, [s.start for s in space.spaces]
    raise InvalidConfiguration(
        f"Tabular methods need a Discrete or Tuple(Discrete, ...) observation space, got {space!r}"
    )


class TabularAgent:
    """Epsilon-greedy tabular TD agent.

    Args:
        env: Environment with a Discrete action space; may be ``None``
            when both spaces are given (``learn`` then raises
            ``InvalidState``).
        config: Hyperparameters.
        update_rule: ``"q_learning"`` (off-policy max target) or
            ``"sarsa"`` (on-policy, bootstraps from the next chosen action).
        seed: Seeds exploration and the first environment reset.
    """

    def __init__(
        self,
        env: Env | None,
        config: TabularConfig | None = None,
        *,
        update_rule: UpdateRule | str = UpdateRule.Q_LEARNING,
        seed: int | None = None,
        observation_space: Space | None = None,
        action_space: Space | None = None,
    ) -> None:
        if env is None and (observation_space is None or action_space is None):
            raise InvalidConfiguration(
                "TabularAgent needs an env or both observation_space and action_space"
            )
        self.env = env
        self.config = config if config is not None else TabularConfig()
        self.update_rule = UpdateRule(update_rule)
        self.observation_space = observation_space if observation_space is not None else env.observation_space
        self.action_space = action_space if action_space is not None else env.action_space
        if not isinstance(self.action_space, Discrete):
            raise InvalidConfiguration(
                f"Tabular methods need a Discrete action space, got {self.action_space!r}"
            )

        self.n_states, self.state_strides, self._state_starts = state_space_info(
            self.observation_space
        )
        self.n_actions = self.action_space.n
        self.q_table = np.zeros((self.n_states, self.n_actions), dtype=np.float32)

        self.seed = seed if seed is not None else random_seed()
        self._rng = np_generator(self.seed)
        self.exploration_rate = self.config.epsilon
        self.num_timesteps = 0
        self.total_timesteps = 0
        self.num_episodes = 0
        self.episode_returns: deque[float] = deque(maxlen=100)
        self.episode_lengths: deque[int] = deque(maxlen=100)
        self._env_seeded = False
        self._stop_requested = False
        # In-flight episode, kept across learn(reset_num_timesteps=False).
        self._last_state: int | None = None
        self._last_action: int | None = None
        self._episode_return = 0.0
        self._episode_length = 0

    @property
    def kind(self) -> AlgorithmKind:
        if self.update_rule is UpdateRule.SARSA:
            return AlgorithmKind.SARSA
        return AlgorithmKind.Q_LEARNING

    # ---- state / action helpers ----

    def state_index(self, obs: Any) -> int:
        """Flat Q-table row of an observation."""
        if not self.state_strides:
            return int(obs) - self._state_starts[0]
        return sum(
            (int(v) - start) * stride
            for v, start, stride in zip(obs, self._state_starts, self.state_strides, strict=True)
        )

    def _select_action(self, state: int, explore: bool = True) -> int:
        """Zero-based action index; ties between greedy actions are broken at random."""
        if explore and self._rng.random() < self.exploration_rate:
            return int(self._rng.integers(self.n_actions))
        q = self.q_table[state]
        best = np.flatnonzero(q == q.max())
        if len(best) == 1:
            return int(best[0])
        return int(self._rng.choice(best))

    def predict(self, obs: Any, deterministic: bool = True) -> int:
        action = self._select_action(self.state_index(obs), explore=not deterministic)
        return action + self.action_space.start

    # ---- training ----

    def set_env(self, env: Env) -> None:
        if env.observation_space != self.observation_space or env.action_space != self.action_space:
            raise InvalidConfiguration(
                f"{env} has spaces {env.observation_space}/{env.action_space}, "
                f"agent expects {self.observation_space}/{self.action_space}"
            )
        self.env = env
        self._env_seeded = False
        self._last_state = None

    def get_env(self) -> Env | None:
        return self.env

    def stop(self) -> None:
        """Ask ``learn`` to return before its next step."""
        self._stop_requested = True

    def _locals(self) -> CallbackLocals:
        return CallbackLocals(
            num_timesteps=self.num_timesteps,
            total_timesteps=self.total_timesteps,
            num_episodes=self.num_episodes,
            exploration_rate=self.exploration_rate,
        )

    def _reset_env(self) -> None:
        seed = None
        if not self._env_seeded:
            seed = self.seed
            self._env_seeded = True
        obs, _ = self.env.reset(seed=seed)
        self._start_episode(self.state_index(obs))

    def _start_episode(self, state: int) -> None:
        self._last_state = state
        self._last_action = self._select_action(state)
        self._episode_return = 0.0
        self._episode_length = 0

    def learn(
        self,
        total_timesteps: int,
        callback: BaseCallback | Any = None,
        *,
        reset_num_timesteps: bool = True,
        log_interval: int | None = 100,
    ) -> TabularAgent:
        """Run ``total_timesteps`` environment steps of TD control."""
        if self.env is None:
            raise InvalidState("TabularAgent.learn needs an environment; pass env= or call set_env()")
        if total_timesteps <= 0:
            raise InvalidConfiguration(f"total_timesteps must be positive, got {total_timesteps}")

        callback = as_callback(callback)
        callback.init_callback(self)
        if reset_num_timesteps:
            self.num_timesteps = 0
            self.num_episodes = 0
            self.total_timesteps = total_timesteps
            self._last_state = None
        else:
            self.total_timesteps = self.num_timesteps + total_timesteps
        self._stop_requested = False
        if self._last_state is None:
            self._reset_env()
        callback.on_training_start(self._locals())

        cfg = self.config
        sarsa = self.update_rule is UpdateRule.SARSA

        while self.num_timesteps < self.total_timesteps:
            if self._stop_requested:
                logger.info("Training stopped at %d timesteps", self.num_timesteps)
                break
            state = self._last_state
            action = self._last_action if sarsa else self._select_action(state)

            obs, reward, terminated, truncated, info = self.env.step(action + self.action_space.start)
            ended = terminated or truncated
            next_state = self.state_index(info.get("final_observation", obs) if ended else obs)
            self._episode_return += float(reward)
            self._episode_length += 1

            next_action = None
            if terminated:
                future_q = 0.0
            elif sarsa:
                next_action = self._select_action(next_state)
                future_q = self.q_table[next_state, next_action]
            else:
                future_q = self.q_table[next_state].max()

            current_q = self.q_table[state, action]
            self.q_table[state, action] = current_q + cfg.learning_rate * (
                reward + cfg.gamma * future_q - current_q
            )
            self.num_timesteps += 1
            keep_going = callback.on_step(self._locals())

            if ended:
                self.exploration_rate = max(cfg.min_epsilon, self.exploration_rate * cfg.epsilon_decay)
                self.num_episodes += 1
                self.episode_returns.append(self._episode_return)
                self.episode_lengths.append(self._episode_length)
                callback.on_episode_end(self._episode_return, self._episode_length)
                if log_interval and self.num_episodes % log_interval == 0:
                    log_step_progress(
                        self.num_timesteps,
                        self.total_timesteps,
                        {
                            "episodes": self.num_episodes,
                            "mean_return": float(np.mean(self.episode_returns)),
                            "epsilon": self.exploration_rate,
                        },
                        __name__,
                    )
                if "final_observation" in info and resets_within_step(self.env):
                    self._start_episode(self.state_index(obs))
                else:
                    self._reset_env()
            else:
                self._last_state = next_state
                self._last_action = next_action

            if not keep_going:
                break

        callback.on_training_end(self._locals())
        return self

    # ---- persistence ----

    def save(self, path: str | Path) -> Path:
        """Write ``q_table.npy`` and ``metadata.json`` into ``path``."""
        path = Path(path)
        AlgorithmCheckpoint(
            algorithm_kind=self.kind,
            num_timesteps=self.num_timesteps,
            total_timesteps=self.total_timesteps,
            progress_remaining=0.0,
            config=asdict(self.config),
            exploration_rate=self.exploration_rate,
            n_states=self.n_states,
            n_actions=self.n_actions,
            state_strides=self.state_strides or None,
            seed=self.seed,
            extra={
                "num_episodes": self.num_episodes,
                "observation_space": space_to_dict(self.observation_space),
                "action_space": space_to_dict(self.action_space),
            },
        ).write(path)
        np.save(path / Q_TABLE_FILE, self.q_table)
        logger.info("Saved %s checkpoint to %s", self.kind.value, path)
        return path

    @classmethod
    def load(cls, path: str | Path, env: Env | None = None) -> TabularAgent:
        """Rebuild an agent saved with :meth:`save`.

        The update rule follows the checkpoint kind.
        """
        path = Path(path)
        expected = getattr(cls, "_expected_kind", None)
        meta = AlgorithmCheckpoint.read(path, expected_kind=expected)
        if meta.algorithm_kind not in (AlgorithmKind.Q_LEARNING, AlgorithmKind.SARSA):
            raise InvalidCheckpoint(
                f"Expected a tabular checkpoint, got {meta.algorithm_kind.value!r}"
            )
        if meta.n_states is None or meta.n_actions is None:
            raise InvalidCheckpoint("Tabular checkpoint is missing n_states or n_actions")
        try:
            config = TabularConfig(**meta.config)
        except TypeError as e:
            raise InvalidCheckpoint(f"Malformed tabular config: {e}") from e

        if env is not None:
            obs_space, act_space = env.observation_space, env.action_space
        elif "observation_space" in meta.extra:
            obs_space = space_from_dict(meta.extra["observation_space"])
            act_space = space_from_dict(meta.extra["action_space"])
        else:
            obs_space, act_space = Discrete(meta.n_states), Discrete(meta.n_actions)

        rule = UpdateRule.SARSA if meta.algorithm_kind is AlgorithmKind.SARSA else UpdateRule.Q_LEARNING
        agent = TabularAgent.__new__(cls)
        TabularAgent.__init__(
            agent,
            env,
            config,
            update_rule=rule,
            seed=meta.seed,
            observation_space=obs_space,
            action_space=act_space,
        )
        if (agent.n_states, agent.n_actions) != (meta.n_states, meta.n_actions):
            raise InvalidCheckpoint(
                f"Checkpoint table is {meta.n_states}x{meta.n_actions}, "
                f"environment needs {agent.n_states}x{agent.n_actions}"
            )

        table_path = path / Q_TABLE_FILE
        if not table_path.exists():
            raise MissingCheckpointFile(Q_TABLE_FILE)
        q_table = np.load(table_path)
        if q_table.shape != agent.q_table.shape:
            raise InvalidCheckpoint(
                f"{Q_TABLE_FILE} has shape {q_table.shape}, expected {agent.q_table.shape}"
            )
        agent.q_table = q_table.astype(np.float32)
        agent.num_timesteps = meta.num_timesteps
        agent.total_timesteps = meta.total_timesteps
        agent.num_episodes = int(meta.extra.get("num_episodes", 0))
        if meta.exploration_rate is not None:
            agent.exploration_rate = meta.exploration_rate
        logger.info("Loaded %s checkpoint from %s", meta.algorithm_kind.value, path)
        return agent

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(rule={self.update_rule.value}, states={self.n_states}, "
            f"actions={self.n_actions}, timesteps={self.num_timesteps})"
        )


class QLearning(TabularAgent):
    _expected_kind = AlgorithmKind.Q_LEARNING

    def __init__(
        self,
        env: Env | None,
        config: TabularConfig | None = None,
        *,
        seed: int | None = None,
        observation_space: Space | None = None,
        action_space: Space | None = None,
    ) -> None:
        super().__init__(
            env,
            config,
            update_rule=UpdateRule.Q_LEARNING,
            seed=seed,
            observation_space=observation_space,
            action_space=action_space,
        )


class SARSA(TabularAgent):
    _expected_kind = AlgorithmKind.SARSA

    def __init__(
        self,
        env: Env | None,
        config: TabularConfig | None = None,
        *,
        seed: int | None = None,
        observation_space: Space | None = None,
        action_space: Space | None = None,
    ) -> None:
        super().__init__(
            env,
            config,
            update_rule=UpdateRule.SARSA,
            seed=seed,
            observation_space=observation_space,
            action_space=action_space,
        )
