"""Off-policy training loop shared by DQN and SAC.

Hybrid layout: a Python outer loop owns the environment, the replay
buffer and the counters, while the jitted agent functions
(``DQNAgent.update``, ``SACAgent.update``) do the math::

    while num_timesteps < total_timesteps:
        collect train_freq steps (or episodes) into the replay buffer
        if num_timesteps >= learning_starts:
            run gradient_steps updates on sampled batches

Subclasses provide the model: ``_setup_model``, ``_sample_action``,
``predict``, ``train`` and the ``.eqx`` component files.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, NamedTuple

import jax.numpy as jnp
import numpy as np
import optax

from vibe_gym.checkpoint import AlgorithmCheckpoint, AlgorithmKind, load_eqx, save_eqx
from vibe_gym.dataprotocol.replay_buffer import META_FILE, ReplayBuffer
from vibe_gym.env.core import Env
from vibe_gym.env.spaces import Space, space_from_dict, space_to_dict
from vibe_gym.env.wrappers import resets_within_step
from vibe_gym.errors import InvalidCheckpoint, InvalidConfiguration, InvalidState
from vibe_gym.metrics import log_step_progress
from vibe_gym.runner.callbacks import BaseCallback, CallbackLocals, as_callback
from vibe_gym.schedule import LearningRateSchedule, as_schedule, schedule_from_dict
from vibe_gym.seeding import make_rng, random_seed

logger = logging.getLogger(__name__)

REPLAY_BUFFER_DIR = "replay_buffer"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TrainFrequencyUnit(str, Enum):
    STEP = "step"
    EPISODE = "episode"


@dataclass(frozen=True)
class TrainFrequency:
    """Train every ``frequency`` steps or episodes."""

    frequency: int = 1
    unit: TrainFrequencyUnit = TrainFrequencyUnit.STEP

    def __post_init__(self) -> None:
        if self.frequency <= 0:
            raise InvalidConfiguration(
                f"train_freq must be positive, got {self.frequency}"
            )
        object.__setattr__(self, "unit", TrainFrequencyUnit(self.unit))


def as_train_freq(value: Any) -> TrainFrequency:
    """Accepts ``4``, ``(4, "step")``, ``{"frequency": 4, "unit": "step"}``."""
    if isinstance(value, TrainFrequency):
        return value
    if isinstance(value, int):
        return TrainFrequency(value)
    if isinstance(value, Mapping):
        return TrainFrequency(**value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return TrainFrequency(int(value[0]), TrainFrequencyUnit(value[1]))
    raise InvalidConfiguration(f"Cannot interpret train_freq {value!r}")


@dataclass(frozen=True)
class OffPolicyConfig:
    """Hyperparameters of the collection/training loop.

    Frozen and hashable, so subclasses can be passed to jitted functions
    as static arguments.
    """

    learning_rate: float = 3e-4
    buffer_size: int = 1_000_000
    learning_starts: int = 100
    batch_size: int = 256
    tau: float = 0.005
    gamma: float = 0.99
    train_freq: TrainFrequency = field(default_factory=TrainFrequency)
    gradient_steps: int = 1
    target_update_interval: int = 1
    optimize_memory_usage: bool = False
    handle_timeout_termination: bool = True
    max_grad_norm: float = 10.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "train_freq", as_train_freq(self.train_freq))
        if self.batch_size <= 0:
            raise InvalidConfiguration(f"batch_size must be positive, got {self.batch_size}")
        if self.learning_starts < 0:
            raise InvalidConfiguration(
                f"learning_starts must be non-negative, got {self.learning_starts}"
            )
        if not 0.0 <= self.tau <= 1.0:
            raise InvalidConfiguration(f"tau must be in [0, 1], got {self.tau}")
        if not 0.0 <= self.gamma <= 1.0:
            raise InvalidConfiguration(f"gamma must be in [0, 1], got {self.gamma}")
        if self.gradient_steps == 0 or self.gradient_steps < -1:
            raise InvalidConfiguration(
                f"gradient_steps must be positive or -1, got {self.gradient_steps}"
            )
        if self.target_update_interval <= 0:
            raise InvalidConfiguration(
                f"target_update_interval must be positive, got {self.target_update_interval}"
            )

    def make_optimizer(self) -> optax.GradientTransformation:
        """Clipped Adam with an injectable learning rate."""
        return optax.chain(
            optax.clip_by_global_norm(self.max_grad_norm),
            optax.inject_hyperparams(optax.adam)(learning_rate=self.learning_rate),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OffPolicyConfig:
        try:
            return cls(**data)
        except TypeError as e:
            raise InvalidCheckpoint(f"Malformed {cls.__name__}: {e}") from e


def with_learning_rate(opt_state: Any, learning_rate: jnp.ndarray | float) -> Any:
    """Return ``opt_state`` of :meth:`OffPolicyConfig.make_optimizer` with
    the injected learning rate replaced. Safe inside ``jax.jit``."""
    clip_state, adam_state = opt_state
    hyperparams = dict(adam_state.hyperparams)
    hyperparams["learning_rate"] = jnp.asarray(
        learning_rate, dtype=jnp.asarray(hyperparams["learning_rate"]).dtype
    )
    return (clip_state, adam_state._replace(hyperparams=hyperparams))


class RolloutReturn(NamedTuple):
    steps: int
    episodes: int
    continue_training: bool


# ---------------------------------------------------------------------------
# Algorithm base
# ---------------------------------------------------------------------------


class OffPolicyAlgorithm(ABC):
    """Base class for replay-buffer algorithms.

    Args:
        env: Single (non-vectorized) environment. May be ``None`` for a
            model that is only used for ``predict``; ``learn`` then
            raises ``InvalidState``.
        config: Algorithm hyperparameters.
        learning_rate: Overrides ``config.learning_rate``; a float, a
            :class:`LearningRateSchedule` or a callable of
            ``progress_remaining``.
        seed: Seeds parameter init, exploration, the buffer and the
            first environment reset.
        observation_space, action_space: Required when ``env`` is None.
    """

    kind: ClassVar[AlgorithmKind]
    config_cls: ClassVar[type[OffPolicyConfig]]

    def __init__(
        self,
        env: Env | None,
        config: OffPolicyConfig | None = None,
        *,
        learning_rate: float | LearningRateSchedule | Any = None,
        seed: int | None = None,
        observation_space: Space | None = None,
        action_space: Space | None = None,
    ) -> None:
        if env is None and (observation_space is None or action_space is None):
            raise InvalidConfiguration(
                f"{type(self).__name__} needs an env or both observation_space and action_space"
            )
        self.config = config if config is not None else self.config_cls()
        self.env = env
        self.observation_space = observation_space if observation_space is not None else env.observation_space
        self.action_space = action_space if action_space is not None else env.action_space
        self._check_spaces()

        self.seed = seed if seed is not None else random_seed()
        self.learning_rate = as_schedule(
            self.config.learning_rate if learning_rate is None else learning_rate
        )

        self.num_timesteps = 0
        self.total_timesteps = 0
        self.num_episodes = 0
        self.num_gradient_steps = 0
        self.progress_remaining = 1.0
        self.exploration_rate: float | None = None
        self.episode_returns: deque[float] = deque(maxlen=100)
        self.episode_lengths: deque[int] = deque(maxlen=100)

        self._rng = make_rng(self.seed)
        self._last_obs: Any = None
        self._episode_return = 0.0
        self._episode_length = 0
        self._env_seeded = False
        self._stop_requested = False

        self.replay_buffer = ReplayBuffer(
            self.config.buffer_size,
            self.observation_space,
            self.action_space,
            optimize_memory_usage=self.config.optimize_memory_usage,
            handle_timeout_termination=self.config.handle_timeout_termination,
            seed=self.seed,
        )
        self._setup_model()

    # ---- subclass hooks ----

    @abstractmethod
    def _check_spaces(self) -> None:
        """Raise ``InvalidConfiguration`` for unsupported spaces."""

    @abstractmethod
    def _setup_model(self) -> None:
        """Build the agent state from ``self.config`` and ``self._rng``."""

    @abstractmethod
    def _sample_action(self, obs: Any) -> tuple[Any, Any]:
        """Return ``(env_action, buffer_action)`` for a collection step."""

    @abstractmethod
    def predict(self, obs: Any, deterministic: bool = True) -> Any:
        """Action for one observation."""

    @abstractmethod
    def train(self, gradient_steps: int, batch_size: int) -> dict[str, float] | None:
        """Run ``gradient_steps`` updates; ``None`` if nothing was trained."""

    @abstractmethod
    def _component_trees(self) -> dict[str, Any]:
        """Pytrees persisted as ``<name>.eqx``."""

    @abstractmethod
    def _restore_components(self, trees: dict[str, Any]) -> None:
        ...

    def _update_exploration(self) -> None:
        pass

    # ---- environment ----

    def set_env(self, env: Env) -> None:
        if env.observation_space != self.observation_space or env.action_space != self.action_space:
            raise InvalidConfiguration(
                f"{env} has spaces {env.observation_space}/{env.action_space}, "
                f"model expects {self.observation_space}/{self.action_space}"
            )
        self.env = env
        self._last_obs = None

    def get_env(self) -> Env | None:
        return self.env

    def stop(self) -> None:
        """Ask ``learn`` to return at the start of its next iteration."""
        self._stop_requested = True

    # ---- training ----

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
        self._last_obs, _ = self.env.reset(seed=seed)
        self._episode_return = 0.0
        self._episode_length = 0

    def _setup_learn(self, total_timesteps: int, reset_num_timesteps: bool) -> None:
        if reset_num_timesteps:
            self.num_timesteps = 0
            self.num_episodes = 0
            self.total_timesteps = total_timesteps
            self._last_obs = None
        else:
            self.total_timesteps = self.num_timesteps + total_timesteps
        self._stop_requested = False
        self._update_progress()
        if self._last_obs is None:
            self._reset_env()

    def _update_progress(self) -> None:
        if self.total_timesteps > 0:
            self.progress_remaining = 1.0 - self.num_timesteps / self.total_timesteps
        else:
            self.progress_remaining = 1.0

    def learn(
        self,
        total_timesteps: int,
        callback: BaseCallback | Any = None,
        *,
        reset_num_timesteps: bool = True,
        log_interval: int | None = 4,
    ) -> OffPolicyAlgorithm:
        """Collect experience and train until ``total_timesteps``.

        Args:
            total_timesteps: Steps to run; with ``reset_num_timesteps=False``
                they are added to the steps already taken.
            callback: A callback, a list of callbacks or a plain
                ``on_step`` function.
            log_interval: Log progress every this many episodes; ``None``
                disables it.
        """
        if self.env is None:
            raise InvalidState(
                f"{type(self).__name__}.learn needs an environment; pass env= or call set_env()"
            )
        if total_timesteps <= 0:
            raise InvalidConfiguration(f"total_timesteps must be positive, got {total_timesteps}")

        callback = as_callback(callback)
        callback.init_callback(self)
        self._setup_learn(total_timesteps, reset_num_timesteps)
        callback.on_training_start(self._locals())

        while self.num_timesteps < self.total_timesteps:
            if self._stop_requested:
                logger.info("Training stopped at %d timesteps", self.num_timesteps)
                break
            rollout = self.collect_rollouts(callback, log_interval)
            if not rollout.continue_training:
                break
            if self.num_timesteps >= self.config.learning_starts and rollout.steps > 0:
                gradient_steps = (
                    self.config.gradient_steps
                    if self.config.gradient_steps >= 0
                    else rollout.steps
                )
                metrics = self.train(gradient_steps, self.config.batch_size)
                if metrics is not None:
                    callback.on_train(metrics)

        callback.on_training_end(self._locals())
        return self

    def _should_collect_more(self, steps: int, episodes: int) -> bool:
        freq = self.config.train_freq
        if freq.unit is TrainFrequencyUnit.STEP:
            return steps < freq.frequency
        return episodes < freq.frequency

    def collect_rollouts(
        self,
        callback: BaseCallback,
        log_interval: int | None = None,
    ) -> RolloutReturn:
        """Step the environment until the train frequency is met."""
        steps = episodes = 0
        while self._should_collect_more(steps, episodes):
            if self.num_timesteps >= self.total_timesteps:
                break
            self._update_exploration()
            env_action, buffer_action = self._sample_action(self._last_obs)
            obs, reward, terminated, truncated, info = self.env.step(env_action)

            self.num_timesteps += 1
            steps += 1
            self._episode_return += float(reward)
            self._episode_length += 1
            self._update_progress()

            ended = terminated or truncated
            next_obs = info.get("final_observation", obs) if ended else obs
            self.replay_buffer.add(
                self._last_obs, buffer_action, reward, next_obs, terminated, truncated
            )
            self._last_obs = obs

            keep_going = callback.on_step(self._locals())

            if ended:
                episodes += 1
                self.num_episodes += 1
                self.episode_returns.append(self._episode_return)
                self.episode_lengths.append(self._episode_length)
                callback.on_episode_end(self._episode_return, self._episode_length)
                if log_interval and self.num_episodes % log_interval == 0:
                    self._log_progress()
                if "final_observation" in info and resets_within_step(self.env):
                    self._episode_return = 0.0
                    self._episode_length = 0
                else:
                    self._reset_env()

            if not keep_going:
                return RolloutReturn(steps, episodes, False)
        return RolloutReturn(steps, episodes, True)

    def _log_progress(self) -> None:
        metrics: dict[str, Any] = {
            "episodes": self.num_episodes,
            "mean_return": float(np.mean(self.episode_returns)),
            "mean_length": float(np.mean(self.episode_lengths)),
        }
        if self.exploration_rate is not None:
            metrics["exploration_rate"] = self.exploration_rate
        log_step_progress(self.num_timesteps, self.total_timesteps, metrics, __name__)

    # ---- persistence ----

    def _checkpoint_metadata(self) -> AlgorithmCheckpoint:
        return AlgorithmCheckpoint(
            algorithm_kind=self.kind,
            num_timesteps=self.num_timesteps,
            total_timesteps=self.total_timesteps,
            progress_remaining=self.progress_remaining,
            learning_rate_schedule=self.learning_rate.to_dict(),
            config=self.config.to_dict(),
            exploration_rate=self.exploration_rate,
            num_gradient_steps=self.num_gradient_steps,
            seed=self.seed,
            extra={
                "num_episodes": self.num_episodes,
                "observation_space": space_to_dict(self.observation_space),
                "action_space": space_to_dict(self.action_space),
            },
        )

    def save(self, path: str | Path, include_buffer: bool = True) -> Path:
        """Write ``metadata.json``, one ``.eqx`` per component and,
        optionally, the replay buffer."""
        path = Path(path)
        self._checkpoint_metadata().write(path)
        for name, tree in self._component_trees().items():
            save_eqx(path / f"{name}.eqx", tree)
        if include_buffer:
            self.replay_buffer.save(path / REPLAY_BUFFER_DIR)
        logger.info("Saved %s checkpoint to %s", self.kind.value, path)
        return path

    @classmethod
    def load(cls, path: str | Path, env: Env | None = None) -> OffPolicyAlgorithm:
        """Rebuild a model saved with :meth:`save`.

        Without ``env`` the spaces recorded in the checkpoint are used.
        """
        path = Path(path)
        meta = AlgorithmCheckpoint.read(path, expected_kind=cls.kind)
        config = cls.config_cls.from_dict(meta.config)
        try:
            obs_space = space_from_dict(meta.extra["observation_space"])
            act_space = space_from_dict(meta.extra["action_space"])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCheckpoint(f"Checkpoint does not record its spaces: {e}") from e
        if env is not None and (
            env.observation_space != obs_space or env.action_space != act_space
        ):
            raise InvalidCheckpoint(
                f"{env} does not match the checkpoint spaces {obs_space}/{act_space}"
            )

        schedule = (
            schedule_from_dict(meta.learning_rate_schedule)
            if meta.learning_rate_schedule is not None
            else None
        )
        model = cls(
            env,
            config,
            learning_rate=schedule,
            seed=meta.seed,
            observation_space=obs_space,
            action_space=act_space,
        )
        trees = {
            name: load_eqx(path / f"{name}.eqx", like=like)
            for name, like in model._component_trees().items()
        }
        model._restore_components(trees)

        model.num_timesteps = meta.num_timesteps
        model.total_timesteps = meta.total_timesteps
        model.progress_remaining = meta.progress_remaining
        model.num_gradient_steps = meta.num_gradient_steps
        model.num_episodes = int(meta.extra.get("num_episodes", 0))
        if meta.exploration_rate is not None:
            model.exploration_rate = meta.exploration_rate

        if (path / REPLAY_BUFFER_DIR / META_FILE).exists():
            model.replay_buffer.load_into(path / REPLAY_BUFFER_DIR)
        logger.info("Loaded %s checkpoint from %s", cls.kind.value, path)
        return model

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(timesteps={self.num_timesteps}, "
            f"episodes={self.num_episodes}, buffer={len(self.replay_buffer)})"
        )
