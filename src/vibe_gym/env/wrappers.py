"""Environment wrappers.

Every wrapper holds exactly one inner ``Env`` and forwards everything it
does not override, so wrappers stack in any order. ``make()`` applies the
default chain, outer to inner::

    PassiveEnvChecker -> OrderEnforcing -> TimeLimit -> RecordEpisodeStatistics -> env
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import jax
import numpy as np

from vibe_gym.env import checker
from vibe_gym.env.core import AutoresetMode, Env, ResetResult, StepResult
from vibe_gym.env.spaces import Box, Space
from vibe_gym.errors import InvalidConfiguration, InvalidStatsKey, ResetNeeded

if TYPE_CHECKING:
    from vibe_gym.env.registration import EnvSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


class Wrapper(Env):
    """Pass-through wrapper around one inner environment.

    Spaces and metadata can be overridden per wrapper; everything else
    (render mode, spec, PRNG key) is read from and written to the inner
    env. Unknown public attributes are looked up on the inner env.
    """

    def __init__(self, env: Env) -> None:
        if not isinstance(env, Env):
            raise TypeError(f"Expected an Env, got {type(env).__name__}")
        self.env = env
        self._action_space: Space | None = None
        self._observation_space: Space | None = None
        self._metadata: dict[str, Any] | None = None

    @property
    def action_space(self) -> Space:
        return self.env.action_space if self._action_space is None else self._action_space

    @action_space.setter
    def action_space(self, space: Space) -> None:
        self._action_space = space

    @property
    def observation_space(self) -> Space:
        if self._observation_space is None:
            return self.env.observation_space
        return self._observation_space

    @observation_space.setter
    def observation_space(self, space: Space) -> None:
        self._observation_space = space

    @property
    def metadata(self) -> dict[str, Any]:  # type: ignore[override]
        return self.env.metadata if self._metadata is None else self._metadata

    @metadata.setter
    def metadata(self, value: dict[str, Any]) -> None:
        self._metadata = value

    @property
    def render_mode(self) -> str | None:  # type: ignore[override]
        return self.env.render_mode

    @property
    def spec(self) -> EnvSpec | None:  # type: ignore[override]
        return self.env.spec

    @spec.setter
    def spec(self, value: EnvSpec | None) -> None:
        self.env.spec = value

    @property
    def np_random(self) -> jax.Array:
        return self.env.np_random

    @np_random.setter
    def np_random(self, value: jax.Array) -> None:
        self.env.np_random = value

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        return self.env.reset(seed=seed, options=options)

    def step(self, action: Any) -> StepResult:
        return self.env.step(action)

    def render(self) -> Any:
        return self.env.render()

    def close(self) -> None:
        self.env.close()

    @property
    def unwrapped(self) -> Env:
        return self.env.unwrapped

    def __getattr__(self, name: str) -> Any:
        if name == "env" or name.startswith("_"):
            raise AttributeError(f"{type(self).__name__!r} has no attribute {name!r}")
        return getattr(self.env, name)

    def __str__(self) -> str:
        return f"<{type(self).__name__}{self.env}>"

    __repr__ = __str__


class ObservationWrapper(Wrapper):
    """Override :meth:`observation` to transform every returned observation."""

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        obs, info = self.env.reset(seed=seed, options=options)
        return ResetResult(self.observation(obs), info)

    def step(self, action: Any) -> StepResult:
        result = self.env.step(action)
        return result._replace(obs=self.observation(result.obs))

    def observation(self, obs: Any) -> Any:
        raise NotImplementedError


class ActionWrapper(Wrapper):
    """Override :meth:`action` to transform actions before the inner step."""

    def step(self, action: Any) -> StepResult:
        return self.env.step(self.action(action))

    def action(self, action: Any) -> Any:
        raise NotImplementedError


class RewardWrapper(Wrapper):
    """Override :meth:`reward` to transform every reward."""

    def step(self, action: Any) -> StepResult:
        result = self.env.step(action)
        return result._replace(reward=self.reward(result.reward))

    def reward(self, reward: float) -> float:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Default chain
# ---------------------------------------------------------------------------


class PassiveEnvChecker(Wrapper):
    """Validates the first ``reset``, ``step`` and ``render`` calls only.

    The action is checked before it reaches the inner env, the observation
    after. Later calls pass straight through.
    """

    def __init__(self, env: Env) -> None:
        super().__init__(env)
        checker.check_spaces(env)
        self.checked_reset = False
        self.checked_step = False
        self.checked_render = False

    @property
    def _env_id(self) -> str | None:
        return self.spec.id if self.spec is not None else None

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        result = self.env.reset(seed=seed, options=options)
        if not self.checked_reset:
            checker.check_observation(self.observation_space, result.obs, self._env_id, "reset")
            self.checked_reset = True
        return result

    def step(self, action: Any) -> StepResult:
        if self.checked_step:
            return self.env.step(action)
        checker.check_action(self.action_space, action, self._env_id)
        result = self.env.step(action)
        checker.check_observation(self.observation_space, result.obs, self._env_id, "step")
        checker.check_step_types(result.reward, result.terminated, result.truncated, result.info)
        self.checked_step = True
        return result

    def render(self) -> Any:
        if not self.checked_render:
            modes = self.metadata.get("render_modes", [])
            if self.render_mode is not None and self.render_mode not in modes:
                raise InvalidConfiguration(
                    f"Render mode {self.render_mode!r} not in {modes}"
                )
            self.checked_render = True
        return self.env.render()


class OrderEnforcing(Wrapper):
    """Faults on ``step`` (and by default ``render``) before the first ``reset``."""

    def __init__(self, env: Env, disable_render_order_enforcing: bool = False) -> None:
        super().__init__(env)
        self.has_reset = False
        self.disable_render_order_enforcing = disable_render_order_enforcing

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        self.has_reset = True
        return self.env.reset(seed=seed, options=options)

    def step(self, action: Any) -> StepResult:
        if not self.has_reset:
            raise ResetNeeded("Cannot call env.step() before calling env.reset()")
        return self.env.step(action)

    def render(self) -> Any:
        if not self.disable_render_order_enforcing and not self.has_reset:
            raise ResetNeeded(
                "Cannot call env.render() before calling env.reset(); pass "
                "disable_render_order_enforcing=True to allow it"
            )
        return self.env.render()


class TimeLimit(Wrapper):
    """Truncates episodes after ``max_episode_steps`` steps.

    Truncation is additive: a step that both terminates and hits the limit
    reports ``terminated=True`` and ``truncated=True``.
    """

    def __init__(self, env: Env, max_episode_steps: int) -> None:
        if not isinstance(max_episode_steps, (int, np.integer)) or max_episode_steps <= 0:
            raise InvalidConfiguration(
                f"max_episode_steps must be a positive int, got {max_episode_steps!r}"
            )
        super().__init__(env)
        self.max_episode_steps = int(max_episode_steps)
        self.elapsed_steps = 0

    @property
    def spec(self) -> EnvSpec | None:  # type: ignore[override]
        spec = self.env.spec
        if spec is None or spec.max_episode_steps == self.max_episode_steps:
            return spec
        return spec.copy(max_episode_steps=self.max_episode_steps)

    @spec.setter
    def spec(self, value: EnvSpec | None) -> None:
        self.env.spec = value

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        self.elapsed_steps = 0
        return self.env.reset(seed=seed, options=options)

    def step(self, action: Any) -> StepResult:
        result = self.env.step(action)
        self.elapsed_steps += 1
        if self.elapsed_steps >= self.max_episode_steps:
            info = dict(result.info)
            info["TimeLimit.truncated"] = True
            result = result._replace(truncated=True, info=info)
        return result


class RecordEpisodeStatistics(Wrapper):
    """Adds ``info[stats_key] = {"r": return, "l": length, "t": seconds}``
    at the end of every episode and keeps the last ``buffer_length``
    episodes in ``return_queue``, ``length_queue`` and ``time_queue``.
    """

    def __init__(self, env: Env, buffer_length: int = 100, stats_key: str = "episode") -> None:
        if buffer_length <= 0:
            raise InvalidConfiguration(f"buffer_length must be positive, got {buffer_length}")
        super().__init__(env)
        self.stats_key = stats_key
        self.episode_count = 0
        self.episode_return = 0.0
        self.episode_length = 0
        self.episode_start_time = time.perf_counter()
        self.return_queue: deque[float] = deque(maxlen=buffer_length)
        self.length_queue: deque[int] = deque(maxlen=buffer_length)
        self.time_queue: deque[float] = deque(maxlen=buffer_length)

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        result = self.env.reset(seed=seed, options=options)
        self.episode_return = 0.0
        self.episode_length = 0
        self.episode_start_time = time.perf_counter()
        return result

    def step(self, action: Any) -> StepResult:
        result = self.env.step(action)
        if self.stats_key in result.info:
            raise InvalidStatsKey(self.stats_key)

        self.episode_return += float(result.reward)
        self.episode_length += 1
        if not (result.terminated or result.truncated):
            return result

        elapsed = round(time.perf_counter() - self.episode_start_time, 6)
        info = dict(result.info)
        info[self.stats_key] = {
            "r": self.episode_return,
            "l": self.episode_length,
            "t": elapsed,
        }
        self.return_queue.append(self.episode_return)
        self.length_queue.append(self.episode_length)
        self.time_queue.append(elapsed)
        self.episode_count += 1
        self.episode_return = 0.0
        self.episode_length = 0
        self.episode_start_time = time.perf_counter()
        return result._replace(info=info)


# ---------------------------------------------------------------------------
# Auto-reset
# ---------------------------------------------------------------------------


class AutoReset(Wrapper):
    """Resets the inner env automatically when an episode ends.

    The terminal observation and info are copied to
    ``info["final_observation"]`` / ``info["final_info"]``. In
    ``NEXT_STEP`` mode the reset happens before the following action; in
    ``SAME_STEP`` mode the returned observation already belongs to the new
    episode.
    """

    def __init__(self, env: Env, mode: AutoresetMode = AutoresetMode.NEXT_STEP) -> None:
        super().__init__(env)
        self.autoreset_mode = AutoresetMode(mode)
        self.needs_reset = True

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        self.needs_reset = False
        return self.env.reset(seed=seed, options=options)

    def step(self, action: Any) -> StepResult:
        if self.needs_reset and self.autoreset_mode is AutoresetMode.NEXT_STEP:
            self.env.reset()
            self.needs_reset = False

        result = self.env.step(action)
        ended = result.terminated or result.truncated
        if not ended or self.autoreset_mode is AutoresetMode.DISABLED:
            return result

        info = dict(result.info)
        info["final_observation"] = result.obs
        info["final_info"] = result.info
        if self.autoreset_mode is AutoresetMode.NEXT_STEP:
            self.needs_reset = True
            return result._replace(info=info)

        obs, reset_info = self.env.reset()
        info.update(reset_info)
        return result._replace(obs=obs, info=info)


def resets_within_step(env: Env) -> bool:
    """Whether ``env`` already starts the next episode inside ``step``.

    True when its chain holds an :class:`AutoReset` in ``SAME_STEP`` mode;
    the observation returned at an episode end then belongs to the new
    episode and the terminal one is in ``info["final_observation"]``.
    """
    return getattr(env, "autoreset_mode", None) is AutoresetMode.SAME_STEP


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


class TransformObservation(ObservationWrapper):
    """Applies ``func`` to every observation.

    Pass ``observation_space`` when the transform changes the domain.
    """

    def __init__(
        self,
        env: Env,
        func: Callable[[Any], Any] | None,
        observation_space: Space | None = None,
    ) -> None:
        if func is None:
            raise InvalidConfiguration("TransformObservation needs a transform function")
        super().__init__(env)
        self.func = func
        if observation_space is not None:
            self.observation_space = observation_space

    def observation(self, obs: Any) -> Any:
        return self.func(obs)


class TransformAction(ActionWrapper):
    """Applies ``func`` to every action before it reaches the inner env."""

    def __init__(
        self,
        env: Env,
        func: Callable[[Any], Any] | None,
        action_space: Space | None = None,
    ) -> None:
        if func is None:
            raise InvalidConfiguration("TransformAction needs a transform function")
        super().__init__(env)
        self.func = func
        if action_space is not None:
            self.action_space = action_space

    def action(self, action: Any) -> Any:
        return self.func(action)


class TransformReward(RewardWrapper):
    """Applies ``func`` to every reward."""

    def __init__(self, env: Env, func: Callable[[float], float] | None) -> None:
        if func is None:
            raise InvalidConfiguration("TransformReward needs a transform function")
        super().__init__(env)
        self.func = func

    def reward(self, reward: float) -> float:
        return float(self.func(reward))


class ScaleReward(RewardWrapper):
    """Multiplies rewards by a constant factor."""

    def __init__(self, env: Env, scale: float) -> None:
        super().__init__(env)
        self.scale = scale

    def reward(self, reward: float) -> float:
        return reward * self.scale


def _require_box(space: Space, wrapper: str) -> Box:
    if not isinstance(space, Box):
        raise InvalidConfiguration(f"{wrapper} requires a Box action space, got {space!r}")
    return space


class ClipAction(ActionWrapper):
    """Clips continuous actions into the inner action space bounds.

    The exposed action space is unbounded so any action is accepted.
    """

    def __init__(self, env: Env) -> None:
        box = _require_box(env.action_space, "ClipAction")
        super().__init__(env)
        self.action_space = Box(-np.inf, np.inf, shape=box.shape, dtype=box.dtype)

    def action(self, action: Any) -> np.ndarray:
        box = self.env.action_space
        return np.clip(np.asarray(action, dtype=box.dtype), box.low, box.high)


class RescaleAction(ActionWrapper):
    """Affinely maps actions from ``[min_action, max_action]`` into the
    inner action space bounds."""

    def __init__(self, env: Env, min_action: float | np.ndarray, max_action: float | np.ndarray) -> None:
        box = _require_box(env.action_space, "RescaleAction")
        if not box.is_bounded():
            raise InvalidConfiguration("RescaleAction needs a bounded action space")
        super().__init__(env)
        self.action_space = Box(min_action, max_action, shape=box.shape, dtype=box.dtype)
        self.min_action = self.action_space.low.astype(np.float64)
        self.max_action = self.action_space.high.astype(np.float64)

    def action(self, action: Any) -> np.ndarray:
        box = self.env.action_space
        low = box.low.astype(np.float64)
        high = box.high.astype(np.float64)
        frac = (np.asarray(action, dtype=np.float64) - self.min_action) / (
            self.max_action - self.min_action
        )
        return np.clip(low + frac * (high - low), low, high).astype(box.dtype)


# ---------------------------------------------------------------------------
# Observation normalization (running statistics)
# ---------------------------------------------------------------------------


class RunningMeanStd:
    """Running mean/variance with the parallel Welford update."""

    def __init__(self, shape: tuple[int, ...] = (), epsilon: float = 1e-4) -> None:
        self.mean = np.zeros(shape, dtype=np.float64)
        self.var = np.ones(shape, dtype=np.float64)
        self.count = epsilon

    def update(self, batch: np.ndarray) -> None:
        batch = np.asarray(batch, dtype=np.float64)
        batch_count = batch.shape[0]
        batch_mean = batch.mean(axis=0)
        batch_var = batch.var(axis=0)

        delta = batch_mean - self.mean
        total = self.count + batch_count
        self.mean = self.mean + delta * batch_count / total
        m2 = (
            self.var * self.count
            + batch_var * batch_count
            + delta**2 * self.count * batch_count / total
        )
        self.var = m2 / total
        self.count = total


class NormalizeObservation(ObservationWrapper):
    """Normalises observations to zero mean and unit variance.

    Statistics are updated on every observation while ``update_running_mean``
    is true. Zero-variance dimensions are divided by ``sqrt(epsilon)``
    instead of producing inf.
    """

    def __init__(self, env: Env, epsilon: float = 1e-8) -> None:
        space = env.observation_space
        if not isinstance(space, Box):
            raise InvalidConfiguration("NormalizeObservation requires a Box observation space")
        super().__init__(env)
        self.epsilon = epsilon
        self.obs_rms = RunningMeanStd(shape=space.shape)
        self.update_running_mean = True
        self.observation_space = Box(-np.inf, np.inf, shape=space.shape, dtype=np.float32)

    def observation(self, obs: Any) -> np.ndarray:
        obs = np.asarray(obs, dtype=np.float64)
        if self.update_running_mean:
            self.obs_rms.update(obs[None])
        normed = (obs - self.obs_rms.mean) / np.sqrt(self.obs_rms.var + self.epsilon)
        return normed.astype(np.float32)
