"""Training callbacks.

A callback observes the training loop of an algorithm. The loop calls,
in order:

- ``on_training_start(locals)`` once, before the first step;
- ``on_step(locals)`` after every environment step; returning ``False``
  stops training;
- ``on_episode_end(reward, length)`` whenever an episode finishes;
- ``on_train(metrics)`` after each training phase;
- ``on_training_end(locals)`` once, when ``learn`` returns.

Usage::

    from vibe_gym.runner.callbacks import CallbackList, StopTrainingOnMaxEpisodes

    model.learn(50_000, callback=CallbackList([
        StopTrainingOnMaxEpisodes(200),
        CheckpointCallback(10_000, "runs/dqn/checkpoints"),
    ]))
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, NamedTuple

import numpy as np

from vibe_gym.env.core import Env
from vibe_gym.errors import InvalidConfiguration
from vibe_gym.metrics import MetricsLogger
from vibe_gym.runner.evaluator import EvalMetrics, evaluate_policy

logger = logging.getLogger(__name__)


class CallbackLocals(NamedTuple):
    """Snapshot of the training state handed to callbacks."""

    num_timesteps: int
    total_timesteps: int
    num_episodes: int
    exploration_rate: float | None = None


class BaseCallback:
    """No-op base class; override the hooks you need.

    ``model`` is set by :meth:`init_callback` before training starts.
    """

    def __init__(self) -> None:
        self.model: Any = None

    def init_callback(self, model: Any) -> None:
        self.model = model

    def on_training_start(self, locals_: CallbackLocals) -> None:
        pass

    def on_step(self, locals_: CallbackLocals) -> bool:
        return True

    def on_episode_end(self, reward: float, length: int) -> None:
        pass

    def on_train(self, metrics: dict[str, float]) -> None:
        pass

    def on_training_end(self, locals_: CallbackLocals) -> None:
        pass


class CallbackList(BaseCallback):
    """Runs several callbacks in order.

    ``on_step`` calls every callback and stops training if any of them
    returned ``False``.
    """

    def __init__(self, callbacks: Sequence[BaseCallback] = ()) -> None:
        super().__init__()
        self.callbacks = list(callbacks)

    def init_callback(self, model: Any) -> None:
        super().init_callback(model)
        for cb in self.callbacks:
            cb.init_callback(model)

    def on_training_start(self, locals_: CallbackLocals) -> None:
        for cb in self.callbacks:
            cb.on_training_start(locals_)

    def on_step(self, locals_: CallbackLocals) -> bool:
        keep_going = True
        for cb in self.callbacks:
            if not cb.on_step(locals_):
                keep_going = False
        return keep_going

    def on_episode_end(self, reward: float, length: int) -> None:
        for cb in self.callbacks:
            cb.on_episode_end(reward, length)

    def on_train(self, metrics: dict[str, float]) -> None:
        for cb in self.callbacks:
            cb.on_train(metrics)

    def on_training_end(self, locals_: CallbackLocals) -> None:
        for cb in self.callbacks:
            cb.on_training_end(locals_)


class FunctionCallback(BaseCallback):
    """Adapts plain functions to the callback hooks.

    A step function returning ``None`` counts as "continue".
    """

    def __init__(
        self,
        on_step: Callable[[CallbackLocals], bool | None] | None = None,
        on_episode_end: Callable[[float, int], None] | None = None,
        on_train: Callable[[dict[str, float]], None] | None = None,
    ) -> None:
        super().__init__()
        self._on_step = on_step
        self._on_episode_end = on_episode_end
        self._on_train = on_train

    def on_step(self, locals_: CallbackLocals) -> bool:
        if self._on_step is None:
            return True
        return self._on_step(locals_) is not False

    def on_episode_end(self, reward: float, length: int) -> None:
        if self._on_episode_end is not None:
            self._on_episode_end(reward, length)

    def on_train(self, metrics: dict[str, float]) -> None:
        if self._on_train is not None:
            self._on_train(metrics)


class StopTrainingOnRewardThreshold(BaseCallback):
    """Stop once the mean return of the last ``window`` episodes reaches
    ``reward_threshold``."""

    def __init__(self, reward_threshold: float, window: int = 100) -> None:
        super().__init__()
        if window <= 0:
            raise InvalidConfiguration(f"window must be positive, got {window}")
        self.reward_threshold = reward_threshold
        self.window = window
        self._returns: deque[float] = deque(maxlen=window)
        self.stopped = False

    def on_episode_end(self, reward: float, length: int) -> None:
        self._returns.append(float(reward))

    def on_step(self, locals_: CallbackLocals) -> bool:
        if len(self._returns) < self.window:
            return True
        mean_return = float(np.mean(self._returns))
        if mean_return >= self.reward_threshold:
            self.stopped = True
            logger.info(
                "Stopping training: mean return %.2f >= threshold %.2f",
                mean_return,
                self.reward_threshold,
            )
            return False
        return True


class StopTrainingOnMaxEpisodes(BaseCallback):
    def __init__(self, max_episodes: int) -> None:
        super().__init__()
        if max_episodes <= 0:
            raise InvalidConfiguration(f"max_episodes must be positive, got {max_episodes}")
        self.max_episodes = max_episodes
        self.stopped = False

    def on_step(self, locals_: CallbackLocals) -> bool:
        if locals_.num_episodes >= self.max_episodes:
            self.stopped = True
            logger.info("Stopping training: reached %d episodes", self.max_episodes)
            return False
        return True


class CheckpointCallback(BaseCallback):
    """Save the model every ``save_freq`` timesteps.

    Checkpoints land in ``save_path / f"{name_prefix}_{num_timesteps}_steps"``.
    """

    def __init__(
        self,
        save_freq: int,
        save_path: str | Path,
        name_prefix: str = "model",
        include_buffer: bool = False,
    ) -> None:
        super().__init__()
        if save_freq <= 0:
            raise InvalidConfiguration(f"save_freq must be positive, got {save_freq}")
        self.save_freq = save_freq
        self.save_path = Path(save_path)
        self.name_prefix = name_prefix
        self.include_buffer = include_buffer
        self.saved_paths: list[Path] = []

    def on_training_start(self, locals_: CallbackLocals) -> None:
        self.save_path.mkdir(parents=True, exist_ok=True)

    def on_step(self, locals_: CallbackLocals) -> bool:
        if locals_.num_timesteps % self.save_freq == 0:
            path = self.save_path / f"{self.name_prefix}_{locals_.num_timesteps}_steps"
            self.model.save(path, include_buffer=self.include_buffer)
            self.saved_paths.append(path)
            logger.info("Saved checkpoint %s", path)
        return True


class EvalCallback(BaseCallback):
    """Evaluate the model on a separate env every ``eval_freq`` timesteps.

    Keeps ``last_mean_reward`` and ``best_mean_reward``. On a new best the
    model is saved to ``best_model_save_path`` (when given), and training
    stops once the best mean reward reaches ``reward_threshold``.
    Evaluation rows go to ``sink`` when one is given.
    """

    def __init__(
        self,
        eval_env: Env,
        eval_freq: int = 10_000,
        n_eval_episodes: int = 5,
        deterministic: bool = True,
        best_model_save_path: str | Path | None = None,
        *,
        reward_threshold: float | None = None,
        sink: MetricsLogger | None = None,
    ) -> None:
        super().__init__()
        if eval_freq <= 0:
            raise InvalidConfiguration(f"eval_freq must be positive, got {eval_freq}")
        if n_eval_episodes <= 0:
            raise InvalidConfiguration(f"n_eval_episodes must be positive, got {n_eval_episodes}")
        self.eval_env = eval_env
        self.eval_freq = eval_freq
        self.n_eval_episodes = n_eval_episodes
        self.deterministic = deterministic
        self.best_model_save_path = Path(best_model_save_path) if best_model_save_path else None
        self.reward_threshold = reward_threshold
        self.sink = sink
        self.last_mean_reward = -np.inf
        self.best_mean_reward = -np.inf
        self.evaluations: list[tuple[int, EvalMetrics]] = []
        self._last_eval_step = 0

    def on_training_start(self, locals_: CallbackLocals) -> None:
        self._last_eval_step = locals_.num_timesteps

    def on_step(self, locals_: CallbackLocals) -> bool:
        if locals_.num_timesteps - self._last_eval_step < self.eval_freq:
            return True
        self._last_eval_step = locals_.num_timesteps

        result = evaluate_policy(
            self.model,
            self.eval_env,
            n_eval_episodes=self.n_eval_episodes,
            deterministic=self.deterministic,
        )
        self.evaluations.append((locals_.num_timesteps, result))
        self.last_mean_reward = result.mean_return
        if self.sink is not None:
            self.sink.write(
                {
                    "step": locals_.num_timesteps,
                    "eval_mean_return": result.mean_return,
                    "eval_std_return": result.std_return,
                    "eval_mean_length": result.mean_length,
                }
            )

        if result.mean_return > self.best_mean_reward:
            self.best_mean_reward = result.mean_return
            logger.info("New best mean return %.2f at step %d", result.mean_return, locals_.num_timesteps)
            if self.best_model_save_path is not None:
                self.model.save(self.best_model_save_path)

        if self.reward_threshold is not None and self.best_mean_reward >= self.reward_threshold:
            logger.info(
                "Stopping training: eval return %.2f >= threshold %.2f",
                self.best_mean_reward,
                self.reward_threshold,
            )
            return False
        return True


class MetricsCallback(BaseCallback):
    """Forward episode and training metrics to a :class:`MetricsLogger`.

    Every row carries the current ``step`` (timesteps so far).
    """

    def __init__(self, sink: MetricsLogger) -> None:
        super().__init__()
        self.sink = sink
        self._step = 0

    def on_step(self, locals_: CallbackLocals) -> bool:
        self._step = locals_.num_timesteps
        return True

    def on_episode_end(self, reward: float, length: int) -> None:
        self.sink.write(
            {"step": self._step, "episode_return": float(reward), "episode_length": int(length)}
        )

    def on_train(self, metrics: dict[str, float]) -> None:
        self.sink.write({"step": self._step, **metrics})


def as_callback(
    callback: BaseCallback | Sequence[BaseCallback] | Callable[[CallbackLocals], bool | None] | None,
) -> BaseCallback:
    """Normalise the ``callback`` argument of ``learn``."""
    if callback is None:
        return BaseCallback()
    if isinstance(callback, BaseCallback):
        return callback
    if isinstance(callback, Sequence):
        return CallbackList(callback)
    if callable(callback):
        return FunctionCallback(on_step=callback)
    raise InvalidConfiguration(f"Unsupported callback {callback!r}")
