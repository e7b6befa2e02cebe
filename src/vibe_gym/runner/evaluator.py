"""Policy evaluation on a stateful environment.

Runs complete episodes with ``model.predict`` and aggregates the
returns. Works with anything exposing ``predict(obs, deterministic)``:
the off-policy algorithms, the tabular agents, or a plain adapter.

Usage::

    metrics = evaluate_policy(model, make("CartPole-v1"), n_eval_episodes=10)
    # metrics.mean_return, metrics.std_return, metrics.success_rate
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple, Protocol

import numpy as np

from vibe_gym.env.core import Env
from vibe_gym.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


class Predictor(Protocol):
    def predict(self, obs: Any, deterministic: bool = True) -> Any: ...


class EvalMetrics(NamedTuple):
    """Aggregated evaluation results."""

    mean_return: float
    std_return: float
    mean_length: float
    std_length: float
    episode_returns: list[float]
    episode_lengths: list[int]
    success_rate: float | None = None


def evaluate_policy(
    model: Predictor,
    env: Env,
    n_eval_episodes: int = 10,
    deterministic: bool = True,
    *,
    seed: int | None = None,
    max_steps_per_episode: int | None = None,
) -> EvalMetrics:
    """Roll out ``n_eval_episodes`` full episodes.

    Args:
        model: Anything with ``predict(obs, deterministic)``.
        env: Environment to evaluate on; it is reset but not closed.
        n_eval_episodes: Number of episodes.
        deterministic: Passed through to ``predict``.
        seed: Seed for the first reset; later resets continue the stream.
        max_steps_per_episode: Cut an episode after this many steps, for
            environments without a time limit.

    Returns:
        ``EvalMetrics``; ``success_rate`` is the fraction of episodes whose
        final info had a truthy ``"is_success"``, or ``None`` when no
        episode reported it.
    """
    if n_eval_episodes <= 0:
        raise InvalidConfiguration(f"n_eval_episodes must be positive, got {n_eval_episodes}")

    returns: list[float] = []
    lengths: list[int] = []
    successes: list[bool] = []

    for episode in range(n_eval_episodes):
        obs, _ = env.reset(seed=seed if episode == 0 else None)
        total, length, done = 0.0, 0, False
        info: dict[str, Any] = {}
        while not done:
            action = model.predict(obs, deterministic=deterministic)
            obs, reward, terminated, truncated, info = env.step(action)
            total += float(reward)
            length += 1
            done = terminated or truncated
            if max_steps_per_episode is not None and length >= max_steps_per_episode:
                done = True
        returns.append(total)
        lengths.append(length)
        final_info = info.get("final_info", info)
        if "is_success" in final_info:
            successes.append(bool(final_info["is_success"]))

    metrics = EvalMetrics(
        mean_return=float(np.mean(returns)),
        std_return=float(np.std(returns)),
        mean_length=float(np.mean(lengths)),
        std_length=float(np.std(lengths)),
        episode_returns=returns,
        episode_lengths=lengths,
        success_rate=float(np.mean(successes)) if successes else None,
    )
    logger.info(
        "Evaluated %d episodes: return %.2f +/- %.2f, length %.1f",
        n_eval_episodes,
        metrics.mean_return,
        metrics.std_return,
        metrics.mean_length,
    )
    return metrics
