"""Environment contract checks.

``check_observation`` / ``check_action`` are the passive one-shot checks
used by :class:`~vibe_gym.env.wrappers.PassiveEnvChecker`. ``check_env``
actively exercises an environment and is meant for tests of new tasks.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from vibe_gym.env.core import Env
from vibe_gym.env.spaces import Box, Space
from vibe_gym.errors import (
    ActionOutsideSpace,
    ContractViolation,
    InvalidConfiguration,
    ObservationOutsideSpace,
)

logger = logging.getLogger(__name__)


def check_spaces(env: Env) -> None:
    """Both spaces must be declared and be ``Space`` instances."""
    for attr in ("observation_space", "action_space"):
        space = getattr(env, attr, None)
        if not isinstance(space, Space):
            raise InvalidConfiguration(
                f"{type(env).__name__}.{attr} must be a Space, got {type(space).__name__}"
            )
    space = env.observation_space
    if isinstance(space, Box) and np.any(np.equal(space.low, space.high)):
        logger.warning("Observation space %r has dimensions with low == high", space)


def check_observation(space: Space, obs: Any, env_id: str | None, method: str) -> None:
    if not space.contains(obs):
        raise ObservationOutsideSpace(
            env_id, f"{method}() returned {obs!r}, not contained in {space!r}"
        )


def check_action(space: Space, action: Any, env_id: str | None) -> None:
    if not space.contains(action):
        raise ActionOutsideSpace(env_id, action)


def check_step_types(reward: Any, terminated: Any, truncated: Any, info: Any) -> None:
    if not isinstance(reward, (int, float, np.integer, np.floating)):
        raise ContractViolation(f"step() reward must be a number, got {type(reward).__name__}")
    if np.isnan(reward) or np.isinf(reward):
        raise ContractViolation(f"step() reward is not finite: {reward}")
    for name, flag in (("terminated", terminated), ("truncated", truncated)):
        if not isinstance(flag, (bool, np.bool_)):
            raise ContractViolation(f"step() {name} must be a bool, got {type(flag).__name__}")
    if not isinstance(info, dict):
        raise ContractViolation(f"step() info must be a dict, got {type(info).__name__}")


def _obs_equal(a: Any, b: Any) -> bool:
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(_obs_equal(a[k], b[k]) for k in a)
    if isinstance(a, tuple):
        return len(a) == len(b) and all(_obs_equal(x, y) for x, y in zip(a, b, strict=True))
    return bool(np.array_equal(np.asarray(a), np.asarray(b)))


def check_env(env: Env, seed: int = 0, n_steps: int = 10) -> None:
    """Exercise *env* and raise on any contract breach.

    Verifies declared spaces, seeded reset determinism, observation
    membership for reset and step results, and step result types.
    """
    check_spaces(env)
    env_id = env.spec.id if env.spec is not None else None

    obs_a, info = env.reset(seed=seed)
    if not isinstance(info, dict):
        raise ContractViolation(f"reset() info must be a dict, got {type(info).__name__}")
    check_observation(env.observation_space, obs_a, env_id, "reset")
    obs_b, _ = env.reset(seed=seed)
    if not _obs_equal(obs_a, obs_b):
        raise ContractViolation("reset(seed=...) is not deterministic")

    for _ in range(n_steps):
        action = env.action_space.sample(env.next_key())
        obs, reward, terminated, truncated, info = env.step(action)
        check_observation(env.observation_space, obs, env_id, "step")
        check_step_types(reward, terminated, truncated, info)
        if terminated or truncated:
            env.reset()
