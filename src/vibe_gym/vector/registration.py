"""``make_vec``: build a vector env from a registered id."""

from __future__ import annotations

import functools
from typing import Any

from vibe_gym.env.core import AutoresetMode
from vibe_gym.env.registration import EnvSpec, make
from vibe_gym.errors import InvalidConfiguration, InvalidNumEnvs
from vibe_gym.vector.async_vector_env import AsyncVectorEnv
from vibe_gym.vector.base import VectorEnv
from vibe_gym.vector.sync_vector_env import SyncVectorEnv


def make_vec(
    id: str | EnvSpec,
    num_envs: int = 1,
    vectorization_mode: str = "sync",
    autoreset_mode: AutoresetMode = AutoresetMode.NEXT_STEP,
    vector_kwargs: dict[str, Any] | None = None,
    **kwargs: Any,
) -> VectorEnv:
    """Create ``num_envs`` copies of a registered env behind one executor.

    ``kwargs`` go to :func:`vibe_gym.env.make` for every copy;
    ``vector_kwargs`` go to the executor.
    """
    if num_envs <= 0:
        raise InvalidNumEnvs(num_envs)
    env_fns = [functools.partial(make, id, **kwargs) for _ in range(num_envs)]
    vector_kwargs = vector_kwargs or {}
    if vectorization_mode == "sync":
        return SyncVectorEnv(env_fns, autoreset_mode=autoreset_mode, **vector_kwargs)
    if vectorization_mode == "async":
        return AsyncVectorEnv(env_fns, autoreset_mode=autoreset_mode, **vector_kwargs)
    raise InvalidConfiguration(
        f"vectorization_mode must be 'sync' or 'async', got {vectorization_mode!r}"
    )
