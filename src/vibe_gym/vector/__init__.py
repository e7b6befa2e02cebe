"""Vectorized environments: serial and thread-parallel executors."""

from vibe_gym.env.core import AutoresetMode
from vibe_gym.vector.async_vector_env import AsyncVectorEnv
from vibe_gym.vector.base import VectorEnv, VectorResetResult, VectorStepResult
from vibe_gym.vector.registration import make_vec
from vibe_gym.vector.sync_vector_env import SyncVectorEnv

__all__ = [
    "AutoresetMode",
    "VectorEnv",
    "VectorResetResult",
    "VectorStepResult",
    "SyncVectorEnv",
    "AsyncVectorEnv",
    "make_vec",
]
