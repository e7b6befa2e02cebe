"""Experience storage for off-policy RL.

Core types:
    - Transition / ReplayBatch: immutable NamedTuple experience containers
    - ReplayBuffer: numpy-backed ring buffer with jax.Array sampling
"""

from vibe_gym.dataprotocol.replay_buffer import ReplayBuffer
from vibe_gym.dataprotocol.transition import Batch, ReplayBatch, Transition

__all__ = [
    "Transition",
    "Batch",
    "ReplayBatch",
    "ReplayBuffer",
]
