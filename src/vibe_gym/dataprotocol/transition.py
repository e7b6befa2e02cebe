"""Transition containers for RL experience data.

All containers are NamedTuples: immutable, zero-overhead PyTrees that
compose naturally with jax.jit, jax.vmap, and jax.lax.scan.
"""

from __future__ import annotations

from typing import NamedTuple

from jax import Array

from vibe_gym.types import Transition


class ReplayBatch(NamedTuple):
    """A batch sampled from :class:`~vibe_gym.dataprotocol.ReplayBuffer`.

    Fields (B = batch size):
        obs:      (B, *obs_shape)
        action:   (B, *action_shape)
        reward:   (B,) float32
        next_obs: (B, *obs_shape)
        done:     (B,) float32 bootstrap mask, already corrected for
                  timeouts when the buffer handles them
        timeout:  (B,) float32, 1.0 where the episode was truncated
    """

    obs: Array
    action: Array
    reward: Array
    next_obs: Array
    done: Array
    timeout: Array

    def to_transition(self) -> Transition:
        return Transition(
            obs=self.obs,
            action=self.action,
            reward=self.reward,
            next_obs=self.next_obs,
            done=self.done,
        )


# A "Batch" is simply a Transition whose fields have a leading batch dimension.
Batch = Transition
