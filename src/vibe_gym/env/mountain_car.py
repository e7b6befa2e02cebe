"""Pure-JAX MountainCar kernel (discrete actions).

Follows Gymnasium's MountainCar-v0: an underpowered car must rock back
and forth to reach the flag at ``position >= 0.5``.
"""

from __future__ import annotations

from typing import Any

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np

from vibe_gym.env.base import Environment, EnvParams, EnvState
from vibe_gym.env.functional import FunctionalEnv
from vibe_gym.env.spaces import Box, Discrete


class MountainCarState(EnvState):
    position: jax.Array
    velocity: jax.Array


class MountainCarParams(EnvParams):
    min_position: float = eqx.field(static=True, default=-1.2)
    max_position: float = eqx.field(static=True, default=0.6)
    max_speed: float = eqx.field(static=True, default=0.07)
    goal_position: float = eqx.field(static=True, default=0.5)
    goal_velocity: float = eqx.field(static=True, default=0.0)
    force: float = eqx.field(static=True, default=0.001)
    gravity: float = eqx.field(static=True, default=0.0025)


class MountainCar(Environment):
    """Observation: ``[position, velocity]``.
    Actions: ``0`` accelerate left, ``1`` coast, ``2`` accelerate right.
    Reward: ``-1`` per step.
    """

    def default_params(self) -> MountainCarParams:
        return MountainCarParams()

    def reset(
        self,
        key: jax.Array,
        params: MountainCarParams,
    ) -> tuple[jax.Array, MountainCarState]:
        state = MountainCarState(
            position=jax.random.uniform(key, (), minval=-0.6, maxval=-0.4),
            velocity=jnp.float32(0.0),
            time=jnp.int32(0),
        )
        return self._get_obs(state), state

    def step(
        self,
        key: jax.Array,
        state: MountainCarState,
        action: jax.Array,
        params: MountainCarParams,
    ) -> tuple[jax.Array, MountainCarState, jax.Array, jax.Array, dict[str, Any]]:
        velocity = (
            state.velocity
            + (action - 1) * params.force
            - jnp.cos(3 * state.position) * params.gravity
        )
        velocity = jnp.clip(velocity, -params.max_speed, params.max_speed)
        position = jnp.clip(state.position + velocity, params.min_position, params.max_position)
        # Inelastic collision with the left wall.
        velocity = jnp.where((position <= params.min_position) & (velocity < 0), 0.0, velocity)

        new_state = MountainCarState(
            position=position, velocity=velocity, time=state.time + 1
        )
        terminated = (position >= params.goal_position) & (velocity >= params.goal_velocity)
        return self._get_obs(new_state), new_state, jnp.float32(-1.0), terminated, {}

    def observation_space(self, params: MountainCarParams) -> Box:
        low = np.array([params.min_position, -params.max_speed], dtype=np.float32)
        high = np.array([params.max_position, params.max_speed], dtype=np.float32)
        return Box(low=low, high=high)

    def action_space(self, params: MountainCarParams) -> Discrete:
        return Discrete(3)

    @staticmethod
    def _get_obs(state: MountainCarState) -> jax.Array:
        return jnp.array([state.position, state.velocity], dtype=jnp.float32)


class MountainCarEnv(FunctionalEnv):
    def __init__(self, render_mode: str | None = None, **params: Any) -> None:
        super().__init__(MountainCar(), MountainCarParams(**params), render_mode=render_mode)
