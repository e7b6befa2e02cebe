"""Pure-JAX FrozenLake kernel.

Cross a frozen lake from ``S`` to ``G`` without falling into a hole
``H``. On a slippery lake the agent moves in the intended direction with
probability 1/3 and to either perpendicular direction with 1/3 each.

Observation: ``row * ncol + col`` as a ``Discrete(nrow * ncol)``.
Actions: ``0``=left, ``1``=down, ``2``=right, ``3``=up.
Reward: ``1`` on reaching the goal, ``0`` otherwise.
"""

from __future__ import annotations

from typing import Any

import equinox as eqx
import jax
import jax.numpy as jnp

from vibe_gym.env.base import Environment, EnvParams, EnvState
from vibe_gym.env.functional import FunctionalEnv
from vibe_gym.env.spaces import Discrete

MAPS: dict[str, tuple[str, ...]] = {
    "4x4": ("SFFF", "FHFH", "FFFH", "HFFG"),
    "8x8": (
        "SFFFFFFF",
        "FFFFFFFF",
        "FFFHFFFF",
        "FFFFFHFF",
        "FFFHFFFF",
        "FHHFFFHF",
        "FHFFHFHF",
        "FFFHFFFG",
    ),
}

# left, down, right, up
_DR = jnp.array([0, 1, 0, -1], dtype=jnp.int32)
_DC = jnp.array([-1, 0, 1, 0], dtype=jnp.int32)


class FrozenLakeState(EnvState):
    pos: jax.Array


class FrozenLakeParams(EnvParams):
    desc: tuple[str, ...] = eqx.field(static=True, default=MAPS["4x4"])
    is_slippery: bool = eqx.field(static=True, default=True)

    @property
    def nrow(self) -> int:
        return len(self.desc)

    @property
    def ncol(self) -> int:
        return len(self.desc[0])

    @property
    def start(self) -> int:
        flat = "".join(self.desc)
        return flat.index("S")


def _tile_codes(desc: tuple[str, ...]) -> jax.Array:
    """0 = frozen/start, 1 = hole, 2 = goal."""
    codes = {"S": 0, "F": 0, "H": 1, "G": 2}
    return jnp.array([codes[ch] for ch in "".join(desc)], dtype=jnp.int32)


class FrozenLake(Environment):
    render_modes = ("ansi",)

    def default_params(self) -> FrozenLakeParams:
        return FrozenLakeParams()

    def reset(
        self,
        key: jax.Array,
        params: FrozenLakeParams,
    ) -> tuple[jax.Array, FrozenLakeState]:
        state = FrozenLakeState(pos=jnp.int32(params.start), time=jnp.int32(0))
        return state.pos, state

    def step(
        self,
        key: jax.Array,
        state: FrozenLakeState,
        action: jax.Array,
        params: FrozenLakeParams,
    ) -> tuple[jax.Array, FrozenLakeState, jax.Array, jax.Array, dict[str, Any]]:
        if params.is_slippery:
            slip = jax.random.randint(key, (), -1, 2)
            direction = (action + slip) % 4
        else:
            direction = action

        row = jnp.clip(state.pos // params.ncol + _DR[direction], 0, params.nrow - 1)
        col = jnp.clip(state.pos % params.ncol + _DC[direction], 0, params.ncol - 1)
        pos = (row * params.ncol + col).astype(jnp.int32)

        tile = _tile_codes(params.desc)[pos]
        reward = jnp.where(tile == 2, jnp.float32(1.0), jnp.float32(0.0))
        terminated = tile > 0
        new_state = FrozenLakeState(pos=pos, time=state.time + 1)
        return pos, new_state, reward, terminated, {"prob": jnp.float32(1.0 / 3.0 if params.is_slippery else 1.0)}

    def observation_space(self, params: FrozenLakeParams) -> Discrete:
        return Discrete(params.nrow * params.ncol)

    def action_space(self, params: FrozenLakeParams) -> Discrete:
        return Discrete(4)

    def render(self, state: FrozenLakeState, params: FrozenLakeParams, mode: str) -> str:
        pos = int(state.pos)
        lines = []
        for r, line in enumerate(params.desc):
            cells = []
            for c, ch in enumerate(line):
                cells.append(f"[{ch}]" if r * params.ncol + c == pos else f" {ch} ")
            lines.append("".join(cells))
        return "\n".join(lines) + "\n"


class FrozenLakeEnv(FunctionalEnv):
    def __init__(
        self,
        render_mode: str | None = None,
        map_name: str = "4x4",
        desc: tuple[str, ...] | list[str] | None = None,
        is_slippery: bool = True,
    ) -> None:
        if desc is None:
            desc = MAPS[map_name]
        params = FrozenLakeParams(desc=tuple(desc), is_slippery=is_slippery)
        super().__init__(FrozenLake(), params, render_mode=render_mode)
