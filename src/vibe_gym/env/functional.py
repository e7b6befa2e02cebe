"""Adapter from a pure-JAX kernel to the stateful ``Env`` contract.

The kernel functions are jitted once per kernel class with
``eqx.filter_jit``; every ``FunctionalEnv`` wrapping the same kernel type
shares the compiled code.
"""

from __future__ import annotations

from typing import Any

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np

from vibe_gym.env.base import Environment, EnvParams, EnvState
from vibe_gym.env.core import Env, ResetResult, StepResult
from vibe_gym.env.spaces import Discrete, Space
from vibe_gym.errors import ActionOutsideSpace, ResetNeeded


@eqx.filter_jit
def _kernel_reset(
    kernel: Environment, key: jax.Array, params: EnvParams
) -> tuple[jax.Array, EnvState]:
    return kernel.reset(key, params)


@eqx.filter_jit
def _kernel_step(
    kernel: Environment,
    key: jax.Array,
    state: EnvState,
    action: jax.Array,
    params: EnvParams,
) -> tuple[jax.Array, EnvState, jax.Array, jax.Array, dict[str, Any]]:
    return kernel.step(key, state, action, params)


def _to_host(value: jax.Array, space: Space) -> Any:
    if isinstance(space, Discrete):
        return int(value)
    return np.asarray(value, dtype=space.dtype)


def _info_to_host(info: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for k, v in info.items():
        arr = np.asarray(v)
        out[k] = arr.item() if arr.shape == () else arr
    return out


class FunctionalEnv(Env):
    """Stateful environment driven by a functional ``Environment`` kernel.

    Owns the kernel state and PRNG key. Actions are checked against the
    action space on every step.
    """

    def __init__(
        self,
        kernel: Environment,
        params: EnvParams | None = None,
        *,
        render_mode: str | None = None,
    ) -> None:
        self.kernel = kernel
        self.params = kernel.default_params() if params is None else params
        self.observation_space = kernel.observation_space(self.params)
        self.action_space = kernel.action_space(self.params)
        if render_mode is not None and render_mode not in kernel.render_modes:
            raise ValueError(
                f"{kernel.name} supports render modes {kernel.render_modes}, "
                f"got {render_mode!r}"
            )
        self.render_mode = render_mode
        self.metadata = {"render_modes": list(kernel.render_modes), "render_fps": 4}
        self.state: EnvState | None = None

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        super().reset(seed=seed)
        obs, self.state = _kernel_reset(self.kernel, self.next_key(), self.params)
        return ResetResult(_to_host(obs, self.observation_space), {})

    def step(self, action: Any) -> StepResult:
        if self.state is None:
            raise ResetNeeded(f"Cannot call {self.kernel.name}.step() before reset()")
        if not self.action_space.contains(action):
            env_id = self.spec.id if self.spec is not None else self.kernel.name
            raise ActionOutsideSpace(env_id, action)

        obs, self.state, reward, terminated, info = _kernel_step(
            self.kernel, self.next_key(), self.state, jnp.asarray(action), self.params
        )
        return StepResult(
            _to_host(obs, self.observation_space),
            float(reward),
            bool(terminated),
            False,
            _info_to_host(info),
        )

    def render(self) -> Any:
        if self.render_mode is None:
            return None
        if self.state is None:
            raise ResetNeeded("Cannot render before reset()")
        return self.kernel.render(self.state, self.params, self.render_mode)

    def __repr__(self) -> str:
        return f"FunctionalEnv({self.kernel.name})"
