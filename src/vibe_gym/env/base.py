"""Functional kernel interface for pure-JAX environment dynamics.

Concrete tasks implement their physics as pure functions in the
Gymnax style. The stateful :class:`~vibe_gym.env.core.Env` contract is
layered on top by :class:`~vibe_gym.env.functional.FunctionalEnv`, which
owns the kernel state and PRNG key.

Core pattern::

    kernel = CartPole()
    params = kernel.default_params()
    key = jax.random.PRNGKey(0)

    obs, state = kernel.reset(key, params)
    obs, state, reward, terminated, info = kernel.step(key, state, action, params)

Kernels never report truncation; episode length limits belong to the
``TimeLimit`` wrapper.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import equinox as eqx
import jax

from vibe_gym.env.spaces import Space


class EnvState(eqx.Module):
    """Base class for kernel states.

    States are immutable PyTrees; ``step`` returns a new state.
    """

    time: jax.Array  # current timestep within the episode


class EnvParams(eqx.Module):
    """Base class for kernel parameters (static, hashable fields)."""


class Environment(ABC):
    """Abstract base for pure-JAX environment kernels.

    Subclasses implement:
    - ``reset(key, params) -> (obs, state)``
    - ``step(key, state, action, params) -> (obs, state, reward, terminated, info)``
    - ``default_params() -> EnvParams``
    - ``observation_space(params) -> Space``
    - ``action_space(params) -> Space``

    Kernels hold no data of their own, so two instances of the same class
    compare equal. This lets jitted entry points be shared across
    instances.
    """

    render_modes: tuple[str, ...] = ()

    @abstractmethod
    def reset(
        self,
        key: jax.Array,
        params: EnvParams,
    ) -> tuple[jax.Array, EnvState]:
        """Reset the environment and return ``(obs, state)``."""
        ...

    @abstractmethod
    def step(
        self,
        key: jax.Array,
        state: EnvState,
        action: jax.Array,
        params: EnvParams,
    ) -> tuple[jax.Array, EnvState, jax.Array, jax.Array, dict[str, Any]]:
        """Advance one timestep.

        Returns:
            ``(obs, state, reward, terminated, info)``.
        """
        ...

    @abstractmethod
    def default_params(self) -> EnvParams:
        """Return the default environment parameters."""
        ...

    @abstractmethod
    def observation_space(self, params: EnvParams) -> Space:
        """Return the observation space (may depend on params)."""
        ...

    @abstractmethod
    def action_space(self, params: EnvParams) -> Space:
        """Return the action space (may depend on params)."""
        ...

    def render(self, state: EnvState, params: EnvParams, mode: str) -> Any:
        """Render *state*; only modes listed in ``render_modes`` are supported."""
        raise NotImplementedError(f"{self.name} does not support render mode {mode!r}")

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))
