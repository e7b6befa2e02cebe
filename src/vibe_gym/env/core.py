"""Stateful environment contract.

An :class:`Env` is a small state machine::

    constructed --reset--> ready --step--> ready
         |                   |
         +------close--------+--> closed

``reset`` is always legal, ``step`` only after a ``reset``. Results are
NamedTuples so they unpack like plain tuples::

    obs, info = env.reset(seed=42)
    obs, reward, terminated, truncated, info = env.step(action)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, NamedTuple

import jax

from vibe_gym.env.spaces import Space
from vibe_gym.seeding import make_rng, split_key
from vibe_gym.types import Info

if TYPE_CHECKING:
    from vibe_gym.env.registration import EnvSpec


class AutoresetMode(str, Enum):
    """When a finished episode is reset automatically.

    ``NEXT_STEP``: the terminal step is returned as-is and the reset happens
    right before the next action. ``SAME_STEP``: the reset happens within the
    terminal step and its first observation is returned. ``DISABLED``: never.
    """

    NEXT_STEP = "next_step"
    SAME_STEP = "same_step"
    DISABLED = "disabled"


class ResetResult(NamedTuple):
    obs: Any
    info: Info


class StepResult(NamedTuple):
    obs: Any
    reward: float
    terminated: bool
    truncated: bool
    info: Info


class Env(ABC):
    """Base class for stateful environments.

    Subclasses set ``action_space`` and ``observation_space`` in
    ``__init__``, implement :meth:`step`, and override :meth:`reset`,
    calling ``super().reset(seed=seed)`` first so the PRNG key is
    re-derived from the seed.
    """

    metadata: ClassVar[dict[str, Any]] = {"render_modes": []}

    render_mode: str | None = None
    spec: EnvSpec | None = None

    action_space: Space
    observation_space: Space

    _np_random: jax.Array | None = None

    @property
    def np_random(self) -> jax.Array:
        """The environment's PRNG key, seeded from OS entropy on first use."""
        if self._np_random is None:
            self._np_random = make_rng(None)
        return self._np_random

    @np_random.setter
    def np_random(self, value: jax.Array) -> None:
        self._np_random = value

    def next_key(self) -> jax.Array:
        """Advance the key stream and return a fresh subkey."""
        self.np_random, subkey = split_key(self.np_random)
        return subkey

    def reset(
        self,
        *,
        seed: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ResetResult:
        if seed is not None:
            self.np_random = make_rng(seed)
        return ResetResult(None, {})

    @abstractmethod
    def step(self, action: Any) -> StepResult:
        ...

    def render(self) -> Any:
        return None

    def close(self) -> None:
        pass

    @property
    def unwrapped(self) -> Env:
        return self

    def __enter__(self) -> Env:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __str__(self) -> str:
        if self.spec is None:
            return f"<{type(self).__name__} instance>"
        return f"<{type(self).__name__}<{self.spec.id}>>"
