"""Serial vector env: slots are stepped one after another in index order."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np

from vibe_gym.env.core import AutoresetMode, Env
from vibe_gym.env.spaces import Box, Discrete, MultiBinary, MultiDiscrete
from vibe_gym.errors import InvalidConfiguration, InvalidNumEnvs
from vibe_gym.vector.base import (
    VectorEnv,
    VectorResetResult,
    VectorStepResult,
    resolve_seeds,
    step_slot,
)

logger = logging.getLogger(__name__)


class SyncVectorEnv(VectorEnv):
    """Runs ``len(env_fns)`` environments in the calling thread.

    Args:
        env_fns: Zero-argument constructors, one per slot.
        autoreset_mode: When finished slots are reset.
        copy: Return a fresh observation array from ``step`` instead of the
            internal buffer that the next ``step`` overwrites.
    """

    def __init__(
        self,
        env_fns: Sequence[Callable[[], Env]],
        autoreset_mode: AutoresetMode = AutoresetMode.NEXT_STEP,
        copy: bool = True,
    ) -> None:
        if len(env_fns) == 0:
            raise InvalidNumEnvs(0)
        self.envs = [fn() for fn in env_fns]
        first = self.envs[0]
        for i, env in enumerate(self.envs[1:], start=1):
            if env.observation_space != first.observation_space or env.action_space != first.action_space:
                raise InvalidConfiguration(
                    f"Sub-environment {i} has different spaces than sub-environment 0"
                )
        super().__init__(len(self.envs), first.observation_space, first.action_space, autoreset_mode)
        self.spec = first.spec
        self.copy = copy
        self._needs_reset = [False] * self.num_envs

        space = self.single_observation_space
        if isinstance(space, (Box, Discrete, MultiDiscrete, MultiBinary)):
            self._observations: np.ndarray | None = np.zeros(
                (self.num_envs, *space.shape), dtype=space.dtype
            )
        else:
            self._observations = None

    def reset(
        self,
        *,
        seed: int | Sequence[int | None] | None = None,
        options: dict[str, Any] | None = None,
    ) -> VectorResetResult:
        self._check_open()
        seeds = resolve_seeds(seed, self.num_envs)
        results = [env.reset(seed=s, options=options) for env, s in zip(self.envs, seeds, strict=True)]
        self._needs_reset = [False] * self.num_envs
        return self._collate_reset(results)

    def step(self, actions: Any) -> VectorStepResult:
        self._check_open()
        per_slot = self._unbatch_actions(actions)
        slots = []
        for i, (env, action) in enumerate(zip(self.envs, per_slot, strict=True)):
            slot, self._needs_reset[i] = step_slot(
                env, action, self.autoreset_mode, self._needs_reset[i], i
            )
            slots.append(slot)

        result = self._collate_step(slots, out=self._observations)
        if self.copy and self._observations is not None:
            result = result._replace(observations=result.observations.copy())
        return result

    def call(self, name: str, *args: Any, **kwargs: Any) -> tuple[Any, ...]:
        """Call ``name`` on every slot (or read it, for non-callables)."""
        self._check_open()
        results = []
        for env in self.envs:
            attr = getattr(env, name)
            results.append(attr(*args, **kwargs) if callable(attr) else attr)
        return tuple(results)

    def close_extras(self) -> None:
        for env in self.envs:
            env.close()
        logger.debug("Closed %d sub-environments", self.num_envs)
