"""Batched execution of several environment copies.

A vector env owns ``num_envs`` sub-environments ("slots") and steps them
in lockstep. Observations come back stacked along a leading batch axis;
per-slot infos are merged into arrays with a boolean ``_key`` mask that
marks which slots reported ``key``::

    envs = SyncVectorEnv([lambda: make("CartPole-v1")] * 4)
    obs, infos = envs.reset(seed=0)          # slot i seeded with 0 + i
    obs, rewards, terms, truncs, infos = envs.step(np.array([0, 1, 0, 1]))

When a slot ends its episode, ``infos["final_observation"][i]`` and
``infos["final_info"][i]`` hold the terminal values and
``infos["_final_observation"][i]`` is ``True``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np

from vibe_gym.env.core import AutoresetMode, Env
from vibe_gym.env.spaces import Dict, Space, Tuple, batch_space
from vibe_gym.errors import (
    InvalidConfiguration,
    InvalidNumEnvs,
    VectorEnvActionCountMismatch,
    VectorEnvClosed,
    VectorEnvNeedsReset,
)

if TYPE_CHECKING:
    from vibe_gym.env.registration import EnvSpec

logger = logging.getLogger(__name__)


class VectorResetResult(NamedTuple):
    observations: Any
    infos: dict[str, Any]


class VectorStepResult(NamedTuple):
    observations: Any
    rewards: np.ndarray
    terminations: np.ndarray
    truncations: np.ndarray
    infos: dict[str, Any]


class SlotStep(NamedTuple):
    """One sub-environment's share of a batched step."""

    index: int
    obs: Any
    reward: float
    terminated: bool
    truncated: bool
    info: dict[str, Any]
    final_obs: Any = None
    final_info: dict[str, Any] | None = None

    @property
    def ended(self) -> bool:
        return self.terminated or self.truncated


def step_slot(
    env: Env,
    action: Any,
    mode: AutoresetMode,
    needs_reset: bool,
    index: int,
) -> tuple[SlotStep, bool]:
    """Step one slot with autoreset. Returns the result and the new
    ``needs_reset`` flag.

    Shared by the serial and threaded executors so both follow the same
    reset timing.
    """
    if needs_reset:
        if mode is AutoresetMode.DISABLED:
            raise VectorEnvNeedsReset(index)
        if mode is AutoresetMode.NEXT_STEP:
            env.reset()

    obs, reward, terminated, truncated, info = env.step(action)
    if not (terminated or truncated):
        return SlotStep(index, obs, float(reward), bool(terminated), bool(truncated), info), False

    if mode is AutoresetMode.SAME_STEP:
        reset_obs, reset_info = env.reset()
        slot = SlotStep(
            index, reset_obs, float(reward), bool(terminated), bool(truncated),
            reset_info, final_obs=obs, final_info=info,
        )
        return slot, False

    slot = SlotStep(
        index, obs, float(reward), bool(terminated), bool(truncated),
        info, final_obs=obs, final_info=info,
    )
    return slot, True


def resolve_seeds(seed: int | Sequence[int | None] | None, num_envs: int) -> list[int | None]:
    """``seed`` -> ``[seed, seed + 1, ...]``; a list is used as given."""
    if seed is None:
        return [None] * num_envs
    if isinstance(seed, (int, np.integer)):
        return [int(seed) + i for i in range(num_envs)]
    seeds = list(seed)
    if len(seeds) != num_envs:
        raise InvalidConfiguration(
            f"Got {len(seeds)} seeds for {num_envs} sub-environments"
        )
    return seeds


# ---------------------------------------------------------------------------
# Info merging
# ---------------------------------------------------------------------------


def _init_info_array(value: Any, num_envs: int) -> np.ndarray:
    if isinstance(value, (bool, np.bool_)):
        return np.zeros(num_envs, dtype=np.bool_)
    if isinstance(value, (int, np.integer)):
        return np.zeros(num_envs, dtype=np.int64)
    if isinstance(value, (float, np.floating)):
        return np.zeros(num_envs, dtype=np.float64)
    return np.full(num_envs, None, dtype=object)


def add_info(infos: dict[str, Any], info: dict[str, Any], index: int, num_envs: int) -> dict[str, Any]:
    """Merge slot ``index``'s ``info`` into the batched ``infos`` dict."""
    for key, value in info.items():
        if isinstance(value, dict):
            infos[key] = add_info(infos.get(key, {}), value, index, num_envs)
        else:
            if key not in infos:
                infos[key] = _init_info_array(value, num_envs)
            try:
                infos[key][index] = value
            except (TypeError, ValueError):
                # A slot reported a value the typed array cannot hold.
                infos[key] = infos[key].astype(object)
                infos[key][index] = value
        mask_key = f"_{key}"
        if mask_key not in infos:
            infos[mask_key] = np.zeros(num_envs, dtype=np.bool_)
        infos[mask_key][index] = True
    return infos


def concatenate(space: Space, items: Sequence[Any], out: np.ndarray | None = None) -> Any:
    """Stack per-slot observations of ``space`` along a new leading axis."""
    if isinstance(space, Tuple):
        return tuple(
            concatenate(sub, [item[i] for item in items]) for i, sub in enumerate(space.spaces)
        )
    if isinstance(space, Dict):
        return {
            key: concatenate(sub, [item[key] for item in items])
            for key, sub in space.spaces.items()
        }
    arrays = [np.asarray(item, dtype=space.dtype) for item in items]
    if out is None:
        return np.stack(arrays)
    return np.stack(arrays, out=out)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class VectorEnv(ABC):
    """Base class for vectorized executors."""

    metadata: dict[str, Any] = {}
    spec: EnvSpec | None = None
    closed: bool = False

    def __init__(
        self,
        num_envs: int,
        single_observation_space: Space,
        single_action_space: Space,
        autoreset_mode: AutoresetMode,
    ) -> None:
        if num_envs <= 0:
            raise InvalidNumEnvs(num_envs)
        self.num_envs = num_envs
        self.single_observation_space = single_observation_space
        self.single_action_space = single_action_space
        self.observation_space = batch_space(single_observation_space, num_envs)
        self.action_space = batch_space(single_action_space, num_envs)
        self.autoreset_mode = AutoresetMode(autoreset_mode)
        self.metadata = {"autoreset_mode": self.autoreset_mode}

    @abstractmethod
    def reset(
        self,
        *,
        seed: int | Sequence[int | None] | None = None,
        options: dict[str, Any] | None = None,
    ) -> VectorResetResult:
        ...

    @abstractmethod
    def step(self, actions: Any) -> VectorStepResult:
        ...

    def close(self) -> None:
        """Release the sub-environments. Safe to call twice."""
        if self.closed:
            return
        try:
            self.close_extras()
        finally:
            self.closed = True

    def close_extras(self) -> None:
        pass

    # ---- helpers for subclasses ----

    def _check_open(self) -> None:
        if self.closed:
            raise VectorEnvClosed()

    def _unbatch_actions(self, actions: Any) -> list[Any]:
        if isinstance(self.single_action_space, Dict):
            keys = list(actions)
            count = len(actions[keys[0]]) if keys else 0
            if count != self.num_envs:
                raise VectorEnvActionCountMismatch(self.num_envs, count)
            return [{k: actions[k][i] for k in keys} for i in range(count)]
        if len(actions) != self.num_envs:
            raise VectorEnvActionCountMismatch(self.num_envs, len(actions))
        return [actions[i] for i in range(self.num_envs)]

    def _collate_reset(self, results: Sequence[tuple[Any, dict[str, Any]]]) -> VectorResetResult:
        infos: dict[str, Any] = {}
        for i, (_, info) in enumerate(results):
            infos = add_info(infos, info, i, self.num_envs)
        obs = concatenate(self.single_observation_space, [r[0] for r in results])
        return VectorResetResult(obs, infos)

    def _collate_step(self, slots: Sequence[SlotStep], out: np.ndarray | None = None) -> VectorStepResult:
        infos: dict[str, Any] = {}
        for slot in slots:
            infos = add_info(infos, slot.info, slot.index, self.num_envs)
            if slot.ended:
                if "final_observation" not in infos:
                    infos["final_observation"] = np.full(self.num_envs, None, dtype=object)
                    infos["final_info"] = np.full(self.num_envs, None, dtype=object)
                    infos["_final_observation"] = np.zeros(self.num_envs, dtype=np.bool_)
                    infos["_final_info"] = np.zeros(self.num_envs, dtype=np.bool_)
                infos["final_observation"][slot.index] = slot.final_obs
                infos["final_info"][slot.index] = slot.final_info
                infos["_final_observation"][slot.index] = True
                infos["_final_info"][slot.index] = True

        return VectorStepResult(
            concatenate(self.single_observation_space, [s.obs for s in slots], out=out),
            np.array([s.reward for s in slots], dtype=np.float64),
            np.array([s.terminated for s in slots], dtype=np.bool_),
            np.array([s.truncated for s in slots], dtype=np.bool_),
            infos,
        )

    @property
    def unwrapped(self) -> VectorEnv:
        return self

    def __enter__(self) -> VectorEnv:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        env_id = self.spec.id if self.spec is not None else None
        return f"{type(self).__name__}({env_id}, num_envs={self.num_envs})"
