"""Environment registry and ``make()``.

Quick start::

    from vibe_gym.env import make

    env = make("CartPole-v1")
    obs, info = env.reset(seed=0)
    obs, reward, terminated, truncated, info = env.step(1)

Custom environments are registered with an entry point, either a
callable or a ``"module.path:ClassName"`` string::

    register("MyTask-v0", entry_point="my_pkg.tasks:MyTask", max_episode_steps=200)
"""

from __future__ import annotations

import dataclasses
import difflib
import importlib
import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from vibe_gym.env.core import Env
from vibe_gym.env.wrappers import (
    OrderEnforcing,
    PassiveEnvChecker,
    RecordEpisodeStatistics,
    TimeLimit,
)
from vibe_gym.errors import (
    InvalidConfiguration,
    MisconfiguredRegistration,
    UnregisteredEnvironment,
)

logger = logging.getLogger(__name__)

EntryPoint = str | Callable[..., Any]

_ENV_ID_RE = re.compile(
    r"^(?:(?P<namespace>[\w:.-]+)/)?(?P<name>[\w:.-]+?)(?:-v(?P<version>\d+))?$"
)


def parse_env_id(env_id: str) -> tuple[str | None, str, int | None]:
    """Split ``[namespace/]name[-v<version>]`` into its parts."""
    match = _ENV_ID_RE.fullmatch(env_id)
    if match is None:
        raise InvalidConfiguration(
            f"Malformed environment id {env_id!r}; expected '[namespace/]name[-v<version>]'"
        )
    version = match.group("version")
    return match.group("namespace"), match.group("name"), None if version is None else int(version)


def load_entry_point(entry_point: str) -> Callable[..., Any]:
    """Import ``"module.path:attr"``."""
    module_name, sep, attr = entry_point.partition(":")
    if not sep or not attr:
        raise InvalidConfiguration(
            f"Entry point {entry_point!r} must have the form 'module:attr'"
        )
    module = importlib.import_module(module_name)
    return getattr(module, attr)


@dataclass(frozen=True)
class WrapperSpec:
    """A wrapper applied after the default chain."""

    name: str
    entry_point: EntryPoint
    kwargs: dict[str, Any] = field(default_factory=dict)

    def resolve(self) -> Callable[..., Any]:
        if isinstance(self.entry_point, str):
            return load_entry_point(self.entry_point)
        return self.entry_point


@dataclass
class EnvSpec:
    """Everything needed to construct an environment by id."""

    id: str
    entry_point: EntryPoint | None = None
    reward_threshold: float | None = None
    nondeterministic: bool = False
    max_episode_steps: int | None = None
    order_enforce: bool = True
    disable_env_checker: bool = False
    kwargs: dict[str, Any] = field(default_factory=dict)
    additional_wrappers: tuple[WrapperSpec, ...] = ()

    namespace: str | None = field(init=False)
    name: str = field(init=False)
    version: int | None = field(init=False)

    def __post_init__(self) -> None:
        self.namespace, self.name, self.version = parse_env_id(self.id)
        self.additional_wrappers = tuple(self.additional_wrappers)

    def copy(self, **changes: Any) -> EnvSpec:
        return dataclasses.replace(self, **changes)

    def make(self, **kwargs: Any) -> Env:
        return make(self, **kwargs)

    # ---- JSON ----

    def to_json(self) -> str:
        if self.entry_point is not None and not isinstance(self.entry_point, str):
            raise InvalidConfiguration(
                f"Cannot serialise {self.id!r}: callable entry points are not JSON serialisable"
            )
        wrappers = []
        for w in self.additional_wrappers:
            if not isinstance(w.entry_point, str):
                raise InvalidConfiguration(
                    f"Cannot serialise wrapper {w.name!r}: callable entry points are not JSON serialisable"
                )
            wrappers.append({"name": w.name, "entry_point": w.entry_point, "kwargs": w.kwargs})
        data = {
            "id": self.id,
            "entry_point": self.entry_point,
            "reward_threshold": self.reward_threshold,
            "nondeterministic": self.nondeterministic,
            "max_episode_steps": self.max_episode_steps,
            "order_enforce": self.order_enforce,
            "disable_env_checker": self.disable_env_checker,
            "kwargs": self.kwargs,
            "additional_wrappers": wrappers,
        }
        try:
            return json.dumps(data)
        except TypeError as e:
            raise InvalidConfiguration(f"Cannot serialise {self.id!r}: {e}") from e

    @classmethod
    def from_json(cls, text: str) -> EnvSpec:
        data = json.loads(text)
        wrappers = tuple(WrapperSpec(**w) for w in data.pop("additional_wrappers", []))
        return cls(**data, additional_wrappers=wrappers)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _build(
    env_spec: EnvSpec,
    *,
    max_episode_steps: int | None = None,
    disable_env_checker: bool | None = None,
    disable_render_order_enforcing: bool = False,
    record_episode_statistics: bool = True,
    record_buffer_length: int = 100,
    record_stats_key: str = "episode",
    render_mode: str | None = None,
    **kwargs: Any,
) -> Env:
    if record_episode_statistics and record_buffer_length <= 0:
        raise InvalidConfiguration(
            f"record_buffer_length must be positive, got {record_buffer_length}"
        )
    if env_spec.entry_point is None:
        raise MisconfiguredRegistration(env_spec.id)

    creator = (
        load_entry_point(env_spec.entry_point)
        if isinstance(env_spec.entry_point, str)
        else env_spec.entry_point
    )
    env_kwargs = {**env_spec.kwargs, **kwargs}
    if render_mode is not None:
        env = creator(render_mode=render_mode, **env_kwargs)
    else:
        env = creator(**env_kwargs)
    if not isinstance(env, Env):
        raise MisconfiguredRegistration(env_spec.id)

    steps = max_episode_steps if max_episode_steps is not None else env_spec.max_episode_steps
    disable_checker = (
        disable_env_checker if disable_env_checker is not None else env_spec.disable_env_checker
    )
    env.unwrapped.spec = env_spec.copy(
        kwargs=env_kwargs,
        max_episode_steps=steps,
        disable_env_checker=disable_checker,
    )

    # Built inside out.
    if record_episode_statistics:
        env = RecordEpisodeStatistics(env, record_buffer_length, record_stats_key)
    if steps is not None:
        env = TimeLimit(env, steps)
    if env_spec.order_enforce:
        env = OrderEnforcing(env, disable_render_order_enforcing)
    if not disable_checker:
        env = PassiveEnvChecker(env)

    for wrapper_spec in env_spec.additional_wrappers:
        env = wrapper_spec.resolve()(env, **wrapper_spec.kwargs)
    return env


class Registry:
    """Maps environment ids to :class:`EnvSpec`."""

    def __init__(self) -> None:
        self._specs: dict[str, EnvSpec] = {}
        self._defaults_registered = False

    def register(
        self,
        id: str,
        entry_point: EntryPoint | None = None,
        *,
        max_episode_steps: int | None = None,
        reward_threshold: float | None = None,
        nondeterministic: bool = False,
        order_enforce: bool = True,
        disable_env_checker: bool = False,
        additional_wrappers: tuple[WrapperSpec, ...] = (),
        **kwargs: Any,
    ) -> EnvSpec:
        env_spec = EnvSpec(
            id=id,
            entry_point=entry_point,
            reward_threshold=reward_threshold,
            nondeterministic=nondeterministic,
            max_episode_steps=max_episode_steps,
            order_enforce=order_enforce,
            disable_env_checker=disable_env_checker,
            kwargs=kwargs,
            additional_wrappers=additional_wrappers,
        )
        if id in self._specs:
            logger.warning("Overriding environment %s already in registry", id)
        self._specs[id] = env_spec
        return env_spec

    def spec(self, id: str) -> EnvSpec:
        try:
            return self._specs[id]
        except KeyError:
            suggestions = difflib.get_close_matches(id, list(self._specs), n=3)
            raise UnregisteredEnvironment(id, suggestions) from None

    def make(self, id: str | EnvSpec, **kwargs: Any) -> Env:
        env_spec = id if isinstance(id, EnvSpec) else self.spec(id)
        return _build(env_spec, **kwargs)

    def ids(self) -> list[str]:
        return sorted(self._specs)

    def __contains__(self, id: object) -> bool:
        return id in self._specs

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())

    def __len__(self) -> int:
        return len(self._specs)

    def register_defaults(self) -> None:
        """Register the bundled environments once."""
        if self._defaults_registered:
            return
        self._defaults_registered = True
        self.register(
            "CartPole-v1",
            "vibe_gym.env.cart_pole:CartPoleEnv",
            max_episode_steps=500,
            reward_threshold=475.0,
        )
        self.register(
            "MountainCar-v0",
            "vibe_gym.env.mountain_car:MountainCarEnv",
            max_episode_steps=200,
            reward_threshold=-110.0,
        )
        self.register(
            "Pendulum-v1",
            "vibe_gym.env.pendulum:PendulumEnv",
            max_episode_steps=200,
        )
        self.register(
            "GridWorld-v0",
            "vibe_gym.env.grid_world:GridWorldEnv",
            max_episode_steps=100,
        )
        self.register(
            "FrozenLake-v1",
            "vibe_gym.env.frozen_lake:FrozenLakeEnv",
            max_episode_steps=100,
            reward_threshold=0.70,
            map_name="4x4",
        )
        self.register(
            "FrozenLake8x8-v1",
            "vibe_gym.env.frozen_lake:FrozenLakeEnv",
            max_episode_steps=200,
            reward_threshold=0.85,
            map_name="8x8",
        )


# ---- Default registry ----

_registry: Registry | None = None


def registry() -> Registry:
    """The process-wide registry, filled with the bundled envs on first use."""
    global _registry
    if _registry is None:
        _registry = Registry()
        _registry.register_defaults()
    return _registry


def register(id: str, entry_point: EntryPoint | None = None, **kwargs: Any) -> EnvSpec:
    return registry().register(id, entry_point, **kwargs)


def spec(id: str) -> EnvSpec:
    return registry().spec(id)


def make(id: str | EnvSpec, **kwargs: Any) -> Env:
    """Create a registered environment wrapped in the default chain.

    From the outside in: PassiveEnvChecker, OrderEnforcing, TimeLimit,
    RecordEpisodeStatistics, then the env; additional wrappers go outermost.
    The statistics sit below the time limit, so an episode cut by
    ``max_episode_steps`` gets no ``info["episode"]``. Pass
    ``record_episode_statistics=False`` and wrap the result yourself to
    record those too.

    Args:
        id: Registered id or an :class:`EnvSpec`.
        max_episode_steps: Overrides the spec's time limit.
        disable_env_checker: Overrides the spec's checker flag.
        disable_render_order_enforcing: Allow ``render()`` before ``reset()``.
        record_episode_statistics: Wrap in :class:`RecordEpisodeStatistics`.
        record_buffer_length: Episodes kept by the statistics queues.
        record_stats_key: Info key for episode statistics.
        render_mode: Passed to the constructor only when not ``None``.
        **kwargs: Constructor kwargs; win over the spec's kwargs.
    """
    return registry().make(id, **kwargs)
