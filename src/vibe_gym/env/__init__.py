"""Environments, spaces, wrappers and the registry.

Quick start::

    from vibe_gym.env import make

    env = make("CartPole-v1")
    obs, info = env.reset(seed=42)
    obs, reward, terminated, truncated, info = env.step(env.action_space.sample(env.next_key()))

The bundled tasks are pure-JAX kernels (``Environment`` subclasses)
adapted to the stateful ``Env`` contract by :class:`FunctionalEnv`.
"""

from vibe_gym.env.base import Environment, EnvParams, EnvState
from vibe_gym.env.cart_pole import CartPole, CartPoleEnv, CartPoleParams, CartPoleState
from vibe_gym.env.checker import check_env
from vibe_gym.env.core import AutoresetMode, Env, ResetResult, StepResult
from vibe_gym.env.frozen_lake import FrozenLake, FrozenLakeEnv, FrozenLakeParams
from vibe_gym.env.functional import FunctionalEnv
from vibe_gym.env.grid_world import GridWorld, GridWorldEnv, GridWorldParams, GridWorldState
from vibe_gym.env.mountain_car import MountainCar, MountainCarEnv, MountainCarParams
from vibe_gym.env.pendulum import Pendulum, PendulumEnv, PendulumParams, PendulumState
from vibe_gym.env.registration import (
    EnvSpec,
    Registry,
    WrapperSpec,
    make,
    parse_env_id,
    register,
    registry,
    spec,
)
from vibe_gym.env.spaces import (
    Box,
    Dict,
    Discrete,
    MultiBinary,
    MultiDiscrete,
    Space,
    Tuple,
    batch_space,
    flatdim,
    flatten,
    space_from_dict,
    space_to_dict,
)
from vibe_gym.env.wrappers import (
    ActionWrapper,
    AutoReset,
    ClipAction,
    NormalizeObservation,
    ObservationWrapper,
    OrderEnforcing,
    PassiveEnvChecker,
    RecordEpisodeStatistics,
    RescaleAction,
    RewardWrapper,
    RunningMeanStd,
    ScaleReward,
    TimeLimit,
    TransformAction,
    TransformObservation,
    TransformReward,
    Wrapper,
)

__all__ = [
    # Contract
    "Env",
    "ResetResult",
    "StepResult",
    "AutoresetMode",
    "FunctionalEnv",
    "check_env",
    # Kernels
    "Environment",
    "EnvState",
    "EnvParams",
    # Spaces
    "Space",
    "Box",
    "Discrete",
    "MultiBinary",
    "MultiDiscrete",
    "Tuple",
    "Dict",
    "batch_space",
    "flatdim",
    "flatten",
    "space_from_dict",
    "space_to_dict",
    # Environments
    "CartPole",
    "CartPoleEnv",
    "CartPoleParams",
    "CartPoleState",
    "FrozenLake",
    "FrozenLakeEnv",
    "FrozenLakeParams",
    "GridWorld",
    "GridWorldEnv",
    "GridWorldParams",
    "GridWorldState",
    "MountainCar",
    "MountainCarEnv",
    "MountainCarParams",
    "Pendulum",
    "PendulumEnv",
    "PendulumParams",
    "PendulumState",
    # Wrappers
    "Wrapper",
    "ObservationWrapper",
    "ActionWrapper",
    "RewardWrapper",
    "PassiveEnvChecker",
    "OrderEnforcing",
    "TimeLimit",
    "RecordEpisodeStatistics",
    "AutoReset",
    "TransformObservation",
    "TransformAction",
    "TransformReward",
    "ClipAction",
    "RescaleAction",
    "NormalizeObservation",
    "RunningMeanStd",
    "ScaleReward",
    # Registry
    "EnvSpec",
    "WrapperSpec",
    "Registry",
    "parse_env_id",
    "register",
    "registry",
    "spec",
    "make",
]
