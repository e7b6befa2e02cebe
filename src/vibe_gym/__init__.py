"""vibe_gym: environments, vectorization and off-policy RL with JAX."""

from vibe_gym.agent.base import Agent
from vibe_gym.algorithms.dqn import DQN, DQNConfig
from vibe_gym.algorithms.off_policy import TrainFrequency, TrainFrequencyUnit
from vibe_gym.algorithms.sac import SAC, SACConfig
from vibe_gym.algorithms.tabular import SARSA, QLearning, TabularAgent, TabularConfig
from vibe_gym.checkpoint import AlgorithmCheckpoint, AlgorithmKind, load_eqx, save_eqx
from vibe_gym.dataprotocol import ReplayBuffer
from vibe_gym.env import AutoresetMode, Env, make, register, spec
from vibe_gym.metrics import MetricsLogger, setup_logging
from vibe_gym.runner import evaluate_policy
from vibe_gym.schedule import linear_schedule
from vibe_gym.seeding import fold_in, make_rng, split_key, split_keys
from vibe_gym.types import Metrics, Transition
from vibe_gym.vector import AsyncVectorEnv, SyncVectorEnv, make_vec

__all__ = [
    "Agent",
    "AlgorithmCheckpoint",
    "AlgorithmKind",
    "AsyncVectorEnv",
    "AutoresetMode",
    "DQN",
    "DQNConfig",
    "Env",
    "Metrics",
    "MetricsLogger",
    "QLearning",
    "ReplayBuffer",
    "SAC",
    "SACConfig",
    "SARSA",
    "SyncVectorEnv",
    "TabularAgent",
    "TabularConfig",
    "TrainFrequency",
    "TrainFrequencyUnit",
    "Transition",
    "evaluate_policy",
    "fold_in",
    "linear_schedule",
    "load_eqx",
    "make",
    "make_rng",
    "make_vec",
    "register",
    "save_eqx",
    "setup_logging",
    "spec",
    "split_key",
    "split_keys",
]
