"""Preset experiment configurations.

Each preset bundles an environment, an algorithm config and loop
settings. Use :func:`cli` in a training script to get a
:class:`TrainConfig` with ``overridable_config_cli``; the user picks a
preset and optionally overrides individual fields::

    python scripts/train.py cartpole_dqn --algo.learning_rate 5e-4
    python scripts/train.py pendulum_sac --total_timesteps 50000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Union

import tyro

from vibe_gym.algorithms.dqn import DQN, DQNConfig
from vibe_gym.algorithms.off_policy import TrainFrequency, TrainFrequencyUnit
from vibe_gym.algorithms.sac import SAC, SACConfig
from vibe_gym.algorithms.tabular import QLearning, SARSA, TabularAgent, TabularConfig
from vibe_gym.env.core import Env

# ---------------------------------------------------------------------------
# Unified training config
# ---------------------------------------------------------------------------

AlgoConfig = Annotated[
    Union[
        Annotated[DQNConfig, tyro.conf.subcommand("dqn", prefix_name=False)],
        Annotated[SACConfig, tyro.conf.subcommand("sac", prefix_name=False)],
        Annotated[TabularConfig, tyro.conf.subcommand("tabular", prefix_name=False)],
    ],
    tyro.conf.AvoidSubcommands,
]


@dataclass(frozen=True)
class TrainConfig:
    """Full training configuration: environment, algorithm and loop."""

    # Environment
    env_id: str = "CartPole-v1"

    # Algorithm (one of DQNConfig / SACConfig / TabularConfig)
    algo: AlgoConfig = field(default_factory=DQNConfig)

    # Tabular update rule, ignored by DQN/SAC
    tabular_rule: str = "q_learning"

    # Loop
    total_timesteps: int = 100_000
    seed: int = 0
    log_interval: int = 10

    # Evaluation after training
    n_eval_episodes: int = 10

    # Where the checkpoint and metrics.jsonl go
    output_dir: str = "runs"


def build_model(config: TrainConfig, env: Env) -> DQN | SAC | TabularAgent:
    """Instantiate the algorithm named by ``config.algo``."""
    algo = config.algo
    if isinstance(algo, DQNConfig):
        return DQN(env, algo, seed=config.seed)
    if isinstance(algo, SACConfig):
        return SAC(env, algo, seed=config.seed)
    if isinstance(algo, TabularConfig):
        cls = SARSA if config.tabular_rule == "sarsa" else QLearning
        return cls(env, algo, seed=config.seed)
    raise TypeError(f"Unknown algorithm config type: {type(algo)}")


def algo_name(config: TrainConfig) -> str:
    algo = config.algo
    if isinstance(algo, DQNConfig):
        return "dqn"
    if isinstance(algo, SACConfig):
        return "sac"
    if isinstance(algo, TabularConfig):
        return config.tabular_rule
    return type(algo).__name__.lower()


# ---------------------------------------------------------------------------
# Preset registry
# ---------------------------------------------------------------------------

PRESETS: dict[str, tuple[str, TrainConfig]] = {
    "cartpole_dqn": (
        "DQN on CartPole-v1",
        TrainConfig(
            env_id="CartPole-v1",
            algo=DQNConfig(
                learning_rate=2.3e-3,
                buffer_size=100_000,
                learning_starts=1_000,
                batch_size=64,
                train_freq=TrainFrequency(256),
                gradient_steps=128,
                target_update_interval=10,
                exploration_fraction=0.16,
                exploration_final_eps=0.04,
                hidden_sizes=(256, 256),
            ),
            total_timesteps=50_000,
        ),
    ),
    "mountaincar_dqn": (
        "DQN on MountainCar-v0",
        TrainConfig(
            env_id="MountainCar-v0",
            algo=DQNConfig(
                learning_rate=4e-3,
                buffer_size=10_000,
                learning_starts=1_000,
                batch_size=128,
                train_freq=TrainFrequency(16),
                gradient_steps=8,
                target_update_interval=600,
                exploration_fraction=0.2,
                exploration_final_eps=0.07,
                hidden_sizes=(256, 256),
            ),
            total_timesteps=120_000,
        ),
    ),
    "gridworld_dqn": (
        "DQN on GridWorld-v0 (tabular-scale discrete)",
        TrainConfig(
            env_id="GridWorld-v0",
            algo=DQNConfig(
                learning_rate=5e-4,
                buffer_size=50_000,
                learning_starts=500,
                target_update_interval=500,
                exploration_fraction=0.4,
            ),
            total_timesteps=50_000,
        ),
    ),
    "pendulum_sac": (
        "SAC on Pendulum-v1 (continuous control)",
        TrainConfig(
            env_id="Pendulum-v1",
            algo=SACConfig(
                learning_rate=1e-3,
                buffer_size=100_000,
                learning_starts=1_000,
            ),
            total_timesteps=20_000,
        ),
    ),
    "frozenlake_qlearning": (
        "Tabular Q-learning on FrozenLake-v1",
        TrainConfig(
            env_id="FrozenLake-v1",
            algo=TabularConfig(learning_rate=0.1, epsilon_decay=0.999),
            tabular_rule="q_learning",
            total_timesteps=200_000,
            log_interval=1_000,
            n_eval_episodes=100,
        ),
    ),
    "frozenlake_sarsa": (
        "Tabular SARSA on FrozenLake-v1",
        TrainConfig(
            env_id="FrozenLake-v1",
            algo=TabularConfig(learning_rate=0.1, epsilon_decay=0.999),
            tabular_rule="sarsa",
            total_timesteps=200_000,
            log_interval=1_000,
            n_eval_episodes=100,
        ),
    ),
    "frozenlake_episode_dqn": (
        "DQN on FrozenLake-v1, training once per episode",
        TrainConfig(
            env_id="FrozenLake-v1",
            algo=DQNConfig(
                learning_rate=1e-3,
                buffer_size=20_000,
                learning_starts=200,
                train_freq=TrainFrequency(1, TrainFrequencyUnit.EPISODE),
                gradient_steps=-1,
                target_update_interval=250,
                exploration_fraction=0.5,
            ),
            total_timesteps=40_000,
            log_interval=200,
        ),
    ),
}


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def cli(
    args: list[str] | None = None,
    **kwargs: object,
) -> TrainConfig:
    """Parse a preset + overrides from the command line.

    Usage::

        config = cli()                                   # parse sys.argv
        config = cli(["cartpole_dqn", "--seed", "3"])    # explicit args
    """
    return tyro.extras.overridable_config_cli(
        PRESETS,
        args=args,
        use_underscores=True,
        **kwargs,  # type: ignore[arg-type]
    )
