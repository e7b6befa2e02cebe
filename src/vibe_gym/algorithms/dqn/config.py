"""DQN hyperparameters."""

from __future__ import annotations

from dataclasses import dataclass, field

from vibe_gym.algorithms.off_policy import OffPolicyConfig, TrainFrequency
from vibe_gym.errors import InvalidConfiguration


@dataclass(frozen=True)
class DQNConfig(OffPolicyConfig):
    """All DQN hyperparameters in one place.

    Frozen dataclass, safe to pass into jitted functions as a static
    argument (``jax.jit(..., static_argnames=("config",))``).
    """

    # Optimization
    learning_rate: float = 1e-4
    batch_size: int = 32
    max_grad_norm: float = 10.0

    # Replay / loop
    buffer_size: int = 1_000_000
    learning_starts: int = 100
    train_freq: TrainFrequency = field(default_factory=lambda: TrainFrequency(4))
    gradient_steps: int = 1

    # Target network
    tau: float = 1.0
    target_update_interval: int = 10_000

    # Exploration
    exploration_fraction: float = 0.1
    exploration_initial_eps: float = 1.0
    exploration_final_eps: float = 0.05

    # Network
    hidden_sizes: tuple[int, ...] = (64, 64)

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "hidden_sizes", tuple(self.hidden_sizes))
        if not 0.0 <= self.exploration_fraction <= 1.0:
            raise InvalidConfiguration(
                f"exploration_fraction must be in [0, 1], got {self.exploration_fraction}"
            )
