"""Tabular TD hyperparameters."""

from __future__ import annotations

from dataclasses import dataclass

from vibe_gym.errors import InvalidConfiguration


@dataclass(frozen=True)
class TabularConfig:
    """Q-learning / SARSA hyperparameters.

    ``epsilon`` decays multiplicatively by ``epsilon_decay`` at the end of
    every episode and never drops below ``min_epsilon``.
    """

    learning_rate: float = 0.1
    gamma: float = 0.99
    epsilon: float = 1.0
    epsilon_decay: float = 0.999
    min_epsilon: float = 0.05

    def __post_init__(self) -> None:
        if not 0.0 < self.learning_rate <= 1.0:
            raise InvalidConfiguration(f"learning_rate must be in (0, 1], got {self.learning_rate}")
        if not 0.0 <= self.gamma <= 1.0:
            raise InvalidConfiguration(f"gamma must be in [0, 1], got {self.gamma}")
        for name in ("epsilon", "epsilon_decay", "min_epsilon"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidConfiguration(f"{name} must be in [0, 1], got {value}")
