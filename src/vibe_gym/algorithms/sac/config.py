"""SAC hyperparameters."""

from __future__ import annotations

from dataclasses import dataclass

from vibe_gym.algorithms.off_policy import OffPolicyConfig
from vibe_gym.errors import InvalidConfiguration


@dataclass(frozen=True)
class SACConfig(OffPolicyConfig):
    """All SAC hyperparameters in one place.

    ``ent_coef`` is either a fixed float or ``"auto"`` (learned, starting
    at 1.0) / ``"auto_<init>"`` (learned, starting at ``<init>``).
    ``target_entropy="auto"`` means ``-action_dim``.
    """

    # Optimization (one learning rate for actor, critic and temperature)
    learning_rate: float = 3e-4
    batch_size: int = 256
    max_grad_norm: float = 10.0

    # Replay / loop
    buffer_size: int = 1_000_000
    learning_starts: int = 100
    gradient_steps: int = 1

    # Target network (Polyak averaging)
    tau: float = 0.005
    target_update_interval: int = 1

    # Entropy
    ent_coef: str | float = "auto"
    target_entropy: str | float = "auto"

    # Network
    hidden_sizes: tuple[int, ...] = (256, 256)
    log_std_min: float = -20.0
    log_std_max: float = 2.0

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "hidden_sizes", tuple(self.hidden_sizes))
        if isinstance(self.ent_coef, str):
            if not self.ent_coef.startswith("auto"):
                raise InvalidConfiguration(f"Unknown ent_coef {self.ent_coef!r}")
            if self.init_alpha <= 0:
                raise InvalidConfiguration(f"Initial ent_coef must be positive, got {self.ent_coef!r}")
        elif self.ent_coef <= 0:
            raise InvalidConfiguration(f"ent_coef must be positive, got {self.ent_coef}")
        if isinstance(self.target_entropy, str) and self.target_entropy != "auto":
            raise InvalidConfiguration(f"Unknown target_entropy {self.target_entropy!r}")

    @property
    def autotune_alpha(self) -> bool:
        return isinstance(self.ent_coef, str)

    @property
    def init_alpha(self) -> float:
        if not isinstance(self.ent_coef, str):
            return float(self.ent_coef)
        _, _, value = self.ent_coef.partition("_")
        try:
            return float(value) if value else 1.0
        except ValueError as e:
            raise InvalidConfiguration(f"Cannot parse ent_coef {self.ent_coef!r}") from e

    def target_entropy_for(self, action_dim: int) -> float:
        if self.target_entropy == "auto":
            return -float(action_dim)
        return float(self.target_entropy)
