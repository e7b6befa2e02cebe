from vibe_gym.algorithms.sac.agent import SACAgent, SACMetrics
from vibe_gym.algorithms.sac.algorithm import SAC
from vibe_gym.algorithms.sac.config import SACConfig
from vibe_gym.algorithms.sac.network import GaussianActor, QNetwork, TwinQNetwork
from vibe_gym.algorithms.sac.types import SACState

__all__ = [
    "SAC",
    "SACAgent",
    "SACConfig",
    "SACMetrics",
    "SACState",
    "GaussianActor",
    "QNetwork",
    "TwinQNetwork",
]
