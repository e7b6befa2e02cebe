from vibe_gym.algorithms.dqn.agent import DQNAgent, DQNMetrics
from vibe_gym.algorithms.dqn.algorithm import DQN
from vibe_gym.algorithms.dqn.config import DQNConfig
from vibe_gym.algorithms.dqn.network import QNetwork
from vibe_gym.algorithms.dqn.types import DQNState

__all__ = ["DQN", "DQNAgent", "DQNConfig", "DQNMetrics", "DQNState", "QNetwork"]
