from vibe_gym.algorithms.tabular.agent import SARSA, QLearning, TabularAgent, UpdateRule
from vibe_gym.algorithms.tabular.config import TabularConfig

__all__ = ["QLearning", "SARSA", "TabularAgent", "TabularConfig", "UpdateRule"]
