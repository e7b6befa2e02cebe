"""Callbacks and evaluation for the training loops.

The loops themselves live on the algorithms (``DQN.learn``,
``SAC.learn``, ``TabularAgent.learn``); this package holds the pieces
that observe them.
"""

from vibe_gym.runner.callbacks import (
    BaseCallback,
    CallbackList,
    CallbackLocals,
    CheckpointCallback,
    EvalCallback,
    FunctionCallback,
    MetricsCallback,
    StopTrainingOnMaxEpisodes,
    StopTrainingOnRewardThreshold,
)
from vibe_gym.runner.evaluator import EvalMetrics, evaluate_policy

__all__ = [
    # Callbacks
    "BaseCallback",
    "CallbackList",
    "CallbackLocals",
    "CheckpointCallback",
    "EvalCallback",
    "FunctionCallback",
    "MetricsCallback",
    "StopTrainingOnMaxEpisodes",
    "StopTrainingOnRewardThreshold",
    # Evaluation
    "EvalMetrics",
    "evaluate_policy",
]
