"""Preset configuration registry for vibe_gym experiments."""

from vibe_gym.configs.presets import PRESETS, TrainConfig, algo_name, build_model, cli

__all__ = [
    "PRESETS",
    "TrainConfig",
    "algo_name",
    "build_model",
    "cli",
]
