#!/usr/bin/env python3
"""Unified training script with preset selection.

Select a preset configuration and optionally override any field::

    python scripts/train.py cartpole_dqn
    python scripts/train.py cartpole_dqn --algo.learning_rate 1e-3
    python scripts/train.py frozenlake_sarsa --total_timesteps 500000
    python scripts/train.py pendulum_sac --help

The checkpoint lands in ``<output_dir>/<env_id>_<algo>/final`` and the
per-episode / per-update metrics in ``metrics.jsonl`` next to it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from vibe_gym.configs import TrainConfig, algo_name, build_model, cli
from vibe_gym.env import make
from vibe_gym.metrics import MetricsLogger, setup_logging
from vibe_gym.runner import MetricsCallback, evaluate_policy

logger = logging.getLogger("vibe_gym.scripts.train")


def main(config: TrainConfig) -> None:
    setup_logging()
    run_dir = Path(config.output_dir) / f"{config.env_id}_{algo_name(config)}"
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Run directory: %s", run_dir)

    env = make(config.env_id)
    model = build_model(config, env)

    with MetricsLogger(run_dir / "metrics.jsonl") as sink:
        model.learn(
            config.total_timesteps,
            callback=MetricsCallback(sink),
            log_interval=config.log_interval,
        )
        model.save(run_dir / "final")

        eval_env = make(config.env_id)
        result = evaluate_policy(
            model, eval_env, n_eval_episodes=config.n_eval_episodes, seed=config.seed + 1
        )
        sink.write(
            {
                "step": model.num_timesteps,
                "eval_mean_return": result.mean_return,
                "eval_std_return": result.std_return,
                "eval_mean_length": result.mean_length,
            }
        )
        eval_env.close()
    env.close()

    logger.info(
        "Training complete | episodes=%d | eval_return=%.2f +/- %.2f",
        model.num_episodes,
        result.mean_return,
        result.std_return,
    )


if __name__ == "__main__":
    main(cli())
