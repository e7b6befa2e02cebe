"""Train SAC on Pendulum."""

from vibe_gym import SAC, SACConfig, make, setup_logging
from vibe_gym.runner import evaluate_policy


def main() -> None:
    setup_logging()

    env = make("Pendulum-v1")
    config = SACConfig(learning_rate=1e-3, buffer_size=100_000, learning_starts=1_000)
    model = SAC(env, config, seed=0)
    model.learn(20_000, log_interval=10)
    model.save("runs/sac_pendulum/final", include_buffer=False)

    metrics = evaluate_policy(model, make("Pendulum-v1"), n_eval_episodes=5, seed=1)
    print(f"Training complete. Eval return {metrics.mean_return:.1f}")


if __name__ == "__main__":
    main()
