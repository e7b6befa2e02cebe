"""Train DQN on CartPole and evaluate the greedy policy."""

from vibe_gym import DQN, DQNConfig, TrainFrequency, make, setup_logging
from vibe_gym.runner import StopTrainingOnRewardThreshold, evaluate_policy
from vibe_gym.schedule import LinearSchedule


def main() -> None:
    setup_logging()

    env = make("CartPole-v1")
    config = DQNConfig(
        buffer_size=100_000,
        learning_starts=1_000,
        batch_size=64,
        train_freq=TrainFrequency(256),
        gradient_steps=128,
        target_update_interval=10,
        exploration_fraction=0.16,
        exploration_final_eps=0.04,
        hidden_sizes=(256, 256),
    )
    model = DQN(env, config, learning_rate=LinearSchedule(2.3e-3, 1e-4), seed=42)
    model.learn(
        50_000,
        callback=StopTrainingOnRewardThreshold(475.0, window=20),
        log_interval=20,
    )
    model.save("runs/dqn_cartpole/final")

    metrics = evaluate_policy(model, make("CartPole-v1"), n_eval_episodes=10, seed=7)
    print(f"Training complete. Eval return {metrics.mean_return:.1f} +/- {metrics.std_return:.1f}")


if __name__ == "__main__":
    main()
