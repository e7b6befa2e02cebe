"""Tabular Q-learning on FrozenLake, then SARSA from the same settings."""

from vibe_gym import SARSA, QLearning, TabularConfig, make, setup_logging
from vibe_gym.runner import evaluate_policy


def main() -> None:
    setup_logging()
    config = TabularConfig(learning_rate=0.1, gamma=0.99, epsilon_decay=0.999)

    for cls in (QLearning, SARSA):
        agent = cls(make("FrozenLake-v1"), config, seed=0)
        agent.learn(200_000, log_interval=2_000)
        metrics = evaluate_policy(agent, make("FrozenLake-v1"), n_eval_episodes=200, seed=1)
        print(f"{cls.__name__}: success rate {metrics.mean_return:.2f}")


if __name__ == "__main__":
    main()
