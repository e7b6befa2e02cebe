"""Random rollouts on four CartPoles stepping in worker threads."""

import jax
import numpy as np

from vibe_gym import AutoresetMode, make_vec


def main() -> None:
    envs = make_vec(
        "CartPole-v1",
        num_envs=4,
        vectorization_mode="async",
        autoreset_mode=AutoresetMode.SAME_STEP,
    )
    obs, _ = envs.reset(seed=0)
    key = jax.random.PRNGKey(0)
    finished = 0
    with envs:
        for _ in range(1_000):
            key, sub = jax.random.split(key)
            actions = envs.action_space.sample(sub)
            obs, rewards, terminated, truncated, info = envs.step(actions)
            finished += int(np.sum(terminated | truncated))
    print(f"Finished {finished} episodes")


if __name__ == "__main__":
    main()
