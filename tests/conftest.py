"""Root test configuration.

Pins JAX to the CPU backend *before* JAX is imported anywhere so the
suite behaves the same on machines with and without accelerators. This
must live in conftest.py (loaded by pytest before any test module)
because the platform is fixed once JAX's backend initialises.

Also provides ``CountdownEnv``, a tiny deterministic environment used
wherever a test needs exact episode lengths and returns.
"""

import os

os.environ.setdefault("JAX_PLATFORMS", "cpu")

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from vibe_gym.env.core import Env, ResetResult, StepResult  # noqa: E402
from vibe_gym.env.spaces import Box, Discrete  # noqa: E402
from vibe_gym.errors import ResetNeeded  # noqa: E402


class CountdownEnv(Env):
    """Observation is the step count; every step pays 1.0 and the episode
    terminates after ``episode_length`` steps."""

    metadata = {"render_modes": ["ansi"]}

    def __init__(self, episode_length: int = 3, render_mode: str | None = None) -> None:
        self.episode_length = episode_length
        self.render_mode = render_mode
        self.observation_space = Box(0.0, 100.0, shape=(1,))
        self.action_space = Discrete(2)
        self.count: int | None = None
        self.reset_seeds: list[int | None] = []
        self.closed = False

    def reset(self, *, seed=None, options=None) -> ResetResult:
        super().reset(seed=seed)
        self.reset_seeds.append(seed)
        self.count = 0
        return ResetResult(np.array([0.0], dtype=np.float32), {"start": True})

    def step(self, action) -> StepResult:
        if self.count is None:
            raise ResetNeeded("CountdownEnv.step() before reset()")
        self.count += 1
        obs = np.array([float(self.count)], dtype=np.float32)
        return StepResult(obs, 1.0, self.count >= self.episode_length, False, {"count": self.count})

    def render(self):
        return f"count={self.count}" if self.render_mode == "ansi" else None

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def countdown_env():
    """Factory for ``CountdownEnv`` instances."""
    return CountdownEnv
