"""DQN-specific state container."""

from __future__ import annotations

from typing import NamedTuple

import chex

from vibe_gym.types import OptState, Params


class DQNState(NamedTuple):
    """DQN agent state.

    Fields:
        params: Online Q-network (Equinox model).
        target_params: Target Q-network used for TD targets.
        opt_state: Optax optimizer state.
        step: Scalar gradient-step counter.
        rng: PRNG key for exploration.
    """

    params: Params
    target_params: Params
    opt_state: OptState
    step: chex.Array
    rng: chex.PRNGKey
