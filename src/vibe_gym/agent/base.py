"""Functional agent interface.

The neural models behind the off-policy algorithms are opaque to the
training loop. They live in namespaces of pure functions (``DQNAgent``,
``SACAgent``) that thread an explicit state NamedTuple:

    state = DQNAgent.init(rng, obs_shape=(4,), n_actions=2, config=config)
    action, state = DQNAgent.act(state, obs, epsilon=0.1, explore=True)
    state, metrics = DQNAgent.update(state, batch, config=config, learning_rate=1e-4)

The host-side drivers (``DQN``, ``SAC``) own the replay buffer, counters
and persistence, and call into these namespaces. Nothing here is
instantiated.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import chex

from vibe_gym.types import Transition


@runtime_checkable
class Agent(Protocol):
    """Structural typing protocol for a pure-functional agent.

    Any class exposing ``init``, ``act`` and ``update`` as static methods
    with compatible signatures satisfies it; no inheritance required.
    Extra keyword arguments (``config``, ``learning_rate``, ``epsilon``)
    are algorithm specific.
    """

    @staticmethod
    def init(
        rng: chex.PRNGKey,
        obs_shape: tuple[int, ...],
        n_actions: int,
        config: Any,
    ) -> Any:
        """Build the initial agent state (params, optimizer state, rng).

        ``n_actions`` is the number of discrete actions, or the action
        dimension for continuous control.
        """
        ...

    @staticmethod
    def act(
        state: Any,
        obs: chex.Array,
        **kwargs: Any,
    ) -> tuple[chex.Array, Any]:
        """Select an action for one observation.

        Returns ``(action, new_state)``; the new state carries the
        advanced PRNG key.
        """
        ...

    @staticmethod
    def update(
        state: Any,
        batch: Transition,
        **kwargs: Any,
    ) -> tuple[Any, Any]:
        """One gradient step on a batch with a leading batch dimension.

        Returns ``(new_state, metrics)``.
        """
        ...
