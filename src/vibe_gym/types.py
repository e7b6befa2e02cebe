"""Core type definitions for vibe_gym.

State containers are NamedTuples for zero-overhead JAX pytree compatibility.
"""

from __future__ import annotations

from typing import Any, NamedTuple, TypeAlias

import chex

# ---------------------------------------------------------------------------
# Scalar / array type aliases
# ---------------------------------------------------------------------------
Action: TypeAlias = chex.Array
Reward: TypeAlias = chex.Array
Done: TypeAlias = chex.Array
Info: TypeAlias = dict[str, Any]

# Generic pytree aliases
Params: TypeAlias = Any  # network parameter pytree
OptState: TypeAlias = Any  # optax optimizer state pytree


# ---------------------------------------------------------------------------
# Transition containers (immutable NamedTuples, auto-registered as pytrees)
# ---------------------------------------------------------------------------
class Transition(NamedTuple):
    """A batch of (s, a, r, s', done) experience tuples.

    All fields are JAX arrays with a leading batch dimension. ``done`` is
    the bootstrap mask: 1.0 where the value of ``next_obs`` must not be
    used.
    """

    obs: chex.Array
    action: chex.Array
    reward: chex.Array
    next_obs: chex.Array
    done: chex.Array


class Metrics(NamedTuple):
    """Training metrics returned from an update step."""

    loss: chex.Array
