"""JAX PRNG key management utilities.

All environment randomness flows through explicit ``jax.random`` keys.
``reset(seed=...)`` maps an integer seed to a key with :func:`make_rng`,
so identical seeds give identical trajectories.

Usage::

    from vibe_gym.seeding import make_rng, split_key, split_keys

    rng = make_rng(42)
    rng, agent_key, env_key = split_keys(rng, n=2)
"""

from __future__ import annotations

import jax
import numpy as np

from vibe_gym.errors import InvalidConfiguration

_MAX_SEED = 2**32 - 1


def make_rng(seed: int | None = None) -> jax.Array:
    """Create a JAX PRNG key from an integer seed.

    ``None`` draws a fresh seed from OS entropy.
    """
    if seed is None:
        seed = random_seed()
    if not isinstance(seed, (int, np.integer)) or seed < 0:
        raise InvalidConfiguration(f"Seed must be a non-negative int, got {seed!r}")
    return jax.random.PRNGKey(int(seed) & _MAX_SEED)


def random_seed() -> int:
    """Draw a 32-bit seed from OS entropy."""
    return int(np.random.SeedSequence().generate_state(1)[0])


def split_key(rng: jax.Array) -> tuple[jax.Array, jax.Array]:
    """Split *rng* into two keys: ``(new_rng, subkey)``."""
    return tuple(jax.random.split(rng))  # type: ignore[return-value]


def split_keys(rng: jax.Array, n: int) -> tuple[jax.Array, ...]:
    """Split *rng* into ``n + 1`` keys.

    Returns ``(new_rng, key_1, key_2, ..., key_n)``.
    """
    keys = jax.random.split(rng, n + 1)
    return tuple(keys)  # type: ignore[return-value]


def fold_in(rng: jax.Array, data: int) -> jax.Array:
    """Deterministically derive a new key by folding *data* into *rng*."""
    return jax.random.fold_in(rng, data)


def np_generator(seed: int | None = None) -> np.random.Generator:
    """Numpy generator for host-side sampling (replay buffers, tabular agents)."""
    return np.random.default_rng(seed)
