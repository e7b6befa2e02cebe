"""SAC networks implemented with Equinox.

Actor: obs -> (mean, log_std) of a diagonal Gaussian, squashed by tanh
in the agent. Critic: two independent Q-networks (obs, action) -> Q.
"""

from __future__ import annotations

import equinox as eqx
import jax
import jax.numpy as jnp


def _mlp(dims: list[int], key: jax.Array) -> list[eqx.nn.Linear]:
    keys = jax.random.split(key, len(dims) - 1)
    return [
        eqx.nn.Linear(d_in, d_out, key=k)
        for d_in, d_out, k in zip(dims[:-1], dims[1:], keys, strict=True)
    ]


class GaussianActor(eqx.Module):
    """Gaussian policy head over a ReLU trunk."""

    trunk: list
    mean_head: eqx.nn.Linear
    log_std_head: eqx.nn.Linear

    def __init__(
        self,
        obs_dim: int,
        action_dim: int,
        hidden_sizes: tuple[int, ...] = (256, 256),
        *,
        key: jax.Array,
    ) -> None:
        k_trunk, k_mean, k_std = jax.random.split(key, 3)
        dims = [obs_dim, *hidden_sizes]
        self.trunk = _mlp(dims, k_trunk)
        self.mean_head = eqx.nn.Linear(dims[-1], action_dim, key=k_mean)
        self.log_std_head = eqx.nn.Linear(dims[-1], action_dim, key=k_std)

    def __call__(self, obs: jax.Array) -> tuple[jax.Array, jax.Array]:
        """Returns (mean, log_std), each of shape ``(action_dim,)``."""
        x = obs
        for layer in self.trunk:
            x = jax.nn.relu(layer(x))
        return self.mean_head(x), self.log_std_head(x)


class QNetwork(eqx.Module):
    """Single critic: concat(obs, action) -> scalar Q-value."""

    layers: list

    def __init__(
        self,
        obs_dim: int,
        action_dim: int,
        hidden_sizes: tuple[int, ...] = (256, 256),
        *,
        key: jax.Array,
    ) -> None:
        self.layers = _mlp([obs_dim + action_dim, *hidden_sizes, 1], key)

    def __call__(self, obs: jax.Array, action: jax.Array) -> jax.Array:
        x = jnp.concatenate([obs, action], axis=-1)
        for layer in self.layers[:-1]:
            x = jax.nn.relu(layer(x))
        return self.layers[-1](x).squeeze(-1)


class TwinQNetwork(eqx.Module):
    """Two critics for clipped double-Q learning."""

    q1: QNetwork
    q2: QNetwork

    def __init__(
        self,
        obs_dim: int,
        action_dim: int,
        hidden_sizes: tuple[int, ...] = (256, 256),
        *,
        key: jax.Array,
    ) -> None:
        k1, k2 = jax.random.split(key)
        self.q1 = QNetwork(obs_dim, action_dim, hidden_sizes, key=k1)
        self.q2 = QNetwork(obs_dim, action_dim, hidden_sizes, key=k2)

    def __call__(self, obs: jax.Array, action: jax.Array) -> tuple[jax.Array, jax.Array]:
        return self.q1(obs, action), self.q2(obs, action)
