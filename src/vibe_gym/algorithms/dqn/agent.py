"""Pure-functional DQN agent.

All methods are static pure functions; state is threaded explicitly
through ``DQNState``. Exploration rate, learning rate and target-network
timing are decided on the host by :class:`vibe_gym.algorithms.dqn.DQN`
and passed in as traced arguments, so changing them never recompiles.

Usage::

    config = DQNConfig()
    state = DQNAgent.init(rng, obs_shape=(4,), n_actions=2, config=config)
    action, state = DQNAgent.act(state, obs, epsilon=0.1, explore=True)
    state, metrics = DQNAgent.update(state, batch, config=config, learning_rate=1e-4)
    state = DQNAgent.sync_target(state, tau=1.0)
"""

from __future__ import annotations

import math
from functools import partial
from typing import NamedTuple

import chex
import equinox as eqx
import jax
import jax.numpy as jnp
import optax

from vibe_gym.algorithms.dqn.config import DQNConfig
from vibe_gym.algorithms.dqn.network import QNetwork
from vibe_gym.algorithms.dqn.types import DQNState
from vibe_gym.algorithms.off_policy import with_learning_rate
from vibe_gym.types import Transition


class DQNMetrics(NamedTuple):
    loss: chex.Array
    td_error: chex.Array
    q_mean: chex.Array


class DQNAgent:
    """Namespace for DQN pure functions.

    Not instantiated; all methods are static.
    Satisfies the ``Agent`` protocol.
    """

    @staticmethod
    def init(
        rng: chex.PRNGKey,
        obs_shape: tuple[int, ...],
        n_actions: int,
        config: DQNConfig,
    ) -> DQNState:
        """Create initial DQN state. The target starts as a copy of the online net."""
        obs_dim = math.prod(obs_shape)
        k_net, k_state = jax.random.split(rng)

        q_net = QNetwork(obs_dim, n_actions, config.hidden_sizes, key=k_net)
        target_net = QNetwork(obs_dim, n_actions, config.hidden_sizes, key=k_net)

        optimizer = config.make_optimizer()
        opt_state = optimizer.init(eqx.filter(q_net, eqx.is_array))

        return DQNState(
            params=q_net,
            target_params=target_net,
            opt_state=opt_state,
            step=jnp.zeros((), dtype=jnp.int32),
            rng=k_state,
        )

    @staticmethod
    @partial(jax.jit, static_argnames=("explore",))
    def act(
        state: DQNState,
        obs: chex.Array,
        *,
        epsilon: float | chex.Array = 0.0,
        explore: bool = True,
    ) -> tuple[chex.Array, DQNState]:
        """Epsilon-greedy action for a single flat observation.

        Args:
            state: Current DQN state.
            obs: Flat observation, shape ``(obs_dim,)``.
            epsilon: Probability of a uniformly random action.
            explore: If False, act greedily regardless of ``epsilon``.

        Returns:
            (action, new_state); action is a scalar int32 index.
        """
        rng, key_eps, key_rand = jax.random.split(state.rng, 3)

        q_values = state.params(obs)
        greedy_action = jnp.argmax(q_values).astype(jnp.int32)
        if not explore:
            return greedy_action, state._replace(rng=rng)

        n_actions = q_values.shape[-1]
        random_action = jax.random.randint(key_rand, (), 0, n_actions, dtype=jnp.int32)
        use_random = jax.random.uniform(key_eps) < epsilon
        action = jnp.where(use_random, random_action, greedy_action)
        return action, state._replace(rng=rng)

    @staticmethod
    @partial(jax.jit, static_argnames=("config",))
    def update(
        state: DQNState,
        batch: Transition,
        *,
        config: DQNConfig,
        learning_rate: float | chex.Array,
    ) -> tuple[DQNState, DQNMetrics]:
        """One gradient step on a batch of transitions.

        TD target ``r + gamma * (1 - done) * max_a' Q_target(s', a')``,
        Huber loss, clipped Adam at ``learning_rate``.

        Args:
            state: Current DQN state.
            batch: Batched transitions; ``action`` holds zero-based indices.
            config: DQN hyperparameters (static).
            learning_rate: Learning rate for this step.

        Returns:
            (new_state, metrics) tuple.
        """
        optimizer = config.make_optimizer()
        opt_state = with_learning_rate(state.opt_state, learning_rate)

        next_q_all = jax.vmap(state.target_params)(batch.next_obs)
        next_q_max = jnp.max(next_q_all, axis=-1)
        targets = batch.reward + config.gamma * (1.0 - batch.done) * next_q_max
        targets = jax.lax.stop_gradient(targets)

        def loss_fn(params):
            q_all = jax.vmap(params)(batch.obs)
            q_values = q_all[jnp.arange(q_all.shape[0]), batch.action.astype(jnp.int32)]
            loss = jnp.mean(optax.huber_loss(q_values, targets))
            return loss, q_values

        (loss, q_values), grads = eqx.filter_value_and_grad(loss_fn, has_aux=True)(
            state.params
        )

        updates, new_opt_state = optimizer.update(
            grads, opt_state, eqx.filter(state.params, eqx.is_array)
        )
        new_params = eqx.apply_updates(state.params, updates)

        new_state = state._replace(
            params=new_params,
            opt_state=new_opt_state,
            step=state.step + 1,
        )
        metrics = DQNMetrics(
            loss=loss,
            td_error=jnp.mean(jnp.abs(q_values - targets)),
            q_mean=jnp.mean(q_values),
        )
        return new_state, metrics

    @staticmethod
    @jax.jit
    def sync_target(state: DQNState, tau: float | chex.Array) -> DQNState:
        """Polyak update ``target <- tau * online + (1 - tau) * target``.

        ``tau == 1`` copies the online network.
        """
        new_target = optax.incremental_update(
            eqx.filter(state.params, eqx.is_array),
            eqx.filter(state.target_params, eqx.is_array),
            step_size=tau,
        )
        new_target = eqx.combine(
            new_target,
            eqx.filter(state.target_params, lambda x: not eqx.is_array(x)),
        )
        return state._replace(target_params=new_target)
