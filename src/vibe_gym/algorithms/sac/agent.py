"""Pure-functional SAC (Soft Actor-Critic) agent.

All methods are static pure functions; state is threaded explicitly
through ``SACState``. Actions live in ``[-1, 1]``; rescaling to the
environment's bounds is the caller's job.

Implements:
  - Reparameterized Gaussian policy with tanh squashing
  - Clipped double-Q learning (twin Q-networks)
  - Automatic temperature (alpha) tuning (optional)

Soft target updates are a separate call (``sync_target``) so the host
can space them by ``target_update_interval``.

Usage::

    config = SACConfig()
    state = SACAgent.init(rng, obs_shape=(3,), n_actions=1, config=config)
    action, state = SACAgent.act(state, obs, config=config, explore=True)
    state, metrics = SACAgent.update(state, batch, config=config, learning_rate=3e-4)
    state = SACAgent.sync_target(state, tau=config.tau)
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

from vibe_gym.algorithms.off_policy import with_learning_rate
from vibe_gym.algorithms.sac.config import SACConfig
from vibe_gym.algorithms.sac.network import GaussianActor, TwinQNetwork
from vibe_gym.algorithms.sac.types import SACState
from vibe_gym.types import Transition

# Numerical stability constant for log computations
_LOG_EPS = 1e-6


class SACMetrics(NamedTuple):
    actor_loss: chex.Array
    critic_loss: chex.Array
    alpha_loss: chex.Array
    alpha: chex.Array
    entropy: chex.Array
    q_mean: chex.Array


def _sample_action(
    actor: GaussianActor,
    obs: jax.Array,
    key: chex.PRNGKey,
    config: SACConfig,
) -> tuple[jax.Array, jax.Array]:
    """Reparameterized sample from the squashed Gaussian.

    Returns:
        (action, log_prob) with action in ``[-1, 1]`` and the log-prob
        corrected for the tanh squashing.
    """
    mean, log_std = actor(obs)
    log_std = jnp.clip(log_std, config.log_std_min, config.log_std_max)
    std = jnp.exp(log_std)

    eps = jax.random.normal(key, shape=mean.shape)
    z = mean + std * eps
    action = jnp.tanh(z)

    # log pi(a|s) = log N(z) - sum log(1 - tanh(z)^2)
    log_prob = jnp.sum(-0.5 * (jnp.log(2 * jnp.pi) + 2 * log_std + eps**2), axis=-1)
    log_prob = log_prob - jnp.sum(jnp.log(1 - action**2 + _LOG_EPS), axis=-1)
    return action, log_prob


class SACAgent:
    """Namespace for SAC pure functions.

    Not instantiated; all methods are static.
    """

    @staticmethod
    def init(
        rng: chex.PRNGKey,
        obs_shape: tuple[int, ...],
        n_actions: int,
        config: SACConfig,
    ) -> SACState:
        """Create initial SAC state; ``n_actions`` is the action dimension."""
        obs_dim = math.prod(obs_shape)
        k_actor, k_critic, k_state = jax.random.split(rng, 3)

        actor = GaussianActor(obs_dim, n_actions, config.hidden_sizes, key=k_actor)
        critic = TwinQNetwork(obs_dim, n_actions, config.hidden_sizes, key=k_critic)
        target_critic = TwinQNetwork(obs_dim, n_actions, config.hidden_sizes, key=k_critic)

        optimizer = config.make_optimizer()
        log_alpha = jnp.log(jnp.array(config.init_alpha, dtype=jnp.float32))

        return SACState(
            actor_params=actor,
            critic_params=critic,
            target_critic_params=target_critic,
            actor_opt_state=optimizer.init(eqx.filter(actor, eqx.is_array)),
            critic_opt_state=optimizer.init(eqx.filter(critic, eqx.is_array)),
            log_alpha=log_alpha,
            alpha_opt_state=optimizer.init(log_alpha),
            step=jnp.zeros((), dtype=jnp.int32),
            rng=k_state,
        )

    @staticmethod
    @partial(jax.jit, static_argnames=("config", "explore"))
    def act(
        state: SACState,
        obs: chex.Array,
        *,
        config: SACConfig,
        explore: bool = True,
    ) -> tuple[chex.Array, SACState]:
        """Squashed action in ``[-1, 1]`` for one flat observation.

        With ``explore=False`` returns ``tanh(mean)``.
        """
        rng, key = jax.random.split(state.rng)
        if explore:
            action, _ = _sample_action(state.actor_params, obs, key, config)
        else:
            mean, _ = state.actor_params(obs)
            action = jnp.tanh(mean)
        return action, state._replace(rng=rng)

    @staticmethod
    @partial(jax.jit, static_argnames=("config",))
    def update(
        state: SACState,
        batch: Transition,
        *,
        config: SACConfig,
        learning_rate: float | chex.Array,
    ) -> tuple[SACState, SACMetrics]:
        """One gradient step: critic, then actor, then temperature.

        Args:
            state: Current SAC state.
            batch: Batched transitions with actions in ``[-1, 1]``.
            config: SAC hyperparameters (static).
            learning_rate: Learning rate shared by the three optimizers.

        Returns:
            (new_state, metrics) tuple.
        """
        rng, key_critic, key_actor = jax.random.split(state.rng, 3)
        optimizer = config.make_optimizer()
        alpha = jnp.exp(state.log_alpha)
        target_entropy = config.target_entropy_for(batch.action.shape[-1])
        batch_size = batch.obs.shape[0]

        # --- Critic ---
        def _next_value(next_obs, k):
            next_action, next_log_prob = _sample_action(state.actor_params, next_obs, k, config)
            next_q1, next_q2 = state.target_critic_params(next_obs, next_action)
            return jnp.minimum(next_q1, next_q2) - alpha * next_log_prob

        next_v = jax.vmap(_next_value)(batch.next_obs, jax.random.split(key_critic, batch_size))
        targets = jax.lax.stop_gradient(
            batch.reward + config.gamma * (1.0 - batch.done) * next_v
        )

        def critic_loss_fn(critic):
            q1, q2 = jax.vmap(critic)(batch.obs, batch.action)
            loss = 0.5 * (jnp.mean((q1 - targets) ** 2) + jnp.mean((q2 - targets) ** 2))
            return loss, 0.5 * (jnp.mean(q1) + jnp.mean(q2))

        (critic_loss, q_mean), critic_grads = eqx.filter_value_and_grad(
            critic_loss_fn, has_aux=True
        )(state.critic_params)
        critic_updates, critic_opt_state = optimizer.update(
            critic_grads,
            with_learning_rate(state.critic_opt_state, learning_rate),
            eqx.filter(state.critic_params, eqx.is_array),
        )
        critic = eqx.apply_updates(state.critic_params, critic_updates)

        # --- Actor ---
        actor_keys = jax.random.split(key_actor, batch_size)

        def actor_loss_fn(actor):
            def _per_sample(obs, k):
                action, log_prob = _sample_action(actor, obs, k, config)
                q1, q2 = critic(obs, action)
                return alpha * log_prob - jnp.minimum(q1, q2), log_prob

            losses, log_probs = jax.vmap(_per_sample)(batch.obs, actor_keys)
            return jnp.mean(losses), log_probs

        (actor_loss, log_probs), actor_grads = eqx.filter_value_and_grad(
            actor_loss_fn, has_aux=True
        )(state.actor_params)
        actor_updates, actor_opt_state = optimizer.update(
            actor_grads,
            with_learning_rate(state.actor_opt_state, learning_rate),
            eqx.filter(state.actor_params, eqx.is_array),
        )
        actor = eqx.apply_updates(state.actor_params, actor_updates)

        # --- Temperature ---
        if config.autotune_alpha:
            log_probs = jax.lax.stop_gradient(log_probs)

            def alpha_loss_fn(log_alpha):
                return -jnp.mean(log_alpha * (log_probs + target_entropy))

            alpha_loss, alpha_grad = jax.value_and_grad(alpha_loss_fn)(state.log_alpha)
            alpha_updates, alpha_opt_state = optimizer.update(
                alpha_grad,
                with_learning_rate(state.alpha_opt_state, learning_rate),
            )
            log_alpha = optax.apply_updates(state.log_alpha, alpha_updates)
        else:
            alpha_loss = jnp.zeros(())
            alpha_opt_state = state.alpha_opt_state
            log_alpha = state.log_alpha

        new_state = state._replace(
            actor_params=actor,
            critic_params=critic,
            actor_opt_state=actor_opt_state,
            critic_opt_state=critic_opt_state,
            log_alpha=log_alpha,
            alpha_opt_state=alpha_opt_state,
            step=state.step + 1,
            rng=rng,
        )
        metrics = SACMetrics(
            actor_loss=actor_loss,
            critic_loss=critic_loss,
            alpha_loss=alpha_loss,
            alpha=jnp.exp(log_alpha),
            entropy=-jnp.mean(log_probs),
            q_mean=q_mean,
        )
        return new_state, metrics

    @staticmethod
    @jax.jit
    def sync_target(state: SACState, tau: float | chex.Array) -> SACState:
        """Polyak update of the target critic."""
        new_target = optax.incremental_update(
            eqx.filter(state.critic_params, eqx.is_array),
            eqx.filter(state.target_critic_params, eqx.is_array),
            step_size=tau,
        )
        new_target = eqx.combine(
            new_target,
            eqx.filter(state.target_critic_params, lambda x: not eqx.is_array(x)),
        )
        return state._replace(target_critic_params=new_target)
