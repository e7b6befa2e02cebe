"""DQN training driver.

Wraps :class:`DQNAgent` in the off-policy loop: linear epsilon decay on
the host, replay sampling, learning-rate schedule and periodic target
updates.

Usage::

    from vibe_gym import make
    from vibe_gym.algorithms.dqn import DQN, DQNConfig

    env = make("CartPole-v1")
    model = DQN(env, DQNConfig(learning_starts=1_000), seed=0)
    model.learn(50_000)
    action = model.predict(obs)
    model.save("runs/dqn/final")
"""

from __future__ import annotations

import logging
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from vibe_gym.algorithms.dqn.agent import DQNAgent
from vibe_gym.algorithms.dqn.config import DQNConfig
from vibe_gym.algorithms.off_policy import OffPolicyAlgorithm
from vibe_gym.checkpoint import AlgorithmKind
from vibe_gym.dataprotocol.transition import ReplayBatch
from vibe_gym.env.spaces import Box, Discrete, flatdim
from vibe_gym.errors import InvalidConfiguration
from vibe_gym.seeding import split_key
from vibe_gym.types import Transition

logger = logging.getLogger(__name__)


class DQN(OffPolicyAlgorithm):
    """Deep Q-Network for Discrete action spaces.

    Observations may be a ``Box`` (flattened) or ``Discrete`` (one-hot
    encoded before reaching the network).
    """

    kind = AlgorithmKind.DQN
    config_cls = DQNConfig
    config: DQNConfig

    def _check_spaces(self) -> None:
        if not isinstance(self.action_space, Discrete):
            raise InvalidConfiguration(
                f"DQN needs a Discrete action space, got {self.action_space!r}"
            )
        if not isinstance(self.observation_space, (Box, Discrete)):
            raise InvalidConfiguration(
                f"DQN needs a Box or Discrete observation space, got {self.observation_space!r}"
            )

    def _setup_model(self) -> None:
        self._rng, init_key = split_key(self._rng)
        self.state = DQNAgent.init(
            init_key,
            (flatdim(self.observation_space),),
            self.action_space.n,
            self.config,
        )
        self.exploration_rate = self.config.exploration_initial_eps

    # ---- acting ----

    def _encode(self, obs: Any) -> jax.Array:
        """Network input for a batch of observations (leading batch axis)."""
        if isinstance(self.observation_space, Discrete):
            idx = jnp.asarray(obs, dtype=jnp.int32).reshape(-1) - self.observation_space.start
            return jax.nn.one_hot(idx, self.observation_space.n, dtype=jnp.float32)
        obs = jnp.asarray(obs, dtype=jnp.float32)
        return obs.reshape(obs.shape[0], -1)

    def _update_exploration(self) -> None:
        cfg = self.config
        horizon = self.total_timesteps * cfg.exploration_fraction
        frac = min(1.0, self.num_timesteps / horizon) if horizon > 0 else 1.0
        self.exploration_rate = cfg.exploration_initial_eps + frac * (
            cfg.exploration_final_eps - cfg.exploration_initial_eps
        )

    def _sample_action(self, obs: Any) -> tuple[int, int]:
        if self.num_timesteps < self.config.learning_starts:
            self._rng, key = split_key(self._rng)
            action = int(self.action_space.sample(key))
        else:
            action = self.predict(obs, deterministic=False)
        return action, action

    def predict(self, obs: Any, deterministic: bool = True) -> int:
        """Greedy action, or epsilon-greedy at the current exploration rate."""
        x = self._encode(np.asarray(obs)[None])[0]
        action, self.state = DQNAgent.act(
            self.state,
            x,
            epsilon=float(self.exploration_rate or 0.0),
            explore=not deterministic,
        )
        return int(action) + self.action_space.start

    def q_values(self, obs: Any) -> np.ndarray:
        """Q(s, .) of the online network for one observation."""
        x = self._encode(np.asarray(obs)[None])[0]
        return np.asarray(self.state.params(x))

    # ---- training ----

    def _to_transition(self, batch: ReplayBatch) -> Transition:
        return Transition(
            obs=self._encode(batch.obs),
            action=batch.action.reshape(-1).astype(jnp.int32) - self.action_space.start,
            reward=batch.reward,
            next_obs=self._encode(batch.next_obs),
            done=batch.done,
        )

    def train(self, gradient_steps: int, batch_size: int) -> dict[str, float] | None:
        if len(self.replay_buffer) < batch_size:
            return None
        learning_rate = float(self.learning_rate(self.progress_remaining))

        losses, td_errors, q_means = [], [], []
        for _ in range(gradient_steps):
            batch = self._to_transition(self.replay_buffer.sample(batch_size))
            self.state, metrics = DQNAgent.update(
                self.state, batch, config=self.config, learning_rate=learning_rate
            )
            self.num_gradient_steps += 1
            if self.num_gradient_steps % self.config.target_update_interval == 0:
                self.state = DQNAgent.sync_target(self.state, self.config.tau)
                logger.debug(
                    "Target network updated at gradient step %d", self.num_gradient_steps
                )
            losses.append(metrics.loss)
            td_errors.append(metrics.td_error)
            q_means.append(metrics.q_mean)

        return {
            "loss": float(jnp.mean(jnp.stack(losses))),
            "td_error": float(jnp.mean(jnp.stack(td_errors))),
            "q_mean": float(jnp.mean(jnp.stack(q_means))),
            "learning_rate": learning_rate,
            "exploration_rate": float(self.exploration_rate),
        }

    # ---- persistence ----

    def _component_trees(self) -> dict[str, Any]:
        return {
            "policy": self.state.params,
            "target": self.state.target_params,
            "optimizer": self.state.opt_state,
        }

    def _restore_components(self, trees: dict[str, Any]) -> None:
        self.state = self.state._replace(
            params=trees["policy"],
            target_params=trees["target"],
            opt_state=trees["optimizer"],
        )
