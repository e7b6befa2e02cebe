"""SAC training driver for bounded Box action spaces.

The replay buffer stores actions in the actor's ``[-1, 1]`` range; they
are rescaled to ``[low, high]`` only when sent to the environment.
"""

from __future__ import annotations

import logging
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from vibe_gym.algorithms.off_policy import OffPolicyAlgorithm
from vibe_gym.algorithms.sac.agent import SACAgent
from vibe_gym.algorithms.sac.config import SACConfig
from vibe_gym.checkpoint import AlgorithmKind
from vibe_gym.dataprotocol.transition import ReplayBatch
from vibe_gym.env.spaces import Box, Discrete, flatdim
from vibe_gym.errors import InvalidConfiguration
from vibe_gym.seeding import split_key
from vibe_gym.types import Transition

logger = logging.getLogger(__name__)


class SAC(OffPolicyAlgorithm):
    """Soft Actor-Critic with twin critics and entropy tuning."""

    kind = AlgorithmKind.SAC
    config_cls = SACConfig
    config: SACConfig

    def _check_spaces(self) -> None:
        space = self.action_space
        if not isinstance(space, Box) or not space.is_bounded():
            raise InvalidConfiguration(f"SAC needs a bounded Box action space, got {space!r}")
        if not isinstance(self.observation_space, (Box, Discrete)):
            raise InvalidConfiguration(
                f"SAC needs a Box or Discrete observation space, got {self.observation_space!r}"
            )

    def _setup_model(self) -> None:
        self._rng, init_key = split_key(self._rng)
        self.action_dim = flatdim(self.action_space)
        self.state = SACAgent.init(
            init_key,
            (flatdim(self.observation_space),),
            self.action_dim,
            self.config,
        )
        self._low = self.action_space.low.astype(np.float32)
        self._high = self.action_space.high.astype(np.float32)

    # ---- action scaling ----

    def scale_action(self, action: np.ndarray) -> np.ndarray:
        """``[low, high]`` -> ``[-1, 1]``."""
        return 2.0 * (np.asarray(action, dtype=np.float32) - self._low) / (self._high - self._low) - 1.0

    def unscale_action(self, action: np.ndarray) -> np.ndarray:
        """``[-1, 1]`` -> ``[low, high]``."""
        scaled = self._low + 0.5 * (np.asarray(action, dtype=np.float32) + 1.0) * (self._high - self._low)
        return np.clip(scaled, self._low, self._high).astype(self.action_space.dtype)

    # ---- acting ----

    def _encode(self, obs: Any) -> jax.Array:
        if isinstance(self.observation_space, Discrete):
            idx = jnp.asarray(obs, dtype=jnp.int32).reshape(-1) - self.observation_space.start
            return jax.nn.one_hot(idx, self.observation_space.n, dtype=jnp.float32)
        obs = jnp.asarray(obs, dtype=jnp.float32)
        return obs.reshape(obs.shape[0], -1)

    def _sample_action(self, obs: Any) -> tuple[np.ndarray, np.ndarray]:
        if self.num_timesteps < self.config.learning_starts:
            self._rng, key = split_key(self._rng)
            env_action = np.asarray(self.action_space.sample(key))
            return env_action, self.scale_action(env_action)
        squashed = self._act(obs, explore=True)
        return self.unscale_action(squashed), squashed

    def _act(self, obs: Any, explore: bool) -> np.ndarray:
        x = self._encode(np.asarray(obs)[None])[0]
        action, self.state = SACAgent.act(self.state, x, config=self.config, explore=explore)
        return np.asarray(action).reshape(self.action_space.shape)

    def predict(self, obs: Any, deterministic: bool = True) -> np.ndarray:
        """Action in the environment's bounds."""
        return self.unscale_action(self._act(obs, explore=not deterministic))

    # ---- training ----

    def _to_transition(self, batch: ReplayBatch) -> Transition:
        return Transition(
            obs=self._encode(batch.obs),
            action=batch.action.reshape(batch.action.shape[0], -1).astype(jnp.float32),
            reward=batch.reward,
            next_obs=self._encode(batch.next_obs),
            done=batch.done,
        )

    def train(self, gradient_steps: int, batch_size: int) -> dict[str, float] | None:
        if len(self.replay_buffer) < batch_size:
            return None
        learning_rate = float(self.learning_rate(self.progress_remaining))

        history = []
        for _ in range(gradient_steps):
            batch = self._to_transition(self.replay_buffer.sample(batch_size))
            self.state, metrics = SACAgent.update(
                self.state, batch, config=self.config, learning_rate=learning_rate
            )
            self.num_gradient_steps += 1
            if self.num_gradient_steps % self.config.target_update_interval == 0:
                self.state = SACAgent.sync_target(self.state, self.config.tau)
            history.append(metrics)

        stacked = jax.tree.map(lambda *xs: jnp.mean(jnp.stack(xs)), *history)
        out = {name: float(value) for name, value in stacked._asdict().items()}
        out["learning_rate"] = learning_rate
        return out

    # ---- persistence ----

    def _component_trees(self) -> dict[str, Any]:
        return {
            "actor": self.state.actor_params,
            "critic": self.state.critic_params,
            "critic_target": self.state.target_critic_params,
            "entropy": (self.state.log_alpha, self.state.alpha_opt_state),
            "actor_optimizer": self.state.actor_opt_state,
            "critic_optimizer": self.state.critic_opt_state,
        }

    def _restore_components(self, trees: dict[str, Any]) -> None:
        log_alpha, alpha_opt_state = trees["entropy"]
        self.state = self.state._replace(
            actor_params=trees["actor"],
            critic_params=trees["critic"],
            target_critic_params=trees["critic_target"],
            actor_opt_state=trees["actor_optimizer"],
            critic_opt_state=trees["critic_optimizer"],
            log_alpha=log_alpha,
            alpha_opt_state=alpha_opt_state,
        )
