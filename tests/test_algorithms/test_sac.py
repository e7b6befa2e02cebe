"""Tests for the SAC agent and driver."""

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import pytest

from vibe_gym.algorithms.sac import SAC, SACAgent, SACConfig, SACMetrics, SACState
from vibe_gym.env import Box, make
from vibe_gym.errors import InvalidConfiguration
from vibe_gym.runner.callbacks import FunctionCallback
from vibe_gym.types import Transition

OBS_DIM = 3
ACTION_DIM = 2
RNG = jax.random.key(0)


@pytest.fixture
def config():
    return SACConfig(hidden_sizes=(32, 32), learning_rate=1e-3, batch_size=16)


@pytest.fixture
def state(config):
    return SACAgent.init(RNG, (OBS_DIM,), ACTION_DIM, config)


@pytest.fixture
def batch():
    k1, k2, k3 = jax.random.split(jax.random.key(1), 3)
    b = 16
    return Transition(
        obs=jax.random.normal(k1, (b, OBS_DIM)),
        action=jax.random.uniform(k2, (b, ACTION_DIM), minval=-1.0, maxval=1.0),
        reward=jnp.ones(b),
        next_obs=jax.random.normal(k3, (b, OBS_DIM)),
        done=jnp.zeros(b),
    )


def small_config(**overrides):
    defaults = dict(
        buffer_size=500,
        learning_starts=10,
        batch_size=8,
        hidden_sizes=(16,),
    )
    defaults.update(overrides)
    return SACConfig(**defaults)


def _leaves_equal(a, b):
    return all(
        jnp.array_equal(x, y)
        for x, y in zip(jax.tree.leaves(eqx.filter(a, eqx.is_array)), jax.tree.leaves(eqx.filter(b, eqx.is_array)))
    )


class TestSACConfig:
    def test_auto_entropy(self):
        cfg = SACConfig()
        assert cfg.autotune_alpha
        assert cfg.init_alpha == 1.0

    def test_auto_with_initial_value(self):
        cfg = SACConfig(ent_coef="auto_0.1")
        assert cfg.autotune_alpha
        assert cfg.init_alpha == pytest.approx(0.1)

    def test_fixed_entropy(self):
        cfg = SACConfig(ent_coef=0.2)
        assert not cfg.autotune_alpha
        assert cfg.init_alpha == pytest.approx(0.2)

    @pytest.mark.parametrize("ent_coef", ["bogus", "auto_x", "auto_-1", 0.0, -0.5])
    def test_invalid_ent_coef(self, ent_coef):
        with pytest.raises(InvalidConfiguration):
            SACConfig(ent_coef=ent_coef)

    def test_target_entropy(self):
        assert SACConfig().target_entropy_for(3) == -3.0
        assert SACConfig(target_entropy=-0.5).target_entropy_for(3) == -0.5
        with pytest.raises(InvalidConfiguration):
            SACConfig(target_entropy="low")

    def test_is_hashable(self, config):
        assert hash(config) == hash(SACConfig(hidden_sizes=[32, 32], learning_rate=1e-3, batch_size=16))


class TestSACAgent:
    def test_init(self, state, config):
        assert isinstance(state, SACState)
        assert int(state.step) == 0
        assert float(jnp.exp(state.log_alpha)) == pytest.approx(config.init_alpha)
        assert _leaves_equal(state.critic_params, state.target_critic_params)

    def test_act_is_squashed(self, state, config):
        obs = jnp.full(OBS_DIM, 50.0)
        for _ in range(10):
            action, state = SACAgent.act(state, obs, config=config, explore=True)
            assert action.shape == (ACTION_DIM,)
            assert float(jnp.max(jnp.abs(action))) <= 1.0

    def test_deterministic_act_uses_mean(self, state, config):
        obs = jnp.ones(OBS_DIM)
        a1, _ = SACAgent.act(state, obs, config=config, explore=False)
        a2, _ = SACAgent.act(state, obs, config=config, explore=False)
        mean, _ = state.actor_params(obs)
        assert jnp.array_equal(a1, a2)
        assert jnp.allclose(a1, jnp.tanh(mean))

    def test_update(self, state, batch, config):
        new_state, metrics = SACAgent.update(state, batch, config=config, learning_rate=1e-3)
        assert isinstance(metrics, SACMetrics)
        assert int(new_state.step) == 1
        for value in metrics:
            assert jnp.isfinite(value)
        assert not _leaves_equal(state.actor_params, new_state.actor_params)
        assert not _leaves_equal(state.critic_params, new_state.critic_params)
        assert _leaves_equal(state.target_critic_params, new_state.target_critic_params)
        assert float(new_state.log_alpha) != float(state.log_alpha)

    def test_fixed_alpha_is_not_tuned(self, batch):
        cfg = SACConfig(hidden_sizes=(16,), ent_coef=0.2)
        state = SACAgent.init(RNG, (OBS_DIM,), ACTION_DIM, cfg)
        new_state, metrics = SACAgent.update(state, batch, config=cfg, learning_rate=1e-3)
        assert float(metrics.alpha) == pytest.approx(0.2)
        assert float(metrics.alpha_loss) == 0.0
        assert float(new_state.log_alpha) == float(state.log_alpha)

    def test_sync_target(self, state, batch, config):
        state, _ = SACAgent.update(state, batch, config=config, learning_rate=1e-3)
        soft = SACAgent.sync_target(state, 0.5)
        assert not _leaves_equal(soft.target_critic_params, state.critic_params)
        hard = SACAgent.sync_target(state, 1.0)
        assert _leaves_equal(hard.target_critic_params, state.critic_params)


class TestSACDriver:
    def test_rejects_discrete_actions(self):
        with pytest.raises(InvalidConfiguration):
            SAC(make("CartPole-v1"), small_config())

    def test_rejects_unbounded_actions(self):
        with pytest.raises(InvalidConfiguration):
            SAC(
                None,
                small_config(),
                observation_space=Box(-1.0, 1.0, shape=(3,)),
                action_space=Box(-np.inf, np.inf, shape=(1,)),
            )

    def test_action_scaling(self):
        model = SAC(make("Pendulum-v1"), small_config(), seed=0)
        np.testing.assert_allclose(model.scale_action(np.array([-2.0])), [-1.0])
        np.testing.assert_allclose(model.scale_action(np.array([1.0])), [0.5])
        np.testing.assert_allclose(model.unscale_action(np.array([0.5])), [1.0])
        np.testing.assert_allclose(model.unscale_action(np.array([3.0])), [2.0])

    def test_learn(self):
        metrics = []
        model = SAC(make("Pendulum-v1"), small_config(), seed=0)
        model.learn(30, log_interval=None)
        assert model.num_timesteps == 30
        assert model.num_gradient_steps == 21
        stored = model.replay_buffer.actions[:30]
        assert np.all(np.abs(stored) <= 1.0)

        model.learn(5, reset_num_timesteps=False, callback=lambda locals_: None)
        assert model.num_timesteps == 35
        model.learn(3, reset_num_timesteps=False, callback=FunctionCallback(on_train=metrics.append))
        assert {"actor_loss", "critic_loss", "alpha", "entropy", "learning_rate"} <= set(metrics[-1])

    def test_predict_within_bounds(self):
        model = SAC(make("Pendulum-v1"), small_config(), seed=0)
        obs = np.array([1.0, 0.0, 0.5], dtype=np.float32)
        action = model.predict(obs)
        assert action.shape == (1,)
        assert -2.0 <= float(action[0]) <= 2.0
        np.testing.assert_array_equal(model.predict(obs), action)
        assert -2.0 <= float(model.predict(obs, deterministic=False)[0]) <= 2.0

    def test_save_and_load(self, tmp_path):
        model = SAC(make("Pendulum-v1"), small_config(ent_coef="auto_0.5"), seed=0)
        model.learn(20)
        model.save(tmp_path / "sac")
        for name in ("actor", "critic", "critic_target", "entropy", "actor_optimizer", "critic_optimizer"):
            assert (tmp_path / "sac" / f"{name}.eqx").exists()

        restored = SAC.load(tmp_path / "sac", env=make("Pendulum-v1"))
        assert restored.num_timesteps == 20
        assert restored.config == model.config
        assert float(restored.state.log_alpha) == pytest.approx(float(model.state.log_alpha))
        assert len(restored.replay_buffer) == 20
        obs = np.array([0.0, 1.0, -0.3], dtype=np.float32)
        np.testing.assert_allclose(restored.predict(obs), model.predict(obs), rtol=1e-6)
