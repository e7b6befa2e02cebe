"""Tests for the DQN driver and the shared off-policy loop."""

import numpy as np
import pytest

from vibe_gym.algorithms.dqn import DQN, DQNConfig
from vibe_gym.algorithms.off_policy import REPLAY_BUFFER_DIR, TrainFrequency
from vibe_gym.algorithms.sac import SAC
from vibe_gym.checkpoint import METADATA_FILE, AlgorithmCheckpoint, AlgorithmKind
from vibe_gym.env import AutoReset, AutoresetMode, Discrete, make
from vibe_gym.errors import AlgorithmKindMismatch, InvalidCheckpoint, InvalidConfiguration, InvalidState
from vibe_gym.runner.callbacks import BaseCallback, FunctionCallback
from vibe_gym.schedule import LinearSchedule


def small_config(**overrides):
    defaults = dict(
        buffer_size=1_000,
        learning_starts=10,
        batch_size=8,
        train_freq=1,
        target_update_interval=5,
        exploration_fraction=0.5,
        hidden_sizes=(16,),
    )
    defaults.update(overrides)
    return DQNConfig(**defaults)


class RecordingCallback(BaseCallback):
    def __init__(self):
        super().__init__()
        self.events = []

    def on_training_start(self, locals_):
        self.events.append(("start", locals_.num_timesteps))

    def on_step(self, locals_):
        self.events.append(("step", locals_.num_timesteps))
        return True

    def on_episode_end(self, reward, length):
        self.events.append(("episode", reward, length))

    def on_training_end(self, locals_):
        self.events.append(("end", locals_.num_timesteps))


class TestConstruction:
    def test_requires_discrete_actions(self):
        with pytest.raises(InvalidConfiguration):
            DQN(make("Pendulum-v1"), small_config())

    def test_spaces_without_env(self):
        model = DQN(None, small_config(), observation_space=Discrete(4), action_space=Discrete(2))
        assert model.predict(0) in (0, 1)
        with pytest.raises(InvalidState):
            model.learn(10)

    def test_needs_env_or_spaces(self):
        with pytest.raises(InvalidConfiguration):
            DQN(None, small_config())

    def test_set_env_checks_spaces(self, countdown_env):
        model = DQN(countdown_env(), small_config())
        with pytest.raises(InvalidConfiguration):
            model.set_env(make("CartPole-v1"))
        other = countdown_env()
        model.set_env(other)
        assert model.get_env() is other


class TestLearnLoop:
    def test_counts_and_buffer(self, countdown_env):
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(6)
        assert model.num_timesteps == 6
        assert model.num_episodes == 2
        buf = model.replay_buffer
        assert len(buf) == 6
        np.testing.assert_array_equal(buf.observations[:6, 0, 0], [0, 1, 2, 0, 1, 2])
        np.testing.assert_array_equal(buf.next_observations[:6, 0, 0], [1, 2, 3, 1, 2, 3])
        np.testing.assert_array_equal(buf.dones[:6, 0], [0, 0, 1, 0, 0, 1])
        np.testing.assert_array_equal(buf.rewards[:6, 0], np.ones(6))

    def test_same_step_autoreset_stores_terminal_observation(self, countdown_env):
        inner = countdown_env()
        model = DQN(AutoReset(inner, AutoresetMode.SAME_STEP), small_config(), seed=0)
        model.learn(6)
        buf = model.replay_buffer
        np.testing.assert_array_equal(buf.observations[:6, 0, 0], [0, 1, 2, 0, 1, 2])
        np.testing.assert_array_equal(buf.next_observations[:6, 0, 0], [1, 2, 3, 1, 2, 3])
        assert model.num_episodes == 2
        # The wrapper already started each new episode.
        assert inner.reset_seeds == [0, None, None]

    def test_env_seeded_on_first_reset_only(self, countdown_env):
        env = countdown_env()
        DQN(env, small_config(), seed=42).learn(7)
        assert env.reset_seeds == [42, None, None]

    def test_training_starts_after_learning_starts(self, countdown_env):
        metrics = []
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(30, callback=FunctionCallback(on_train=metrics.append))
        # One gradient step per collected step from timestep 10 on.
        assert len(metrics) == 21
        assert model.num_gradient_steps == 21
        assert {"loss", "td_error", "q_mean", "learning_rate", "exploration_rate"} <= set(metrics[0])

    def test_no_training_until_batch_available(self, countdown_env):
        metrics = []
        model = DQN(countdown_env(), small_config(learning_starts=0, batch_size=16), seed=0)
        model.learn(20, callback=FunctionCallback(on_train=metrics.append))
        assert len(metrics) == 5

    def test_all_gradient_steps_mode(self, countdown_env):
        model = DQN(
            countdown_env(),
            small_config(train_freq=TrainFrequency(4), gradient_steps=-1, learning_starts=8),
            seed=0,
        )
        model.learn(16)
        # Rollouts end at 4, 8, 12, 16; training from 8 on, 4 steps each.
        assert model.num_gradient_steps == 12

    def test_episode_train_frequency(self, countdown_env):
        rollouts = []
        model = DQN(countdown_env(), small_config(train_freq=(1, "episode"), learning_starts=0, batch_size=2), seed=0)
        model.learn(9, callback=FunctionCallback(on_train=lambda m: rollouts.append(model.num_timesteps)))
        assert rollouts == [3, 6, 9]

    def test_callback_order(self, countdown_env):
        cb = RecordingCallback()
        DQN(countdown_env(), small_config(), seed=0).learn(4, callback=cb)
        assert cb.events == [
            ("start", 0),
            ("step", 1),
            ("step", 2),
            ("step", 3),
            ("episode", 3.0, 3),
            ("step", 4),
            ("end", 4),
        ]

    def test_callback_can_stop_training(self, countdown_env):
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(100, callback=lambda locals_: locals_.num_timesteps < 5)
        assert model.num_timesteps == 5

    def test_stop_request(self, countdown_env):
        model = DQN(countdown_env(), small_config(train_freq=(1, "episode")), seed=0)

        def stop_after_first_episode(reward, length):
            model.stop()

        model.learn(100, callback=FunctionCallback(on_episode_end=stop_after_first_episode))
        assert model.num_timesteps == 3

    def test_continue_counting(self, countdown_env):
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(5)
        model.learn(5, reset_num_timesteps=False)
        assert model.num_timesteps == 10
        assert model.total_timesteps == 10

    def test_rejects_nonpositive_total(self, countdown_env):
        with pytest.raises(InvalidConfiguration):
            DQN(countdown_env(), small_config()).learn(0)

    def test_target_sync_interval(self, countdown_env, monkeypatch):
        from vibe_gym.algorithms.dqn import algorithm

        calls = []
        original = algorithm.DQNAgent.sync_target

        def counting_sync(state, tau):
            calls.append(tau)
            return original(state, tau)

        monkeypatch.setattr(algorithm.DQNAgent, "sync_target", staticmethod(counting_sync))
        model = DQN(countdown_env(), small_config(target_update_interval=4), seed=0)
        model.learn(30)
        assert len(calls) == model.num_gradient_steps // 4


class TestExploration:
    def test_linear_decay(self, countdown_env):
        rates = {}
        model = DQN(
            countdown_env(),
            small_config(exploration_fraction=0.5, exploration_initial_eps=1.0, exploration_final_eps=0.1),
            seed=0,
        )
        model.learn(
            40,
            callback=lambda locals_: rates.__setitem__(locals_.num_timesteps, locals_.exploration_rate),
        )
        # The rate is set before each step from the steps already taken.
        assert rates[1] == pytest.approx(1.0)
        assert rates[11] == pytest.approx(1.0 - 0.9 * 10 / 20)
        assert rates[40] == pytest.approx(0.1)

    def test_greedy_predict_is_deterministic(self, countdown_env):
        model = DQN(countdown_env(), small_config(), seed=0)
        obs = np.array([1.0], dtype=np.float32)
        assert model.predict(obs) == model.predict(obs)
        assert model.predict(obs) == int(np.argmax(model.q_values(obs)))


class TestDiscreteObservations:
    def test_one_hot_encoding(self):
        model = DQN(make("FrozenLake-v1"), small_config(), seed=0)
        model.learn(30)
        assert model.state.params.layers[0].weight.shape == (16, 16)
        assert model.predict(0) in range(4)


class TestPersistence:
    def test_save_layout(self, countdown_env, tmp_path):
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(12)
        model.save(tmp_path / "ckpt")
        for name in (METADATA_FILE, "policy.eqx", "target.eqx", "optimizer.eqx"):
            assert (tmp_path / "ckpt" / name).exists()
        assert (tmp_path / "ckpt" / REPLAY_BUFFER_DIR / "buffer_meta.json").exists()
        meta = AlgorithmCheckpoint.read(tmp_path / "ckpt")
        assert meta.algorithm_kind is AlgorithmKind.DQN
        assert meta.num_timesteps == 12
        assert meta.learning_rate_schedule == {"kind": "constant", "value": small_config().learning_rate}

    def test_restore(self, countdown_env, tmp_path):
        model = DQN(countdown_env(), small_config(), learning_rate=LinearSchedule(1e-3, 1e-4), seed=3)
        model.learn(20)
        model.save(tmp_path / "ckpt")

        restored = DQN.load(tmp_path / "ckpt")
        assert restored.num_timesteps == 20
        assert restored.num_episodes == model.num_episodes
        assert restored.num_gradient_steps == model.num_gradient_steps
        assert restored.exploration_rate == pytest.approx(model.exploration_rate)
        assert restored.config == model.config
        assert restored.learning_rate == model.learning_rate
        assert len(restored.replay_buffer) == len(model.replay_buffer)
        for value in (0.0, 1.0, 2.0):
            obs = np.array([value], dtype=np.float32)
            np.testing.assert_allclose(restored.q_values(obs), model.q_values(obs), rtol=1e-6)

    def test_restored_model_keeps_training(self, countdown_env, tmp_path):
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(12)
        model.save(tmp_path / "ckpt")
        restored = DQN.load(tmp_path / "ckpt", env=countdown_env())
        restored.learn(6, reset_num_timesteps=False)
        assert restored.num_timesteps == 18

    def test_buffer_is_optional(self, countdown_env, tmp_path):
        model = DQN(countdown_env(), small_config(), seed=0)
        model.learn(5)
        model.save(tmp_path / "ckpt", include_buffer=False)
        assert not (tmp_path / "ckpt" / REPLAY_BUFFER_DIR).exists()
        assert len(DQN.load(tmp_path / "ckpt").replay_buffer) == 0

    def test_kind_mismatch(self, countdown_env, tmp_path):
        DQN(countdown_env(), small_config(), seed=0).save(tmp_path / "ckpt")
        with pytest.raises(AlgorithmKindMismatch):
            SAC.load(tmp_path / "ckpt")

    def test_env_mismatch(self, countdown_env, tmp_path):
        DQN(countdown_env(), small_config(), seed=0).save(tmp_path / "ckpt")
        with pytest.raises(InvalidCheckpoint):
            DQN.load(tmp_path / "ckpt", env=make("CartPole-v1"))
