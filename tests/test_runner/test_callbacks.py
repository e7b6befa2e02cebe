"""Tests for the training callbacks."""

import pytest

from vibe_gym.algorithms.dqn import DQN, DQNConfig
from vibe_gym.errors import InvalidConfiguration
from vibe_gym.metrics import MetricsLogger, read_metrics
from vibe_gym.runner.callbacks import (
    BaseCallback,
    CallbackList,
    CallbackLocals,
    CheckpointCallback,
    EvalCallback,
    FunctionCallback,
    MetricsCallback,
    StopTrainingOnMaxEpisodes,
    StopTrainingOnRewardThreshold,
    as_callback,
)


def _locals(t=1, episodes=0):
    return CallbackLocals(num_timesteps=t, total_timesteps=100, num_episodes=episodes)


def _dqn(env):
    config = DQNConfig(buffer_size=200, learning_starts=4, batch_size=4, train_freq=1, hidden_sizes=(8,))
    return DQN(env, config, seed=0)


class RecordingSaver:
    """Stand-in model for CheckpointCallback."""

    def __init__(self):
        self.saved = []

    def save(self, path, include_buffer=True):
        self.saved.append((path, include_buffer))
        path.mkdir(parents=True)
        return path


class PredictingSaver(RecordingSaver):
    def predict(self, obs, deterministic=True):
        return 0


class TestCallbackList:
    def test_forwards_every_hook(self):
        episodes = []
        a = FunctionCallback(on_episode_end=lambda r, n: episodes.append(("a", r, n)))
        b = FunctionCallback(on_episode_end=lambda r, n: episodes.append(("b", r, n)))
        cbs = CallbackList([a, b])
        model = object()
        cbs.init_callback(model)
        assert a.model is model and b.model is model
        cbs.on_episode_end(1.5, 3)
        assert episodes == [("a", 1.5, 3), ("b", 1.5, 3)]

    def test_stops_if_any_child_stops(self):
        calls = []
        first = FunctionCallback(on_step=lambda loc: False)
        second = FunctionCallback(on_step=lambda loc: calls.append(loc.num_timesteps))
        cbs = CallbackList([first, second])
        assert cbs.on_step(_locals(5)) is False
        # Later callbacks still see the step.
        assert calls == [5]


class TestFunctionCallback:
    def test_none_means_continue(self):
        assert FunctionCallback(on_step=lambda loc: None).on_step(_locals()) is True
        assert FunctionCallback().on_step(_locals()) is True

    def test_false_stops(self):
        assert FunctionCallback(on_step=lambda loc: False).on_step(_locals()) is False

    def test_on_train(self):
        seen = []
        FunctionCallback(on_train=seen.append).on_train({"loss": 1.0})
        assert seen == [{"loss": 1.0}]


class TestAsCallback:
    def test_normalises_inputs(self):
        assert type(as_callback(None)) is BaseCallback
        cb = BaseCallback()
        assert as_callback(cb) is cb
        assert isinstance(as_callback([cb]), CallbackList)
        assert isinstance(as_callback(lambda loc: True), FunctionCallback)

    def test_rejects_other_values(self):
        with pytest.raises(InvalidConfiguration):
            as_callback(42)


class TestStopTraining:
    def test_reward_threshold_waits_for_window(self):
        cb = StopTrainingOnRewardThreshold(10.0, window=3)
        cb.on_episode_end(20.0, 5)
        cb.on_episode_end(20.0, 5)
        assert cb.on_step(_locals())
        cb.on_episode_end(20.0, 5)
        assert not cb.on_step(_locals())
        assert cb.stopped

    def test_reward_threshold_uses_recent_window(self):
        cb = StopTrainingOnRewardThreshold(10.0, window=2)
        for reward in (0.0, 0.0, 12.0):
            cb.on_episode_end(reward, 1)
        assert cb.on_step(_locals())
        cb.on_episode_end(12.0, 1)
        assert not cb.on_step(_locals())

    def test_max_episodes(self):
        cb = StopTrainingOnMaxEpisodes(2)
        assert cb.on_step(_locals(episodes=1))
        assert not cb.on_step(_locals(episodes=2))
        assert cb.stopped

    def test_invalid_arguments(self):
        with pytest.raises(InvalidConfiguration):
            StopTrainingOnRewardThreshold(1.0, window=0)
        with pytest.raises(InvalidConfiguration):
            StopTrainingOnMaxEpisodes(0)

    def test_max_episodes_stops_training(self, countdown_env):
        model = _dqn(countdown_env())
        model.learn(100, callback=StopTrainingOnMaxEpisodes(2))
        # The stop is seen on the step after the second episode ends.
        assert model.num_episodes == 2
        assert model.num_timesteps == 7


class TestCheckpointCallback:
    def test_saves_every_n_steps(self, tmp_path):
        model = RecordingSaver()
        cb = CheckpointCallback(2, tmp_path / "ckpts", name_prefix="dqn")
        cb.init_callback(model)
        cb.on_training_start(_locals(0))
        assert (tmp_path / "ckpts").is_dir()
        for t in range(1, 6):
            assert cb.on_step(_locals(t))
        assert [p.name for p, _ in model.saved] == ["dqn_2_steps", "dqn_4_steps"]
        assert all(include is False for _, include in model.saved)
        assert cb.saved_paths == [p for p, _ in model.saved]

    def test_invalid_frequency(self, tmp_path):
        with pytest.raises(InvalidConfiguration):
            CheckpointCallback(0, tmp_path)

    def test_checkpoints_are_loadable(self, countdown_env, tmp_path):
        model = _dqn(countdown_env())
        cb = CheckpointCallback(5, tmp_path, include_buffer=True)
        model.learn(10, callback=cb)
        assert [p.name for p in cb.saved_paths] == ["model_5_steps", "model_10_steps"]
        restored = DQN.load(cb.saved_paths[0])
        assert restored.num_timesteps == 5
        assert len(restored.replay_buffer) == 5


class TestMetricsCallback:
    def test_writes_episode_and_train_rows(self, countdown_env, tmp_path):
        path = tmp_path / "metrics.jsonl"
        with MetricsLogger(path) as sink:
            _dqn(countdown_env()).learn(9, callback=MetricsCallback(sink))

        rows = read_metrics(path)
        episodes = [r for r in rows if "episode_return" in r]
        assert [(r["step"], r["episode_return"], r["episode_length"]) for r in episodes] == [
            (3, 3.0, 3),
            (6, 3.0, 3),
            (9, 3.0, 3),
        ]
        train_rows = [r for r in rows if "loss" in r]
        assert [r["step"] for r in train_rows] == list(range(4, 10))


class TestEvalCallback:
    def test_evaluates_every_n_steps(self, countdown_env, tmp_path):
        model = PredictingSaver()
        cb = EvalCallback(countdown_env(), eval_freq=2, n_eval_episodes=3, best_model_save_path=tmp_path / "best")
        cb.init_callback(model)
        cb.on_training_start(_locals(0))
        for t in range(1, 6):
            assert cb.on_step(_locals(t))
        assert [step for step, _ in cb.evaluations] == [2, 4]
        assert cb.last_mean_reward == 3.0
        assert cb.best_mean_reward == 3.0
        # Only a strictly better result is saved.
        assert model.saved == [(tmp_path / "best", True)]

    def test_reward_threshold_stops(self, countdown_env):
        cb = EvalCallback(countdown_env(), eval_freq=1, n_eval_episodes=1, reward_threshold=3.0)
        cb.init_callback(PredictingSaver())
        cb.on_training_start(_locals(0))
        assert not cb.on_step(_locals(1))

    def test_counts_from_training_start(self, countdown_env):
        cb = EvalCallback(countdown_env(), eval_freq=4, n_eval_episodes=1)
        cb.init_callback(PredictingSaver())
        cb.on_training_start(_locals(10))
        assert cb.on_step(_locals(13))
        assert cb.evaluations == []
        cb.on_step(_locals(14))
        assert len(cb.evaluations) == 1

    def test_writes_eval_rows(self, countdown_env, tmp_path):
        path = tmp_path / "metrics.jsonl"
        with MetricsLogger(path) as sink:
            cb = EvalCallback(countdown_env(), eval_freq=1, n_eval_episodes=2, sink=sink)
            cb.init_callback(PredictingSaver())
            cb.on_training_start(_locals(0))
            cb.on_step(_locals(1))
        row = read_metrics(path)[0]
        assert row["step"] == 1
        assert row["eval_mean_return"] == 3.0
        assert row["eval_mean_length"] == 3.0

    def test_invalid_arguments(self, countdown_env):
        with pytest.raises(InvalidConfiguration):
            EvalCallback(countdown_env(), eval_freq=0)
        with pytest.raises(InvalidConfiguration):
            EvalCallback(countdown_env(), n_eval_episodes=0)

    def test_stops_dqn_and_keeps_best_model(self, countdown_env, tmp_path):
        model = _dqn(countdown_env())
        cb = EvalCallback(
            countdown_env(),
            eval_freq=5,
            n_eval_episodes=2,
            best_model_save_path=tmp_path / "best",
            reward_threshold=3.0,
        )
        model.learn(100, callback=cb)
        assert model.num_timesteps == 5
        assert DQN.load(tmp_path / "best").num_timesteps == 5
