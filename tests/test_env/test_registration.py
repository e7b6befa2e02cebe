"""Tests for the environment registry and make()."""

import pytest

from vibe_gym.env import (
    EnvSpec,
    OrderEnforcing,
    PassiveEnvChecker,
    RecordEpisodeStatistics,
    Registry,
    ScaleReward,
    TimeLimit,
    WrapperSpec,
    make,
    parse_env_id,
    registry,
    spec,
)
from vibe_gym.errors import (
    InvalidConfiguration,
    MisconfiguredRegistration,
    UnregisteredEnvironment,
)


def _chain(env):
    kinds = []
    while True:
        kinds.append(type(env))
        if not hasattr(env, "env") or env is env.unwrapped:
            return kinds
        env = env.env


@pytest.fixture
def reg(countdown_env):
    r = Registry()
    r.register("Countdown-v0", countdown_env, max_episode_steps=10, reward_threshold=3.0)
    return r


class TestParseEnvId:
    @pytest.mark.parametrize(
        "env_id, expected",
        [
            ("CartPole-v1", (None, "CartPole", 1)),
            ("my_ns/Maze-v12", ("my_ns", "Maze", 12)),
            ("Plain", (None, "Plain", None)),
        ],
    )
    def test_parses(self, env_id, expected):
        assert parse_env_id(env_id) == expected

    def test_malformed_id(self):
        with pytest.raises(InvalidConfiguration):
            parse_env_id("bad id with spaces")


class TestRegistry:
    def test_bundled_envs_registered(self):
        ids = registry().ids()
        for env_id in ("CartPole-v1", "MountainCar-v0", "Pendulum-v1", "GridWorld-v0", "FrozenLake-v1"):
            assert env_id in ids
        assert spec("CartPole-v1").max_episode_steps == 500
        assert spec("CartPole-v1").reward_threshold == 475.0

    def test_unknown_id_suggests(self):
        with pytest.raises(UnregisteredEnvironment, match="CartPole-v1"):
            spec("CartPole-v0")

    def test_missing_entry_point(self, reg):
        reg.register("Empty-v0")
        with pytest.raises(MisconfiguredRegistration):
            reg.make("Empty-v0")

    def test_entry_point_must_build_env(self, reg):
        reg.register("NotAnEnv-v0", lambda: object())
        with pytest.raises(MisconfiguredRegistration):
            reg.make("NotAnEnv-v0")

    def test_string_entry_point(self):
        env = make("GridWorld-v0")
        assert env.unwrapped.spec.entry_point == "vibe_gym.env.grid_world:GridWorldEnv"

    def test_override_logs_warning(self, reg, countdown_env, caplog):
        reg.register("Countdown-v0", countdown_env)
        assert "Overriding" in caplog.text


class TestMake:
    def test_default_chain_order(self, reg, countdown_env):
        env = reg.make("Countdown-v0")
        assert _chain(env) == [
            PassiveEnvChecker,
            OrderEnforcing,
            TimeLimit,
            RecordEpisodeStatistics,
            countdown_env,
        ]

    def test_wrappers_can_be_switched_off(self, reg, countdown_env):
        env = reg.make("Countdown-v0", disable_env_checker=True, record_episode_statistics=False)
        assert _chain(env) == [OrderEnforcing, TimeLimit, countdown_env]

    def test_caller_kwargs_win(self, reg):
        reg.register("Countdown-v1", reg.spec("Countdown-v0").entry_point, episode_length=5)
        env = reg.make("Countdown-v1", episode_length=2)
        assert env.unwrapped.episode_length == 2
        assert env.spec.kwargs == {"episode_length": 2}

    def test_spec_reflects_effective_settings(self, reg):
        env = reg.make("Countdown-v0", max_episode_steps=4)
        assert env.spec.max_episode_steps == 4
        assert env.spec.id == "Countdown-v0"

    def test_end_to_end_episode(self, reg):
        env = reg.make("Countdown-v0")
        env.reset(seed=3)
        total, length, info = 0.0, 0, {}
        done = False
        while not done:
            _, reward, terminated, truncated, info = env.step(0)
            total += reward
            length += 1
            done = terminated or truncated
        assert (length, total) == (3, 3.0)
        assert info["episode"]["l"] == 3
        assert info["episode"]["r"] == 3.0

    def test_time_limit_truncates(self, reg):
        env = reg.make("Countdown-v0", max_episode_steps=2, episode_length=50)
        env.reset()
        env.step(0)
        result = env.step(0)
        assert result.truncated and not result.terminated
        # Statistics sit below the time limit.
        assert "episode" not in result.info

    def test_statistics_outside_time_limit(self, reg):
        env = RecordEpisodeStatistics(
            reg.make("Countdown-v0", max_episode_steps=2, episode_length=50, record_episode_statistics=False)
        )
        env.reset()
        env.step(0)
        result = env.step(0)
        assert result.truncated
        assert result.info["episode"]["l"] == 2

    def test_additional_wrappers_applied_last(self, countdown_env):
        r = Registry()
        r.register(
            "Scaled-v0",
            countdown_env,
            additional_wrappers=(WrapperSpec("scale", ScaleReward, {"scale": 2.0}),),
        )
        env = r.make("Scaled-v0")
        assert isinstance(env, ScaleReward)
        env.reset()
        assert env.step(0).reward == 2.0

    def test_invalid_record_buffer_length(self, reg):
        with pytest.raises(InvalidConfiguration):
            reg.make("Countdown-v0", record_buffer_length=0)


class TestEnvSpecJson:
    def test_json_form(self):
        original = spec("FrozenLake-v1")
        restored = EnvSpec.from_json(original.to_json())
        assert restored.id == original.id
        assert restored.kwargs == {"map_name": "4x4"}
        assert restored.max_episode_steps == 100
        assert restored.version == 1

    def test_callable_entry_point_not_serialisable(self, reg):
        with pytest.raises(InvalidConfiguration):
            reg.spec("Countdown-v0").to_json()
