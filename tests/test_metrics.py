"""Tests for vibe_gym.metrics."""

from __future__ import annotations

import logging
from pathlib import Path

import jax.numpy as jnp
import numpy as np
import pytest

from vibe_gym.metrics import ROOT_LOGGER, MetricsLogger, log_step_progress, read_metrics, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger(ROOT_LOGGER)
    handlers, level, propagate = root.handlers[:], root.level, root.propagate
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    root.propagate = propagate


class TestMetricsLogger:
    def test_write_and_read(self, tmp_path: Path) -> None:
        path = tmp_path / "metrics.jsonl"
        with MetricsLogger(path) as sink:
            sink.write({"step": 100, "loss": 0.5})
            sink.write({"step": 200, "episode_return": 42.0})

        records = read_metrics(path)
        assert [r["step"] for r in records] == [100, 200]
        assert records[0]["loss"] == 0.5
        assert records[1]["episode_return"] == 42.0

    def test_adds_wall_time(self, tmp_path: Path) -> None:
        path = tmp_path / "metrics.jsonl"
        with MetricsLogger(path) as sink:
            sink.write({"step": 1})
            sink.write({"step": 2, "wall_time": 12.5})

        records = read_metrics(path)
        assert isinstance(records[0]["wall_time"], float)
        assert records[1]["wall_time"] == 12.5

    def test_array_values_become_python(self, tmp_path: Path) -> None:
        path = tmp_path / "metrics.jsonl"
        with MetricsLogger(path) as sink:
            sink.write({"loss": jnp.float32(0.25), "step": np.int64(7), "q": np.array([1.0, 2.0])})

        row = read_metrics(path)[0]
        assert isinstance(row["loss"], float)
        assert isinstance(row["step"], int)
        assert row["q"] == [1.0, 2.0]

    def test_appends_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "metrics.jsonl"
        for step in (1, 2):
            sink = MetricsLogger(path)
            sink.write({"step": step})
            sink.close()
        assert len(read_metrics(path)) == 2

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        path = tmp_path / "a" / "b" / "metrics.jsonl"
        with MetricsLogger(path) as sink:
            assert sink.path == path
        assert path.exists()

    def test_write_after_close(self, tmp_path: Path) -> None:
        sink = MetricsLogger(tmp_path / "metrics.jsonl")
        sink.close()
        sink.close()
        with pytest.raises(ValueError):
            sink.write({"step": 1})

    def test_read_missing_or_empty(self, tmp_path: Path) -> None:
        assert read_metrics(tmp_path / "absent.jsonl") == []
        (tmp_path / "empty.jsonl").write_text("\n")
        assert read_metrics(tmp_path / "empty.jsonl") == []


class TestLogging:
    def test_step_progress_format(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER):
            log_step_progress(
                250,
                1000,
                {"episodes": 4, "mean_return": 12.3456, "wall_time": 3.0, "loss": jnp.float32(0.5)},
            )
        message = caplog.records[-1].getMessage()
        assert message.startswith("step 250/1000 (25.0%)")
        assert "episodes=4" in message
        assert "mean_return=12.35" in message
        assert "loss=0.5" in message
        assert "wall_time" not in message

    def test_step_progress_zero_total(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER):
            log_step_progress(5, 0)
        assert caplog.records[-1].getMessage() == "step 5/0 (0.0%)"

    def test_setup_logging_single_handler(self, restore_root_logger: logging.Logger) -> None:
        setup_logging()
        setup_logging(logging.DEBUG)
        assert len(restore_root_logger.handlers) == 1
        assert restore_root_logger.level == logging.DEBUG
        assert restore_root_logger.propagate is False

    def test_compact_format(self, restore_root_logger: logging.Logger) -> None:
        setup_logging()
        formatter = restore_root_logger.handlers[0].formatter
        record = logging.LogRecord("vibe_gym.test", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
        line = formatter.format(record)
        assert line.startswith("W ")
        assert line.endswith("[vibe_gym.test] hello world")
