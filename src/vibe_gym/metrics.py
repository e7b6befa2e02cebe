"""Console logging setup and a JSONL metrics sink.

Every module logs through ``logging.getLogger(__name__)``, so all
records land under the ``vibe_gym`` logger. :func:`setup_logging`
attaches one compact handler there; library code never configures
logging on import.

Training metrics are written one JSON object per line::

    from vibe_gym.metrics import MetricsLogger, read_metrics

    with MetricsLogger("runs/dqn/metrics.jsonl") as sink:
        sink.write({"step": 1000, "loss": 0.42, "episode_return": 195.0})

    rows = read_metrics("runs/dqn/metrics.jsonl")
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import IO, Any

import jax
import numpy as np

ROOT_LOGGER = "vibe_gym"

# ---------------------------------------------------------------------------
# Structured console logging
# ---------------------------------------------------------------------------

_LEVEL_ABBREV = {
    logging.DEBUG: "D",
    logging.INFO: "I",
    logging.WARNING: "W",
    logging.ERROR: "E",
    logging.CRITICAL: "C",
}


class _CompactFormatter(logging.Formatter):
    """One-letter level, millisecond timestamp, logger name.

    Example output::

        I 2026-02-15 14:30:22.123 [vibe_gym.algorithms.off_policy] episode 40 | return=187.0
    """

    def format(self, record: logging.LogRecord) -> str:
        lvl = _LEVEL_ABBREV.get(record.levelno, "?")
        ts = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        line = f"{lvl} {ts}.{int(record.msecs):03d} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: int | str = logging.INFO) -> None:
    """Install the compact handler on the ``vibe_gym`` logger.

    Repeated calls replace the handler instead of stacking duplicates.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    for h in root.handlers[:]:
        root.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(_CompactFormatter())
    root.addHandler(handler)
    root.propagate = False


def log_step_progress(
    step: int,
    total_steps: int,
    metrics: dict[str, Any] | None = None,
    logger_name: str = ROOT_LOGGER,
) -> None:
    """Log ``step N/M (p%) | k=v ...`` at INFO."""
    pct = 100.0 * step / total_steps if total_steps > 0 else 0.0
    parts = [f"step {step}/{total_steps} ({pct:.1f}%)"]
    if metrics:
        fields = []
        for k, v in metrics.items():
            if k in ("step", "wall_time"):
                continue
            v = _to_python(v)
            fields.append(f"{k}={v:.4g}" if isinstance(v, float) else f"{k}={v}")
        if fields:
            parts.append(" ".join(fields))
    logging.getLogger(logger_name).info(" | ".join(parts))


# ---------------------------------------------------------------------------
# JSONL sink
# ---------------------------------------------------------------------------


class MetricsLogger:
    """Append-only JSONL metrics file.

    Parameters
    ----------
    path:
        Path to the JSONL file. Parent directories are created.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file: IO[str] | None = open(self._path, "a")  # noqa: SIM115
        self._start_time = time.monotonic()

    def write(self, record: dict[str, Any]) -> None:
        """Append one record.

        Adds ``wall_time`` (seconds since the logger was created) unless
        present. JAX/numpy values become plain Python values.
        """
        if self._file is None:
            raise ValueError(f"MetricsLogger({self._path}) is closed")
        row = {k: _to_python(v) for k, v in record.items()}
        row.setdefault("wall_time", round(time.monotonic() - self._start_time, 3))
        self._file.write(json.dumps(row, default=str) + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def path(self) -> Path:
        return self._path

    def __enter__(self) -> MetricsLogger:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MetricsLogger({self._path})"


def read_metrics(path: str | Path) -> list[dict[str, Any]]:
    """All records of a JSONL metrics file; empty if it does not exist."""
    p = Path(path)
    if not p.exists():
        return []
    return [json.loads(line) for line in p.read_text().splitlines() if line.strip()]


def _to_python(val: Any) -> Any:
    if isinstance(val, (jax.Array, np.ndarray)):
        return val.item() if val.size == 1 else np.asarray(val).tolist()
    if isinstance(val, (np.integer, np.floating, np.bool_)):
        return val.item()
    return val
