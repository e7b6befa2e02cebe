"""Checkpointing for Equinox models and trained algorithms.

Array state (networks, optimizer states) is written with Equinox's
leaf serialisation, one ``.eqx`` file per named component. Everything
else an algorithm needs to resume (counters, config, schedule) goes into
``metadata.json``::

    checkpoint/
        metadata.json
        policy.eqx
        target.eqx
        optimizer.eqx
        replay_buffer/          # optional

Usage::

    from vibe_gym.checkpoint import save_eqx, load_eqx

    save_eqx(path / "policy.eqx", params)
    params = load_eqx(path / "policy.eqx", like=fresh_params)
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import equinox as eqx

from vibe_gym.errors import (
    AlgorithmKindMismatch,
    IncompatibleVersion,
    InvalidCheckpoint,
    MissingCheckpointFile,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = "1.0"
METADATA_FILE = "metadata.json"


# ---------------------------------------------------------------------------
# Low-level: Equinox serialization
# ---------------------------------------------------------------------------


def save_eqx(path: str | Path, pytree: Any) -> Path:
    """Save a pytree using Equinox's built-in serialization.

    Works with Equinox models, NamedTuples, optax states, and any
    JAX pytree.

    Parameters
    ----------
    path:
        File path for the checkpoint (conventionally ``*.eqx``).
    pytree:
        The pytree to save.

    Returns
    -------
    The resolved path that was written.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    eqx.tree_serialise_leaves(str(p), pytree)
    return p


def load_eqx(path: str | Path, like: T) -> T:
    """Load a pytree saved with :func:`save_eqx`.

    Parameters
    ----------
    path:
        Path to the checkpoint file.
    like:
        A pytree with the same structure (shapes, dtypes) as the saved
        data. Typically a freshly-initialized copy of the state.

    Raises
    ------
    MissingCheckpointFile
        If *path* does not exist.
    InvalidCheckpoint
        If the file does not match the structure of *like*.
    """
    p = Path(path)
    if not p.exists():
        raise MissingCheckpointFile(p.name)
    try:
        return eqx.tree_deserialise_leaves(str(p), like)
    except (ValueError, RuntimeError, OSError) as e:
        raise InvalidCheckpoint(f"Cannot read {p.name}: {e}") from e


# ---------------------------------------------------------------------------
# Algorithm metadata
# ---------------------------------------------------------------------------


class AlgorithmKind(str, Enum):
    SAC = "sac"
    DQN = "dqn"
    Q_LEARNING = "q_learning"
    SARSA = "sarsa"


@dataclass
class AlgorithmCheckpoint:
    """Contents of ``metadata.json``."""

    algorithm_kind: AlgorithmKind
    version: str = CHECKPOINT_VERSION
    num_timesteps: int = 0
    total_timesteps: int = 0
    progress_remaining: float = 1.0
    learning_rate_schedule: dict[str, Any] | None = None
    config: dict[str, Any] = field(default_factory=dict)
    exploration_rate: float | None = None
    num_gradient_steps: int = 0
    n_states: int | None = None
    n_actions: int | None = None
    state_strides: list[int] | None = None
    seed: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def write(self, directory: str | Path) -> Path:
        d = Path(directory)
        d.mkdir(parents=True, exist_ok=True)
        data = asdict(self)
        data["algorithm_kind"] = AlgorithmKind(self.algorithm_kind).value
        path = d / METADATA_FILE
        path.write_text(json.dumps(data, indent=2, default=str) + "\n")
        return path

    @classmethod
    def read(
        cls,
        directory: str | Path,
        expected_kind: AlgorithmKind | None = None,
    ) -> AlgorithmCheckpoint:
        path = Path(directory) / METADATA_FILE
        if not path.exists():
            raise MissingCheckpointFile(METADATA_FILE)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise InvalidCheckpoint(f"{METADATA_FILE} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidCheckpoint(f"{METADATA_FILE} must hold a JSON object")

        version = str(data.get("version", ""))
        if version.split(".")[0] != CHECKPOINT_VERSION.split(".")[0]:
            raise IncompatibleVersion(version, CHECKPOINT_VERSION)

        try:
            kind = AlgorithmKind(data["algorithm_kind"])
        except (KeyError, ValueError) as e:
            raise InvalidCheckpoint(
                f"Unknown algorithm kind {data.get('algorithm_kind')!r}"
            ) from e
        if expected_kind is not None and kind != AlgorithmKind(expected_kind):
            raise AlgorithmKindMismatch(kind.value, AlgorithmKind(expected_kind).value)

        data["algorithm_kind"] = kind
        try:
            return cls(**data)
        except TypeError as e:
            raise InvalidCheckpoint(f"Malformed {METADATA_FILE}: {e}") from e
