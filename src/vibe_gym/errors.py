"""Exception hierarchy for vibe_gym.

Three families, matching how callers are expected to react:

- ``ContractViolation``: the caller misused an environment (bad action,
  step before reset). Not recoverable; fix the calling code.
- ``ConfigurationError``: raised at construction or load time for bad
  settings (unknown env id, incompatible buffer flags). Also a
  ``ValueError`` so generic handlers keep working.
- ``PersistenceError``: checkpoint artifacts missing or malformed. The
  caller may fall back to fresh initialisation.
"""

from __future__ import annotations


class VibeGymError(Exception):
    """Base class for all errors raised by vibe_gym."""


# ---------------------------------------------------------------------------
# Contract violations
# ---------------------------------------------------------------------------


class ContractViolation(VibeGymError):
    """An environment was used in a way its contract forbids."""


class ActionOutsideSpace(ContractViolation):
    def __init__(self, env_id: str | None = None, action: object = None) -> None:
        self.env_id = env_id
        self.action = action
        where = f" for {env_id!r}" if env_id else ""
        super().__init__(f"Action {action!r} is outside the action space{where}")


class ObservationOutsideSpace(ContractViolation):
    def __init__(self, env_id: str | None = None, detail: str = "") -> None:
        self.env_id = env_id
        where = f" for {env_id!r}" if env_id else ""
        msg = f"Observation is outside the observation space{where}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ResetNeeded(ContractViolation):
    """``step`` or ``render`` was called before ``reset``."""


class VectorEnvNeedsReset(ContractViolation):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(
            f"Sub-environment {index} finished its episode and autoreset is "
            "disabled; call reset() first"
        )


# ---------------------------------------------------------------------------
# Configuration faults
# ---------------------------------------------------------------------------


class ConfigurationError(VibeGymError, ValueError):
    """Invalid settings detected at construction or load time."""


class InvalidConfiguration(ConfigurationError):
    pass


class UnregisteredEnvironment(ConfigurationError):
    def __init__(self, env_id: str, suggestions: list[str] | None = None) -> None:
        self.env_id = env_id
        msg = f"Environment {env_id!r} is not registered."
        if suggestions:
            msg += f" Did you mean: {', '.join(suggestions)}?"
        super().__init__(msg)


class MisconfiguredRegistration(ConfigurationError):
    def __init__(self, env_id: str) -> None:
        self.env_id = env_id
        super().__init__(f"Environment {env_id!r} has no entry point")


class IncompatibleBufferConfig(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "optimize_memory_usage and handle_timeout_termination cannot both "
            "be enabled"
        )


class InvalidNumEnvs(ConfigurationError):
    def __init__(self, num_envs: int) -> None:
        self.num_envs = num_envs
        super().__init__(f"num_envs must be positive, got {num_envs}")


class InvalidStatsKey(ConfigurationError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(
            f"Info already contains the episode statistics key {key!r}"
        )


class VectorEnvActionCountMismatch(ConfigurationError):
    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} actions, got {actual}")


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------


class VectorEnvClosed(VibeGymError):
    def __init__(self) -> None:
        super().__init__("Vector environment is closed")


class InvalidState(VibeGymError):
    """An operation was requested in a state that cannot serve it."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class PersistenceError(VibeGymError):
    """Loading or saving a checkpoint failed."""


class MissingCheckpointFile(PersistenceError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Checkpoint file missing: {name}")


class InvalidCheckpoint(PersistenceError):
    pass


class IncompatibleVersion(PersistenceError):
    def __init__(self, found: str, expected: str) -> None:
        self.found = found
        self.expected = expected
        super().__init__(
            f"Checkpoint version {found!r} is incompatible with {expected!r}"
        )


class AlgorithmKindMismatch(InvalidCheckpoint):
    def __init__(self, found: str, expected: str) -> None:
        self.found = found
        self.expected = expected
        super().__init__(
            f"Checkpoint holds a {found!r} model, cannot load it as {expected!r}"
        )
