"""Schedules.

Two flavours:

- :func:`linear_schedule` is a pure function of the step count and is
  safe inside ``jax.jit``.
- :class:`LearningRateSchedule` subclasses are evaluated on the host at
  ``progress_remaining``, which falls from 1 at the start of training to
  0 at the end. They serialise to plain dicts so checkpoints can record
  them.

Usage::

    from vibe_gym.schedule import LinearSchedule, linear_schedule

    eps = linear_schedule(start=1.0, end=0.01, steps=10_000)(step)
    lr = LinearSchedule(3e-4, 1e-5)(progress_remaining)
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

import jax.numpy as jnp

from vibe_gym.errors import InvalidCheckpoint

Schedule = Callable[[int | jnp.ndarray], jnp.ndarray]


def linear_schedule(
    start: float,
    end: float,
    steps: int,
) -> Schedule:
    """Return a pure function that linearly interpolates from *start* to *end*.

    The returned callable maps ``step -> value`` and is safe to use
    inside ``jax.jit``.

    Parameters
    ----------
    start:
        Value at step 0.
    end:
        Value at step *steps* (and beyond).
    steps:
        Number of steps over which to interpolate.
    """
    _start = jnp.float32(start)
    _end = jnp.float32(end)
    _steps = jnp.float32(max(steps, 1))

    def _schedule(step: int | jnp.ndarray) -> jnp.ndarray:
        frac = jnp.clip(jnp.float32(step) / _steps, 0.0, 1.0)
        return _start + frac * (_end - _start)

    return _schedule


# ---------------------------------------------------------------------------
# Learning-rate schedules (host side, progress_remaining in [0, 1])
# ---------------------------------------------------------------------------


class LearningRateSchedule:
    kind: str = ""

    def value(self, progress_remaining: float) -> float:
        raise NotImplementedError

    def __call__(self, progress_remaining: float) -> float:
        return self.value(progress_remaining)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}  # type: ignore[call-overload]


@dataclass(frozen=True)
class ConstantSchedule(LearningRateSchedule):
    constant_value: float
    kind = "constant"

    def value(self, progress_remaining: float) -> float:
        return self.constant_value

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "value": self.constant_value}


@dataclass(frozen=True)
class LinearSchedule(LearningRateSchedule):
    initial_value: float
    final_value: float = 0.0
    kind = "linear"

    def value(self, progress_remaining: float) -> float:
        return self.final_value + progress_remaining * (self.initial_value - self.final_value)


@dataclass(frozen=True)
class ExponentialSchedule(LearningRateSchedule):
    """``initial_value * decay_rate ** (100 * progress_done)``."""

    initial_value: float
    decay_rate: float = 0.99
    kind = "exponential"

    def value(self, progress_remaining: float) -> float:
        return self.initial_value * self.decay_rate ** ((1.0 - progress_remaining) * 100)


@dataclass(frozen=True)
class StepSchedule(LearningRateSchedule):
    """Multiplies by ``gamma`` at each milestone (fraction of training done)."""

    initial_value: float
    milestones: tuple[float, ...] = ()
    gamma: float = 0.1
    kind = "step"

    def __post_init__(self) -> None:
        object.__setattr__(self, "milestones", tuple(sorted(self.milestones, reverse=True)))

    def value(self, progress_remaining: float) -> float:
        done = 1.0 - progress_remaining
        lr = self.initial_value
        for milestone in self.milestones:
            if done >= milestone:
                lr *= self.gamma
        return lr


@dataclass(frozen=True)
class CosineAnnealingSchedule(LearningRateSchedule):
    initial_value: float
    min_value: float = 0.0
    kind = "cosine"

    def value(self, progress_remaining: float) -> float:
        done = 1.0 - progress_remaining
        return self.min_value + 0.5 * (self.initial_value - self.min_value) * (
            1 + math.cos(math.pi * done)
        )


@dataclass(frozen=True)
class WarmupSchedule(LearningRateSchedule):
    """Linear warmup over the first ``warmup_fraction`` of training, then
    ``base_schedule`` stretched over the remainder."""

    base_schedule: LearningRateSchedule
    warmup_fraction: float = 0.05
    warmup_initial_value: float = 0.0
    kind = "warmup"

    def value(self, progress_remaining: float) -> float:
        done = 1.0 - progress_remaining
        if done < self.warmup_fraction:
            target = self.base_schedule.value(1.0 - self.warmup_fraction)
            frac = done / self.warmup_fraction
            return self.warmup_initial_value + frac * (target - self.warmup_initial_value)
        adjusted = (done - self.warmup_fraction) / (1.0 - self.warmup_fraction)
        return self.base_schedule.value(1.0 - adjusted)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "base_schedule": self.base_schedule.to_dict(),
            "warmup_fraction": self.warmup_fraction,
            "warmup_initial_value": self.warmup_initial_value,
        }


@dataclass(frozen=True)
class FunctionSchedule(LearningRateSchedule):
    """Wraps a plain callable. Not serialisable."""

    fn: Callable[[float], float] = field(repr=False)
    kind = "function"

    def value(self, progress_remaining: float) -> float:
        return float(self.fn(progress_remaining))

    def to_dict(self) -> dict[str, Any] | None:  # type: ignore[override]
        return None


_KINDS: dict[str, type[LearningRateSchedule]] = {
    "linear": LinearSchedule,
    "exponential": ExponentialSchedule,
    "step": StepSchedule,
    "cosine": CosineAnnealingSchedule,
}


def schedule_from_dict(data: dict[str, Any]) -> LearningRateSchedule:
    """Inverse of :meth:`LearningRateSchedule.to_dict`."""
    data = dict(data)
    kind = data.pop("kind", None)
    try:
        if kind == "constant":
            return ConstantSchedule(data["value"])
        if kind == "warmup":
            base = schedule_from_dict(data.pop("base_schedule"))
            return WarmupSchedule(base, **data)
        if kind == "step":
            data["milestones"] = tuple(data.get("milestones", ()))
        if kind in _KINDS:
            return _KINDS[kind](**data)
    except (KeyError, TypeError) as e:
        raise InvalidCheckpoint(f"Malformed {kind!r} schedule: {data}") from e
    raise InvalidCheckpoint(f"Unknown learning-rate schedule kind {kind!r}")


def as_schedule(value: float | LearningRateSchedule | Callable[[float], float]) -> LearningRateSchedule:
    """Floats become :class:`ConstantSchedule`, callables :class:`FunctionSchedule`."""
    if isinstance(value, LearningRateSchedule):
        return value
    if callable(value):
        return FunctionSchedule(value)
    return ConstantSchedule(float(value))
