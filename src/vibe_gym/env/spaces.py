"""Action and observation spaces.

Spaces are immutable ``eqx.Module`` PyTree nodes. Bounds live in static
fields, so a space is hashable (composites aside) and safe to close over
inside jitted kernels. Membership tests run on the host with numpy and
return plain ``bool``; sampling consumes an explicit ``jax.random`` key
and returns host values (``int`` for ``Discrete``, ``np.ndarray`` for
array spaces).
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

import equinox as eqx
import jax
import numpy as np

# Stand-in half-width used when sampling along an unbounded Box dimension.
_UNBOUNDED_RANGE = 1e6


class Space(eqx.Module):
    """Base class: a membership predicate plus a sampler."""

    def sample(self, key: jax.Array) -> Any:
        raise NotImplementedError

    def contains(self, x: Any) -> bool:
        raise NotImplementedError

    def __contains__(self, x: Any) -> bool:
        return self.contains(x)

    @property
    def shape(self) -> tuple[int, ...] | None:
        return None

    @property
    def dtype(self) -> np.dtype | None:
        return None


def _as_int(x: Any) -> int | None:
    """Return ``x`` as a Python int when it is an integer scalar, else None."""
    if isinstance(x, (bool, np.bool_)):
        return None
    if isinstance(x, (int, np.integer)):
        return int(x)
    if hasattr(x, "shape") and hasattr(x, "dtype"):
        arr = np.asarray(x)
        if arr.shape == () and arr.dtype.kind in "iu":
            return int(arr)
    return None


class Discrete(Space):
    """Integers ``{start, start + 1, ..., start + n - 1}``."""

    n: int = eqx.field(static=True)
    start: int = eqx.field(static=True, default=0)

    def __init__(self, n: int, start: int = 0) -> None:
        if int(n) <= 0:
            raise ValueError(f"Discrete space needs n > 0, got {n}")
        self.n = int(n)
        self.start = int(start)

    def sample(
        self,
        key: jax.Array,
        mask: np.ndarray | Sequence[int] | None = None,
        probability: np.ndarray | Sequence[float] | None = None,
    ) -> int:
        """Draw one element.

        ``mask`` restricts sampling to the entries flagged true. A mask with
        no legal entry returns ``start``. ``probability`` replaces the
        uniform distribution with a categorical one.
        """
        if mask is not None and probability is not None:
            raise ValueError("Pass either mask or probability, not both")

        if mask is not None:
            mask = np.asarray(mask)
            if mask.shape != (self.n,):
                raise ValueError(f"mask must have shape ({self.n},), got {mask.shape}")
            legal = np.flatnonzero(mask)
            if legal.size == 0:
                return self.start
            idx = int(jax.random.randint(key, (), 0, legal.size))
            return self.start + int(legal[idx])

        if probability is not None:
            p = np.asarray(probability, dtype=np.float64)
            if p.shape != (self.n,):
                raise ValueError(
                    f"probability must have shape ({self.n},), got {p.shape}"
                )
            if np.any(p < 0) or not math.isclose(float(p.sum()), 1.0, abs_tol=1e-6):
                raise ValueError("probability must be non-negative and sum to 1")
            idx = int(jax.random.choice(key, self.n, p=p.astype(np.float32)))
            return self.start + idx

        return self.start + int(jax.random.randint(key, (), 0, self.n))

    def contains(self, x: Any) -> bool:
        v = _as_int(x)
        return v is not None and self.start <= v < self.start + self.n

    @property
    def shape(self) -> tuple[int, ...]:
        return ()

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.int64)

    def __repr__(self) -> str:
        if self.start:
            return f"Discrete({self.n}, start={self.start})"
        return f"Discrete({self.n})"


class Box(Space):
    """Elementwise bounded n-dimensional space.

    ``low`` and ``high`` may be scalars (broadcast to ``shape``) or arrays
    of identical shape. Infinite bounds are allowed.
    """

    _low: tuple[float, ...] = eqx.field(static=True)
    _high: tuple[float, ...] = eqx.field(static=True)
    _shape: tuple[int, ...] = eqx.field(static=True)
    _dtype: str = eqx.field(static=True)

    def __init__(
        self,
        low: float | np.ndarray | Sequence[float],
        high: float | np.ndarray | Sequence[float],
        shape: Sequence[int] | None = None,
        dtype: Any = np.float32,
    ) -> None:
        low_arr = np.asarray(low, dtype=np.float64)
        high_arr = np.asarray(high, dtype=np.float64)

        if shape is None:
            if low_arr.shape and high_arr.shape and low_arr.shape != high_arr.shape:
                raise ValueError(
                    f"Box bounds have mismatched shapes {low_arr.shape} and {high_arr.shape}"
                )
            shape = low_arr.shape or high_arr.shape
        shape = tuple(int(d) for d in shape)

        for name, arr in (("low", low_arr), ("high", high_arr)):
            if arr.shape not in ((), shape):
                raise ValueError(
                    f"Box {name} has shape {arr.shape}, expected {shape} or a scalar"
                )
        low_arr = np.broadcast_to(low_arr, shape)
        high_arr = np.broadcast_to(high_arr, shape)
        if np.any(low_arr > high_arr):
            raise ValueError("Box low must not exceed high")

        self._low = tuple(float(x) for x in low_arr.ravel())
        self._high = tuple(float(x) for x in high_arr.ravel())
        self._shape = shape
        self._dtype = np.dtype(dtype).name

    @property
    def low(self) -> np.ndarray:
        return np.array(self._low, dtype=self.dtype).reshape(self._shape)

    @property
    def high(self) -> np.ndarray:
        return np.array(self._high, dtype=self.dtype).reshape(self._shape)

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self._dtype)

    def is_bounded(self) -> bool:
        return bool(
            np.all(np.isfinite(self._low)) and np.all(np.isfinite(self._high))
        )

    def sample(self, key: jax.Array) -> np.ndarray:
        low = np.array(self._low, dtype=np.float64).reshape(self._shape)
        high = np.array(self._high, dtype=np.float64).reshape(self._shape)
        lo = np.where(np.isfinite(low), low, np.where(np.isfinite(high), high - _UNBOUNDED_RANGE, -_UNBOUNDED_RANGE))
        hi = np.where(np.isfinite(high), high, lo + 2 * _UNBOUNDED_RANGE)
        lo = np.minimum(lo, hi)

        if self.dtype.kind in "iu":
            draw = jax.random.randint(
                key, self._shape, lo.astype(np.int32), hi.astype(np.int32) + 1
            )
            return np.asarray(draw).astype(self.dtype)

        u = np.asarray(jax.random.uniform(key, self._shape), dtype=np.float64)
        value = (lo + u * (hi - lo)).astype(self.dtype)
        return np.clip(value, self.low, self.high)

    def contains(self, x: Any) -> bool:
        if isinstance(x, (list, tuple, float, int)):
            x = np.asarray(x, dtype=self.dtype)
        elif hasattr(x, "__array__"):
            x = np.asarray(x)
        else:
            return False
        if x.shape != self._shape:
            return False
        if x.dtype.kind not in "fiub":
            return False
        if self.dtype.kind in "iu" and x.dtype.kind == "f":
            return False
        if np.any(np.isnan(x)):
            return False
        return bool(np.all(x >= self.low) and np.all(x <= self.high))

    def __repr__(self) -> str:
        return f"Box({self.low.min()}, {self.high.max()}, {self._shape}, {self._dtype})"


class MultiDiscrete(Space):
    """Vector of independent discrete ranges ``[start_i, start_i + nvec_i)``."""

    nvec: tuple[int, ...] = eqx.field(static=True)
    start: tuple[int, ...] = eqx.field(static=True)

    def __init__(
        self,
        nvec: Sequence[int] | np.ndarray,
        start: Sequence[int] | np.ndarray | None = None,
    ) -> None:
        nvec_arr = np.asarray(nvec, dtype=np.int64).ravel()
        if nvec_arr.size == 0 or np.any(nvec_arr <= 0):
            raise ValueError(f"MultiDiscrete needs positive nvec, got {nvec}")
        start_arr = (
            np.zeros_like(nvec_arr)
            if start is None
            else np.asarray(start, dtype=np.int64).ravel()
        )
        if start_arr.shape != nvec_arr.shape:
            raise ValueError("MultiDiscrete start must match nvec")
        self.nvec = tuple(int(v) for v in nvec_arr)
        self.start = tuple(int(v) for v in start_arr)

    @property
    def shape(self) -> tuple[int, ...]:
        return (len(self.nvec),)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.int64)

    def sample(
        self,
        key: jax.Array,
        mask: Sequence[np.ndarray] | None = None,
    ) -> np.ndarray:
        if mask is None:
            draw = jax.random.randint(key, self.shape, 0, np.array(self.nvec))
            return np.asarray(draw, dtype=np.int64) + np.array(self.start)
        if len(mask) != len(self.nvec):
            raise ValueError("MultiDiscrete mask needs one entry per dimension")
        keys = jax.random.split(key, len(self.nvec))
        return np.array(
            [
                Discrete(n, s).sample(k, mask=m)
                for n, s, k, m in zip(self.nvec, self.start, keys, mask, strict=True)
            ],
            dtype=np.int64,
        )

    def contains(self, x: Any) -> bool:
        if isinstance(x, (list, tuple)):
            x = np.asarray(x)
        elif not hasattr(x, "__array__"):
            return False
        x = np.asarray(x)
        if x.shape != self.shape or x.dtype.kind not in "iu":
            return False
        start = np.array(self.start)
        return bool(np.all(x >= start) and np.all(x < start + np.array(self.nvec)))

    def __repr__(self) -> str:
        return f"MultiDiscrete({list(self.nvec)})"


class MultiBinary(Space):
    """Space of binary vectors of length n."""

    n: int = eqx.field(static=True)

    def sample(self, key: jax.Array) -> np.ndarray:
        return np.asarray(jax.random.bernoulli(key, shape=(self.n,)), dtype=np.int8)

    def contains(self, x: Any) -> bool:
        if not hasattr(x, "__array__") and not isinstance(x, (list, tuple)):
            return False
        x = np.asarray(x)
        return x.shape == (self.n,) and bool(np.all((x == 0) | (x == 1)))

    @property
    def shape(self) -> tuple[int, ...]:
        return (self.n,)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.int8)


class Tuple(Space):
    """Ordered product of heterogeneous sub-spaces."""

    spaces: tuple[Space, ...]

    def __init__(self, spaces: Sequence[Space]) -> None:
        spaces = tuple(spaces)
        for s in spaces:
            if not isinstance(s, Space):
                raise TypeError(f"Tuple elements must be spaces, got {type(s).__name__}")
        self.spaces = spaces

    def sample(self, key: jax.Array) -> tuple[Any, ...]:
        keys = jax.random.split(key, len(self.spaces))
        return tuple(s.sample(k) for s, k in zip(self.spaces, keys, strict=True))

    def contains(self, x: Any) -> bool:
        if isinstance(x, np.ndarray) and x.ndim == 1:
            x = tuple(x)
        if not isinstance(x, (tuple, list)) or len(x) != len(self.spaces):
            return False
        return all(s.contains(v) for s, v in zip(self.spaces, x, strict=True))

    def __getitem__(self, index: int) -> Space:
        return self.spaces[index]

    def __len__(self) -> int:
        return len(self.spaces)

    def __repr__(self) -> str:
        return f"Tuple({', '.join(repr(s) for s in self.spaces)})"


class Dict(Space):
    """Keyed product of heterogeneous sub-spaces (keys kept sorted)."""

    spaces: dict[str, Space]

    def __init__(self, spaces: Mapping[str, Space] | None = None, **kwargs: Space) -> None:
        merged = dict(spaces or {}, **kwargs)
        for k, s in merged.items():
            if not isinstance(s, Space):
                raise TypeError(f"Dict entry {k!r} is not a space")
        self.spaces = {k: merged[k] for k in sorted(merged)}

    def sample(self, key: jax.Array) -> dict[str, Any]:
        keys = jax.random.split(key, len(self.spaces))
        return {
            name: s.sample(k)
            for (name, s), k in zip(self.spaces.items(), keys, strict=True)
        }

    def contains(self, x: Any) -> bool:
        if not isinstance(x, Mapping) or set(x) != set(self.spaces):
            return False
        return all(s.contains(x[k]) for k, s in self.spaces.items())

    def __getitem__(self, key: str) -> Space:
        return self.spaces[key]

    def keys(self):
        return self.spaces.keys()

    def __len__(self) -> int:
        return len(self.spaces)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k!r}: {s!r}" for k, s in self.spaces.items())
        return f"Dict({inner})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def flatdim(space: Space) -> int:
    """Size of the flat vector encoding of an element of *space*."""
    if isinstance(space, Discrete):
        return space.n
    if isinstance(space, MultiDiscrete):
        return int(sum(space.nvec))
    if isinstance(space, (Box, MultiBinary)):
        return int(math.prod(space.shape))
    if isinstance(space, Tuple):
        return sum(flatdim(s) for s in space.spaces)
    if isinstance(space, Dict):
        return sum(flatdim(s) for s in space.spaces.values())
    raise TypeError(f"Cannot flatten space {space!r}")


def flatten(space: Space, x: Any) -> np.ndarray:
    """Flatten *x* to a float32 vector; discrete values become one-hot."""
    if isinstance(space, Discrete):
        out = np.zeros(space.n, dtype=np.float32)
        out[int(x) - space.start] = 1.0
        return out
    if isinstance(space, MultiDiscrete):
        parts = []
        for v, n, s in zip(np.asarray(x), space.nvec, space.start, strict=True):
            onehot = np.zeros(n, dtype=np.float32)
            onehot[int(v) - s] = 1.0
            parts.append(onehot)
        return np.concatenate(parts)
    if isinstance(space, (Box, MultiBinary)):
        return np.asarray(x, dtype=np.float32).ravel()
    if isinstance(space, Tuple):
        return np.concatenate(
            [flatten(s, v) for s, v in zip(space.spaces, x, strict=True)]
        )
    if isinstance(space, Dict):
        return np.concatenate([flatten(s, x[k]) for k, s in space.spaces.items()])
    raise TypeError(f"Cannot flatten space {space!r}")


def batch_space(space: Space, n: int) -> Space:
    """Space of ``n`` stacked elements of *space*."""
    if isinstance(space, Box):
        reps = (n,) + (1,) * len(space.shape)
        return Box(
            np.tile(space.low, reps), np.tile(space.high, reps), dtype=space.dtype
        )
    if isinstance(space, Discrete):
        return MultiDiscrete([space.n] * n, start=[space.start] * n)
    if isinstance(space, MultiDiscrete):
        nvec = np.array(space.nvec)
        start = np.array(space.start)
        return Box(
            np.tile(start, (n, 1)),
            np.tile(start + nvec - 1, (n, 1)),
            dtype=np.int64,
        )
    if isinstance(space, MultiBinary):
        return Box(0, 1, shape=(n, space.n), dtype=np.int8)
    return Tuple([space] * n)


def space_to_dict(space: Space) -> dict[str, Any]:
    """JSON-friendly description of *space*, inverse of :func:`space_from_dict`."""
    if isinstance(space, Discrete):
        return {"type": "Discrete", "n": space.n, "start": space.start}
    if isinstance(space, Box):
        return {
            "type": "Box",
            "low": list(space._low),
            "high": list(space._high),
            "shape": list(space.shape),
            "dtype": space._dtype,
        }
    if isinstance(space, MultiDiscrete):
        return {"type": "MultiDiscrete", "nvec": list(space.nvec), "start": list(space.start)}
    if isinstance(space, MultiBinary):
        return {"type": "MultiBinary", "n": space.n}
    if isinstance(space, Tuple):
        return {"type": "Tuple", "spaces": [space_to_dict(s) for s in space.spaces]}
    if isinstance(space, Dict):
        return {
            "type": "Dict",
            "spaces": {k: space_to_dict(s) for k, s in space.spaces.items()},
        }
    raise TypeError(f"Cannot serialise space {space!r}")


def space_from_dict(data: Mapping[str, Any]) -> Space:
    kind = data["type"]
    if kind == "Discrete":
        return Discrete(data["n"], start=data.get("start", 0))
    if kind == "Box":
        shape = tuple(data["shape"])
        low = np.asarray(data["low"], dtype=np.float64).reshape(shape)
        high = np.asarray(data["high"], dtype=np.float64).reshape(shape)
        return Box(low, high, shape=shape, dtype=data["dtype"])
    if kind == "MultiDiscrete":
        return MultiDiscrete(data["nvec"], start=data.get("start"))
    if kind == "MultiBinary":
        return MultiBinary(data["n"])
    if kind == "Tuple":
        return Tuple([space_from_dict(s) for s in data["spaces"]])
    if kind == "Dict":
        return Dict({k: space_from_dict(s) for k, s in data["spaces"].items()})
    raise ValueError(f"Unknown space type {kind!r}")
