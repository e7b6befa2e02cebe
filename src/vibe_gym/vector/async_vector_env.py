"""Parallel vector env: one worker thread per slot.

Each worker builds and exclusively owns its environment and talks to the
coordinator only through queues. Every batched call fans one command out
to each worker, waits for all replies, and re-sorts them by slot index,
so results do not depend on completion order. If any worker fails, the
first failure (by slot index) is re-raised once all replies are in.

Threads rather than processes: the JAX runtime is not fork-safe, and the
compiled kernels release the GIL while they run.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Sequence
from typing import Any, NamedTuple

from vibe_gym.env.core import AutoresetMode, Env
from vibe_gym.errors import InvalidConfiguration, InvalidNumEnvs
from vibe_gym.vector.base import (
    VectorEnv,
    VectorResetResult,
    VectorStepResult,
    resolve_seeds,
    step_slot,
)

logger = logging.getLogger(__name__)


class _Command(NamedTuple):
    name: str  # "reset" | "step" | "close"
    payload: Any = None


class _Reply(NamedTuple):
    index: int
    ok: bool
    value: Any


def _worker_loop(
    index: int,
    env_fn: Callable[[], Env],
    mode: AutoresetMode,
    inbox: queue.Queue[_Command],
    outbox: queue.Queue[_Reply],
) -> None:
    """Runs in the worker thread until a ``close`` command arrives."""
    try:
        env = env_fn()
    except Exception as e:  # reported to the coordinator
        outbox.put(_Reply(index, False, e))
        return
    outbox.put(_Reply(index, True, (env.observation_space, env.action_space, env.spec)))

    needs_reset = False
    while True:
        command = inbox.get()
        if command.name == "close":
            try:
                env.close()
            except Exception as e:  # reported to the coordinator
                outbox.put(_Reply(index, False, e))
            else:
                outbox.put(_Reply(index, True, None))
            break

        try:
            if command.name == "reset":
                seed, options = command.payload
                value = env.reset(seed=seed, options=options)
                needs_reset = False
            elif command.name == "step":
                value, needs_reset = step_slot(env, command.payload, mode, needs_reset, index)
            else:
                raise InvalidConfiguration(f"Unknown worker command {command.name!r}")
        except Exception as e:  # reported to the coordinator
            outbox.put(_Reply(index, False, e))
        else:
            outbox.put(_Reply(index, True, value))


class AsyncVectorEnv(VectorEnv):
    """Runs each environment in its own worker thread.

    Args:
        env_fns: Zero-argument constructors, one per slot. Each is called
            inside its worker thread.
        autoreset_mode: When finished slots are reset.
    """

    def __init__(
        self,
        env_fns: Sequence[Callable[[], Env]],
        autoreset_mode: AutoresetMode = AutoresetMode.NEXT_STEP,
    ) -> None:
        if len(env_fns) == 0:
            raise InvalidNumEnvs(0)
        mode = AutoresetMode(autoreset_mode)
        self._outbox: queue.Queue[_Reply] = queue.Queue()
        self._inboxes: list[queue.Queue[_Command]] = []
        self._workers: list[threading.Thread] = []
        for i, fn in enumerate(env_fns):
            inbox: queue.Queue[_Command] = queue.Queue()
            worker = threading.Thread(
                target=_worker_loop,
                args=(i, fn, mode, inbox, self._outbox),
                name=f"vibe_gym-env-{i}",
                daemon=True,
            )
            worker.start()
            self._inboxes.append(inbox)
            self._workers.append(worker)

        try:
            spaces = self._gather(len(env_fns))
        except Exception:
            self._shutdown()
            raise
        obs_space, act_space, env_spec = spaces[0]
        for i, (o, a, _) in enumerate(spaces[1:], start=1):
            if o != obs_space or a != act_space:
                self._shutdown()
                raise InvalidConfiguration(
                    f"Sub-environment {i} has different spaces than sub-environment 0"
                )
        super().__init__(len(env_fns), obs_space, act_space, mode)
        self.spec = env_spec
        logger.debug("Started %d environment workers", self.num_envs)

    def _gather(self, count: int) -> list[Any]:
        """Wait for ``count`` replies, sort by slot, raise the first error."""
        replies = sorted((self._outbox.get() for _ in range(count)), key=lambda r: r.index)
        errors = [r for r in replies if not r.ok]
        if errors:
            for extra in errors[1:]:
                logger.error("Sub-environment %d also failed: %r", extra.index, extra.value)
            raise errors[0].value
        return [r.value for r in replies]

    def reset(
        self,
        *,
        seed: int | Sequence[int | None] | None = None,
        options: dict[str, Any] | None = None,
    ) -> VectorResetResult:
        self._check_open()
        seeds = resolve_seeds(seed, self.num_envs)
        for inbox, s in zip(self._inboxes, seeds, strict=True):
            inbox.put(_Command("reset", (s, options)))
        return self._collate_reset(self._gather(self.num_envs))

    def step(self, actions: Any) -> VectorStepResult:
        self._check_open()
        per_slot = self._unbatch_actions(actions)
        for inbox, action in zip(self._inboxes, per_slot, strict=True):
            inbox.put(_Command("step", action))
        return self._collate_step(self._gather(self.num_envs))

    def _shutdown(self) -> None:
        alive = [i for i, w in enumerate(self._workers) if w.is_alive()]
        for i in alive:
            self._inboxes[i].put(_Command("close"))
        for worker in self._workers:
            worker.join()

    def close_extras(self) -> None:
        for inbox in self._inboxes:
            inbox.put(_Command("close"))
        try:
            self._gather(self.num_envs)
        finally:
            for worker in self._workers:
                worker.join()
        logger.debug("Stopped %d environment workers", self.num_envs)
