# asa_console/shutdown.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from .commands import DO_EXIT, SAVE_WORLD, broadcast
from .rcon import ConnectionTarget, RconClient

log = logging.getLogger(__name__)

MILESTONES = (600, 300, 120, 60, 30, 10, 5, 4, 3, 2, 1)  # seconds remaining
MIN_TOTAL = 10
DEFAULT_TOTAL = 600
SAVE_BEFORE_EXIT = 10   # seconds remaining when the early save fires
SAVE_MIN_TOTAL = 12     # early save only when total is strictly above this

MILESTONE = "milestone"
SAVE = "save"
FINAL = "final"

MSG_SCHEDULED = "Server shutdown scheduled in {n} seconds."
MSG_MILESTONE = "Server shutdown in {n} seconds."
MSG_FINAL = "Saving and shutting down now..."

Listener = Callable[["StepOutcome"], None]


@dataclass(frozen=True)
class CountdownPlan:
    total_seconds: int
    milestones: tuple[int, ...]

    @classmethod
    def build(cls, total_seconds: int = DEFAULT_TOTAL) -> "CountdownPlan":
        total = max(MIN_TOTAL, int(total_seconds))
        return cls(total, tuple(s for s in MILESTONES if s < total))

    @property
    def save_offset(self) -> Optional[int]:
        if self.total_seconds > SAVE_MIN_TOTAL:
            return self.total_seconds - SAVE_BEFORE_EXIT
        return None

    def steps(self) -> list[tuple[int, str, int]]:
        """(offset, kind, seconds remaining) for every deferred step, by offset."""
        total = self.total_seconds
        out = [(total - s, MILESTONE, s) for s in self.milestones]
        if self.save_offset is not None:
            out.append((self.save_offset, SAVE, SAVE_BEFORE_EXIT))
        out.append((total, FINAL, 0))
        return sorted(out, key=lambda st: (st[0], st[1]))


@dataclass(frozen=True)
class StepOutcome:
    label: str
    command: str
    ok: bool
    error: Optional[BaseException] = None


async def best_effort(label: str, command: str, fn: Callable[..., Awaitable[Any]], *args,
                      listener: Optional[Listener] = None) -> bool:
    """Run one call; failures are logged and reported, never raised."""
    try:
        await fn(*args)
    except Exception as e:
        log.warning("shutdown step %s (%s) failed: %s", label, command, e)
        outcome = StepOutcome(label, command, False, e)
    else:
        log.debug("shutdown step %s (%s) sent", label, command)
        outcome = StepOutcome(label, command, True)
    if listener is not None:
        listener(outcome)
    return outcome.ok


class CountdownHandle:
    """
    Owns every timer and task of one countdown.

    Nothing is withdrawn unless cancel() is called explicitly; wait() resolves
    once every action has run (or the countdown was cancelled).
    """

    def __init__(self, plan: CountdownPlan, timer: Any):
        self.plan = plan
        self.started = True
        self.cancelled = False
        self._timer = timer
        self._timers: list[Any] = []
        self._tasks: set[asyncio.Future] = set()
        self._outstanding = 0
        self._done = asyncio.Event()

    @property
    def total_seconds(self) -> int:
        return self.plan.total_seconds

    @property
    def pending(self) -> int:
        return self._outstanding

    def as_dict(self) -> dict:
        return {"started": self.started, "totalSeconds": self.total_seconds}

    def schedule(self, offset: float, action: Callable[[], Awaitable[Any]]) -> None:
        self._outstanding += 1
        self._timers.append(self._timer.call_later(max(0, offset), self._run, action))

    def spawn(self, action: Callable[[], Awaitable[Any]]) -> None:
        self._outstanding += 1
        self._run(action)

    def _run(self, action: Callable[[], Awaitable[Any]]) -> None:
        task = asyncio.ensure_future(action())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if self.cancelled:
            return
        self._outstanding -= 1
        if self._outstanding <= 0:
            self._done.set()

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        for th in self._timers:
            th.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._timers.clear()
        self._outstanding = 0
        self._done.set()
        log.info("Shutdown countdown (%ds) cancelled", self.total_seconds)

    async def wait(self) -> None:
        await self._done.wait()


class ShutdownOrchestrator:
    """
    Broadcast/save/exit countdown over fire-and-forget RCON calls.

    start_countdown() must run inside an event loop; it arms timers on that
    loop (or on the injected timer) and returns without awaiting anything.
    """

    def __init__(self, client: Optional[RconClient] = None, timer: Any = None,
                 listener: Optional[Listener] = None):
        self.client = client or RconClient()
        self.timer = timer
        self.listener = listener

    def start_countdown(self, target: ConnectionTarget,
                        total_seconds: int = DEFAULT_TOTAL) -> CountdownHandle:
        plan = CountdownPlan.build(total_seconds)
        timer = self.timer or asyncio.get_running_loop()
        handle = CountdownHandle(plan, timer)
        total = plan.total_seconds

        handle.spawn(partial(self._announce, target, "scheduled", MSG_SCHEDULED.format(n=total)))
        for offset, kind, remaining in plan.steps():
            if kind == MILESTONE:
                action = partial(self._announce, target, f"{MILESTONE}:{remaining}",
                                 MSG_MILESTONE.format(n=remaining))
            elif kind == SAVE:
                action = partial(self._exec, target, SAVE, SAVE_WORLD)
            else:
                action = partial(self._final, target)
            handle.schedule(offset, action)

        log.info("Shutdown of %s:%s scheduled in %d seconds (%d milestones)",
                 target.host, target.port, total, len(plan.milestones))
        return handle

    async def _announce(self, target: ConnectionTarget, label: str, message: str) -> bool:
        return await self._exec(target, label, broadcast(message))

    async def _exec(self, target: ConnectionTarget, label: str, command: str) -> bool:
        return await best_effort(label, command, self.client.send_to, target, command,
                                 listener=self.listener)

    async def _final(self, target: ConnectionTarget) -> None:
        await self._announce(target, FINAL, MSG_FINAL)
        await self._exec(target, FINAL, SAVE_WORLD)
        await self._exec(target, FINAL, DO_EXIT)
        log.info("Shutdown sequence for %s:%s complete", target.host, target.port)
