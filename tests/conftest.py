import asyncio
import contextlib

import pytest

from asa_console.rcon import ConnectionTarget


class _Timer:
    _seq = 0

    def __init__(self, when, fn, args):
        _Timer._seq += 1
        self.seq = _Timer._seq
        self.when = when
        self.fn = fn
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class VirtualTimer:
    """call_later() against a clock that only moves when told to."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay, fn, *args):
        t = _Timer(self.now + delay, fn, args)
        self.timers.append(t)
        return t

    @property
    def armed(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    async def advance_to(self, when):
        while True:
            due = sorted((t for t in self.armed if t.when <= when), key=lambda t: (t.when, t.seq))
            if not due:
                break
            t = due[0]
            self.now = t.when
            t.fired = True
            t.fn(*t.args)
            await settle()
        self.now = when
        await settle()


async def settle(rounds=20):
    for _ in range(rounds):
        await asyncio.sleep(0)


class RecordingClient:
    """Stands in for RconClient; records (virtual time, command)."""

    def __init__(self, clock=None, fail=()):
        self.clock = clock
        self.sent = []
        self.fail = set(fail)
        self.reply = ""

    async def send_to(self, target, command, timeout_ms=None):
        self.sent.append((self.clock.now if self.clock else 0.0, command))
        if command in self.fail:
            raise ConnectionRefusedError(f"refused: {command}")
        return self.reply

    @property
    def commands(self):
        return [c for _, c in self.sent]


async def start_console(handler):
    """Local TCP server playing the remote console; returns (server, port)."""
    async def guarded(reader, writer):
        with contextlib.suppress(ConnectionError, asyncio.IncompleteReadError):
            await handler(reader, writer)
        writer.close()

    server = await asyncio.start_server(guarded, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


@pytest.fixture
def target():
    return ConnectionTarget("127.0.0.1", 27020, "hunter2")
