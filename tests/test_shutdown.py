import asyncio
import logging
import time

from asa_console.shutdown import (
    CountdownPlan, ShutdownOrchestrator, StepOutcome, best_effort,
)
from conftest import RecordingClient, VirtualTimer, settle


def _countdown(total, fail=(), listener=None):
    clock = VirtualTimer()
    client = RecordingClient(clock, fail=fail)
    orch = ShutdownOrchestrator(client, timer=clock, listener=listener)
    return clock, client, orch


def test_plan_clamps_short_countdowns():
    plan = CountdownPlan.build(5)
    assert plan.total_seconds == 10
    assert plan.milestones == (5, 4, 3, 2, 1)
    assert plan.save_offset is None


def test_plan_for_ten_minutes_excludes_its_own_total():
    plan = CountdownPlan.build(600)
    assert plan.milestones == (300, 120, 60, 30, 10, 5, 4, 3, 2, 1)
    assert plan.save_offset == 590
    steps = plan.steps()
    assert steps[0] == (300, "milestone", 300)
    assert (590, "save", 10) in steps
    assert steps[-1] == (600, "final", 0)
    offsets = [s[0] for s in steps]
    assert offsets == sorted(offsets)


def test_early_save_needs_more_than_twelve_seconds():
    assert CountdownPlan.build(12).save_offset is None
    assert CountdownPlan.build(13).save_offset == 3
    assert CountdownPlan.build().total_seconds == 600


def test_start_countdown_returns_immediately_with_clamped_total(target):
    class HangingClient:
        async def send_to(self, target, command, timeout_ms=None):
            await asyncio.Event().wait()

    async def main():
        orch = ShutdownOrchestrator(HangingClient())
        t0 = time.monotonic()
        handle = orch.start_countdown(target, 3)
        elapsed = time.monotonic() - t0
        result = handle.as_dict()
        handle.cancel()
        return elapsed, result, handle

    elapsed, result, handle = asyncio.run(main())
    assert elapsed < 0.05
    assert result == {"started": True, "totalSeconds": 10}
    assert handle.cancelled


def test_twelve_second_countdown_timeline(target):
    async def main():
        clock, client, orch = _countdown(12)
        handle = orch.start_countdown(target, 12)
        await settle()
        await clock.advance_to(12)
        await asyncio.wait_for(handle.wait(), 1)
        return client.sent

    sent = asyncio.run(main())
    assert sent == [
        (0, "Broadcast Server shutdown scheduled in 12 seconds."),
        (2, "Broadcast Server shutdown in 10 seconds."),
        (7, "Broadcast Server shutdown in 5 seconds."),
        (8, "Broadcast Server shutdown in 4 seconds."),
        (9, "Broadcast Server shutdown in 3 seconds."),
        (10, "Broadcast Server shutdown in 2 seconds."),
        (11, "Broadcast Server shutdown in 1 seconds."),
        (12, "Broadcast Saving and shutting down now..."),
        (12, "SaveWorld"),
        (12, "DoExit"),
    ]


def test_thirteen_second_countdown_saves_ten_seconds_out(target):
    async def main():
        clock, client, orch = _countdown(13)
        orch.start_countdown(target, 13)
        await clock.advance_to(13)
        return client.sent

    sent = asyncio.run(main())
    assert (3, "SaveWorld") in sent
    assert [c for t, c in sent if c == "SaveWorld"] == ["SaveWorld", "SaveWorld"]
    assert sent[-1] == (13, "DoExit")


def test_failed_broadcast_does_not_stop_the_countdown(target, caplog):
    outcomes = []

    async def main():
        clock, client, orch = _countdown(
            10, fail={"Broadcast Server shutdown in 5 seconds.", "SaveWorld"}, listener=outcomes.append
        )
        handle = orch.start_countdown(target, 10)
        await clock.advance_to(10)
        return handle, client

    with caplog.at_level(logging.WARNING, logger="asa_console.shutdown"):
        handle, client = asyncio.run(main())

    assert handle.started
    assert client.commands[-2:] == ["SaveWorld", "DoExit"]
    failed = [o for o in outcomes if not o.ok]
    assert [(o.label, o.command) for o in failed] == [
        ("milestone:5", "Broadcast Server shutdown in 5 seconds."),
        ("final", "SaveWorld"),
    ]
    assert isinstance(failed[0].error, ConnectionRefusedError)
    assert outcomes[-1] == StepOutcome("final", "DoExit", True)
    assert "milestone:5" in caplog.text


def test_cancel_withdraws_pending_steps(target):
    async def main():
        clock, client, orch = _countdown(12)
        handle = orch.start_countdown(target, 12)
        await clock.advance_to(8)
        before = list(client.commands)
        handle.cancel()
        await clock.advance_to(60)
        await asyncio.wait_for(handle.wait(), 1)
        return before, client.commands, handle, clock

    before, after, handle, clock = asyncio.run(main())
    assert before == after
    assert "DoExit" not in after
    assert handle.cancelled and handle.pending == 0
    assert clock.armed == []


def test_concurrent_countdowns_do_not_coordinate(target):
    async def main():
        clock, client, orch = _countdown(10)
        a = orch.start_countdown(target, 10)
        b = orch.start_countdown(target, 20)
        await clock.advance_to(20)
        return a, b, client.commands

    a, b, commands = asyncio.run(main())
    assert commands.count("DoExit") == 2
    assert a.total_seconds == 10 and b.total_seconds == 20


def test_best_effort_swallows_synchronous_errors(caplog):
    def broken(*args):
        raise RuntimeError("no loop")

    seen = []
    with caplog.at_level(logging.WARNING, logger="asa_console.shutdown"):
        ok = asyncio.run(best_effort("scheduled", "Broadcast hi", broken, listener=seen.append))
    assert ok is False
    assert seen[0].label == "scheduled" and not seen[0].ok
    assert "no loop" in caplog.text
