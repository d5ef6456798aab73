import asyncio

import pytest

from asa_console.actions import Console, OfflineModeError
from asa_console.rcon import RconClient, SequencedResponse
from conftest import RecordingClient


def test_offline_mode_blocks_every_network_operation(target):
    console = Console(RecordingClient(), offline_mode=True)
    with pytest.raises(OfflineModeError):
        console.shutdown_countdown(target, 60)
    for op in (console.wild_dino_wipe(target), console.ping(target),
               console.exec_command(target, "ListPlayers"),
               console.run_batch(target, ["SaveWorld"])):
        with pytest.raises(OfflineModeError):
            asyncio.run(op)
    assert console.client.sent == []


def test_wild_dino_wipe_sends_destroy_wild_dinos(target):
    console = Console(RecordingClient())
    assert asyncio.run(console.wild_dino_wipe(target)) == {"ok": True}
    assert console.client.commands == ["DestroyWildDinos"]


def test_ping_reports_failure_without_raising(target):
    console = Console(RecordingClient(fail={"ListPlayers"}))
    r = asyncio.run(console.ping(target))
    assert r["ok"] is False
    assert "refused" in r["error"]

    console = Console(RecordingClient())
    assert asyncio.run(console.ping(target)) == {"ok": True}


def test_exec_command_returns_output(target):
    client = RecordingClient()
    client.reply = "Server received, But no response!!"
    r = asyncio.run(Console(client).exec_command(target, "SaveWorld"))
    assert r == {"ok": True, "output": "Server received, But no response!!"}


def test_run_batch_keeps_going_after_a_failure(target):
    client = RecordingClient(fail={"DestroyWildDinos"})
    lines = asyncio.run(Console(client).run_batch(target, ["SaveWorld", "  ", "DestroyWildDinos", "ListPlayers"]))
    assert lines == [
        "SaveWorld => OK",
        "DestroyWildDinos => ERR refused: DestroyWildDinos",
        "ListPlayers => OK",
    ]
    assert client.commands == ["SaveWorld", "DestroyWildDinos", "ListPlayers"]


def test_shutdown_countdown_goes_through_the_orchestrator(target):
    async def main():
        console = Console(RecordingClient())
        handle = console.shutdown_countdown(target, 1)
        await asyncio.sleep(0)
        handle.cancel()
        return handle, console.client.commands

    handle, commands = asyncio.run(main())
    assert handle.as_dict() == {"started": True, "totalSeconds": 10}
    assert commands == ["Broadcast Server shutdown scheduled in 10 seconds."]


def test_from_settings_builds_client():
    console = Console.from_settings({"offline_mode": False, "timeout_ms": 1500, "strict_auth": True})
    assert isinstance(console.client, RconClient)
    assert console.client.timeout_ms == 1500
    assert isinstance(console.client.strategy, SequencedResponse)
    assert console.orchestrator.client is console.client
