# asa_console/rcon.py
from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger(__name__)

AUTH = 3
AUTH_RESPONSE = 2
EXEC_COMMAND = 2
RESPONSE_VALUE = 0

AUTH_ID = 1
COMMAND_ID = 2
SENTINEL_ID = 3

DEFAULT_TIMEOUT_MS = 3000
AUTH_DELAY = 0.1    # seconds between AUTH and EXEC_COMMAND
LINGER = 0.01       # seconds to keep the socket open after the first reply
READ_CHUNK = 4096
MIN_FRAME = 10      # request id + type + two nulls


class RconError(Exception): ...
class RconTimeoutError(RconError, TimeoutError): ...
class RconConnectionError(RconError, ConnectionError): ...
class RconProtocolError(RconError): ...
class RconAuthError(RconError): ...


@dataclass(frozen=True)
class ConnectionTarget:
    host: str
    port: int
    password: str

    def __post_init__(self) -> None:
        if not 1 <= int(self.port) <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        object.__setattr__(self, "port", int(self.port))

    def __repr__(self) -> str:
        return f"ConnectionTarget(host={self.host!r}, port={self.port}, password='***')"


@dataclass(frozen=True)
class Packet:
    request_id: int
    type: int
    body: str


def encode_packet(request_id: int, kind: int, body: str) -> bytes:
    data = struct.pack("<ii", request_id, kind) + body.encode("utf-8") + b"\x00\x00"
    return struct.pack("<i", len(data)) + data


def decode_packet(data: bytes) -> Packet:
    """Decode one complete frame (length prefix included)."""
    if len(data) < 4:
        raise RconProtocolError("short frame")
    (ln,) = struct.unpack("<i", data[:4])
    if ln < MIN_FRAME or len(data) - 4 < ln:
        raise RconProtocolError(f"bad frame length {ln} for {len(data) - 4} bytes")
    req_id, kind = struct.unpack("<ii", data[4:12])
    body = data[12:4 + ln - 2].decode("utf-8", "replace")
    return Packet(req_id, kind, body)


async def read_packet(reader: asyncio.StreamReader) -> Packet:
    raw_len = await reader.readexactly(4)
    (ln,) = struct.unpack("<i", raw_len)
    if ln < MIN_FRAME:
        raise RconProtocolError(f"bad frame length {ln}")
    return decode_packet(raw_len + await reader.readexactly(ln))


# ───────────────────────────── response strategies ──────────────────────────


class ResponseStrategy:
    """Drives one authenticated exchange over an open connection."""

    async def exchange(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                       password: str, command: str) -> str:
        raise NotImplementedError


class FirstPacketResponse(ResponseStrategy):
    """
    AUTH, a fixed delay, then EXEC_COMMAND; whatever arrives first wins.

    The auth reply is never parsed (its type collides with EXEC_COMMAND), and
    nothing is reassembled: a multi-packet answer is cut to its first chunk.
    An empty string means the peer closed without sending anything.
    """

    def __init__(self, auth_delay: float = AUTH_DELAY):
        self.auth_delay = auth_delay

    async def _exec_later(self, writer: asyncio.StreamWriter, command: str) -> None:
        await asyncio.sleep(self.auth_delay)
        if writer.is_closing():
            return
        writer.write(encode_packet(COMMAND_ID, EXEC_COMMAND, command))
        log.debug("rcon: command sent")
        try:
            await writer.drain()
        except ConnectionError as e:
            # the reader sees the same failure
            log.debug("rcon: drain failed: %s", e)

    async def exchange(self, reader, writer, password, command):
        writer.write(encode_packet(AUTH_ID, AUTH, password))
        log.debug("rcon: auth sent")
        follow_up = asyncio.ensure_future(self._exec_later(writer, command))
        try:
            chunk = await reader.read(READ_CHUNK)
        except BaseException:
            follow_up.cancel()
            raise
        if not chunk:
            follow_up.cancel()
        # on a reply the pending command write may still go out until teardown
        return chunk.decode("utf-8", "replace")


class SequencedResponse(ResponseStrategy):
    """
    Strict variant: validates the auth reply and reassembles multi-packet
    output by request id, using an empty RESPONSE_VALUE as end marker.
    Only for consoles that mirror the marker packet.
    """

    async def exchange(self, reader, writer, password, command):
        writer.write(encode_packet(AUTH_ID, AUTH, password))
        await writer.drain()
        while True:
            pkt = await read_packet(reader)
            if pkt.request_id == -1:
                raise RconAuthError("RCON auth failed")
            # the empty RESPONSE_VALUE some servers send first is skipped
            if pkt.type == AUTH_RESPONSE and pkt.request_id == AUTH_ID:
                break

        writer.write(encode_packet(COMMAND_ID, EXEC_COMMAND, command))
        writer.write(encode_packet(SENTINEL_ID, RESPONSE_VALUE, ""))
        await writer.drain()

        parts = []
        while True:
            pkt = await read_packet(reader)
            if pkt.request_id == SENTINEL_ID:
                break
            if pkt.request_id == -1:
                raise RconAuthError("RCON auth failed")
            if pkt.request_id == COMMAND_ID:
                parts.append(pkt.body)
        return "".join(parts)


# ───────────────────────────────── client ───────────────────────────────────


class RconClient:
    """One fresh connection per call; never retries."""

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 strategy: Optional[ResponseStrategy] = None,
                 strict_auth: bool = False, linger: float = LINGER):
        self.timeout_ms = timeout_ms
        self.linger = linger
        if strategy is None:
            strategy = SequencedResponse() if strict_auth else FirstPacketResponse()
        self.strategy = strategy

    async def send(self, host: str, port: int, password: str, command: str,
                   timeout_ms: Optional[int] = None) -> str:
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        log.debug("rcon %s:%s <- %s", host, port, command)
        try:
            out = await asyncio.wait_for(
                self._exchange(host, int(port), password, command), timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            raise RconTimeoutError(f"RCON timeout after {timeout_ms} ms ({host}:{port})") from None
        log.debug("rcon %s:%s -> %d chars", host, port, len(out))
        return out

    async def send_to(self, target: ConnectionTarget, command: str,
                      timeout_ms: Optional[int] = None) -> str:
        return await self.send(target.host, target.port, target.password, command, timeout_ms)

    async def _exchange(self, host: str, port: int, password: str, command: str) -> str:
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise RconConnectionError(f"cannot connect to {host}:{port}: {e}") from e
        try:
            out = await self.strategy.exchange(reader, writer, password, command)
        except asyncio.IncompleteReadError as e:
            writer.transport.abort()
            raise RconConnectionError(f"RCON closed by {host}:{port}") from e
        except OSError as e:
            writer.transport.abort()
            raise RconConnectionError(f"RCON socket error ({host}:{port}): {e}") from e
        except BaseException:
            writer.transport.abort()
            raise
        # resolve now, force-close once pending writes had a chance to flush
        asyncio.get_running_loop().call_later(self.linger, writer.transport.abort)
        return out
