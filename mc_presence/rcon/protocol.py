"""Minimal Source RCON protocol as spoken by Minecraft servers.

Packet layout (little endian):
    int32 length | int32 request id | int32 type | body | 0x00 0x00
where length counts everything after the length field.
"""

import asyncio
import itertools
import struct
from dataclasses import dataclass
from enum import IntEnum

LENGTH = struct.Struct("<i")
ID_TYPE = struct.Struct("<ii")
MIN_PAYLOAD_BYTES = ID_TYPE.size + 2
# Minecraft rejects client packets bodies above 1446 bytes
MAX_COMMAND_BYTES = 1446
MAX_PACKET_BYTES = 4096 + MIN_PAYLOAD_BYTES
AUTH_FAILED_ID = -1


class PacketType(IntEnum):
    RESPONSE_VALUE = 0
    EXEC_COMMAND = 2
    AUTH_RESPONSE = 2
    AUTH = 3


class RconError(Exception):
    """Raised for protocol violations and dropped connections."""


class RconAuthError(RconError):
    """Raised when the server refuses the RCON password."""


@dataclass(frozen=True)
class Packet:
    request_id: int
    packet_type: int
    body: str

    def encode(self) -> bytes:
        payload = (
            ID_TYPE.pack(self.request_id, self.packet_type)
            + self.body.encode("utf-8")
            + b"\x00\x00"
        )
        return LENGTH.pack(len(payload)) + payload

    @classmethod
    def decode(cls, payload: bytes) -> "Packet":
        """Decode a packet from the bytes following its length field."""
        if len(payload) < MIN_PAYLOAD_BYTES:
            raise RconError(f"RCON packet too short ({len(payload)} bytes)")
        request_id, packet_type = ID_TYPE.unpack_from(payload)
        body = payload[ID_TYPE.size : -2].decode("utf-8", errors="replace")
        return cls(request_id=request_id, packet_type=packet_type, body=body)


async def read_packet(reader: asyncio.StreamReader) -> Packet:
    try:
        (length,) = LENGTH.unpack(await reader.readexactly(LENGTH.size))
        if length < MIN_PAYLOAD_BYTES or length > MAX_PACKET_BYTES:
            raise RconError(f"Invalid RCON packet length {length}")
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise RconError("RCON connection closed by server") from e
    return Packet.decode(payload)


class RconConnection:
    """One authenticated RCON TCP connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer
        self._ids = itertools.count(1)
        self.authenticated = False

    @classmethod
    async def open(
        cls, host: str, port: int, password: str, timeout: float
    ) -> "RconConnection":
        """Connect and log in.

        Raises:
            RconAuthError: Wrong password
            RconError, OSError, TimeoutError: Connection problems
        """
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout
        )
        connection = cls(reader, writer)
        try:
            await asyncio.wait_for(connection._login(password), timeout)
        except BaseException:
            await connection.close()
            raise
        return connection

    @property
    def closed(self) -> bool:
        return self._writer.is_closing()

    async def _login(self, password: str) -> None:
        request_id = next(self._ids)
        await self._send(Packet(request_id, PacketType.AUTH, password))
        while True:
            packet = await read_packet(self._reader)
            # Source servers send an empty RESPONSE_VALUE before the auth result
            if packet.packet_type != PacketType.AUTH_RESPONSE:
                continue
            if packet.request_id == AUTH_FAILED_ID:
                raise RconAuthError("RCON authentication failed")
            if packet.request_id != request_id:
                raise RconError(f"Unexpected RCON auth response id {packet.request_id}")
            self.authenticated = True
            return

    async def send_command(self, command: str) -> str:
        """Send a command and collect its possibly fragmented response.

        Responses longer than one packet arrive split over several packets
        with the command's id. An empty RESPONSE_VALUE packet sent right after
        the command is answered only once the whole response is out, so its
        echo ends the response.
        """
        body = command.encode("utf-8")
        if len(body) > MAX_COMMAND_BYTES:
            raise ValueError(f"RCON command too long ({len(body)} bytes)")

        request_id = next(self._ids)
        end_id = next(self._ids)
        await self._send(Packet(request_id, PacketType.EXEC_COMMAND, command))
        await self._send(Packet(end_id, PacketType.RESPONSE_VALUE, ""))

        parts: list[str] = []
        while True:
            packet = await read_packet(self._reader)
            if packet.request_id == request_id:
                parts.append(packet.body)
            elif packet.request_id == end_id:
                return "".join(parts)

    async def _send(self, packet: Packet) -> None:
        try:
            self._writer.write(packet.encode())
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise RconError(f"RCON send failed: {e}") from e

    async def close(self) -> None:
        self.authenticated = False
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass
