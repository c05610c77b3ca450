"""Tests for the RCON codec and client against an in-process RCON server."""

import asyncio
from typing import Optional

import pytest

from mc_presence.config import RconSettings
from mc_presence.rcon import RconClient
from mc_presence.rcon.protocol import (
    AUTH_FAILED_ID,
    LENGTH,
    MAX_COMMAND_BYTES,
    Packet,
    PacketType,
    RconError,
    read_packet,
)

PASSWORD = "secret"


class FakeRconServer:
    """Speaks just enough RCON to answer `list`."""

    def __init__(self, password: str = PASSWORD):
        self.password = password
        self.players: list[str] = []
        self.list_response: Optional[str] = None
        self.commands: list[str] = []
        # Split responses into packets of at most this many characters
        self.chunk_size = 4096
        self.connections = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: list[asyncio.StreamWriter] = []
        self.port = 0

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", self.port)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self.drop_clients()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    def drop_clients(self) -> None:
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    def response_for(self, command: str) -> str:
        if command == "list":
            if self.list_response is not None:
                return self.list_response
            return (
                f"There are {len(self.players)} of a max of 20 players online: "
                + ", ".join(self.players)
            )
        return f"Unknown command: {command}"

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        self._writers.append(writer)
        try:
            packet = await read_packet(reader)
            assert packet.packet_type == PacketType.AUTH
            # Like real servers, an empty response precedes the auth result
            writer.write(Packet(packet.request_id, PacketType.RESPONSE_VALUE, "").encode())
            auth_id = packet.request_id if packet.body == self.password else AUTH_FAILED_ID
            writer.write(Packet(auth_id, PacketType.AUTH_RESPONSE, "").encode())
            await writer.drain()
            if auth_id == AUTH_FAILED_ID:
                writer.close()
                return

            while True:
                packet = await read_packet(reader)
                if packet.packet_type == PacketType.RESPONSE_VALUE:
                    # Minecraft answers packets of unknown type like this
                    writer.write(
                        Packet(
                            packet.request_id,
                            PacketType.RESPONSE_VALUE,
                            f"Unknown request {packet.packet_type:x}",
                        ).encode()
                    )
                    await writer.drain()
                    continue

                self.commands.append(packet.body)
                response = self.response_for(packet.body)
                for start in range(0, max(len(response), 1), self.chunk_size):
                    writer.write(
                        Packet(
                            packet.request_id,
                            PacketType.RESPONSE_VALUE,
                            response[start : start + self.chunk_size],
                        ).encode()
                    )
                await writer.drain()
        except (RconError, ConnectionError):
            pass
        finally:
            writer.close()


@pytest.fixture
async def server():
    server = FakeRconServer()
    await server.start()
    yield server
    await server.stop()


def make_settings(port: int, password: str = PASSWORD) -> RconSettings:
    return RconSettings(
        host="127.0.0.1",
        port=port,
        password=password,
        reconnect_interval_seconds=0.05,
        command_timeout_seconds=1.0,
    )


@pytest.fixture
async def client(server):
    client = RconClient(make_settings(server.port))
    yield client
    await client.disconnect()


class TestPacketCodec:
    def test_encode_layout(self):
        data = Packet(7, PacketType.EXEC_COMMAND, "list").encode()

        (length,) = LENGTH.unpack(data[:4])
        assert length == len(data) - 4 == 4 + 4 + len("list") + 2
        assert data[4:8] == (7).to_bytes(4, "little")
        assert data[8:12] == (2).to_bytes(4, "little")
        assert data.endswith(b"list\x00\x00")

    def test_decode_too_short(self):
        with pytest.raises(RconError):
            Packet.decode(b"\x00" * 4)

    def test_decode_utf8_body(self):
        data = Packet(1, PacketType.RESPONSE_VALUE, "远程主机").encode()
        assert Packet.decode(data[4:]).body == "远程主机"


class TestRconClient:
    @pytest.mark.asyncio
    async def test_connect_and_list_players(self, server, client):
        server.players = ["Alice", "Bob"]

        assert await client.connect()
        assert client.is_connected()

        player_list = await client.get_players()
        assert player_list.parsed
        assert player_list.online == 2
        assert player_list.max == 20
        assert player_list.players == ["Alice", "Bob"]

    @pytest.mark.asyncio
    async def test_empty_server(self, server, client):
        await client.connect()

        player_list = await client.get_players()
        assert player_list.parsed
        assert player_list.players == []

    @pytest.mark.asyncio
    async def test_unrecognized_list_response(self, server, client):
        server.list_response = "Something else entirely"
        await client.connect()

        player_list = await client.get_players()
        assert not player_list.parsed
        assert player_list.players == []

    @pytest.mark.asyncio
    async def test_execute_command(self, server, client):
        await client.connect()

        result = await client.execute_command("seed")
        assert result.success
        assert result.response == "Unknown command: seed"
        assert server.commands == ["seed"]

    @pytest.mark.asyncio
    async def test_fragmented_list_response(self, server, client):
        server.players = [f"Player{i:03d}" for i in range(120)]
        server.chunk_size = 100
        await client.connect()

        player_list = await client.get_players()
        assert player_list.parsed
        assert player_list.online == 120
        assert player_list.players == server.players
        assert server.commands == ["list"]

        # The end marker of the previous command does not leak into the next
        result = await client.execute_command("seed")
        assert result.response == "Unknown command: seed"

    @pytest.mark.asyncio
    async def test_execute_command_not_connected(self, server, client):
        result = await client.execute_command("list")
        assert not result.success
        assert result.error == "RCON not connected"

        player_list = await client.get_players()
        assert not player_list.parsed

    @pytest.mark.asyncio
    async def test_command_too_long(self, server, client):
        await client.connect()

        result = await client.execute_command("x" * (MAX_COMMAND_BYTES + 1))
        assert not result.success
        assert "too long" in result.error
        assert client.is_connected()

    @pytest.mark.asyncio
    async def test_wrong_password(self, server):
        client = RconClient(make_settings(server.port, password="wrong"))
        try:
            assert not await client.connect()
            assert not client.is_connected()
            assert client.reconnecting
        finally:
            await client.disconnect()

        assert not client.reconnecting

    @pytest.mark.asyncio
    async def test_connection_refused(self, server):
        port = server.port
        await server.stop()

        client = RconClient(make_settings(port))
        try:
            assert not await client.connect()
            status = client.get_connection_status()
            assert not status.connected
            assert status.reconnecting
            assert status.port == port
        finally:
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_reconnects_after_server_drop(self, server, client):
        server.players = ["Alice"]
        await client.connect()
        assert server.connections == 1

        server.drop_clients()
        await asyncio.sleep(0.05)

        result = await client.execute_command("list")
        assert not result.success
        assert not client.is_connected()

        for _ in range(100):
            if client.is_connected():
                break
            await asyncio.sleep(0.02)

        assert client.is_connected()
        assert server.connections == 2
        assert (await client.get_players()).players == ["Alice"]

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self, server, client):
        await client.connect()
        assert await client.connect()
        assert server.connections == 1

    @pytest.mark.asyncio
    async def test_disconnect(self, server, client):
        await client.connect()
        await client.disconnect()
        assert not client.is_connected()
        assert not client.reconnecting
