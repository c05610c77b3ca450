"""Remote console client with automatic reconnection."""

import asyncio
import re
from typing import Optional

from pydantic import BaseModel, Field

from ..config import RconSettings
from ..logger import logger
from .protocol import RconAuthError, RconConnection, RconError


class CommandResult(BaseModel):
    """Outcome of a console command. Failures are values, not exceptions."""

    success: bool
    response: Optional[str] = None
    error: Optional[str] = None


class PlayerList(BaseModel):
    online: int = 0
    max: int = 0
    players: list[str] = Field(default_factory=list)
    # False when the command failed or the response did not match the pattern
    parsed: bool = False


class ConnectionStatus(BaseModel):
    connected: bool
    host: str
    port: int
    reconnecting: bool


class RconClient:
    """Keeps an RCON connection to the game server alive."""

    def __init__(self, rcon_settings: RconSettings):
        """Initialize RCON client.

        Args:
            rcon_settings: Host, credentials, timeouts and list command pattern
        """
        self.settings = rcon_settings
        self._list_pattern = re.compile(rcon_settings.list_pattern, re.DOTALL)

        self._connection: Optional[RconConnection] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._command_lock = asyncio.Lock()
        self._closed = False

    async def connect(self) -> bool:
        """Connect and authenticate.

        On failure a reconnection loop is scheduled. Never raises.

        Returns:
            True if the connection is established
        """
        self._closed = False
        if self.is_connected():
            return True
        try:
            self._connection = await RconConnection.open(
                self.settings.host,
                self.settings.port,
                self.settings.password,
                timeout=self.settings.command_timeout_seconds,
            )
        except RconAuthError as e:
            logger.error(f"RCON authentication failed: {e}")
            self._schedule_reconnect()
            return False
        except (RconError, OSError, TimeoutError) as e:
            logger.error(f"Failed to connect to RCON: {e}")
            self._schedule_reconnect()
            return False

        logger.info(f"RCON connected to {self.settings.host}:{self.settings.port}")
        return True

    def is_connected(self) -> bool:
        connection = self._connection
        if connection is None:
            return False
        if connection.closed:
            # Server hung up between commands
            self._connection = None
            logger.warning("RCON connection lost")
            self._schedule_reconnect()
            return False
        return connection.authenticated

    def get_connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=self.is_connected(),
            host=self.settings.host,
            port=self.settings.port,
            reconnecting=self.reconnecting,
        )

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def execute_command(self, command: str) -> CommandResult:
        """Run a console command. Never raises.

        A connection-level failure drops the connection and schedules a
        reconnect; the caller gets ``success=False``.
        """
        if not self.is_connected():
            return CommandResult(success=False, error="RCON not connected")

        async with self._command_lock:
            connection = self._connection
            if connection is None:
                return CommandResult(success=False, error="RCON not connected")
            try:
                response = await asyncio.wait_for(
                    connection.send_command(command),
                    self.settings.command_timeout_seconds,
                )
            except ValueError as e:
                return CommandResult(success=False, error=str(e))
            except (RconError, OSError, TimeoutError) as e:
                logger.error(f"Error executing RCON command {command!r}: {e}")
                await self._handle_disconnect()
                return CommandResult(success=False, error=str(e) or type(e).__name__)

        return CommandResult(success=True, response=response)

    async def get_players(self) -> PlayerList:
        """Query the online player list.

        Returns:
            Parsed player list, or zero-valued defaults with ``parsed=False``
        """
        result = await self.execute_command(self.settings.list_command)
        if not result.success or result.response is None:
            return PlayerList()

        match = self._list_pattern.search(result.response.strip())
        if not match:
            logger.warning(f"Unrecognized player list response: {result.response!r}")
            return PlayerList()

        names = match.group(3).strip()
        return PlayerList(
            online=int(match.group(1)),
            max=int(match.group(2)),
            players=[name.strip() for name in names.split(",") if name.strip()],
            parsed=True,
        )

    async def disconnect(self) -> None:
        """Stop reconnecting and close the connection."""
        self._closed = True
        if self._reconnect_task:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None

        if self._connection:
            await self._connection.close()
            self._connection = None
        logger.info("RCON disconnected")

    async def _handle_disconnect(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
        logger.warning("RCON connection lost")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        # Also reached from connect() inside the loop, where reconnecting is True
        if self._closed or self.reconnecting:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.settings.reconnect_interval_seconds)
            logger.info("Attempting to reconnect to RCON...")
            try:
                if await self.connect():
                    return
            except Exception as e:
                logger.error(
                    f"Unexpected error while reconnecting to RCON: {e}", exc_info=True
                )
