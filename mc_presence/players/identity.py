"""Display name to stable account identifier resolution."""

import hashlib
import time
from typing import Optional, Protocol

import httpx

from ..config import IdentitySettings
from ..logger import logger


class IdentityResolver(Protocol):
    """Maps a display name to a stable identifier.

    Implementations may return None or raise; callers treat both as
    "identity unknown".
    """

    async def resolve(self, display_name: str) -> Optional[str]: ...


def format_uuid(raw: str) -> str:
    """Insert dashes into a 32 character hex UUID."""
    if "-" in raw:
        return raw
    return f"{raw[0:8]}-{raw[8:12]}-{raw[12:16]}-{raw[16:20]}-{raw[20:32]}"


def fallback_uuid(display_name: str) -> str:
    """Deterministic version-4 shaped UUID derived from the lowercase name."""
    digest = hashlib.sha256(display_name.lower().encode("utf-8")).hexdigest()
    return f"{digest[0:8]}-{digest[8:12]}-4{digest[12:15]}-{digest[16:20]}-{digest[20:32]}"


class MojangIdentityResolver:
    """Resolves Minecraft names through the Mojang profile API."""

    def __init__(
        self,
        identity_settings: IdentitySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = identity_settings
        self._transport = transport
        # lowercase name -> (uuid, monotonic time cached)
        self._cache: dict[str, tuple[str, float]] = {}

    async def resolve(self, display_name: str) -> Optional[str]:
        """Fetch the account UUID for a player name.

        Args:
            display_name: Player name

        Returns:
            Dashed UUID, or None if the player does not exist or the API failed
            (unless offline fallback is enabled)
        """
        key = display_name.lower()
        cached = self._cache.get(key)
        if cached and time.monotonic() - cached[1] < self.settings.cache_ttl_seconds:
            return cached[0]

        url = self.settings.api_url.format(name=display_name)
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Error fetching UUID from Mojang API for {display_name}: {e}")
            return self._fallback(display_name)

        if response.status_code in (204, 404):
            logger.warning(f"Player not found in Mojang API: {display_name}")
            return None
        if response.status_code == 429:
            logger.warning(f"Mojang API rate limited for player: {display_name}")
            return self._fallback(display_name)
        if response.status_code != 200:
            logger.error(
                f"Unexpected Mojang API response {response.status_code} for player: {display_name}"
            )
            return self._fallback(display_name)

        raw_id = response.json().get("id")
        if not raw_id:
            logger.warning(f"Mojang API returned no id for player: {display_name}")
            return None

        uuid = format_uuid(raw_id)
        self._cache[key] = (uuid, time.monotonic())
        return uuid

    def clear_cache(self) -> None:
        self._cache.clear()

    def _fallback(self, display_name: str) -> Optional[str]:
        if not self.settings.offline_fallback:
            return None
        uuid = fallback_uuid(display_name)
        logger.info(f"Using offline fallback identifier for {display_name}: {uuid}")
        return uuid
