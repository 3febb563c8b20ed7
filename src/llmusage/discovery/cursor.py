import asyncio
import base64
import binascii
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from llmusage._logging import get_logger
from llmusage.discovery import system
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service, Token, TokenSource
from llmusage.normalize import from_epoch_seconds

logger = get_logger("LLMUsage.Discovery.Cursor")

ACCESS_TOKEN_KEY = "cursorAuth/accessToken"
REFRESH_TOKEN_KEY = "cursorAuth/refreshToken"


def jwt_expiration(token: str) -> Optional[datetime]:
    """Read the ``exp`` claim from a JWT without verifying it."""
    parts = token.split(".")
    if len(parts) < 2:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)):
        return None
    return from_epoch_seconds(exp)


class CursorDiscovery(BaseDiscoverer):
    service = Service.CURSOR

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or system.editor_state_db("Cursor")

    def _read(self) -> Optional[Token]:
        if not self.db_path.is_file():
            return None
        access_token = system.read_state_value(self.db_path, ACCESS_TOKEN_KEY)
        if not access_token:
            logger.debug(f"No access token in {self.db_path}")
            return None
        refresh_token = system.read_state_value(self.db_path, REFRESH_TOKEN_KEY)
        return Token(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_at=jwt_expiration(access_token),
            source=TokenSource.DISCOVERED,
        )

    async def discover(self) -> list[DiscoveryResult]:
        token = await asyncio.to_thread(self._read)
        if token is None:
            return []
        return [DiscoveryResult(self.service, [token], source="sqlite")]
