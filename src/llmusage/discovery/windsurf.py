import asyncio
import json
from pathlib import Path
from typing import Optional

from llmusage._logging import get_logger
from llmusage.discovery import system
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service, Token, TokenSource

logger = get_logger("LLMUsage.Discovery.Windsurf")

AUTH_STATUS_KEY = "windsurfAuthStatus"


def parse_auth_status(raw: str) -> Optional[str]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("windsurfAuthStatus is not valid JSON")
        return None
    api_key = data.get("apiKey") if isinstance(data, dict) else None
    return api_key if isinstance(api_key, str) and api_key else None


class WindsurfDiscovery(BaseDiscoverer):
    service = Service.WINDSURF

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or system.editor_state_db("Windsurf")

    def _read(self) -> Optional[str]:
        if not self.db_path.is_file():
            return None
        raw = system.read_state_value(self.db_path, AUTH_STATUS_KEY)
        return parse_auth_status(raw) if raw else None

    async def discover(self) -> list[DiscoveryResult]:
        api_key = await asyncio.to_thread(self._read)
        if api_key is None:
            return []
        token = Token(access_token=api_key, source=TokenSource.DISCOVERED)
        return [DiscoveryResult(self.service, [token], source="sqlite")]
