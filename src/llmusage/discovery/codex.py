import asyncio
import json
import os
from pathlib import Path
from typing import Optional

from llmusage._logging import get_logger
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service, Token, TokenSource

logger = get_logger("LLMUsage.Discovery.Codex")

AUTH_FILE = "auth.json"


def candidate_paths() -> list[Path]:
    """``$CODEX_HOME`` first, then the conventional config directories."""
    paths = []
    codex_home = os.environ.get("CODEX_HOME")
    if codex_home:
        paths.append(Path(codex_home).expanduser() / AUTH_FILE)
    home = Path.home()
    paths.append(home / ".config" / "codex" / AUTH_FILE)
    paths.append(home / ".codex" / AUTH_FILE)
    return paths


def load_auth(path: Path) -> Optional[Token]:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug(f"Could not read {path}: {exc}")
        return None
    tokens = data.get("tokens") if isinstance(data, dict) else None
    if not isinstance(tokens, dict):
        return None
    access_token = tokens.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        return None
    refresh_token = tokens.get("refresh_token")
    # Codex refreshes by token age rather than an expiry timestamp.
    return Token(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        source=TokenSource.DISCOVERED,
    )


class CodexDiscovery(BaseDiscoverer):
    service = Service.CODEX

    def __init__(self, paths: Optional[list[Path]] = None):
        self._paths = paths

    async def discover(self) -> list[DiscoveryResult]:
        for path in self._paths or candidate_paths():
            token = await asyncio.to_thread(load_auth, path)
            if token is not None:
                return [DiscoveryResult(self.service, [token], source="file")]
        return []
