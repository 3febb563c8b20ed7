import asyncio
import binascii
import json
import string
from pathlib import Path
from typing import Optional

from llmusage._logging import get_logger
from llmusage.discovery import system
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service, Token, TokenSource
from llmusage.normalize import from_epoch_millis

logger = get_logger("LLMUsage.Discovery.Claude")

KEYCHAIN_SERVICE = "Claude Code-credentials"


def _default_credentials_path() -> Path:
    return Path.home() / ".claude" / ".credentials.json"


def decode_hex_if_needed(raw: str) -> str:
    """Keychain values sometimes come back as hex-encoded UTF-8."""
    text = raw.strip()
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    if not text or len(text) % 2 or any(c not in string.hexdigits for c in text):
        return raw
    try:
        return binascii.unhexlify(text).decode("utf-8", errors="replace")
    except binascii.Error:
        return raw


def parse_credentials(payload: str) -> Optional[Token]:
    """Extract the OAuth token from a ``claudeAiOauth`` credentials blob."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    oauth = data.get("claudeAiOauth") if isinstance(data, dict) else None
    if not isinstance(oauth, dict):
        return None
    access_token = oauth.get("accessToken")
    if not isinstance(access_token, str) or not access_token:
        return None

    expires_ms = oauth.get("expiresAt")
    expires_at = (
        from_epoch_millis(expires_ms) if isinstance(expires_ms, (int, float)) else None
    )

    refresh_token = oauth.get("refreshToken")
    return Token(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        expires_at=expires_at,
        source=TokenSource.DISCOVERED,
    )


class ClaudeDiscovery(BaseDiscoverer):
    """Reads the Claude Code credentials file, then the macOS keychain."""

    service = Service.CLAUDE

    def __init__(self, credentials_path: Optional[Path] = None):
        self.credentials_path = credentials_path or _default_credentials_path()

    async def discover(self) -> list[DiscoveryResult]:
        token = await asyncio.to_thread(self._read_file)
        if token is not None:
            return [DiscoveryResult(self.service, [token], source="file")]

        raw = await system.read_generic_password(KEYCHAIN_SERVICE)
        if raw is None:
            return []
        token = parse_credentials(decode_hex_if_needed(raw))
        if token is None:
            logger.debug("Keychain item present but not parseable")
            return []
        return [DiscoveryResult(self.service, [token], source="keychain")]

    def _read_file(self) -> Optional[Token]:
        if not self.credentials_path.is_file():
            return None
        try:
            payload = self.credentials_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.debug(f"Could not read {self.credentials_path}: {exc}")
            return None
        return parse_credentials(payload)
