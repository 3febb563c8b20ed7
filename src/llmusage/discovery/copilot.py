import asyncio
import base64
import binascii
import os
from pathlib import Path
from typing import Optional

import httpx
import yaml

from llmusage._logging import get_logger
from llmusage.discovery import system
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service, Token, TokenSource
from llmusage.timeouts import USERNAME_TIMEOUT, race_or_default

logger = get_logger("LLMUsage.Discovery.Copilot")

GH_KEYCHAIN_SERVICE = "gh:github.com"
GO_KEYRING_PREFIX = "go-keyring-base64:"
GITHUB_USER_URL = "https://api.github.com/user"
ENV_VARS = ("GH_TOKEN", "GITHUB_TOKEN")


def _default_hosts_path() -> Path:
    config_dir = os.environ.get("GH_CONFIG_DIR")
    if config_dir:
        return Path(config_dir).expanduser() / "hosts.yml"
    return Path.home() / ".config" / "gh" / "hosts.yml"


def decode_keyring_value(raw: str) -> Optional[str]:
    """Undo go-keyring's ``go-keyring-base64:`` wrapping, if present."""
    if not raw.startswith(GO_KEYRING_PREFIX):
        return raw or None
    try:
        decoded = base64.b64decode(raw[len(GO_KEYRING_PREFIX):], validate=True)
        return decoded.decode("utf-8") or None
    except (binascii.Error, UnicodeDecodeError):
        return None


def read_hosts_token(path: Path) -> Optional[str]:
    """gh stores the token in hosts.yml when no OS keyring is available."""
    if not path.is_file():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.debug(f"Could not read {path}: {exc}")
        return None
    host = data.get("github.com") if isinstance(data, dict) else None
    if not isinstance(host, dict):
        return None
    token = host.get("oauth_token")
    return token if isinstance(token, str) and token else None


async def fetch_github_username(
    token: str,
    timeout: float = USERNAME_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Resolve the GitHub login for ``token``, or None on any failure or timeout."""

    async def _lookup() -> Optional[str]:
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            resp = await client.get(
                GITHUB_USER_URL,
                headers={
                    "Authorization": f"Bearer {token}",
                    "User-Agent": "LLMUsage",
                },
            )
        if resp.status_code != 200:
            return None
        data = resp.json()
        login = data.get("login") if isinstance(data, dict) else None
        return login if isinstance(login, str) and login else None

    try:
        return await race_or_default(_lookup(), timeout, None)
    except (httpx.HTTPError, ValueError) as exc:
        logger.debug(f"GitHub username lookup failed: {exc}")
        return None


class CopilotDiscovery(BaseDiscoverer):
    """Reuses the GitHub CLI's token: keychain, then hosts.yml, then env vars."""

    service = Service.COPILOT

    def __init__(
        self,
        hosts_path: Optional[Path] = None,
        username_timeout: float = USERNAME_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.hosts_path = hosts_path or _default_hosts_path()
        self.username_timeout = username_timeout
        self._transport = transport

    async def _find_token(self) -> tuple[Optional[str], str]:
        raw = await system.read_generic_password(GH_KEYCHAIN_SERVICE)
        if raw is not None:
            return decode_keyring_value(raw), "gh-cli"

        token = await asyncio.to_thread(read_hosts_token, self.hosts_path)
        if token:
            return token, "gh-hosts"

        for name in ENV_VARS:
            value = os.environ.get(name)
            if value:
                return value, "env"
        return None, ""

    async def discover(self) -> list[DiscoveryResult]:
        access_token, source = await self._find_token()
        if not access_token:
            return []

        label = await fetch_github_username(
            access_token, timeout=self.username_timeout, transport=self._transport
        )
        token = Token(access_token=access_token, source=TokenSource.DISCOVERED)
        return [DiscoveryResult(self.service, [token], source=source, label=label)]
