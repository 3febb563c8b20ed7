"""Antigravity credentials live only in its running language server.

Each ``language_server`` process carries a CSRF token on its command line
and listens on random local ports; every (port, csrf) pair becomes a token
of the form ``"port:csrf"``.  Ports change whenever the editor restarts.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Optional

from llmusage._logging import get_logger
from llmusage.discovery import system
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service, Token, TokenSource

logger = get_logger("LLMUsage.Discovery.Antigravity")

PROCESS_MARKER = "language_server"
APP_MARKER = "antigravity"
CSRF_FLAG = "--csrf_token"
MAX_PORT = 65535

_LISTEN_RE = re.compile(r"TCP\s+(\S+):(\d+)(?:\s+\(LISTEN\))?")


@dataclass(frozen=True)
class LanguageServer:
    pid: int
    csrf: str


def parse_process_line(line: str) -> Optional[LanguageServer]:
    """Parse one ``ps -o pid,args`` line into a language server, if it is one."""
    if PROCESS_MARKER not in line or APP_MARKER not in line.lower():
        return None
    parts = line.split()
    if not parts or not parts[0].isdigit():
        return None

    csrf = None
    for idx, part in enumerate(parts):
        if part == CSRF_FLAG and idx + 1 < len(parts):
            csrf = parts[idx + 1]
        elif part.startswith(CSRF_FLAG + "="):
            csrf = part[len(CSRF_FLAG) + 1:]
    if not csrf:
        return None
    return LanguageServer(pid=int(parts[0]), csrf=csrf)


def parse_listening_ports(lsof_output: str) -> list[int]:
    """Extract listening TCP ports from ``lsof -iTCP -sTCP:LISTEN`` output."""
    ports: list[int] = []
    for line in lsof_output.splitlines()[1:]:
        match = _LISTEN_RE.search(line)
        if match:
            port = int(match.group(2))
            if port not in ports:
                ports.append(port)
    return ports


def make_token(port: int, csrf: str) -> Token:
    return Token(access_token=f"{port}:{csrf}", source=TokenSource.DISCOVERED)


def split_token(access_token: str) -> Optional[tuple[int, str]]:
    """Inverse of :func:`make_token`; None when the token is not ``port:csrf``."""
    port, sep, csrf = access_token.partition(":")
    if not sep or not port.isdigit() or not csrf or ":" in csrf:
        return None
    if not 0 < int(port) <= MAX_PORT:
        return None
    return int(port), csrf


class AntigravityDiscovery(BaseDiscoverer):
    service = Service.ANTIGRAVITY

    async def _language_servers(self) -> list[LanguageServer]:
        output = await system.run_command("ps", "-axww", "-o", "pid,args")
        if output is None:
            return []
        servers = []
        for line in output.splitlines():
            server = parse_process_line(line)
            if server is not None:
                servers.append(server)
        return servers

    async def _listening_ports(self, pid: int) -> list[int]:
        output = await system.run_command(
            "lsof", "-p", str(pid), "-P", "-n", "-iTCP", "-sTCP:LISTEN", "-a"
        )
        return parse_listening_ports(output) if output else []

    async def discover(self) -> list[DiscoveryResult]:
        servers = await self._language_servers()
        if not servers:
            return []

        port_lists = await asyncio.gather(
            *(self._listening_ports(s.pid) for s in servers)
        )

        results = []
        for server, ports in zip(servers, port_lists):
            if not ports:
                logger.debug(f"Language server {server.pid} has no listening ports")
                continue
            tokens = [make_token(port, server.csrf) for port in ports]
            results.append(DiscoveryResult(self.service, tokens, source="process"))
        return results
