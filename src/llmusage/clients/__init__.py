from __future__ import annotations

from typing import Optional

import httpx

from llmusage.clients.antigravity import AntigravityClient
from llmusage.clients.base import DEFAULT_HTTP_TIMEOUT, BaseUsageClient
from llmusage.clients.claude import ClaudeClient
from llmusage.clients.codex import CodexClient
from llmusage.clients.copilot import CopilotClient
from llmusage.clients.cursor import CursorClient
from llmusage.models import Service

# Windsurf has no public usage endpoint; its accounts are discovered but
# fetching them raises NoClientForServiceError.
CLIENT_REGISTRY: dict[Service, type[BaseUsageClient]] = {
    Service.CLAUDE: ClaudeClient,
    Service.COPILOT: CopilotClient,
    Service.CURSOR: CursorClient,
    Service.CODEX: CodexClient,
    Service.ANTIGRAVITY: AntigravityClient,
}


def default_clients(
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[Service, BaseUsageClient]:
    """Instantiate one usage client per supported service."""
    return {
        service: cls(timeout=timeout, transport=transport)
        for service, cls in CLIENT_REGISTRY.items()
    }


__all__ = [
    "BaseUsageClient",
    "CLIENT_REGISTRY",
    "default_clients",
    "AntigravityClient",
    "ClaudeClient",
    "CodexClient",
    "CopilotClient",
    "CursorClient",
]
