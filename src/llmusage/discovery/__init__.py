from __future__ import annotations

from llmusage.discovery.antigravity import AntigravityDiscovery
from llmusage.discovery.base import BaseDiscoverer
from llmusage.discovery.claude import ClaudeDiscovery
from llmusage.discovery.codex import CodexDiscovery
from llmusage.discovery.coordinator import DiscoveryCoordinator
from llmusage.discovery.copilot import CopilotDiscovery
from llmusage.discovery.cursor import CursorDiscovery
from llmusage.discovery.windsurf import WindsurfDiscovery
from llmusage.models import Service
from llmusage.timeouts import USERNAME_TIMEOUT

DISCOVERER_REGISTRY: dict[Service, type[BaseDiscoverer]] = {
    Service.CLAUDE: ClaudeDiscovery,
    Service.COPILOT: CopilotDiscovery,
    Service.CURSOR: CursorDiscovery,
    Service.WINDSURF: WindsurfDiscovery,
    Service.CODEX: CodexDiscovery,
    Service.ANTIGRAVITY: AntigravityDiscovery,
}


def default_discoverers(username_timeout: float = USERNAME_TIMEOUT) -> list[BaseDiscoverer]:
    """Instantiate one discoverer per known service."""
    discoverers: list[BaseDiscoverer] = []
    for service, cls in DISCOVERER_REGISTRY.items():
        if service == Service.COPILOT:
            discoverers.append(CopilotDiscovery(username_timeout=username_timeout))
        else:
            discoverers.append(cls())
    return discoverers


__all__ = [
    "BaseDiscoverer",
    "DiscoveryCoordinator",
    "DISCOVERER_REGISTRY",
    "default_discoverers",
    "AntigravityDiscovery",
    "ClaudeDiscovery",
    "CodexDiscovery",
    "CopilotDiscovery",
    "CursorDiscovery",
    "WindsurfDiscovery",
]
