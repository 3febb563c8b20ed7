from __future__ import annotations

import asyncio
from typing import Optional

from llmusage._logging import get_logger
from llmusage.discovery.base import BaseDiscoverer
from llmusage.models import DiscoveryResult, Service
from llmusage.timeouts import DISCOVERY_TIMEOUT, race

logger = get_logger("LLMUsage.Discovery")


class DiscoveryCoordinator:
    """Runs discoverers concurrently, each bounded by its own timeout.

    Discovery is best-effort: a discoverer that raises or outlives its
    budget is cancelled and contributes nothing.  Neither ``discover_all``
    nor ``discover`` ever raises.
    """

    def __init__(self, timeout: Optional[float] = DISCOVERY_TIMEOUT):
        self.timeout = timeout
        self._discoverers: list[BaseDiscoverer] = []

    def register(self, discoverer: BaseDiscoverer) -> None:
        self._discoverers.append(discoverer)
        logger.debug(f"Registered discoverer for {discoverer.service.value}")

    def register_defaults(self, **kwargs) -> None:
        """Replace the registered discoverers with one per known service."""
        from llmusage.discovery import default_discoverers

        self._discoverers = default_discoverers(**kwargs)

    @property
    def discoverers(self) -> list[BaseDiscoverer]:
        return list(self._discoverers)

    async def _run(self, discoverer: BaseDiscoverer) -> list[DiscoveryResult]:
        name = discoverer.service.value
        try:
            results = await race(discoverer.discover(), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Discovery for {name} timed out after {self.timeout}s")
            return []
        except Exception as exc:
            logger.debug(f"Discovery for {name} failed: {exc}", exc_info=True)
            return []
        results = list(results or [])
        for result in results:
            logger.info(
                f"Discovered {len(result.tokens)} token(s) for {name} "
                f"via {result.source}"
            )
        return results

    async def discover_all(self) -> list[DiscoveryResult]:
        batches = await asyncio.gather(*(self._run(d) for d in self._discoverers))
        return [result for batch in batches for result in batch]

    async def discover(self, service: Service) -> list[DiscoveryResult]:
        for discoverer in self._discoverers:
            if discoverer.service == service:
                return await self._run(discoverer)
        logger.debug(f"No discoverer registered for {service.value}")
        return []
