from abc import ABC, abstractmethod

from llmusage.models import DiscoveryResult, Service


class BaseDiscoverer(ABC):
    """Locates credentials for one service without user input."""

    service: Service

    @abstractmethod
    async def discover(self) -> list[DiscoveryResult]:
        """Return zero or more results.

        Returning an empty list means "not installed" or "not logged in";
        only unexpected failures should raise.  Implementations must stop
        promptly when cancelled.
        """
        ...
