from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

import httpx

from llmusage._logging import get_logger
from llmusage.clients import BaseUsageClient, default_clients
from llmusage.config import ConfigLoader
from llmusage.discovery import BaseDiscoverer, DiscoveryCoordinator
from llmusage.errors import LLMUsageError, NoClientForServiceError, NotReadyError
from llmusage.models import Account, DiscoveryResult, Service, UsageData
from llmusage.registry import AccountRegistry
from llmusage.storage import AccountStorage, JsonFileStorage
from llmusage.timeouts import race

logger = get_logger("LLMUsage.Orchestrator")


class Phase(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


@dataclass
class FetchResult:
    """Outcome of one account's fetch inside a batch: usage or an error."""

    account: Account
    usage: Optional[UsageData] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LLMUsage:
    """Owns the account registry, the discovery coordinator and the clients.

    Call :meth:`setup` once before anything else.  Account state is only
    changed through the registry, which serializes mutations; client
    bindings are guarded by this object's lock.
    """

    def __init__(
        self,
        storage: Optional[AccountStorage] = None,
        config: Optional[ConfigLoader] = None,
        coordinator: Optional[DiscoveryCoordinator] = None,
        *,
        rediscover_services: Optional[Iterable[Service]] = None,
        max_concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config or ConfigLoader(allow_missing=True)
        self._storage = storage or JsonFileStorage(self._config.get_storage_path())
        self._registry = AccountRegistry(self._storage)
        self._discovery = coordinator or DiscoveryCoordinator(
            timeout=self._config.get_discovery_timeout()
        )
        self._clients: dict[Service, BaseUsageClient] = {}
        self._transport = transport
        self._lock = asyncio.Lock()
        self.phase = Phase.UNINITIALIZED

        if rediscover_services is None:
            rediscover_services = self._config.get_rediscover_services()
        self.rediscover_services = set(rediscover_services)
        self.max_concurrency = max_concurrency or self._config.get_max_concurrency()

    async def setup(self, register_defaults: bool = True) -> None:
        """Load persisted accounts and bind the default discoverers and clients.

        Discoverers or clients registered beforehand are kept.  Calling
        ``setup`` again is a no-op.
        """
        async with self._lock:
            if self.phase is Phase.READY:
                return
            if register_defaults and not self._discovery.discoverers:
                self._discovery.register_defaults(
                    username_timeout=self._config.get_username_timeout()
                )
            accounts = await self._registry.load()
            if register_defaults:
                defaults = default_clients(
                    timeout=self._config.get_http_timeout(), transport=self._transport
                )
                for service, client in defaults.items():
                    self._clients.setdefault(service, client)
            self.phase = Phase.READY
            logger.info(f"Ready with {len(accounts)} account(s)")

    def _require_ready(self) -> None:
        if self.phase is not Phase.READY:
            raise NotReadyError("LLMUsage.setup() has not been called")

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    async def register_client(self, service: Service, client: BaseUsageClient) -> None:
        async with self._lock:
            self._clients[service] = client

    def register_discoverer(self, discoverer: BaseDiscoverer) -> None:
        self._discovery.register(discoverer)

    def client_for(self, service: Service) -> BaseUsageClient:
        client = self._clients.get(service)
        if client is None:
            raise NoClientForServiceError(service)
        return client

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    def get_accounts(self, service: Optional[Service] = None) -> list[Account]:
        self._require_ready()
        return self._registry.get_accounts(service)

    def get_account(self, account_id: UUID) -> Optional[Account]:
        self._require_ready()
        return self._registry.get_account(account_id)

    async def save_account(self, account: Account) -> Account:
        self._require_ready()
        return await self._registry.save_account(account)

    async def delete_account(self, account_id: UUID) -> bool:
        self._require_ready()
        return await self._registry.delete_account(account_id)

    async def save_accounts_in_order(self, ordered: list[Account]) -> None:
        self._require_ready()
        await self._registry.save_accounts_in_order(ordered)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover(self, service: Optional[Service] = None) -> list[DiscoveryResult]:
        """Run discovery without importing anything."""
        if service is None:
            return await self._discovery.discover_all()
        return await self._discovery.discover(service)

    async def discover_and_import(
        self, service: Optional[Service] = None
    ) -> list[Account]:
        """Discover credentials and merge them into the registry."""
        self._require_ready()
        results = await self.discover(service)
        accounts = await self._registry.apply(results)
        logger.info(
            f"Imported {len(results)} discovery result(s) into "
            f"{len({a.id for a in accounts})} account(s)"
        )
        return accounts

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def fetch_usage(self, account: Account) -> UsageData:
        """Fetch one account's usage.

        Services listed in ``rediscover_services`` hold credentials that go
        stale when the local app restarts.  For those, a failed fetch
        triggers one rediscovery of that service and exactly one retry with
        the refreshed account; the retry's error propagates as-is.
        """
        self._require_ready()
        client = self.client_for(account.service)

        try:
            return await client.fetch_usage(account)
        except Exception as exc:
            if account.service not in self.rediscover_services:
                raise
            first_error = exc

        logger.info(
            f"{account.service.display_name} fetch failed ({first_error}); "
            "rediscovering and retrying once"
        )
        try:
            await self.discover_and_import(account.service)
        except LLMUsageError as exc:
            logger.warning(f"Rediscovery for {account.service.value} failed: {exc}")

        updated = self._registry.get_account(account.id)
        if updated is None:
            raise first_error
        return await client.fetch_usage(updated)

    async def fetch_all_usage(self, timeout: Optional[float] = None) -> list[FetchResult]:
        """Fetch every active account concurrently.

        Each account gets its own result; one failure never affects the
        others.  ``timeout`` bounds each account's fetch individually.
        """
        self._require_ready()
        accounts = [a for a in self._registry.get_accounts() if a.is_active]
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(account: Account) -> FetchResult:
            async with semaphore:
                try:
                    usage = await race(self.fetch_usage(account), timeout)
                except Exception as exc:
                    logger.debug(
                        f"Fetch failed for {account.service.value} "
                        f"'{account.label}': {exc!r}"
                    )
                    return FetchResult(account, error=exc)
                return FetchResult(account, usage=usage)

        return list(await asyncio.gather(*(_one(a) for a in accounts)))
