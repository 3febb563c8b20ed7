"""Authoritative account list and the discovery merge engine."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional
from uuid import UUID

from llmusage._logging import get_logger
from llmusage.errors import PersistenceError
from llmusage.models import DEFAULT_LABEL, Account, DiscoveryResult, Service
from llmusage.storage import AccountStorage

logger = get_logger("LLMUsage.Registry")


def find_match(
    accounts: list[Account], result: DiscoveryResult
) -> Optional[Account]:
    """Pick the account a discovery result belongs to.

    Exact ``(service, label)`` first when the result is labelled, then the
    first account of the same service.  With several accounts for one
    service the fallback is a heuristic.
    """
    if result.label is not None:
        for account in accounts:
            if account.service == result.service and account.label == result.label:
                return account
    for account in accounts:
        if account.service == result.service:
            return account
    return None


def merge_result(accounts: list[Account], result: DiscoveryResult) -> Account:
    """Apply one discovery result to ``accounts`` in place and return the target."""
    match = find_match(accounts, result)
    if match is None:
        account = Account(
            service=result.service,
            label=result.label or DEFAULT_LABEL,
            tokens=list(result.tokens),
        )
        accounts.append(account)
        logger.info(
            f"New {result.service.display_name} account '{account.label}' "
            f"from {result.source}"
        )
        return account

    for token in result.tokens:
        match.upsert_token(token)
    if result.label and match.label == DEFAULT_LABEL:
        logger.info(
            f"Relabeled {result.service.display_name} account "
            f"'{DEFAULT_LABEL}' -> '{result.label}'"
        )
        match.label = result.label
    match.touch()
    return match


class AccountRegistry:
    """Owns the account list and serializes every mutation through one lock.

    Mutations run against a working copy which is flushed to the store and
    only then committed to memory, so a failed flush leaves the registry
    exactly as it was.
    """

    def __init__(self, storage: AccountStorage):
        self._storage = storage
        self._accounts: list[Account] = []
        self._lock = asyncio.Lock()

    async def load(self) -> list[Account]:
        async with self._lock:
            try:
                accounts = await asyncio.to_thread(self._storage.load_accounts)
            except Exception as exc:
                raise PersistenceError(f"Failed to load accounts: {exc}") from exc
            self._accounts = accounts
            logger.debug(f"Loaded {len(self._accounts)} account(s)")
            return [a.copy() for a in self._accounts]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_accounts(self, service: Optional[Service] = None) -> list[Account]:
        return [
            a.copy()
            for a in self._accounts
            if service is None or a.service == service
        ]

    def get_account(self, account_id: UUID) -> Optional[Account]:
        for account in self._accounts:
            if account.id == account_id:
                return account.copy()
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _commit(self, working: list[Account]) -> None:
        try:
            await asyncio.to_thread(self._storage.save_accounts, working)
        except Exception as exc:
            raise PersistenceError(f"Failed to save accounts: {exc}") from exc
        self._accounts = working

    def _working_copy(self) -> list[Account]:
        return [a.copy() for a in self._accounts]

    async def apply(self, results: Iterable[DiscoveryResult]) -> list[Account]:
        """Merge discovery results in order; returns the affected accounts."""
        async with self._lock:
            working = self._working_copy()
            affected: list[Account] = []
            for result in results:
                account = merge_result(working, result)
                affected.append(account)
            if not affected:
                return []
            await self._commit(working)
            return [a.copy() for a in affected]

    async def save_account(self, account: Account) -> Account:
        """Insert or replace an account by id."""
        async with self._lock:
            working = self._working_copy()
            stored = account.copy()
            stored.touch()
            for idx, existing in enumerate(working):
                if existing.id == stored.id:
                    working[idx] = stored
                    break
            else:
                working.append(stored)
            await self._commit(working)
            return stored.copy()

    async def delete_account(self, account_id: UUID) -> bool:
        """Delete an account. Returns True if it existed."""
        async with self._lock:
            working = [a for a in self._accounts if a.id != account_id]
            if len(working) == len(self._accounts):
                return False
            await self._commit([a.copy() for a in working])
            return True

    async def save_accounts_in_order(self, ordered: list[Account]) -> None:
        """Replace the whole list, e.g. after the user reorders accounts."""
        async with self._lock:
            working = [a.copy() for a in ordered]
            for account in working:
                account.touch()
            await self._commit(working)
