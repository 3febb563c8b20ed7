"""Account persistence. The whole account list is stored as one JSON document."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from uuid import UUID

from llmusage._logging import get_logger
from llmusage.models import Account

logger = get_logger("LLMUsage.Storage")


class AccountStorage(ABC):
    """Persists the full, ordered account list.

    Implementations only need ``load_accounts`` and ``save_accounts``; the
    per-id helpers are built on those two.  Calls are blocking and must be
    safe to make from worker threads.
    """

    @abstractmethod
    def load_accounts(self) -> list[Account]:
        ...

    @abstractmethod
    def save_accounts(self, accounts: list[Account]) -> None:
        ...

    def load_account(self, account_id: UUID) -> Optional[Account]:
        return next((a for a in self.load_accounts() if a.id == account_id), None)

    def save_account(self, account: Account) -> None:
        accounts = self.load_accounts()
        for idx, existing in enumerate(accounts):
            if existing.id == account.id:
                accounts[idx] = account
                break
        else:
            accounts.append(account)
        self.save_accounts(accounts)

    def delete_account(self, account_id: UUID) -> bool:
        """Delete an account. Returns True if it existed."""
        accounts = self.load_accounts()
        remaining = [a for a in accounts if a.id != account_id]
        if len(remaining) == len(accounts):
            return False
        self.save_accounts(remaining)
        return True


class MemoryStorage(AccountStorage):
    """Process-local storage, used by tests and one-shot runs."""

    def __init__(self, accounts: Optional[list[Account]] = None):
        self._lock = threading.Lock()
        self._accounts = [a.copy() for a in accounts or []]

    def load_accounts(self) -> list[Account]:
        with self._lock:
            return [a.copy() for a in self._accounts]

    def save_accounts(self, accounts: list[Account]) -> None:
        with self._lock:
            self._accounts = [a.copy() for a in accounts]


class JsonFileStorage(AccountStorage):
    """Thread-safe JSON file storage.

    Pattern: one lock, whole-file read per load, atomic temp-file + rename
    per save.  A missing file reads as an empty account list.
    """

    DEFAULT_PATH = Path.home() / ".llmusage" / "accounts.json"

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else self.DEFAULT_PATH
        self._lock = threading.RLock()

    def load_accounts(self) -> list[Account]:
        with self._lock:
            if not self.path.is_file():
                return []
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [Account.from_dict(item) for item in data.get("accounts", [])]

    def save_accounts(self, accounts: list[Account]) -> None:
        payload = {"version": 1, "accounts": [a.to_dict() for a in accounts]}
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent), suffix=".json.tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                # Credentials live in this file.
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, str(self.path))
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        logger.debug(f"Saved {len(accounts)} account(s) to {self.path}")

    # The per-id helpers do a load-mutate-save cycle; hold the lock across it.

    def save_account(self, account: Account) -> None:
        with self._lock:
            super().save_account(account)

    def delete_account(self, account_id: UUID) -> bool:
        with self._lock:
            return super().delete_account(account_id)
