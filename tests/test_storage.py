import json
import os
import stat
import sys

import pytest

from llmusage.models import Service
from llmusage.storage import JsonFileStorage, MemoryStorage


def test_missing_file_loads_empty(tmp_path):
    storage = JsonFileStorage(tmp_path / "accounts.json")
    assert storage.load_accounts() == []


def test_save_and_load_preserves_order(tmp_path, make_account):
    storage = JsonFileStorage(tmp_path / "nested" / "accounts.json")
    accounts = [make_account(Service.CURSOR), make_account(Service.CLAUDE, label="Work")]

    storage.save_accounts(accounts)
    loaded = storage.load_accounts()

    assert [a.id for a in loaded] == [a.id for a in accounts]
    assert loaded[1].label == "Work"
    assert loaded[0].tokens[0].access_token == "tok-1"


def test_file_format(tmp_path, make_account):
    path = tmp_path / "accounts.json"
    JsonFileStorage(path).save_accounts([make_account()])

    data = json.loads(path.read_text())
    assert data["version"] == 1
    assert data["accounts"][0]["service"] == "claude"
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
def test_file_is_private(tmp_path, make_account):
    path = tmp_path / "accounts.json"
    JsonFileStorage(path).save_accounts([make_account()])
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_per_id_helpers(tmp_path, make_account):
    storage = JsonFileStorage(tmp_path / "accounts.json")
    account = make_account()

    storage.save_account(account)
    account.label = "Renamed"
    storage.save_account(account)

    assert len(storage.load_accounts()) == 1
    assert storage.load_account(account.id).label == "Renamed"
    assert storage.delete_account(account.id) is True
    assert storage.delete_account(account.id) is False
    assert storage.load_account(account.id) is None


def test_memory_storage_copies(make_account):
    account = make_account()
    storage = MemoryStorage([account])

    loaded = storage.load_accounts()
    loaded[0].tokens.clear()

    assert len(storage.load_accounts()[0].tokens) == 1
