import pytest
import yaml
from pathlib import Path

from llmusage.config import ConfigLoader
from llmusage.models import Account, Service, Token, TokenSource
from llmusage.storage import MemoryStorage


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Write a minimal, valid config file in a temporary directory."""
    config_content = {
        "system": {"log_level": "INFO"},
        "storage": {"path": str(tmp_path / "accounts.json")},
        "discovery": {"timeout": 2.0, "username_timeout": 0.5},
        "fetch": {
            "timeout": 2.0,
            "http_timeout": 1.0,
            "max_concurrency": 4,
            "rediscover_services": ["antigravity"],
        },
    }
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.dump(config_content, f)
    return path


@pytest.fixture
def config(config_path: Path) -> ConfigLoader:
    return ConfigLoader(config_path=str(config_path))


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def make_account():
    """Factory for accounts with a single manual token."""

    def _make(service=Service.CLAUDE, label="Default", token="tok-1", **kwargs):
        tokens = [Token(access_token=token, source=TokenSource.MANUAL)] if token else []
        return Account(service=service, label=label, tokens=tokens, **kwargs)

    return _make
