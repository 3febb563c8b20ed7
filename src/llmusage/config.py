import os
import tempfile
from pathlib import Path
from typing import Optional

import yaml

from llmusage._logging import get_logger
from llmusage.models import Service
from llmusage.timeouts import DISCOVERY_TIMEOUT, FETCH_TIMEOUT, USERNAME_TIMEOUT

logger = get_logger("LLMUsage.Config")

CONFIG_ENV_VAR = "LLMUSAGE_CONFIG"


def _default_home() -> Path:
    return Path.home() / ".llmusage"


def _default_config_path() -> Path:
    return _default_home() / "config.yaml"


def _default_storage_path() -> Path:
    return _default_home() / "accounts.json"


class ConfigLoader:
    """Finds, loads, mutates, and persists config.yaml.

    Read path:
        Searches --config, the LLMUSAGE_CONFIG env var, then
        ~/.llmusage/config.yaml.  Every key has a built-in default, so a
        missing file is only an error when the caller does not pass
        ``allow_missing=True``.

    Write path:
        ``set_rediscover_services`` and ``set_storage_path`` mutate the
        in-memory config.  ``save()`` atomically writes it back.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        allow_missing: bool = False,
    ):
        self._config_path: Optional[Path] = None

        resolved = self._find_config(config_path)

        if not resolved:
            if allow_missing:
                self.config: dict = {}
                return
            searched: list[str] = []
            if config_path:
                searched.append(
                    f"  - Command line (--config): {Path(config_path).resolve()}"
                )
            env_path = os.environ.get(CONFIG_ENV_VAR)
            if env_path:
                searched.append(
                    f"  - Environment variable ({CONFIG_ENV_VAR}): "
                    f"{Path(env_path).resolve()}"
                )
            searched.append(f"  - User home directory: {_default_config_path()}")
            raise FileNotFoundError(
                "Could not find 'config.yaml'. "
                "Searched in the following locations:\n" + "\n".join(searched)
            )

        self._config_path = resolved
        with open(resolved, "r") as f:
            self.config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from: {resolved.resolve()}")

    # ------------------------------------------------------------------
    # Config discovery
    # ------------------------------------------------------------------

    def _find_config(self, config_path: Optional[str]) -> Optional[Path]:
        """Search for config.yaml in priority order."""
        if config_path:
            p = Path(config_path)
            if p.is_file():
                return p
            logger.warning(f"Config not found at --config path: {p.resolve()}")

        env = os.environ.get(CONFIG_ENV_VAR)
        if env:
            p = Path(env)
            if p.is_file():
                return p
            logger.warning(f"Config not found at env var path: {p.resolve()}")

        home = _default_config_path()
        if home.is_file():
            return home

        return None

    @property
    def config_path(self) -> Optional[Path]:
        """The resolved path the config was loaded from (or will save to)."""
        return self._config_path

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def _section(self, name: str) -> dict:
        return self.config.get(name) or {}

    def get_log_level(self) -> str:
        return str(self._section("system").get("log_level", "WARNING")).upper()

    def get_storage_path(self) -> Path:
        raw = self._section("storage").get("path")
        if raw:
            return Path(raw).expanduser()
        return _default_storage_path()

    def get_discovery_timeout(self) -> float:
        return float(self._section("discovery").get("timeout", DISCOVERY_TIMEOUT))

    def get_username_timeout(self) -> float:
        return float(
            self._section("discovery").get("username_timeout", USERNAME_TIMEOUT)
        )

    def get_fetch_timeout(self) -> float:
        """Per-account deadline used by presentation layers."""
        return float(self._section("fetch").get("timeout", FETCH_TIMEOUT))

    def get_http_timeout(self) -> float:
        return float(self._section("fetch").get("http_timeout", 15.0))

    def get_max_concurrency(self) -> int:
        return max(1, int(self._section("fetch").get("max_concurrency", 8)))

    def get_rediscover_services(self) -> set[Service]:
        """Services whose credentials are ephemeral and get one rediscovery retry."""
        raw = self._section("fetch").get(
            "rediscover_services", [Service.ANTIGRAVITY.value]
        )
        services: set[Service] = set()
        for name in raw or []:
            try:
                services.add(Service.parse(name))
            except ValueError:
                logger.warning(f"Ignoring unknown service in rediscover_services: {name}")
        return services

    # ------------------------------------------------------------------
    # Mutation methods
    # ------------------------------------------------------------------

    def set_rediscover_services(self, services: list[Service]) -> None:
        self.config.setdefault("fetch", {})["rediscover_services"] = [
            s.value for s in services
        ]

    def set_storage_path(self, path: Path) -> None:
        self.config.setdefault("storage", {})["path"] = str(path)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Optional[Path] = None) -> Path:
        """Atomically write the current config to YAML.

        Returns the path the file was written to.
        """
        target = Path(path or self._config_path or _default_config_path())
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".yaml.tmp")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    allow_unicode=True,
                )
            os.replace(tmp_path, str(target))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        self._config_path = target
        logger.info(f"Configuration saved to: {target}")
        return target
