"""Configuration settings for Scriptorium."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from scriptorium.repository.policy import SecurityPolicy
from scriptorium.repository.types import RepositorySource, SourceType

logger = logging.getLogger(__name__)

DATA_ROOT_ENV = "SCRIPTORIUM_DATA_ROOT"
CONFIG_ENV = "SCRIPTORIUM_CONFIG"

OFFICIAL_INDEX_URL = (
    "https://raw.githubusercontent.com/zaphnath-project/repositories/main/index.json"
)

DEFAULT_SOURCES = [
    {
        "type": "official",
        "url": OFFICIAL_INDEX_URL,
        "name": "Official Repository Index",
        "enabled": True,
    },
]


class ConfigError(Exception):
    """Raised when the config file cannot be parsed."""


def _default_data_root() -> Path:
    override = os.environ.get(DATA_ROOT_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".scriptorium"


@dataclass
class Settings:
    """Application settings."""

    data_root: Path = field(default_factory=_default_data_root)

    # Database
    db_path: Path | None = None

    # Network
    request_timeout: float = 30.0
    max_concurrent_downloads: int = 4

    # API server
    host: str = "127.0.0.1"
    port: int = 47300

    security: SecurityPolicy = field(default_factory=SecurityPolicy)
    sources: list[RepositorySource] = field(
        default_factory=lambda: [RepositorySource(**s) for s in DEFAULT_SOURCES]
    )

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = self.data_root / "scriptorium.db"

    @property
    def config_path(self) -> Path:
        override = os.environ.get(CONFIG_ENV)
        if override:
            return Path(override).expanduser()
        return self.data_root / "config.yaml"

    @classmethod
    def load(cls, config_path: Path | str | None = None) -> "Settings":
        """Build settings from defaults and an optional YAML file.

        The file may hold ``security``, ``sources``, ``network`` and
        ``server`` sections. A missing file yields the defaults.

        Raises:
            ConfigError: If the file exists but is not valid YAML
        """
        settings = cls()
        path = Path(config_path) if config_path else settings.config_path
        if not path.exists():
            logger.debug(f"No config file at {path}, using defaults")
            return settings

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        logger.info(f"Loaded config from {path}")
        return settings.apply(data)

    def apply(self, data: dict) -> "Settings":
        """Overlay a parsed config mapping onto these settings."""
        if "data_root" in data:
            self.data_root = Path(data["data_root"]).expanduser()
            self.db_path = self.data_root / "scriptorium.db"
        if "db_path" in data:
            self.db_path = Path(data["db_path"]).expanduser()

        if "security" in data:
            try:
                self.security = SecurityPolicy.from_dict(_section(data, "security"))
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid security section: {e}") from e

        if "sources" in data:
            entries = data["sources"] or []
            if not isinstance(entries, list) or not all(isinstance(s, dict) for s in entries):
                raise ConfigError("Invalid sources section: expected a list of mappings")
            try:
                self.sources = [
                    RepositorySource(
                        type=SourceType(s.get("type", "third-party")),
                        url=s["url"],
                        name=s.get("name", s["url"]),
                        enabled=s.get("enabled", True),
                    )
                    for s in entries
                ]
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigError(f"Invalid sources section: {e}") from e

        network = _section(data, "network")
        server = _section(data, "server")
        try:
            self.request_timeout = float(network.get("timeout", self.request_timeout))
            self.max_concurrent_downloads = int(
                network.get("max_concurrent_downloads", self.max_concurrent_downloads)
            )
            self.host = str(server.get("host", self.host))
            self.port = int(server.get("port", self.port))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid network or server section: {e}") from e
        return self


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Invalid {name} section: expected a mapping")
    return section
