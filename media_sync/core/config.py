"""
Configuration management for media-sync.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - One or more media server connections (Jellyfin or Emby)
    - Storage directory for the library cache, logs and offline downloads
    - Sync tuning (page size, request timeout, progress estimation)

Configuration File Location:
    By default config.yaml is read from the current working directory.

Example config.yaml:
    servers:
      - name: home
        kind: jellyfin
        url: "https://music.example.org"
        user_id: "8f2a..."
        access_token: "c41d..."
        active: true

    storage:
      directory: "~/.media-sync"
      downloads_directory: null  # Optional, defaults to {directory}/downloads

    sync:
      page_size: 500
      request_timeout: 60
      track_fetch_estimate: 60
      progress_interval: 0.3
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from media_sync.core.exceptions import ConfigError
from media_sync.core.models import ServerKind


CONFIG_FILENAME = "config.yaml"
DATABASE_FILENAME = "library.db"


@dataclass(frozen=True)
class ServerConfig:
    """
    Connection settings for one media server.

    Attributes:
        name: Unique display name, also used to register the Source locally.
        kind: Server flavour; drives the read-only playlist heuristic.
        url: Base URL of the server, without trailing slash.
        user_id: Server-side user id (required by non-admin accounts).
        access_token: API token sent in the Authorization header.
        active: Whether this server backs the cache partition the UI reads.
    """
    name: str
    kind: ServerKind
    url: str
    user_id: str | None = None
    access_token: str | None = None
    active: bool = False


@dataclass(frozen=True)
class StorageConfig:
    """
    Local storage locations.

    Attributes:
        directory: Root directory for library.db and logs. ~ is expanded.
        downloads_directory: Where offline audio copies live.
                             Defaults to {directory}/downloads.
    """
    directory: Path
    downloads_directory: Path

    @property
    def database_path(self) -> Path:
        return self.directory / DATABASE_FILENAME


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync behaviour tuning.

    Attributes:
        page_size: Items per paginated remote request. Default: 500.
        request_timeout: Seconds before a single remote request fails. Default: 60.
        track_fetch_estimate: Assumed duration of the track fetch, used only
                              to drive the progress estimate. Default: 60.
        progress_interval: Seconds between estimator ticks. Default: 0.3.
    """
    page_size: int = 500
    request_timeout: float = 60.0
    track_fetch_estimate: float = 60.0
    progress_interval: float = 0.3


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable.

    Example:
        config = load_config()
        server = config.active_server
        print(f"Syncing {server.name} into {config.storage.database_path}")
    """
    servers: tuple[ServerConfig, ...]
    storage: StorageConfig
    sync: SyncConfig

    @property
    def active_server(self) -> ServerConfig:
        """The server flagged active, or the first one if none is flagged."""
        for server in self.servers:
            if server.active:
                return server
        return self.servers[0]

    def get_server(self, name: str) -> ServerConfig:
        for server in self.servers:
            if server.name == name:
                return server
        raise ConfigError(
            f"Unknown server '{name}'",
            details={"server": name, "known": [s.name for s in self.servers]}
        )


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content
        3. Validate structure (required sections exist)
        4. Parse servers, storage and sync sections
        5. Create and return frozen Config object
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    _validate_config(raw_config)

    return Config(
        servers=_parse_servers(raw_config["servers"]),
        storage=_parse_storage_config(raw_config["storage"]),
        sync=_parse_sync_config(raw_config.get("sync"))
    )


def _validate_config(raw_config: dict[str, Any]) -> None:
    if "servers" not in raw_config:
        raise ConfigError(
            "Missing required section: 'servers'",
            details={"missing_section": "servers"}
        )

    if not isinstance(raw_config["servers"], list) or not raw_config["servers"]:
        raise ConfigError(
            "Section 'servers' must be a non-empty list",
            details={"section": "servers"}
        )

    if "storage" not in raw_config:
        raise ConfigError(
            "Missing required section: 'storage'",
            details={"missing_section": "storage"}
        )

    if not isinstance(raw_config["storage"], dict):
        raise ConfigError(
            "Section 'storage' must be a dictionary",
            details={"section": "storage"}
        )


def _require_string(section: dict[str, Any], key: str, field_name: str) -> str:
    value = section.get(key, "")
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"'{field_name}' must be a non-empty string",
            details={"field": field_name}
        )
    return value.strip()


def _optional_string(section: dict[str, Any], key: str, field_name: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(
            f"'{field_name}' must be a string or null",
            details={"field": field_name}
        )
    return value.strip() or None


def _parse_servers(raw_servers: list[Any]) -> tuple[ServerConfig, ...]:
    """
    Parse and validate the servers list.

    Raises:
        ConfigError: On a malformed entry, an unknown kind, a duplicate
                     name, or more than one server flagged active.
    """
    servers: list[ServerConfig] = []
    seen_names: set[str] = set()

    for index, entry in enumerate(raw_servers):
        prefix = f"servers[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(
                f"'{prefix}' must be a dictionary",
                details={"field": prefix}
            )

        name = _require_string(entry, "name", f"{prefix}.name")
        if name in seen_names:
            raise ConfigError(
                f"Duplicate server name '{name}'",
                details={"field": f"{prefix}.name", "value": name}
            )
        seen_names.add(name)

        raw_kind = _require_string(entry, "kind", f"{prefix}.kind").lower()
        try:
            kind = ServerKind(raw_kind)
        except ValueError as e:
            raise ConfigError(
                f"'{prefix}.kind' must be one of: "
                f"{', '.join(k.value for k in ServerKind)}",
                details={"field": f"{prefix}.kind", "value": raw_kind}
            ) from e

        url = _require_string(entry, "url", f"{prefix}.url").rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ConfigError(
                f"'{prefix}.url' must start with http:// or https://",
                details={"field": f"{prefix}.url", "value": url}
            )

        active = entry.get("active", False)
        if not isinstance(active, bool):
            raise ConfigError(
                f"'{prefix}.active' must be true or false",
                details={"field": f"{prefix}.active", "value": active}
            )

        servers.append(ServerConfig(
            name=name,
            kind=kind,
            url=url,
            user_id=_optional_string(entry, "user_id", f"{prefix}.user_id"),
            access_token=_optional_string(entry, "access_token", f"{prefix}.access_token"),
            active=active
        ))

    active_names = [s.name for s in servers if s.active]
    if len(active_names) > 1:
        raise ConfigError(
            "Only one server may be marked active",
            details={"active": active_names}
        )

    return tuple(servers)


def _parse_storage_config(storage_section: dict[str, Any]) -> StorageConfig:
    """
    Parse the storage section, expanding ~ and resolving to absolute paths.

    Does NOT create the directories (that happens at startup in the CLI).
    """
    directory = _require_string(storage_section, "directory", "storage.directory")
    path = Path(directory).expanduser().resolve()

    downloads_raw = _optional_string(
        storage_section, "downloads_directory", "storage.downloads_directory"
    )
    if downloads_raw is not None:
        downloads_path = Path(downloads_raw).expanduser().resolve()
    else:
        downloads_path = path / "downloads"

    return StorageConfig(directory=path, downloads_directory=downloads_path)


def _positive_number(section: dict[str, Any], key: str, default: float, integer: bool = False) -> Any:
    raw = section.get(key)
    if raw is None:
        return default

    valid_types = (int,) if integer else (int, float)
    if isinstance(raw, bool) or not isinstance(raw, valid_types) or raw <= 0:
        kind = "integer" if integer else "number"
        raise ConfigError(
            f"'sync.{key}' must be a positive {kind}",
            details={"field": f"sync.{key}", "value": raw}
        )
    return raw if integer else float(raw)


def _parse_sync_config(sync_section: dict[str, Any] | None) -> SyncConfig:
    """Parse the optional sync section, applying defaults."""
    if sync_section is None:
        return SyncConfig()

    if not isinstance(sync_section, dict):
        raise ConfigError(
            "Section 'sync' must be a dictionary",
            details={"section": "sync"}
        )

    defaults = SyncConfig()
    return SyncConfig(
        page_size=_positive_number(sync_section, "page_size", defaults.page_size, integer=True),
        request_timeout=_positive_number(sync_section, "request_timeout", defaults.request_timeout),
        track_fetch_estimate=_positive_number(
            sync_section, "track_fetch_estimate", defaults.track_fetch_estimate
        ),
        progress_interval=_positive_number(
            sync_section, "progress_interval", defaults.progress_interval
        ),
    )
