"""Configuration classes for worldbackup.

This module defines the backup configuration and its JSON loader.
Targets and destinations are frozen: they do not change during a run.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from worldbackup.core.types import ConfigError

DEFAULT_TASKS_LIMIT = 80
DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024
DEFAULT_INTERVAL_SECONDS = 3600


class DestinationKind(str, Enum):
    """Where a backup is written."""

    LOCAL = "local"
    FTP = "ftp"
    CLOUD = "cloud"


@dataclass(frozen=True)
class Destination:
    """Destination descriptor.

    Attributes:
        kind: Local directory, FTP server or chunked-upload object store.
        path: Local directory, FTP root or cloud path prefix.
        host: FTP host.
        port: FTP port.
        username: FTP user.
        password: FTP password.
        url: Base URL of the object store (e.g. "https://store.example").
        token: Bearer token for the object store.
        timeout: Network timeout in seconds.
    """

    kind: DestinationKind
    path: str
    host: str | None = None
    port: int = 21
    username: str = "anonymous"
    password: str = ""
    url: str | None = None
    token: str | None = None
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Check the fields each kind needs."""
        if self.kind is DestinationKind.FTP and not self.host:
            raise ConfigError("ftp destination requires 'host'")
        if self.kind is DestinationKind.CLOUD and not self.url:
            raise ConfigError("cloud destination requires 'url'")
        if self.url:
            object.__setattr__(self, "url", self.url.rstrip("/"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Destination:
        """Create from a configuration dictionary."""
        try:
            kind = DestinationKind(data.get("kind", "local"))
        except ValueError as e:
            raise ConfigError(f"unknown destination kind: {data.get('kind')!r}") from e
        if "path" not in data:
            raise ConfigError("destination requires 'path'")
        known = {f for f in cls.__dataclass_fields__ if f != "kind"}
        return cls(kind=kind, **{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class BackupTarget:
    """One source tree and where it goes.

    Attributes:
        source: Absolute source directory.
        destination: Where the backup is written.
        archived: Single zip stream if True, file-by-file mirror otherwise.
        exclusions: Folder patterns relative to the source.
        max_backups: Run directories kept at a local destination (0 = all).
    """

    source: Path
    destination: Destination
    archived: bool = True
    exclusions: tuple[str, ...] = ()
    max_backups: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupTarget:
        """Create from a configuration dictionary."""
        if "source" not in data:
            raise ConfigError("target requires 'source'")
        if "destination" not in data:
            raise ConfigError(f"target {data['source']!r} requires 'destination'")
        max_backups = int(data.get("max_backups", 0))
        if max_backups < 0:
            raise ConfigError("'max_backups' can't be negative")
        return cls(
            source=Path(data["source"]).expanduser().absolute(),
            destination=Destination.from_dict(data["destination"]),
            archived=bool(data.get("archived", True)),
            exclusions=tuple(data.get("exclusions", ())),
            max_backups=max_backups,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        destination = asdict(self.destination)
        destination["kind"] = self.destination.kind.value
        return {
            "source": str(self.source),
            "destination": destination,
            "archived": self.archived,
            "exclusions": list(self.exclusions),
            "max_backups": self.max_backups,
        }


@dataclass
class BackupConfig:
    """Top-level configuration.

    Attributes:
        targets: Trees to back up, in order.
        interval_seconds: Delay between scheduled runs.
        tasks_limit: Light tasks per batched flush.
        chunk_size: Bytes per chunked-upload request.
        log_level: Logging level name.
        log_path: Optional log file.
    """

    targets: list[BackupTarget] = field(default_factory=list)
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    tasks_limit: int = DEFAULT_TASKS_LIMIT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_level: str = "INFO"
    log_path: Path | None = None

    def __post_init__(self) -> None:
        """Validate numeric settings."""
        if self.interval_seconds <= 0:
            raise ConfigError("'interval_seconds' must be positive")
        if self.tasks_limit <= 0:
            raise ConfigError("'tasks_limit' must be positive")
        if self.chunk_size <= 0:
            raise ConfigError("'chunk_size' must be positive")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupConfig:
        """Create from a configuration dictionary."""
        log_path = data.get("log_path")
        return cls(
            targets=[BackupTarget.from_dict(t) for t in data.get("targets", [])],
            interval_seconds=int(data.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)),
            tasks_limit=int(data.get("tasks_limit", DEFAULT_TASKS_LIMIT)),
            chunk_size=int(data.get("chunk_size", DEFAULT_CHUNK_SIZE)),
            log_level=str(data.get("log_level", "INFO")).upper(),
            log_path=Path(log_path) if log_path else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "targets": [t.to_dict() for t in self.targets],
            "interval_seconds": self.interval_seconds,
            "tasks_limit": self.tasks_limit,
            "chunk_size": self.chunk_size,
            "log_level": self.log_level,
            "log_path": str(self.log_path) if self.log_path else None,
        }


def load_config(path: Path) -> BackupConfig:
    """Load configuration from a JSON file.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a JSON object")
    return BackupConfig.from_dict(data)


def save_config(config: BackupConfig, path: Path) -> None:
    """Save configuration to a JSON file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
