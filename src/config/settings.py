"""
Configuration loader and run settings for ready-sync.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULT_CONFIG_PATH = Path("ready-sync.yaml")
ENV_CONFIG_PATH = "READY_SYNC_CONFIG"
STATE_FILE_NAME = ".ready-sync_state.json"
DEFAULT_LOCK_TTL_MINUTES = 30


class ConfigError(ValueError):
    """Raised when configuration values are missing or inconsistent."""


@dataclass(frozen=True)
class AppConfig:
    """Container for raw configuration data and path helpers."""

    root_dir: Path
    raw: Dict[str, Any]

    @classmethod
    def load(cls, path: Path | None = None) -> "AppConfig":
        """Load configuration from YAML and normalize the root directory.

        Without an explicit path or ``READY_SYNC_CONFIG`` the default file is
        optional; an empty configuration anchored at the working directory is
        returned when it does not exist.
        """
        config_value = os.environ.get(ENV_CONFIG_PATH)
        config_path = path
        if config_path is None and config_value:
            config_path = Path(config_value)
        if config_path is None:
            default_path = (Path.cwd() / DEFAULT_CONFIG_PATH).resolve()
            if not default_path.exists():
                return cls.empty()
            config_path = default_path
        config_path = config_path.expanduser()
        if not config_path.is_absolute():
            config_path = (Path.cwd() / config_path).resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")
        return cls(root_dir=config_path.parent, raw=data)

    @classmethod
    def empty(cls) -> "AppConfig":
        """Return a configuration with no values, rooted at the working directory."""
        return cls(root_dir=Path.cwd(), raw={})

    def get(self, *keys: str, default: Any = None) -> Any:
        """Retrieve nested configuration values with an optional default."""
        node: Any = self.raw
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def resolve_path(self, *keys: str, default: str | None = None) -> Path:
        """Resolve a path from configuration keys to an absolute Path."""
        value = self.get(*keys, default=default)
        if value is None:
            raise KeyError(f"Missing config path for {'.'.join(keys)}")
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = (self.root_dir / path).resolve()
        return path

    def optional_path(self, *keys: str) -> Optional[Path]:
        """Resolve a path like resolve_path, returning None when unset or empty."""
        if not self.get(*keys):
            return None
        return self.resolve_path(*keys)


@dataclass(frozen=True)
class SyncSettings:
    """Immutable settings for a single ready-sync run."""

    root: Path
    recursive: bool = False
    follow_symlinks: bool = False
    state_path: Optional[Path] = None
    state_enabled: bool = True
    lock_path: Optional[Path] = None
    lock_ttl: timedelta = timedelta(minutes=DEFAULT_LOCK_TTL_MINUTES)
    gcs_bucket: Optional[str] = None
    local_sink_path: Optional[Path] = None
    object_prefix: str = ""
    firestore_project: Optional[str] = None
    metadata_collection: Optional[str] = None
    folder_concurrency: int = 0
    file_concurrency: int = 0
    log_dir: Optional[Path] = None
    verbose: bool = False

    @property
    def use_state(self) -> bool:
        """True when dedup state is read and written for this run."""
        return self.state_enabled and self.state_path is not None

    @property
    def delivery_enabled(self) -> bool:
        return bool(self.gcs_bucket) or self.local_sink_path is not None

    @classmethod
    def from_sources(
        cls, config: AppConfig, overrides: Optional[Mapping[str, Any]] = None
    ) -> "SyncSettings":
        """Merge YAML configuration with command-line overrides.

        Override values of ``None`` are treated as unset. Override paths are
        relative to the working directory, config paths to the config file.
        """
        overrides = {key: value for key, value in (overrides or {}).items() if value is not None}

        root = _override_path(overrides, "root") or config.resolve_path("scan", "root", default=".")
        root = root.resolve()

        state_enabled = _as_bool(config.get("state", "enabled", default=True))
        if overrides.get("no_state"):
            state_enabled = False
        state_path = _override_path(overrides, "state_path") or config.optional_path("state", "path")
        if state_path is None:
            state_path = root / STATE_FILE_NAME

        lock_path = _override_path(overrides, "lock_path") or config.optional_path("lock", "path")
        if lock_path is None:
            lock_path = default_lock_path(root)
        ttl_minutes = _as_number(
            overrides.get("lock_ttl_minutes", config.get("lock", "ttl_minutes", default=DEFAULT_LOCK_TTL_MINUTES)),
            "lock.ttl_minutes",
        )
        if ttl_minutes <= 0:
            raise ConfigError("lock.ttl_minutes must be positive")

        gcs_bucket = overrides.get("gcs_bucket", config.get("delivery", "gcs_bucket")) or None
        local_sink_path = _override_path(overrides, "local_sink_path") or config.optional_path(
            "delivery", "local_path"
        )
        if gcs_bucket and local_sink_path is not None:
            raise ConfigError("GCS bucket and local sink are mutually exclusive")

        firestore_project = None
        metadata_collection = overrides.get(
            "metadata_collection", config.get("delivery", "metadata_collection")
        ) or None
        firestore_value = overrides.get("firestore", config.get("delivery", "firestore")) or None
        if firestore_value:
            if not gcs_bucket:
                raise ConfigError("firestore requires a GCS bucket")
            firestore_project, metadata_collection = parse_firestore_target(str(firestore_value))
        if metadata_collection:
            if not gcs_bucket and local_sink_path is None:
                raise ConfigError("metadata collection requires a delivery sink")
            if gcs_bucket and not firestore_project:
                raise ConfigError("metadata collection with GCS requires firestore PROJECT_ID:COLLECTION")

        log_dir = _override_path(overrides, "log_dir") or config.optional_path("paths", "logs")

        return cls(
            root=root,
            recursive=_as_bool(overrides.get("recursive", config.get("scan", "recursive", default=False))),
            follow_symlinks=_as_bool(
                overrides.get("follow_symlinks", config.get("scan", "follow_symlinks", default=False))
            ),
            state_path=state_path,
            state_enabled=state_enabled,
            lock_path=lock_path,
            lock_ttl=timedelta(minutes=ttl_minutes),
            gcs_bucket=str(gcs_bucket) if gcs_bucket else None,
            local_sink_path=local_sink_path,
            object_prefix=str(
                overrides.get("object_prefix", config.get("delivery", "object_prefix", default="")) or ""
            ),
            firestore_project=firestore_project,
            metadata_collection=str(metadata_collection) if metadata_collection else None,
            folder_concurrency=int(
                _as_number(
                    overrides.get(
                        "folder_concurrency", config.get("delivery", "folder_concurrency", default=0)
                    ),
                    "delivery.folder_concurrency",
                )
            ),
            file_concurrency=int(
                _as_number(
                    overrides.get("file_concurrency", config.get("delivery", "file_concurrency", default=0)),
                    "delivery.file_concurrency",
                )
            ),
            log_dir=log_dir,
            verbose=_as_bool(overrides.get("verbose", False)),
        )


def default_lock_path(root: Path) -> Path:
    """Return the per-root lock file location in the system temp directory."""
    digest = hashlib.sha256(str(root).encode("utf-8")).digest()
    return Path(tempfile.gettempdir()) / f"ready-sync-{digest[:8].hex()}.lock"


def parse_firestore_target(value: str) -> tuple[str, str]:
    """Split a PROJECT_ID:COLLECTION string."""
    project, sep, collection = value.partition(":")
    if not sep or not project or not collection:
        raise ConfigError("invalid firestore format, expected PROJECT_ID:COLLECTION")
    return project, collection


def _override_path(overrides: Mapping[str, Any], key: str) -> Optional[Path]:
    value = overrides.get(key)
    if not value:
        return None
    return Path(value).expanduser().resolve()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_number(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
