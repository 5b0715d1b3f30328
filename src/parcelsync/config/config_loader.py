"""
Configuration loader for the sync engine.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml
except ImportError:
    yaml = None

from ..core.exceptions import ConfigurationError
from ..remote.firestore_store import FIRESTORE_MAX_WRITES_PER_COMMIT


logger = logging.getLogger(__name__)


SUPPORTED_BACKENDS = ("firestore", "memory")
SUPPORTED_SOURCE_TYPES = ("file", "synthetic")


class SyncConfig:
    """
    Configuration for the sync engine.

    Loads YAML configuration files, fills in defaults and applies
    environment overrides. Call validate() before starting a run.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self._default_config()
        if self.config_path:
            _merge(self.config, self._load_config())
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if yaml is None:
            raise ImportError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not self.config_path.exists():
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is not None and not isinstance(config, dict):
            raise ConfigurationError(f"Config file {self.config_path} must contain a mapping")
        return config or {}

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "local_store": {
                "db_path": "data/parcel_sync.db",
            },
            "remote": {
                "backend": "firestore",
                "project": None,
                "credentials_path": None,
                "database": None,
                "max_writes_per_commit": FIRESTORE_MAX_WRITES_PER_COMMIT,
            },
            "sync": {
                "kinds": ["invoice", "return_note"],
                "max_records_per_chunk": FIRESTORE_MAX_WRITES_PER_COMMIT,
                "max_workers": 1,
                "retry_backlog": True,
                "retry": {
                    "max_attempts": 3,
                    "initial_delay_ms": 500,
                    "max_delay_ms": 8000,
                    "backoff_multiplier": 2.0,
                    "jitter": True,
                },
            },
            "sources": {},
            "logging": {
                "level": "INFO",
                "structured": False,
            },
        }

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        db_path = os.environ.get("PARCEL_SYNC_DB_PATH")
        if db_path:
            self.config.setdefault("local_store", {})["db_path"] = db_path

        remote = self.config.setdefault("remote", {})
        backend = os.environ.get("PARCEL_SYNC_REMOTE_BACKEND")
        if backend:
            remote["backend"] = backend

        project = os.environ.get("GOOGLE_CLOUD_PROJECT")
        if project and not remote.get("project"):
            remote["project"] = project

        credentials = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        if credentials and not remote.get("credentials_path"):
            remote["credentials_path"] = credentials

        max_workers = os.environ.get("PARCEL_SYNC_MAX_WORKERS")
        if max_workers:
            try:
                self.config.setdefault("sync", {})["max_workers"] = int(max_workers)
            except ValueError:
                raise ConfigurationError(
                    f"PARCEL_SYNC_MAX_WORKERS must be an integer, got {max_workers!r}"
                )

    def get_local_store_config(self) -> Dict[str, Any]:
        """Get local record store configuration."""
        return self.config.get("local_store", {})

    def get_remote_config(self) -> Dict[str, Any]:
        """Get remote document store configuration."""
        return self.config.get("remote", {})

    def get_sync_config(self) -> Dict[str, Any]:
        """Get sync run configuration."""
        return self.config.get("sync", {})

    def get_sources(self) -> Dict[str, Dict[str, Any]]:
        """Get candidate source configuration by kind name."""
        return self.config.get("sources") or {}

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self.config.get("logging", {})

    def get_kinds(self) -> List[str]:
        """Get the kinds to reconcile, in order."""
        return list(self.get_sync_config().get("kinds") or [])

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def validate(self) -> None:
        """
        Check the configuration for a run.

        Raises:
            ConfigurationError: On the first problem found
        """
        from ..kinds import KINDS

        if not self.get("local_store.db_path"):
            raise ConfigurationError("local_store.db_path is required")

        backend = str(self.get("remote.backend", "")).lower()
        if backend not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"Unknown remote backend: {backend!r}. Supported: {', '.join(SUPPORTED_BACKENDS)}"
            )

        if backend == "firestore":
            if not self.get("remote.project"):
                raise ConfigurationError(
                    "remote.project (or GOOGLE_CLOUD_PROJECT) is required for the firestore backend"
                )
            credentials = self.get("remote.credentials_path")
            if not credentials:
                raise ConfigurationError(
                    "remote.credentials_path (or GOOGLE_APPLICATION_CREDENTIALS) is required "
                    "for the firestore backend"
                )
            if not Path(credentials).exists():
                raise ConfigurationError(f"Credentials file not found: {credentials}")

        max_writes = self.get("remote.max_writes_per_commit")
        _check_limit("remote.max_writes_per_commit", max_writes, FIRESTORE_MAX_WRITES_PER_COMMIT)
        _check_limit("sync.max_records_per_chunk", self.get("sync.max_records_per_chunk"), max_writes)
        _check_limit("sync.max_workers", self.get("sync.max_workers"))

        max_attempts = self.get("sync.retry.max_attempts", 1)
        if not isinstance(max_attempts, int) or max_attempts < 1:
            raise ConfigurationError(f"sync.retry.max_attempts must be at least 1, got {max_attempts!r}")

        kinds = self.get_kinds()
        if not kinds:
            raise ConfigurationError("sync.kinds must name at least one kind")

        sources = self.get_sources()
        for kind_name in kinds:
            if kind_name not in KINDS:
                raise ConfigurationError(
                    f"Unknown record kind: {kind_name!r}. Supported: {', '.join(KINDS)}"
                )
            source = sources.get(kind_name)
            if not source:
                raise ConfigurationError(f"No source configured for kind {kind_name!r}")
            source_type = source.get("type", "file")
            if source_type not in SUPPORTED_SOURCE_TYPES:
                raise ConfigurationError(
                    f"Unknown source type {source_type!r} for kind {kind_name!r}"
                )
            if source_type == "file" and not source.get("path"):
                raise ConfigurationError(f"File source for kind {kind_name!r} needs a path")


def _check_limit(name: str, value: Any, maximum: Optional[int] = None) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    if maximum is not None and value > maximum:
        raise ConfigurationError(f"{name} must not exceed {maximum}, got {value}")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Merge override into base, recursing into nested mappings."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
