"""
DocLedger Configuration — Load and validate docledger.yaml at startup.

Resolution order (later wins):
    1. Model defaults
    2. docledger.yaml (explicit path, or discovered by walking up from CWD)
    3. DOCLEDGER_* environment variables

Usage:
    from docledger.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from docledger.engine.errors import ConfigError

CONFIG_FILENAME = "docledger.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for docledger.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///docledger.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    create_tables: bool = True


class StorageConfig(BaseModel):
    root: str = "/data/document-storage/raw"
    max_file_size_mb: int = Field(default=5000, ge=1)
    spool_memory_mb: int = Field(default=8, ge=0)
    chunk_size: int = Field(default=8192, ge=512)

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def spool_memory_bytes(self) -> int:
        return self.spool_memory_mb * 1024 * 1024


class IngestionConfig(BaseModel):
    default_source_type: str = "other-sources"
    deduplication_enabled: bool = True

    @field_validator("default_source_type")
    @classmethod
    def validate_source_type(cls, v: str) -> str:
        # deferred: documents imports the db layer, which imports engine
        from docledger.documents.models import SourceType

        allowed = tuple(s.value for s in SourceType)
        if v not in allowed:
            raise ValueError(f"default_source_type must be one of {allowed}, got '{v}'")
        return v


class QueryConfig(BaseModel):
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=500, ge=1)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = "logs"
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level '{v}'")
        return v


class ServiceConfig(BaseModel):
    """Root model for docledger.yaml."""
    name: str = "DocLedger"
    version: str = "1.0.0"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    storage: StorageConfig = StorageConfig()
    ingestion: IngestionConfig = IngestionConfig()
    query: QueryConfig = QueryConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

# env var -> (section, key); section None means top level
ENV_OVERRIDES = {
    "DOCLEDGER_DATABASE_URL": ("database", "url"),
    "DOCLEDGER_STORAGE_ROOT": ("storage", "root"),
    "DOCLEDGER_MAX_FILE_SIZE_MB": ("storage", "max_file_size_mb"),
    "DOCLEDGER_LOG_LEVEL": ("logging", "level"),
    "DOCLEDGER_LOG_DIR": ("logging", "directory"),
    "DOCLEDGER_ENV": (None, "environment"),
}


def _apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})
            data[section][key] = value
    return data


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[ServiceConfig] = None


def _find_config_file() -> Optional[Path]:
    """Walk up from CWD looking for docledger.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ServiceConfig:
    """
    Load and validate docledger.yaml.

    Args:
        config_path: Explicit path. If None, auto-discovers; defaults apply
            when no file is found.
        environ: Environment mapping for overrides (defaults to os.environ).

    Returns:
        Validated ServiceConfig instance.

    Raises:
        ConfigError: explicit path missing, unreadable YAML, or invalid values.
    """
    global _config

    if config_path is not None:
        path: Optional[Path] = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}", config_path=config_path)
    else:
        path = _find_config_file()

    raw: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}", config_path=str(path)) from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Top level of {path} must be a mapping", config_path=str(path))

    # Flatten the optional top-level "service" block
    service_data = raw.get("service") or {}
    if not isinstance(service_data, dict):
        raise ConfigError(
            f"'service' section of {path} must be a mapping",
            config_path=str(path) if path else None,
        )
    config_data: Dict[str, Any] = {
        "name": service_data.get("name", raw.get("name", "DocLedger")),
        "version": service_data.get("version", raw.get("version", "1.0.0")),
        "environment": service_data.get("environment", raw.get("environment", "dev")),
    }
    for section in ("database", "storage", "ingestion", "query", "logging"):
        section_data = raw.get(section) or {}
        if not isinstance(section_data, dict):
            raise ConfigError(
                f"'{section}' section of {path} must be a mapping",
                config_path=str(path) if path else None,
            )
        config_data[section] = dict(section_data)

    _apply_env_overrides(config_data, environ)

    try:
        _config = ServiceConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid configuration: {e}",
            config_path=str(path) if path else None,
            validation_errors=e.errors(),
        ) from e
    return _config


def get_config() -> ServiceConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config (tests, reload)."""
    global _config
    _config = None
