"""HRMS backend configuration.

Loads settings from a single YAML file:
  * hrms.settings.yaml  — non-secret configuration

The file location can be overridden with the ``HRMS_SETTINGS`` environment
variable. Relative storage paths (uploads root, document registry) are
resolved once, at load time, against the process working directory.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("hrms.settings.yaml")
SETTINGS_ENV_VAR = "HRMS_SETTINGS"

DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "image/png",
    "image/jpeg",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(value: str) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return str(path.resolve())


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:8080"])


class LoggingConfig(BaseModel):
    level: str = "info"


class UploadsConfig(BaseModel):
    """Where uploaded files land and what is accepted."""
    root_dir:            str       = "uploads"
    max_file_size_bytes: int       = 10 * 1024 * 1024
    chunk_size_bytes:    int       = 1024 * 1024
    allowed_mime_types:  List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))

    @field_validator("max_file_size_bytes", "chunk_size_bytes")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number of bytes")
        return value


class DocumentsConfig(BaseModel):
    db_path: str = "employee_documents.duckdb"


class AppConfig(BaseModel):
    server:    ServerConfig    = Field(default_factory=ServerConfig)
    logging:   LoggingConfig   = Field(default_factory=LoggingConfig)
    uploads:   UploadsConfig   = Field(default_factory=UploadsConfig)
    documents: DocumentsConfig = Field(default_factory=DocumentsConfig)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *hrms.settings.yaml* into an *AppConfig* with absolute storage paths."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    data = _load_yaml(Path(settings_path))

    config = AppConfig(**data)
    config.uploads.root_dir = _resolve_path(config.uploads.root_dir)
    config.documents.db_path = _resolve_path(config.documents.db_path)

    logger.info(
        "Settings loaded (server=%s:%s, uploads.root_dir=%s, max_file_size=%d)",
        config.server.host,
        config.server.port,
        config.uploads.root_dir,
        config.uploads.max_file_size_bytes,
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (for testing)."""
    global _config
    _config = None
