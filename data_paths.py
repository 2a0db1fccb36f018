"""Centralized helpers for resolving the application's data directory."""
from __future__ import annotations

import logging
import os
from pathlib import Path

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent
DATA_ROOT = APP_ROOT / "data"
DATA_DIR_ENV = "RESEARCHFLOW_DATA_DIR"
DATABASE_ENV = "RESEARCHFLOW_DATABASE"
DATABASE_FILENAME = "researchflow.db"


def resolve_data_root() -> Path:
    """Return the configured data root, honouring ``RESEARCHFLOW_DATA_DIR``."""
    override = os.getenv(DATA_DIR_ENV)
    if override and override.strip():
        return Path(override.strip()).expanduser().resolve()
    return DATA_ROOT


def ensure_data_root() -> Path:
    """Return the canonical data root, creating it as needed."""
    data_root = resolve_data_root()
    if not data_root.exists():
        LOGGER.info("Creating data directory %s", data_root)
    data_root.mkdir(parents=True, exist_ok=True)
    return data_root


def resolve_database_file() -> Path:
    """Return the SQLite file path, honouring ``RESEARCHFLOW_DATABASE``."""
    override = os.getenv(DATABASE_ENV)
    if override and override.strip():
        return Path(override.strip()).expanduser().resolve()
    return ensure_data_root() / DATABASE_FILENAME
