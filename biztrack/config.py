"""
Configuration module for BizTrack.

Contains constants, settings, and configuration values used throughout the application.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Version
VERSION = "0.1.0"

# Application paths
PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
LOG_DIR = PROJECT_ROOT / "logs"

# Database configuration
DB_NAME = "biztrack_v3"
DB_TIMEOUT = 10.0  # seconds

# Degraded store: one JSON document holding the whole ledger
FALLBACK_DOCUMENT_KEY = "biztrack_v3_data"

# Storage backends
BACKEND_SQLITE = "sqlite"
BACKEND_DOCUMENT = "document"
BACKENDS = [BACKEND_SQLITE, BACKEND_DOCUMENT]

# Export configuration
BACKUP_FILENAME_PREFIX = "biztrack_backup_"

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "biztrack.log"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Error messages
ERROR_MESSAGES = {
    "invalid_backup": "Invalid backup file. Please use a BizTrack JSON backup.",
    "backup_not_found": "Backup file not found: {path}",
    "unknown_collection": "Unknown collection: {name}",
    "import_cancelled": "Import cancelled. Your data was not changed.",
    "clear_cancelled": "Nothing was deleted.",
}


def get_data_dir() -> Path:
    """Get the data directory, honouring BIZTRACK_DATA_DIR."""
    data_dir = os.environ.get("BIZTRACK_DATA_DIR")
    if data_dir:
        return Path(data_dir)
    return DEFAULT_DATA_DIR


def get_db_path() -> Path:
    """Get the path of the SQLite database file."""
    return get_data_dir() / f"{DB_NAME}.db"


def get_backend_mode() -> str:
    """
    Get the requested storage backend.

    BIZTRACK_BACKEND=document disables the SQLite store entirely, which is
    how a platform without the embedded engine is represented.
    """
    mode = os.environ.get("BIZTRACK_BACKEND", BACKEND_SQLITE).strip().lower()
    if mode not in BACKENDS:
        logger.warning(f"Unknown BIZTRACK_BACKEND '{mode}', using {BACKEND_SQLITE}")
        return BACKEND_SQLITE
    return mode


def ensure_directories():
    """Ensure required directories exist."""
    get_data_dir().mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)


def get_log_level():
    """Get the configured log level."""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(LOG_LEVEL.upper(), logging.INFO)
