"""Configuration settings for the upload server."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from common.constants import (
    DEFAULT_CHUNK_RETRY_ATTEMPTS,
    DEFAULT_CHUNK_RETRY_DELAY_MS,
    DEFAULT_MAX_CHUNK_SIZE,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_PARALLEL_UPLOADS,
    DEFAULT_SESSION_EXPIRY_HOURS,
)


SERVER_HOST = os.environ.get("SCATOLA_HOST", "0.0.0.0")

SERVER_PORT = int(os.environ.get("SCATOLA_PORT", "8000"))

UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "./data/uploads")

UPLOAD_TEMP_DIR = os.environ.get("UPLOAD_TEMP_DIR", f"{UPLOAD_DIR}/temp")

MAX_CHUNK_SIZE = int(os.environ.get("MAX_CHUNK_SIZE", str(DEFAULT_MAX_CHUNK_SIZE)))

PARALLEL_UPLOADS = int(os.environ.get("PARALLEL_UPLOADS", str(DEFAULT_PARALLEL_UPLOADS)))

MAX_FILE_SIZE = int(os.environ.get("MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE)))

CHUNK_RETRY_ATTEMPTS = int(os.environ.get("CHUNK_RETRY_ATTEMPTS", str(DEFAULT_CHUNK_RETRY_ATTEMPTS)))

CHUNK_RETRY_DELAY_MS = int(os.environ.get("CHUNK_RETRY_DELAY_MS", str(DEFAULT_CHUNK_RETRY_DELAY_MS)))

SESSION_EXPIRY_HOURS = float(os.environ.get("SESSION_EXPIRY_HOURS", str(DEFAULT_SESSION_EXPIRY_HOURS)))

CLEANUP_INTERVAL_SECONDS = int(os.environ.get("CLEANUP_INTERVAL_SECONDS", str(6 * 3600)))

FINALIZE_WAIT_SECONDS = float(os.environ.get("FINALIZE_WAIT_SECONDS", "60"))

API_KEYS = os.environ.get("SCATOLA_API_KEYS", "")

AUDIT_LOG_FILE = os.environ.get("AUDIT_LOG_FILE", "")


@dataclass(frozen=True)
class ApiKeyEntry:
    """User bound to an API key."""
    username: str
    is_admin: bool = False


def parse_api_keys(raw: str) -> Dict[str, ApiKeyEntry]:
    """
    Parse the SCATOLA_API_KEYS value.

    Format: ``key=username[:admin]`` entries separated by commas, e.g.
    ``k1=alice:admin,k2=bob``.

    Args:
        raw: Raw environment value

    Returns:
        Mapping of API key to the user it authenticates

    Raises:
        ValueError: If an entry is malformed
    """
    entries: Dict[str, ApiKeyEntry] = {}
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        key, sep, user_spec = item.partition('=')
        if not sep or not key.strip() or not user_spec.strip():
            raise ValueError(f"Malformed API key entry: {item.split('=')[0]}=...")
        username, _, role = user_spec.strip().partition(':')
        entries[key.strip()] = ApiKeyEntry(username=username, is_admin=role == 'admin')
    return entries


@dataclass(frozen=True)
class UploadSettings:
    """
    Runtime settings for one server instance.

    Built from the module-level environment values by load_settings();
    tests construct it directly with temporary directories.
    """
    upload_dir: Path
    temp_dir: Path
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    parallel_uploads: int = DEFAULT_PARALLEL_UPLOADS
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    chunk_retry_attempts: int = DEFAULT_CHUNK_RETRY_ATTEMPTS
    chunk_retry_delay_ms: int = DEFAULT_CHUNK_RETRY_DELAY_MS
    session_expiry_hours: float = DEFAULT_SESSION_EXPIRY_HOURS
    cleanup_interval_seconds: int = 6 * 3600
    finalize_wait_seconds: float = 60.0
    finalize_poll_interval: float = 0.2
    api_keys: Dict[str, ApiKeyEntry] = field(default_factory=dict)
    audit_log_file: Optional[Path] = None

    @property
    def session_expiry_seconds(self) -> float:
        return self.session_expiry_hours * 3600


def load_settings(
    upload_dir: Optional[str] = None,
    temp_dir: Optional[str] = None,
) -> UploadSettings:
    """
    Build settings from environment-derived module constants.

    Args:
        upload_dir: Override for UPLOAD_DIR
        temp_dir: Override for UPLOAD_TEMP_DIR (defaults to <upload_dir>/temp)

    Returns:
        UploadSettings instance
    """
    resolved_upload = Path(upload_dir or UPLOAD_DIR)
    if temp_dir:
        resolved_temp = Path(temp_dir)
    elif upload_dir:
        resolved_temp = resolved_upload / "temp"
    else:
        resolved_temp = Path(UPLOAD_TEMP_DIR)

    return UploadSettings(
        upload_dir=resolved_upload,
        temp_dir=resolved_temp,
        max_chunk_size=MAX_CHUNK_SIZE,
        parallel_uploads=PARALLEL_UPLOADS,
        max_file_size=MAX_FILE_SIZE,
        chunk_retry_attempts=CHUNK_RETRY_ATTEMPTS,
        chunk_retry_delay_ms=CHUNK_RETRY_DELAY_MS,
        session_expiry_hours=SESSION_EXPIRY_HOURS,
        cleanup_interval_seconds=CLEANUP_INTERVAL_SECONDS,
        finalize_wait_seconds=FINALIZE_WAIT_SECONDS,
        api_keys=parse_api_keys(API_KEYS),
        audit_log_file=Path(AUDIT_LOG_FILE) if AUDIT_LOG_FILE else None,
    )
