"""Configuration management for the Scatola CLI."""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from cli.chunk_size import NetworkInfo

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.scatola' / 'config.json'

# Keys that override the limits advertised by the server when set
UPLOAD_OVERRIDE_KEYS = (
    "parallel_uploads",
    "chunk_retry_attempts",
    "chunk_retry_delay_ms",
    "max_chunk_size",
    "max_file_size",
)


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "server_host": os.environ.get("SCATOLA_SERVER_HOST", "localhost"),
        "server_port": int(os.environ.get("SCATOLA_SERVER_PORT", "8000")),
        "timeout": 300,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
        "api_key": None,
        "parallel_uploads": None,
        "chunk_retry_attempts": None,
        "chunk_retry_delay_ms": None,
        "max_chunk_size": None,
        "max_file_size": None,
        "downlink_mbps": None,
        "effective_type": None,
        "password_ttl_seconds": 1800,
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.scatola/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        A file that cannot be parsed is copied to config.json.bak and
        defaults are used.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            self.config_path = Path(tempfile.gettempdir()) / '.scatola' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be a JSON object")
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (ValueError, OSError) as e:
                logger.warning(f"Invalid config file {self.config_path}: {e}, using defaults")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config file: {copy_error}")
                return self.DEFAULT_CONFIG.copy()

        config = self.DEFAULT_CONFIG.copy()
        try:
            with open(self.config_path, 'w') as f:
                json.dump(config, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not write default config: {e}")
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save config: {e}")

    def get_api_key(self) -> Optional[str]:
        """
        Get stored API key.

        Returns:
            API key string or None if not set
        """
        return self.data.get('api_key')

    def set_api_key(self, key: str) -> None:
        """
        Set API key and save to file.

        Args:
            key: API key string
        """
        self.data['api_key'] = key
        self.save()

    def get_base_url(self) -> str:
        """
        Get upload server base URL.

        Returns:
            Base URL string (e.g., "http://localhost:8000")
        """
        host = self.data.get('server_host', 'localhost')
        port = self.data.get('server_port', 8000)
        return f"http://{host}:{port}"

    def get_timeout(self) -> int:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('timeout', 300)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration for non-chunk requests.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            'max_retries': self.data.get('max_retries', 3),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', 2),
        }

    def get_network_info(self) -> NetworkInfo:
        """
        Get declared network signals for chunk size selection.

        Returns:
            NetworkInfo built from 'effective_type' and 'downlink_mbps'
        """
        downlink = self.data.get('downlink_mbps')
        return NetworkInfo(
            effective_type=self.data.get('effective_type'),
            downlink_mbps=float(downlink) if downlink is not None else None,
        )

    def get_password_ttl(self) -> int:
        return self.data.get('password_ttl_seconds', 1800)

    def get_upload_settings(self, server_limits: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge server-advertised upload limits with local overrides.

        Args:
            server_limits: Limits returned by the server config endpoint

        Returns:
            Dictionary with the keys of UPLOAD_OVERRIDE_KEYS
        """
        settings = dict(server_limits)
        for key in UPLOAD_OVERRIDE_KEYS:
            value = self.data.get(key)
            if value is not None:
                settings[key] = value
        return settings
