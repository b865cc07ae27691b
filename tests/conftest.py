"""Shared pytest fixtures for all tests."""

import pytest
from fastapi.testclient import TestClient

from cli.config import Config
from common import chunk_crypto
from server.config import UploadSettings
from server.main import create_app
from server.session_store import UploadSessionStore


@pytest.fixture
def fast_kdf(monkeypatch):
    """
    Lower PBKDF2 iterations so encryption tests run quickly.

    Args:
        monkeypatch: pytest monkeypatch fixture
    """
    monkeypatch.setattr(chunk_crypto, "PBKDF2_ITERATIONS", 1000)


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .scatola directory
    """
    config_dir = tmp_path / '.scatola'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def upload_settings(tmp_path):
    """
    Server settings rooted in a temporary directory.

    Finalize waits are short so failure paths do not stall the suite.

    Returns:
        UploadSettings instance
    """
    upload_dir = tmp_path / 'uploads'
    temp_dir = upload_dir / 'temp'
    temp_dir.mkdir(parents=True)
    return UploadSettings(
        upload_dir=upload_dir,
        temp_dir=temp_dir,
        max_chunk_size=1024 * 1024,
        finalize_wait_seconds=2.0,
        finalize_poll_interval=0.05,
    )


@pytest.fixture
def store(upload_settings):
    """Session store over the temporary temp directory."""
    return UploadSessionStore(upload_settings.temp_dir, lock_base_delay=0.01)


@pytest.fixture
def app(upload_settings):
    """Application built with temporary settings."""
    return create_app(upload_settings)


@pytest.fixture
def client(app):
    """
    Create FastAPI test client.

    Used as a context manager so startup and shutdown events run.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing file uploads.

    Returns:
        Path to a 10 KiB binary file with non-repeating content
    """
    file_path = tmp_path / 'sample.bin'
    file_path.write_bytes(bytes(i % 251 for i in range(10 * 1024)))
    return file_path
