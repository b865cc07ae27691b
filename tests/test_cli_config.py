"""Tests for the CLI JSON config file."""

import json

import pytest

from cli.chunk_size import NetworkInfo
from cli.config import Config

SERVER_LIMITS = {
    'max_chunk_size': 100,
    'parallel_uploads': 12,
    'max_file_size': 0,
    'chunk_retry_attempts': 5,
    'chunk_retry_delay_ms': 1000,
}


def write_config(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content if isinstance(content, str) else json.dumps(content))
    return path


class TestConfigFile:
    """Test creation, loading and recovery of the config file."""

    def test_missing_file_written_with_defaults(self, tmp_path):
        path = tmp_path / 'nested' / '.scatola' / 'config.json'

        config = Config(path)

        assert path.exists()
        on_disk = json.loads(path.read_text())
        assert on_disk['server_port'] == 8000
        assert on_disk['password_ttl_seconds'] == 1800
        assert config.get_api_key() is None
        assert config.get_timeout() == 300

    def test_partial_file_filled_with_defaults(self, tmp_path):
        path = write_config(tmp_path / 'config.json', {
            'api_key': 'key-alice',
            'server_host': 'uploads.example.com',
            'server_port': 9000,
        })

        config = Config(path)

        assert config.get_api_key() == 'key-alice'
        assert config.get_base_url() == 'http://uploads.example.com:9000'
        assert config.get_retry_config() == {'max_retries': 3, 'retry_backoff_multiplier': 2}

    @pytest.mark.parametrize('content', ['{ invalid json content', '[1, 2, 3]'])
    def test_unusable_file_backed_up(self, tmp_path, content):
        path = write_config(tmp_path / 'config.json', content)

        config = Config(path)

        assert config.data['timeout'] == 300
        assert path.with_suffix('.json.bak').read_text() == content

    def test_api_key_persisted(self, temp_config):
        temp_config.set_api_key('key-bob')

        assert temp_config.get_api_key() == 'key-bob'
        assert Config(temp_config.config_path).get_api_key() == 'key-bob'


class TestUploadSettings:
    """Test the values that feed the uploader."""

    def test_network_info(self, temp_config):
        assert temp_config.get_network_info() == NetworkInfo()

        temp_config.data['effective_type'] = '3g'
        temp_config.data['downlink_mbps'] = 12

        assert temp_config.get_network_info() == NetworkInfo(effective_type='3g', downlink_mbps=12.0)

    def test_server_limits_used_when_no_overrides(self, temp_config):
        assert temp_config.get_upload_settings(SERVER_LIMITS) == SERVER_LIMITS

    def test_local_overrides_win(self, temp_config):
        limits = dict(SERVER_LIMITS)
        temp_config.data['parallel_uploads'] = 4
        temp_config.data['chunk_retry_attempts'] = 0

        settings = temp_config.get_upload_settings(limits)

        assert settings['parallel_uploads'] == 4
        assert settings['chunk_retry_attempts'] == 0
        assert settings['max_chunk_size'] == 100
        assert limits['parallel_uploads'] == 12

    def test_password_ttl(self, temp_config):
        temp_config.data['password_ttl_seconds'] = 60

        assert temp_config.get_password_ttl() == 60
