"""Tests for log masking and handler setup."""

import io
import logging

import pytest

from common.logging_config import SensitiveDataFilter, add_file_handler, setup_logging


def make_record(msg, args=None):
    return logging.LogRecord("server", logging.INFO, __file__, 1, msg, args, None)


class TestSensitiveDataFilter:
    """Test masking of secrets in log messages."""

    @pytest.mark.parametrize("message,secret", [
        ('init body {"uploadId": "u1", "e2ePassword": "hunter2"}', "hunter2"),
        ("e2e_password=hunter2", "hunter2"),
        ("api_key=k-123", "k-123"),
        ("Authorization: Bearer abc123", "abc123"),
        ("token: 'tok-9'", "tok-9"),
    ])
    def test_secret_masked(self, message, secret):
        record = make_record(message)

        SensitiveDataFilter().filter(record)

        assert secret not in record.getMessage()
        assert "***MASKED***" in record.getMessage()

    def test_upload_id_left_alone(self):
        record = make_record('{"uploadId": "u1", "fileName": "a.txt"}')

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == '{"uploadId": "u1", "fileName": "a.txt"}'

    def test_args_masked(self):
        record = make_record("request %s", ("password=hunter2",))

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "request password=***MASKED***"


class TestSetupLogging:
    """Test logger configuration."""

    def test_handler_writes_to_given_stream(self):
        stream = io.StringIO()
        logger = setup_logging("scatola-test-component", log_level="DEBUG", stream=stream)
        try:
            logger.info("password=hunter2 chunk 3 stored")
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)

        output = stream.getvalue()
        assert "chunk 3 stored" in output
        assert "hunter2" not in output

    def test_add_file_handler(self, tmp_path):
        path = tmp_path / "logs" / "audit.log"
        logger = logging.getLogger("scatola-test.audit")
        logger.setLevel(logging.INFO)
        logger.propagate = False

        handler = add_file_handler("scatola-test.audit", str(path))
        assert handler is not None
        try:
            logger.info('{"action": "upload.assembled", "resource": "docs/a.txt"}')
        finally:
            logger.removeHandler(handler)
            handler.close()

        assert "upload.assembled" in path.read_text()
