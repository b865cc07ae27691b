import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional, TextIO

SENSITIVE_KEYS = r'(?:e2e_?password|password|api[_-]?keys?|token|authorization|secret)'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class SensitiveDataFilter(logging.Filter):
    """Filter to mask passwords, API keys and bearer tokens in log records."""

    PATTERNS = [
        (re.compile(r'(bearer\s+)([^\s,}\'\"]+)', re.IGNORECASE), lambda m: f'{m.group(1)}***MASKED***'),
        (re.compile(SENSITIVE_KEYS + r'(["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE),
         lambda m: f'{m.group(0)[:m.start(2) - m.start(0)]}***MASKED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask_value(arg) for arg in record.args)

        return True

    def _mask_value(self, value):
        if isinstance(value, str):
            for pattern, replacement in self.PATTERNS:
                value = pattern.sub(replacement, value)
        return value


def _build_formatter(correlation_id: Optional[str] = None) -> logging.Formatter:
    fmt = LOG_FORMAT
    if correlation_id:
        fmt = LOG_FORMAT.replace('%(message)s', f'[{correlation_id}] - %(message)s')
    return logging.Formatter(fmt, datefmt=DATE_FORMAT)


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    correlation_id: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Set up logging for the 'server' or 'cli' component.

    The handler is attached to the component logger and to the ``common``
    logger, so module loggers obtained with ``logging.getLogger(__name__)``
    under either package share the same output and masking filter.

    Args:
        component_name: Name of the component ('server' or 'cli')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO
        correlation_id: Optional correlation ID to include in log format
        stream: Output stream. The CLI logs to stderr so progress lines on stdout stay intact

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    if stream is None:
        stream = sys.stderr if component_name == 'cli' else sys.stdout

    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(correlation_id))
    handler.addFilter(SensitiveDataFilter())

    logger.addHandler(handler)
    logger.propagate = False

    shared = logging.getLogger('common')
    if not shared.handlers:
        shared.setLevel(level)
        shared.addHandler(handler)
        shared.propagate = False

    return logger


def add_file_handler(logger_name: str, path: str) -> Optional[logging.Handler]:
    """
    Additionally write a logger's records to a file (used for the audit trail).

    Args:
        logger_name: Logger to attach to, e.g. 'server.audit'
        path: Log file path; parent directories are created

    Returns:
        The attached handler, or None if the file cannot be opened
    """
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding='utf-8')
    except OSError as e:
        logging.getLogger(__name__).warning(f"Cannot open log file {path}: {e}")
        return None

    handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s', datefmt=DATE_FORMAT))
    handler.addFilter(SensitiveDataFilter())
    logging.getLogger(logger_name).addHandler(handler)
    return handler
