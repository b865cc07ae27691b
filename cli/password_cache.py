"""Short-lived in-memory cache for the E2E password."""

import logging
import secrets
import time
from typing import Optional

from common.chunk_crypto import decrypt_password_with_key, encrypt_password_with_key

logger = logging.getLogger(__name__)


class PasswordCache:
    """
    Holds the E2E password for the lifetime of one CLI session.

    The password is kept only in wrapped form, encrypted with a random
    key generated for this process, and expires after ttl_seconds.
    """

    def __init__(self, ttl_seconds: Optional[float] = 1800):
        self.ttl_seconds = ttl_seconds
        self._wrapping_key = secrets.token_urlsafe(32)
        self._token: Optional[str] = None
        self._stored_at: float = 0.0

    def store(self, password: str) -> None:
        """Wrap and keep password, replacing any previous one."""
        self._token = encrypt_password_with_key(password, self._wrapping_key)
        self._stored_at = time.monotonic()
        logger.debug("E2E password cached")

    def _expired(self) -> bool:
        if self.ttl_seconds is None:
            return False
        return time.monotonic() - self._stored_at > self.ttl_seconds

    def get(self) -> Optional[str]:
        """
        Return the cached password.

        Returns:
            The password, or None if nothing is cached, it expired, or the
            wrapped value cannot be opened
        """
        if self._token is None:
            return None
        if self._expired():
            logger.debug("Cached E2E password expired")
            self.clear()
            return None
        return decrypt_password_with_key(self._token, self._wrapping_key)

    def has_password(self) -> bool:
        return self.get() is not None

    def clear(self) -> None:
        self._token = None
        self._stored_at = 0.0
