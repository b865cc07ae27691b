"""
AES-GCM envelopes for end-to-end encrypted uploads.

Two envelope formats are used:

Chunk envelope (one per uploaded chunk)::

    [salt:16][iv:12][ciphertext + tag:16]

The key is derived from the user's password with PBKDF2-HMAC-SHA256
(600,000 iterations) over the per-chunk random salt.

Password-wrapping envelope (client-side password cache)::

    base64url([iv:12][ciphertext + tag:16])

The key is the SHA-256 digest of a locally held, high-entropy wrapping key.
"""

import base64
import hashlib
import logging
import os
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
IV_LENGTH = 12
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 600_000
ENVELOPE_OVERHEAD = SALT_LENGTH + IV_LENGTH + AUTH_TAG_LENGTH


class ChunkDecryptionError(Exception):
    """
    Raised when a chunk envelope cannot be decrypted (wrong password,
    tampered ciphertext or truncated envelope). Never retryable with the
    same ciphertext.
    """
    pass


def derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive a 256-bit AES key from a password.

    Args:
        password: User supplied password
        salt: 16 random bytes

    Returns:
        32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode('utf-8'))


def encrypt_chunk(data: bytes, password: str) -> bytes:
    """
    Encrypt one chunk into a self-describing envelope.

    A fresh salt and IV are drawn for every call.

    Args:
        data: Plaintext chunk bytes
        password: E2E password

    Returns:
        salt || iv || ciphertext || tag
    """
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = derive_key(password, salt)
    ciphertext = AESGCM(key).encrypt(iv, data, None)
    return salt + iv + ciphertext


def _split_envelope(envelope: bytes) -> tuple[bytes, bytes, bytes]:
    if len(envelope) < ENVELOPE_OVERHEAD:
        raise ChunkDecryptionError(
            f"Encrypted chunk too short ({len(envelope)} bytes, need at least {ENVELOPE_OVERHEAD})"
        )
    salt = envelope[:SALT_LENGTH]
    iv = envelope[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
    return salt, iv, envelope[SALT_LENGTH + IV_LENGTH:]


def _open(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    try:
        return AESGCM(key).decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        raise ChunkDecryptionError("Authentication tag mismatch (wrong password or corrupted chunk)") from e


def decrypt_chunk(envelope: bytes, password: str) -> bytes:
    """
    Decrypt a chunk envelope produced by encrypt_chunk.

    Args:
        envelope: salt || iv || ciphertext || tag
        password: E2E password

    Returns:
        Plaintext bytes

    Raises:
        ChunkDecryptionError: If the envelope is truncated or fails authentication
    """
    salt, iv, ciphertext = _split_envelope(envelope)
    return _open(derive_key(password, salt), iv, ciphertext)


def looks_encrypted(data: bytes) -> bool:
    """Return True if data is long enough to be a chunk envelope."""
    return len(data) >= ENVELOPE_OVERHEAD


class ChunkDecryptor:
    """
    Decrypts the chunks of one upload, caching derived keys by salt.

    PBKDF2 dominates the cost of decryption, so a salt seen twice is only
    derived once.
    """

    def __init__(self, password: str):
        self._password = password
        self._keys: Dict[bytes, bytes] = {}

    def decrypt(self, envelope: bytes) -> bytes:
        salt, iv, ciphertext = _split_envelope(envelope)
        key = self._keys.get(salt)
        if key is None:
            key = derive_key(self._password, salt)
            self._keys[salt] = key
        return _open(key, iv, ciphertext)


def _wrapping_key(encryption_key: str) -> bytes:
    return hashlib.sha256(encryption_key.encode('utf-8')).digest()


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(token: str) -> bytes:
    padded = token + '=' * (-len(token) % 4)
    return base64.urlsafe_b64decode(padded.encode('ascii'))


def encrypt_password_with_key(password: str, encryption_key: str) -> str:
    """
    Wrap a password with a locally held key.

    Args:
        password: E2E password to protect
        encryption_key: High-entropy wrapping key

    Returns:
        base64url (unpadded) of iv || ciphertext || tag
    """
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(_wrapping_key(encryption_key)).encrypt(iv, password.encode('utf-8'), None)
    return _b64url_encode(iv + ciphertext)


def decrypt_password_with_key(token: str, encryption_key: str) -> Optional[str]:
    """
    Unwrap a password produced by encrypt_password_with_key.

    Returns:
        The password, or None if the token is malformed or the key is wrong
    """
    try:
        raw = _b64url_decode(token)
        if len(raw) < IV_LENGTH + AUTH_TAG_LENGTH:
            return None
        plaintext = AESGCM(_wrapping_key(encryption_key)).decrypt(raw[:IV_LENGTH], raw[IV_LENGTH:], None)
        return plaintext.decode('utf-8')
    except (InvalidTag, ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Password unwrap failed: {type(e).__name__}")
        return None
