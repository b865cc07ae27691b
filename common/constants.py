"""Project-wide constants (chunk sizes, upload defaults, on-disk names)."""

MIB: int = 1024 * 1024

# Adaptive chunk sizes, smallest to largest
CHUNK_SIZE_SLOW: int = 5 * MIB
CHUNK_SIZE_MEDIUM: int = 20 * MIB
CHUNK_SIZE_FAST: int = 50 * MIB
CHUNK_SIZE_ULTRA_FAST: int = 100 * MIB

DEFAULT_MAX_CHUNK_SIZE: int = 100 * MIB
DEFAULT_PARALLEL_UPLOADS: int = 12
DEFAULT_MAX_FILE_SIZE: int = 0  # 0 = unlimited
DEFAULT_CHUNK_RETRY_ATTEMPTS: int = 5
DEFAULT_CHUNK_RETRY_DELAY_MS: int = 1000
DEFAULT_SESSION_EXPIRY_HOURS: int = 24

UPLOAD_ID_PATTERN: str = r"^[A-Za-z0-9_-]+$"

SESSION_FILE_NAME: str = "session.json"
CHUNK_FILE_PREFIX: str = "chunk-"

API_PREFIX: str = "/upload"
