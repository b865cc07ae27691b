"""Custom exception classes for the upload server."""


class UploadError(Exception):
    """
    Base exception class for all upload-related errors.
    """
    pass


class ValidationError(UploadError):
    """
    Raised when request input is missing or malformed.
    """
    pass


class InvalidUploadIdError(ValidationError):
    """
    Raised when an uploadId does not match the allowed character set.
    """
    pass


class PathTraversalError(ValidationError):
    """
    Raised when a path derived from client input resolves outside its root.
    """
    pass


class ChunkIndexError(ValidationError):
    """
    Raised when a chunk index is outside [0, totalChunks).
    """
    pass


class UnencryptedChunkError(ValidationError):
    """
    Raised when an E2E session receives a chunk that cannot be an envelope.
    """
    pass


class SessionConflictError(UploadError):
    """
    Raised when init is repeated for an existing uploadId with different
    file parameters, or when a session is not in the state an operation needs.
    """
    pass


class ChunkTooLargeError(UploadError):
    """
    Raised when a chunk body exceeds the configured maximum chunk size.
    """
    pass


class FileTooLargeError(UploadError):
    """
    Raised when the declared file size exceeds the configured maximum.
    """
    pass


class SessionNotFoundError(UploadError):
    """
    Raised when no session exists for an uploadId (never created or expired).
    """
    pass


class AssemblyNotCompleteError(UploadError):
    """
    Raised by finalize when assembly has not produced a file in time.
    """
    pass


class AssemblyFailedError(UploadError):
    """
    Raised when assembly failed (e.g. wrong E2E password). The session stays
    claimed until it is explicitly reassembled or deleted.
    """
    pass


class SessionLockError(UploadError):
    """
    Raised when the session lock cannot be acquired within the retry limit.
    """
    pass


class InvalidAPIKeyError(UploadError):
    """
    Raised when an API Key is missing or unknown.
    """
    pass
