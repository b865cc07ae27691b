"""Pydantic schemas for API requests and responses."""

from server.schemas.upload import (
    InitUploadRequest,
    SuccessResponse,
    ChunkUploadResponse,
    UploadIdRequest,
    ReassembleRequest,
    FinalizeData,
    FinalizeResponse,
    StatusResponse,
    SessionSummary,
    ListSessionsResponse,
    UploadConfigResponse
)
from server.schemas.common import ErrorResponse

__all__ = [
    "InitUploadRequest",
    "SuccessResponse",
    "ChunkUploadResponse",
    "UploadIdRequest",
    "ReassembleRequest",
    "FinalizeData",
    "FinalizeResponse",
    "StatusResponse",
    "SessionSummary",
    "ListSessionsResponse",
    "UploadConfigResponse",
    "ErrorResponse"
]
