"""Pydantic schemas for upload endpoints."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


def to_wire_name(field_name: str) -> str:
    """
    Convert a snake_case field name to its camelCase wire name.

    Each segment after the first is capitalized as a whole, so
    ``e2e_encrypted`` becomes ``e2eEncrypted`` rather than ``e2EEncrypted``.
    """
    first, *rest = field_name.split("_")
    return first + "".join(part[:1].upper() + part[1:] for part in rest)


class CamelModel(BaseModel):
    """Base model using camelCase names on the wire."""
    model_config = ConfigDict(alias_generator=to_wire_name, populate_by_name=True)


class InitUploadRequest(CamelModel):
    """Request model for registering an upload session."""
    upload_id: str
    file_name: str
    file_size: int
    total_chunks: int
    folder_path: Optional[str] = None
    e2e_encrypted: bool = False
    e2e_password: Optional[str] = None
    chunk_size: Optional[int] = None


class SuccessResponse(CamelModel):
    """Response model for operations without a payload."""
    success: bool = True


class ChunkUploadResponse(CamelModel):
    """Response model for an accepted chunk."""
    success: bool = True
    progress: float


class UploadIdRequest(CamelModel):
    """Request model for endpoints addressed by uploadId only."""
    upload_id: str


class ReassembleRequest(CamelModel):
    """Request model for retrying a failed assembly."""
    upload_id: str
    e2e_password: Optional[str] = None


class FinalizeData(CamelModel):
    file_id: str


class FinalizeResponse(CamelModel):
    """Response model for finalize and reassemble."""
    success: bool = True
    data: FinalizeData


class StatusResponse(CamelModel):
    """Response model for resume status."""
    exists: bool
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    total_chunks: Optional[int] = None
    uploaded_chunks: Optional[List[int]] = None
    progress: Optional[float] = None
    created_at: Optional[int] = None
    e2e_encrypted: Optional[bool] = None
    chunk_size: Optional[int] = None
    completed: Optional[bool] = None
    assembly_failed: Optional[bool] = None
    assembly_error: Optional[str] = None


class SessionSummary(CamelModel):
    upload_id: str
    file_name: str
    file_size: int
    total_chunks: int
    progress: float
    created_at: int
    e2e_encrypted: bool
    chunk_size: Optional[int] = None


class ListSessionsResponse(CamelModel):
    """Response model for listing resumable uploads."""
    success: bool = True
    sessions: List[SessionSummary]


class UploadConfigResponse(CamelModel):
    """Response model for client upload limits."""
    max_chunk_size: int
    parallel_uploads: int
    max_file_size: int
    chunk_retry_attempts: int
    chunk_retry_delay_ms: int
