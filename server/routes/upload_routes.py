"""Chunked upload API routes."""

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from common.chunk_crypto import ENVELOPE_OVERHEAD
from common.constants import API_PREFIX
from server.auth import get_current_user
from server.config import ApiKeyEntry
from server.schemas.upload import (
    ChunkUploadResponse,
    FinalizeData,
    FinalizeResponse,
    InitUploadRequest,
    ListSessionsResponse,
    ReassembleRequest,
    SessionSummary,
    StatusResponse,
    SuccessResponse,
    UploadConfigResponse,
    UploadIdRequest,
)
from server.services.upload_service import UploadService

router = APIRouter(prefix=API_PREFIX, tags=["Uploads"])


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


@router.get("/config", response_model=UploadConfigResponse)
async def upload_config(
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Client limits derived from server configuration.

    Returns:
        - maxChunkSize, parallelUploads, maxFileSize, chunkRetryAttempts, chunkRetryDelayMs
    """
    return UploadConfigResponse(**service.client_limits())


@router.post("/init", response_model=SuccessResponse)
async def init_upload(
    body: InitUploadRequest,
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Register an upload session.

    Parameters:
        - uploadId, fileName, fileSize, totalChunks (required)
        - folderPath, e2eEncrypted, e2ePassword, chunkSize (optional)

    Raises:
        - 400: Invalid uploadId, fileName or sizes
        - 409: uploadId exists with different file parameters
        - 413: File or chunk size above the configured maximum
    """
    await service.initialize_upload(
        upload_id=body.upload_id,
        file_name=body.file_name,
        file_size=body.file_size,
        total_chunks=body.total_chunks,
        user=current_user,
        folder_path=body.folder_path,
        e2e_encrypted=body.e2e_encrypted,
        e2e_password=body.e2e_password,
        chunk_size=body.chunk_size,
    )
    return SuccessResponse()


@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    upload_id: str = Form(..., alias="uploadId"),
    chunk_index: int = Form(..., alias="chunkIndex"),
    total_chunks: int = Form(..., alias="totalChunks"),
    file_name: str = Form(..., alias="fileName"),
    chunk: UploadFile = File(...),
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Upload one chunk (multipart/form-data).

    When this chunk completes the upload, the file is assembled within
    this request.

    Returns:
        - success, progress (percentage of chunks written)

    Raises:
        - 400: Index out of range, mismatched totalChunks, unencrypted chunk for an E2E session
        - 404: Session not found
        - 413: Chunk too large
        - 422: Assembly failed
        - 503: Session lock busy, retry
    """
    limit = service.settings.max_chunk_size + ENVELOPE_OVERHEAD
    data = await chunk.read(limit + 1)

    progress = await service.receive_chunk(
        upload_id=upload_id,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
        file_name=file_name,
        data=data,
    )
    return ChunkUploadResponse(progress=progress)


@router.post("/finalize", response_model=FinalizeResponse)
async def finalize_upload(
    body: UploadIdRequest,
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Return the final file path and remove the session.

    Raises:
        - 404: Session not found
        - 409: Assembly not complete
        - 422: Assembly failed
    """
    file_id = await service.finalize(body.upload_id)
    return FinalizeResponse(data=FinalizeData(file_id=file_id))


@router.post("/status", response_model=StatusResponse, response_model_exclude_none=True)
async def upload_status(
    body: UploadIdRequest,
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Report session state for resume.

    Returns:
        - exists=false if no session, otherwise file info and uploadedChunks
    """
    session = await service.get_status(body.upload_id)
    return StatusResponse(**UploadService.status_payload(session))


@router.post("/reassemble", response_model=FinalizeResponse)
async def reassemble_upload(
    body: ReassembleRequest,
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Retry assembly after a failure, optionally with a corrected E2E password.

    Raises:
        - 404: Session not found
        - 409: Assembly running or chunks missing
        - 422: Assembly failed again
    """
    file_id = await service.reassemble(body.upload_id, current_user, e2e_password=body.e2e_password)
    return FinalizeResponse(data=FinalizeData(file_id=file_id))


@router.get("/sessions", response_model=ListSessionsResponse)
async def list_sessions(
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    List resumable uploads of the current user (all users for admins).
    """
    sessions = await service.list_resumable(current_user)
    return ListSessionsResponse(
        sessions=[
            SessionSummary(
                upload_id=session.upload_id,
                file_name=session.file_name,
                file_size=session.file_size,
                total_chunks=session.total_chunks,
                progress=round(session.progress, 2),
                created_at=session.created_at,
                e2e_encrypted=session.e2e_encrypted,
                chunk_size=session.chunk_size,
            )
            for session in sessions
        ]
    )


@router.delete("/{upload_id}", response_model=SuccessResponse)
async def delete_upload(
    upload_id: str,
    service: UploadService = Depends(get_upload_service),
    current_user: ApiKeyEntry = Depends(get_current_user)
):
    """
    Delete a session and its chunks.

    Raises:
        - 404: Session not found
        - 409: Assembly in progress
    """
    await service.delete_upload(upload_id, current_user)
    return SuccessResponse()
