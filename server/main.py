"""Entry point for the upload server."""

import logging
import time
import uuid
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import add_file_handler, setup_logging
from server.cleanup_task import ExpiredSessionCleaner, recover_sessions
from server.config import SERVER_HOST, SERVER_PORT, UploadSettings, load_settings
from server.exceptions import (
    AssemblyFailedError,
    AssemblyNotCompleteError,
    ChunkIndexError,
    ChunkTooLargeError,
    FileTooLargeError,
    InvalidAPIKeyError,
    InvalidUploadIdError,
    PathTraversalError,
    SessionConflictError,
    SessionLockError,
    SessionNotFoundError,
    UnencryptedChunkError,
    UploadError,
    ValidationError,
)
from server.routes import upload_router
from server.schemas import ErrorResponse
from server.services.upload_service import UploadService
from server.session_store import UploadSessionStore

logger = setup_logging('server')

ERROR_RESPONSES = [
    (InvalidUploadIdError, 400, "INVALID_UPLOAD_ID"),
    (PathTraversalError, 400, "PATH_TRAVERSAL"),
    (ChunkIndexError, 400, "CHUNK_INDEX_OUT_OF_RANGE"),
    (UnencryptedChunkError, 400, "UNENCRYPTED_CHUNK"),
    (ValidationError, 400, "VALIDATION_ERROR"),
    (InvalidAPIKeyError, 401, "INVALID_API_KEY"),
    (SessionNotFoundError, 404, "SESSION_NOT_FOUND"),
    (SessionConflictError, 409, "SESSION_CONFLICT"),
    (AssemblyNotCompleteError, 409, "ASSEMBLY_NOT_COMPLETE"),
    (ChunkTooLargeError, 413, "CHUNK_TOO_LARGE"),
    (FileTooLargeError, 413, "FILE_TOO_LARGE"),
    (AssemblyFailedError, 422, "ASSEMBLY_FAILED"),
    (SessionLockError, 503, "SESSION_LOCKED"),
]


def _error_handler(status_code: int, code: str):
    async def handler(request: Request, exc: UploadError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        if status_code >= 500 or code == "ASSEMBLY_FAILED":
            logger.error(
                f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
            )
        else:
            logger.warning(
                f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
            )
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(error=str(exc), code=code).model_dump()
        )
    return handler


def create_app(settings: Optional[UploadSettings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Server settings (defaults to load_settings())

    Returns:
        Configured application
    """
    settings = settings or load_settings()

    app = FastAPI(
        title="Scatola Upload Server",
        description="Resumable chunked uploads with end-to-end encryption",
        version="1.0.0"
    )

    store = UploadSessionStore(settings.temp_dir)
    app.state.settings = settings
    app.state.upload_service = UploadService(settings, store)
    audit_handlers = []
    cleanup_task = ExpiredSessionCleaner(
        store,
        ttl_seconds=settings.session_expiry_seconds,
        interval_seconds=settings.cleanup_interval_seconds,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests and responses.
        """
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
        )

        response = await call_next(request)

        duration = time.time() - start_time
        user_id = getattr(request.state, 'user_id', None)

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s "
            f"[request_id={request_id}] [user_id={user_id or 'anonymous'}]"
        )

        response.headers["X-Request-ID"] = request_id

        return response

    @app.on_event("startup")
    async def startup_event():
        """
        Prepare directories, recover sessions and start the sweeper.
        """
        logger.info("Upload server starting up...")

        settings.upload_dir.mkdir(parents=True, exist_ok=True)
        store.ensure_root()
        logger.info(f"Upload directory: {settings.upload_dir}, temp directory: {settings.temp_dir}")

        if settings.audit_log_file and not audit_handlers:
            handler = add_file_handler("server.audit", str(settings.audit_log_file))
            if handler:
                audit_handlers.append(handler)
                logger.info(f"Audit log: {settings.audit_log_file}")

        if not settings.api_keys:
            logger.warning("No API keys configured, all requests act as the local admin user")

        await recover_sessions(store, settings.session_expiry_seconds)

        await cleanup_task.start()
        logger.info("Background cleanup task started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """
        Stop background tasks on application shutdown.
        """
        logger.info("Upload server shutting down...")
        await cleanup_task.stop()
        logger.info("Cleanup task stopped")
        for handler in audit_handlers:
            logging.getLogger("server.audit").removeHandler(handler)
            handler.close()
        audit_handlers.clear()

    for exc_class, status_code, code in ERROR_RESPONSES:
        app.add_exception_handler(exc_class, _error_handler(status_code, code))

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Upload error: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error=str(exc), code="INTERNAL_ERROR").model_dump()
        )

    app.include_router(upload_router)

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for Docker healthcheck.
        Returns 200 if service is alive.
        """
        return {"status": "healthy", "service": "upload-server"}

    return app


app = create_app()


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "server.main:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )


if __name__ == "__main__":
    main()
