"""Parallel, resumable chunked uploads with optional E2E encryption."""

import asyncio
import logging
import math
import os
import secrets
import string
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional

from cli.chunk_size import NetworkInfo, select_chunk_size
from cli.upload_client import UploadClient, UploadClientError
from common.chunk_crypto import encrypt_chunk
from common.constants import (
    DEFAULT_CHUNK_RETRY_ATTEMPTS,
    DEFAULT_CHUNK_RETRY_DELAY_MS,
    DEFAULT_MAX_CHUNK_SIZE,
    DEFAULT_PARALLEL_UPLOADS,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class UploadProgress:
    """
    Progress event emitted after every state change and completed chunk.

    Attributes:
        file_id: Upload identifier
        file_name: Name of the file being uploaded
        total_size: File size in bytes
        uploaded_size: Plaintext bytes confirmed by the server
        progress: Percentage of total_size uploaded
        status: Current upload status
        speed: Bytes per second since this attempt started
        remaining_time: Estimated seconds left, None while unknown
        chunks_completed: Number of confirmed chunks
        total_chunks: Number of chunks in the file
    """
    file_id: str
    file_name: str
    total_size: int
    uploaded_size: int
    progress: float
    status: UploadStatus
    speed: float
    remaining_time: Optional[float]
    chunks_completed: int
    total_chunks: int


class ChunkUploadError(Exception):
    """Raised when a chunk still fails after all retry attempts."""

    def __init__(self, chunk_index: int, attempts: int, cause: Optional[Exception] = None):
        super().__init__(f"Chunk {chunk_index} failed after {attempts} attempt(s): {cause}")
        self.chunk_index = chunk_index
        self.attempts = attempts
        self.cause = cause


class UploadCancelledError(Exception):
    """Raised by upload() when the upload was cancelled."""
    pass


def generate_upload_id() -> str:
    """Upload id of the form '<epoch-ms>-<13 base36 chars>'."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(13))
    return f"{int(time.time() * 1000)}-{suffix}"


def count_chunks(file_size: int, chunk_size: int) -> int:
    """Number of chunks for a file; an empty file still has one chunk."""
    return max(1, math.ceil(file_size / chunk_size))


class ChunkedUploader:
    """
    Uploads one file as parallel chunks.

    Workers are asyncio tasks pulling chunk indices from a shared queue.
    Each chunk is read (and encrypted) in the default executor so the
    event loop is never blocked, then sent with retry and exponential
    backoff. After the queue drains the upload is finalized.
    """

    def __init__(
        self,
        client: UploadClient,
        file_path: str,
        upload_id: Optional[str] = None,
        folder_path: Optional[str] = None,
        encrypt: bool = False,
        password: Optional[str] = None,
        chunk_size: Optional[int] = None,
        already_uploaded: Iterable[int] = (),
        parallel_uploads: int = DEFAULT_PARALLEL_UPLOADS,
        retry_attempts: int = DEFAULT_CHUNK_RETRY_ATTEMPTS,
        retry_delay_ms: int = DEFAULT_CHUNK_RETRY_DELAY_MS,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        max_file_size: int = 0,
        network: Optional[NetworkInfo] = None,
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ):
        """
        Args:
            client: Upload API client
            file_path: Local file to upload
            upload_id: Existing id when resuming, generated otherwise
            folder_path: Destination folder on the server
            encrypt: Encrypt every chunk with password before sending
            password: E2E password, required when encrypt is set
            chunk_size: Fixed chunk size (required when resuming)
            already_uploaded: Chunk indices the server already has
            parallel_uploads: Number of concurrent chunk workers
            retry_attempts: Attempts per chunk before the upload fails
            retry_delay_ms: Base delay for exponential backoff
            max_chunk_size: Upper bound for the selected chunk size
            max_file_size: Reject files larger than this (0 = unlimited)
            network: Network signals for chunk size selection
            on_progress: Callback receiving UploadProgress events
        """
        if encrypt and not password:
            raise ValueError("A password is required for encrypted uploads")
        if parallel_uploads < 1:
            raise ValueError("parallel_uploads must be at least 1")
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")

        self.client = client
        self.file_path = Path(file_path)
        self.file_name = self.file_path.name
        self.file_size = os.path.getsize(self.file_path)
        self.upload_id = upload_id or generate_upload_id()
        self.folder_path = folder_path
        self.encrypt = encrypt
        self._password = password
        self.parallel_uploads = parallel_uploads
        self.retry_attempts = retry_attempts
        self.retry_delay_ms = retry_delay_ms
        self.max_file_size = max_file_size
        self.on_progress = on_progress

        if chunk_size is None:
            chunk_size = min(select_chunk_size(client.host, network), max_chunk_size)
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.total_chunks = count_chunks(self.file_size, self.chunk_size)

        self.completed_chunks = {i for i in already_uploaded if 0 <= i < self.total_chunks}
        self.status = UploadStatus.PENDING
        self.file_id: Optional[str] = None

        self._uploaded_bytes = sum(self._chunk_length(i) for i in self.completed_chunks)
        self._session_bytes = 0
        self._started_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    def _chunk_length(self, index: int) -> int:
        start = index * self.chunk_size
        return max(0, min(self.chunk_size, self.file_size - start))

    def _read_chunk(self, handle: BinaryIO, index: int) -> bytes:
        handle.seek(index * self.chunk_size)
        return handle.read(self._chunk_length(index))

    def _prepare_chunk(self, handle: BinaryIO, index: int) -> bytes:
        data = self._read_chunk(handle, index)
        if self.encrypt:
            return encrypt_chunk(data, self._password)
        return data

    def snapshot(self) -> UploadProgress:
        """Current progress as an UploadProgress event."""
        speed = 0.0
        remaining = None
        if self._started_at is not None:
            elapsed = time.monotonic() - self._started_at
            if elapsed > 0 and self._session_bytes > 0:
                speed = self._session_bytes / elapsed
                remaining = (self.file_size - self._uploaded_bytes) / speed
        if self.file_size:
            progress = self._uploaded_bytes / self.file_size * 100
        else:
            progress = 100.0 if self.status == UploadStatus.COMPLETED else 0.0
        return UploadProgress(
            file_id=self.upload_id,
            file_name=self.file_name,
            total_size=self.file_size,
            uploaded_size=self._uploaded_bytes,
            progress=progress,
            status=self.status,
            speed=speed,
            remaining_time=remaining,
            chunks_completed=len(self.completed_chunks),
            total_chunks=self.total_chunks,
        )

    def _emit(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.snapshot())
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def cancel(self) -> None:
        """
        Cancel the upload. In-flight requests are aborted and upload()
        raises UploadCancelledError. Server-side state is left as is.
        """
        if self.status in (UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.CANCELLED):
            return
        self.status = UploadStatus.CANCELLED
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def upload(self) -> str:
        """
        Upload the file.

        Returns:
            Server-assigned relative path of the uploaded file

        Raises:
            ChunkUploadError: If a chunk fails after all retries
            UploadClientError: If init or finalize is rejected
            UploadCancelledError: If cancel() was called
        """
        if self.status != UploadStatus.PENDING:
            raise RuntimeError(f"Upload {self.upload_id} already {self.status.value}")

        self._task = asyncio.current_task()
        try:
            self.file_id = await self._run()
        except asyncio.CancelledError:
            if self.status == UploadStatus.CANCELLED:
                self._task.uncancel()
                logger.info(f"Upload {self.upload_id} cancelled")
                self._emit()
                raise UploadCancelledError(f"Upload {self.upload_id} was cancelled") from None
            raise
        except Exception:
            self.status = UploadStatus.FAILED
            self._emit()
            raise

        self.status = UploadStatus.COMPLETED
        self._emit()
        return self.file_id

    async def _run(self) -> str:
        if self.max_file_size > 0 and self.file_size > self.max_file_size:
            raise UploadClientError(
                f"File exceeds the maximum size of {self.max_file_size} bytes",
                code='FILE_TOO_LARGE',
            )

        self.status = UploadStatus.UPLOADING
        self._started_at = time.monotonic()
        self._emit()

        await self.client.init_upload(
            upload_id=self.upload_id,
            file_name=self.file_name,
            file_size=self.file_size,
            total_chunks=self.total_chunks,
            chunk_size=self.chunk_size,
            folder_path=self.folder_path,
            e2e_encrypted=self.encrypt,
            e2e_password=self._password if self.encrypt else None,
        )

        pending = [i for i in range(self.total_chunks) if i not in self.completed_chunks]
        logger.info(
            f"Uploading {self.file_name} as {self.upload_id}: {len(pending)}/{self.total_chunks} chunks "
            f"of {self.chunk_size} bytes, {min(self.parallel_uploads, max(1, len(pending)))} workers"
        )

        queue: asyncio.Queue = asyncio.Queue()
        for index in pending:
            queue.put_nowait(index)

        workers = [
            asyncio.create_task(self._worker(queue))
            for _ in range(min(self.parallel_uploads, len(pending)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        return await self.client.finalize(self.upload_id)

    async def _worker(self, queue: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        with open(self.file_path, 'rb') as handle:
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                payload = await loop.run_in_executor(None, self._prepare_chunk, handle, index)
                await self._send_with_retry(index, payload)

                self.completed_chunks.add(index)
                length = self._chunk_length(index)
                self._uploaded_bytes += length
                self._session_bytes += length
                self._emit()

    async def _send_with_retry(self, index: int, payload: bytes) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                await self.client.upload_chunk(
                    upload_id=self.upload_id,
                    chunk_index=index,
                    total_chunks=self.total_chunks,
                    file_name=self.file_name,
                    data=payload,
                )
                return
            except UploadClientError as e:
                last_error = e
                if not e.retryable:
                    logger.error(f"Chunk {index} of {self.upload_id} rejected: {e}")
                    raise ChunkUploadError(index, attempt, e) from e

            if attempt < self.retry_attempts:
                delay = (2 ** attempt) * self.retry_delay_ms / 1000
                logger.warning(
                    f"Chunk {index} of {self.upload_id} failed (attempt {attempt}/{self.retry_attempts}), "
                    f"retrying in {delay:.1f}s: {last_error}"
                )
                await asyncio.sleep(delay)

        logger.error(f"Chunk {index} of {self.upload_id} failed after {self.retry_attempts} attempts")
        raise ChunkUploadError(index, self.retry_attempts, last_error) from last_error
