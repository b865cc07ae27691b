"""Async HTTP client for the upload server."""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from cli.config import Config
from common.constants import API_PREFIX

logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    'INVALID_API_KEY': 'Not authenticated. Set "api_key" in the CLI config file.',
    'INVALID_UPLOAD_ID': 'Invalid upload ID.',
    'PATH_TRAVERSAL': 'Destination folder is outside the upload directory.',
    'SESSION_NOT_FOUND': 'Upload session not found (it may have expired).',
    'SESSION_CONFLICT': 'An upload with this ID already exists for a different file.',
    'CHUNK_TOO_LARGE': 'Chunk exceeds the server maximum chunk size.',
    'FILE_TOO_LARGE': 'File exceeds the server maximum file size.',
    'UNENCRYPTED_CHUNK': 'Server expected an encrypted chunk.',
    'SESSION_LOCKED': 'Upload session is busy. Please try again.',
}

RETRYABLE_STATUS = (408, 429)


class UploadClientError(Exception):
    """
    Raised when the server rejects a request or cannot be reached.

    Attributes:
        status_code: HTTP status, or None for network failures
        code: Server error code (e.g. 'SESSION_NOT_FOUND'), 'NETWORK_ERROR' or 'UNKNOWN'
    """

    def __init__(self, message: str, status_code: Optional[int] = None, code: str = 'UNKNOWN'):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def retryable(self) -> bool:
        """Network failures, 5xx, 408 and 429 are worth retrying."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in RETRYABLE_STATUS


class UploadClient:
    """HTTP client for the upload API with retry logic and error handling."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 300.0,
        max_retries: int = 3,
        retry_backoff_multiplier: float = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize upload client.

        Args:
            base_url: Server base URL (e.g. "http://localhost:8000")
            api_key: API key sent as a Bearer token
            timeout: Request timeout in seconds
            max_retries: Retries for non-chunk requests on 5xx and network errors
            retry_backoff_multiplier: Base of the exponential backoff in seconds
            transport: Custom transport (tests use MockTransport or ASGITransport)
        """
        self.base_url = base_url
        self.max_retries = max_retries
        self.retry_backoff_multiplier = retry_backoff_multiplier
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.session = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        logger.debug(f"Initialized UploadClient [base_url={base_url}]")

    @classmethod
    def from_config(cls, config: Config) -> "UploadClient":
        retry_config = config.get_retry_config()
        return cls(
            base_url=config.get_base_url(),
            api_key=config.get_api_key(),
            timeout=config.get_timeout(),
            max_retries=retry_config['max_retries'],
            retry_backoff_multiplier=retry_config['retry_backoff_multiplier'],
        )

    @property
    def host(self) -> str:
        """Host part of the base URL, used for chunk size selection."""
        return urlparse(self.base_url).hostname or ""

    async def close(self) -> None:
        await self.session.aclose()

    async def __aenter__(self) -> "UploadClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _format_error(self, response: httpx.Response) -> UploadClientError:
        """
        Map an HTTP error response to an UploadClientError with a user-friendly message.
        """
        try:
            error_data = response.json()
            detail = error_data.get('error') or error_data.get('detail') or 'Unknown error'
            code = error_data.get('code', 'UNKNOWN')
        except ValueError:
            detail = response.text if response.text else 'Unknown error'
            code = 'UNKNOWN'

        if not isinstance(detail, str):
            detail = str(detail)

        message = ERROR_MESSAGES.get(code, detail)
        return UploadClientError(message, status_code=response.status_code, code=code)

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx errors and network failures.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            max_retries: Max retry attempts (client default if None)
            **kwargs: Additional arguments passed to httpx

        Returns:
            Successful HTTP response

        Raises:
            UploadClientError: On a 4xx response, or when retries are exhausted
        """
        max_retries = self.max_retries if max_retries is None else max_retries

        request_id = str(uuid.uuid4())
        headers = kwargs.pop('headers', {}) or {}
        headers['X-Request-ID'] = request_id

        for attempt in range(max_retries + 1):
            try:
                response = await self.session.request(method, endpoint, headers=headers, **kwargs)
            except httpx.TransportError as e:
                if attempt < max_retries:
                    delay = self.retry_backoff_multiplier ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} error={type(e).__name__}, retrying in {delay}s [request_id={request_id}]"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"Network error: {method} {endpoint} error={e!r} [request_id={request_id}]")
                if isinstance(e, httpx.TimeoutException):
                    raise UploadClientError("Request timed out. Server may be overloaded.", code='NETWORK_ERROR') from e
                raise UploadClientError("Cannot connect to upload server. Is it running?", code='NETWORK_ERROR') from e

            logger.debug(
                f"Response received: {method} {endpoint} status={response.status_code} [request_id={request_id}]"
            )

            if response.is_success:
                return response

            error = self._format_error(response)
            if error.retryable and attempt < max_retries:
                delay = self.retry_backoff_multiplier ** attempt
                logger.warning(
                    f"Server error (attempt {attempt + 1}/{max_retries + 1}): "
                    f"{method} {endpoint} status={response.status_code}, retrying in {delay}s [request_id={request_id}]"
                )
                await asyncio.sleep(delay)
                continue

            logger.warning(
                f"Request failed: {method} {endpoint} status={response.status_code} "
                f"code={error.code} [request_id={request_id}]"
            )
            raise error

        raise UploadClientError("Max retries exceeded")

    async def get_config(self) -> Dict[str, int]:
        """
        Fetch client limits advertised by the server.

        Returns:
            Dictionary with max_chunk_size, parallel_uploads, max_file_size,
            chunk_retry_attempts and chunk_retry_delay_ms
        """
        response = await self._request_with_retry("GET", f"{API_PREFIX}/config")
        data = response.json()
        return {
            'max_chunk_size': data['maxChunkSize'],
            'parallel_uploads': data['parallelUploads'],
            'max_file_size': data['maxFileSize'],
            'chunk_retry_attempts': data['chunkRetryAttempts'],
            'chunk_retry_delay_ms': data['chunkRetryDelayMs'],
        }

    async def init_upload(
        self,
        upload_id: str,
        file_name: str,
        file_size: int,
        total_chunks: int,
        chunk_size: Optional[int] = None,
        folder_path: Optional[str] = None,
        e2e_encrypted: bool = False,
        e2e_password: Optional[str] = None,
    ) -> None:
        """Register an upload session (idempotent for the same file)."""
        body: Dict[str, Any] = {
            "uploadId": upload_id,
            "fileName": file_name,
            "fileSize": file_size,
            "totalChunks": total_chunks,
            "e2eEncrypted": e2e_encrypted,
        }
        if chunk_size is not None:
            body["chunkSize"] = chunk_size
        if folder_path:
            body["folderPath"] = folder_path
        if e2e_encrypted:
            body["e2ePassword"] = e2e_password

        await self._request_with_retry("POST", f"{API_PREFIX}/init", json=body)

    async def upload_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        total_chunks: int,
        file_name: str,
        data: bytes,
    ) -> float:
        """
        Send one chunk as multipart form data. No retries here; the
        uploader owns the chunk retry policy.

        Returns:
            Server-reported progress percentage
        """
        response = await self._request_with_retry(
            "POST",
            f"{API_PREFIX}/chunk",
            max_retries=0,
            data={
                "uploadId": upload_id,
                "chunkIndex": str(chunk_index),
                "totalChunks": str(total_chunks),
                "fileName": file_name,
            },
            files={"chunk": (f"chunk-{chunk_index}", data, "application/octet-stream")},
        )
        return response.json().get("progress", 0.0)

    async def finalize(self, upload_id: str) -> str:
        """
        Complete an upload.

        Returns:
            Server-assigned relative path of the file
        """
        response = await self._request_with_retry(
            "POST", f"{API_PREFIX}/finalize", json={"uploadId": upload_id}
        )
        return response.json()["data"]["fileId"]

    async def get_status(self, upload_id: str) -> Dict[str, Any]:
        """Resume status; {'exists': False} when the session is unknown."""
        response = await self._request_with_retry(
            "POST", f"{API_PREFIX}/status", json={"uploadId": upload_id}
        )
        return response.json()

    async def list_sessions(self) -> List[Dict[str, Any]]:
        response = await self._request_with_retry("GET", f"{API_PREFIX}/sessions")
        return response.json().get("sessions", [])

    async def delete_upload(self, upload_id: str) -> None:
        await self._request_with_retry("DELETE", f"{API_PREFIX}/{upload_id}")

    async def reassemble(self, upload_id: str, e2e_password: Optional[str] = None) -> str:
        """
        Retry a failed assembly.

        Returns:
            Server-assigned relative path of the file
        """
        body: Dict[str, Any] = {"uploadId": upload_id}
        if e2e_password:
            body["e2ePassword"] = e2e_password
        response = await self._request_with_retry(
            "POST", f"{API_PREFIX}/reassemble", json=body, max_retries=0
        )
        return response.json()["data"]["fileId"]
