"""Upload service: session lifecycle, chunk intake and exactly-once assembly."""

import asyncio
import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.chunk_crypto import ENVELOPE_OVERHEAD, ChunkDecryptionError, ChunkDecryptor, looks_encrypted
from server.audit import audit_log
from server.chunk_storage import (
    delete_chunk,
    get_chunk_path,
    read_chunk,
    read_chunk_streaming,
    write_chunk,
)
from server.config import ApiKeyEntry, UploadSettings
from server.domain import UploadSession
from server.exceptions import (
    AssemblyFailedError,
    AssemblyNotCompleteError,
    ChunkIndexError,
    ChunkTooLargeError,
    FileTooLargeError,
    SessionConflictError,
    SessionNotFoundError,
    UnencryptedChunkError,
    ValidationError,
)
from server.session_store import UploadSessionStore
from server.utils import build_file_id, ensure_within, resolve_destination, validate_file_name

logger = logging.getLogger(__name__)


class AssemblyStepError(Exception):
    """Assembly failure whose message is safe to show to the client."""
    pass


class UploadService:
    def __init__(self, settings: UploadSettings, store: Optional[UploadSessionStore] = None):
        self.settings = settings
        self.store = store or UploadSessionStore(settings.temp_dir)

    def client_limits(self) -> Dict[str, int]:
        """Limits a client needs before it starts slicing a file."""
        return {
            "max_chunk_size": self.settings.max_chunk_size,
            "parallel_uploads": self.settings.parallel_uploads,
            "max_file_size": self.settings.max_file_size,
            "chunk_retry_attempts": self.settings.chunk_retry_attempts,
            "chunk_retry_delay_ms": self.settings.chunk_retry_delay_ms,
        }

    async def initialize_upload(
        self,
        upload_id: str,
        file_name: str,
        file_size: int,
        total_chunks: int,
        user: ApiKeyEntry,
        folder_path: Optional[str] = None,
        e2e_encrypted: bool = False,
        e2e_password: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ) -> UploadSession:
        """
        Register a new upload session.

        Re-initializing an existing uploadId with the same file parameters is
        a no-op; different parameters are a conflict.

        Args:
            upload_id: Client generated upload identifier
            file_name: Bare name of the final file
            file_size: Plaintext size in bytes
            total_chunks: Number of chunks the client will send
            user: Authenticated user
            folder_path: Requested destination folder
            e2e_encrypted: Chunks will be AES-GCM envelopes
            e2e_password: Password used to decrypt chunks during assembly
            chunk_size: Plaintext chunk size, if known

        Returns:
            The stored session

        Raises:
            ValidationError: If any input is invalid
            FileTooLargeError: If file_size exceeds the configured maximum
            SessionConflictError: If the uploadId exists with different parameters
        """
        self.store.session_dir(upload_id)
        name = validate_file_name(file_name)

        if file_size < 0:
            raise ValidationError("fileSize must not be negative")
        if total_chunks <= 0:
            raise ValidationError("totalChunks must be greater than zero")
        if self.settings.max_file_size > 0 and file_size > self.settings.max_file_size:
            raise FileTooLargeError(
                f"File size {file_size} exceeds the maximum of {self.settings.max_file_size} bytes"
            )
        if chunk_size is not None:
            if chunk_size <= 0:
                raise ValidationError("chunkSize must be greater than zero")
            if chunk_size > self.settings.max_chunk_size:
                raise ChunkTooLargeError(
                    f"Chunk size {chunk_size} exceeds the maximum of {self.settings.max_chunk_size} bytes"
                )
            expected_chunks = max(1, math.ceil(file_size / chunk_size))
            if expected_chunks != total_chunks:
                raise ValidationError(
                    f"totalChunks {total_chunks} does not match fileSize/chunkSize ({expected_chunks})"
                )
        if e2e_encrypted and not e2e_password:
            raise ValidationError("e2ePassword is required for encrypted uploads")

        folder = resolve_destination(folder_path, user)
        ensure_within(self.settings.upload_dir, build_file_id(folder, name))

        session = UploadSession(
            upload_id=upload_id,
            file_name=name,
            file_size=file_size,
            total_chunks=total_chunks,
            chunk_size=chunk_size,
            folder_path=folder or None,
            e2e_encrypted=e2e_encrypted,
            e2e_password=e2e_password if e2e_encrypted else None,
            owner=user.username,
        )

        existing = await self.store.load(upload_id)
        if existing is None:
            self.store.ensure_root()
            if await self.store.create(session):
                return session
            existing = await self.store.load(upload_id)
            if existing is None:
                raise SessionNotFoundError(f"Upload session {upload_id} disappeared during init")

        if not existing.matches(session):
            raise SessionConflictError(f"Upload {upload_id} already exists with different file parameters")

        logger.info(f"Re-init of existing upload session {upload_id} accepted")
        return existing

    async def receive_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        total_chunks: int,
        file_name: str,
        data: bytes,
    ) -> float:
        """
        Persist one chunk and trigger assembly when it completes the upload.

        Args:
            upload_id: Upload identifier
            chunk_index: Zero-based chunk index
            total_chunks: Chunk count as sent by the client
            file_name: File name as sent by the client
            data: Chunk bytes (an envelope for encrypted sessions)

        Returns:
            Percentage of chunks durably written

        Raises:
            SessionNotFoundError: If the session does not exist
            ChunkIndexError: If chunk_index is out of range
            ChunkTooLargeError: If data exceeds the maximum chunk size
            UnencryptedChunkError: If an encrypted session receives a non-envelope
            AssemblyFailedError: If this chunk completed the upload and assembly failed
        """
        session_dir = self.store.session_dir(upload_id)

        limit = self.settings.max_chunk_size + ENVELOPE_OVERHEAD
        if len(data) > limit:
            raise ChunkTooLargeError(f"Chunk of {len(data)} bytes exceeds the maximum of {limit} bytes")

        session = await self.store.load(upload_id)
        if session is None:
            raise SessionNotFoundError(f"Upload session {upload_id} not found")

        if not 0 <= chunk_index < session.total_chunks:
            raise ChunkIndexError(
                f"Chunk index {chunk_index} out of range [0, {session.total_chunks})"
            )
        if total_chunks != session.total_chunks:
            raise ValidationError(
                f"totalChunks {total_chunks} does not match the session ({session.total_chunks})"
            )
        if file_name != session.file_name:
            raise ValidationError("fileName does not match the session")
        if session.e2e_encrypted and not looks_encrypted(data):
            raise UnencryptedChunkError(
                f"Chunk {chunk_index} is not an encrypted envelope ({len(data)} bytes)"
            )

        if session.is_claimed:
            logger.debug(f"Ignoring chunk {chunk_index} for {upload_id}: assembly already claimed")
            return round(session.progress, 2)

        await self.store.mark_chunk_received(upload_id, chunk_index)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_chunk, session_dir, chunk_index, data)

        session = await self.store.mark_chunk_written(upload_id, chunk_index)
        logger.debug(
            f"Stored chunk {chunk_index} for {upload_id} "
            f"({len(session.written_chunks)}/{session.total_chunks})"
        )

        if session.is_complete and await self.store.try_start_assembly(upload_id):
            await self._assemble(upload_id)

        return round(session.progress, 2)

    def _write_output(self, session: UploadSession, session_dir: Path, destination: Path) -> int:
        """Concatenate chunks in index order into destination. Runs in a worker thread."""
        for index in range(session.total_chunks):
            if not get_chunk_path(session_dir, index).exists():
                raise AssemblyStepError(f"Chunk {index} is missing")

        decryptor = None
        if session.e2e_encrypted:
            if not session.e2e_password:
                raise AssemblyStepError("No E2E password available for decryption")
            decryptor = ChunkDecryptor(session.e2e_password)

        destination.parent.mkdir(parents=True, exist_ok=True)
        part_path = destination.with_name(f".{destination.name}.{session.upload_id}.part")
        written = 0
        try:
            with open(part_path, 'wb') as out:
                for index in range(session.total_chunks):
                    if decryptor is not None:
                        try:
                            plaintext = decryptor.decrypt(read_chunk(session_dir, index))
                        except ChunkDecryptionError as e:
                            raise AssemblyStepError(
                                f"Decryption failed for chunk {index}: wrong password or corrupted data"
                            ) from e
                        out.write(plaintext)
                        written += len(plaintext)
                    else:
                        for piece in read_chunk_streaming(session_dir, index):
                            out.write(piece)
                            written += len(piece)

                if written != session.file_size:
                    raise AssemblyStepError(
                        f"Assembled size {written} does not match declared size {session.file_size}"
                    )
                out.flush()
                os.fsync(out.fileno())
            os.replace(part_path, destination)
        finally:
            if part_path.exists():
                part_path.unlink()
        return written

    async def _assemble(self, upload_id: str) -> str:
        """
        Build the final file for a session this caller has claimed.

        On failure the session is moved to the failed state, keeping the
        claim, and AssemblyFailedError is raised.

        Returns:
            Final relative path (also recorded as the session fileId)
        """
        session = await self.store.load(upload_id)
        if session is None:
            raise SessionNotFoundError(f"Upload session {upload_id} not found")

        session_dir = self.store.session_dir(upload_id)
        folder = session.folder_path or ""
        file_id = build_file_id(folder, session.file_name)

        logger.info(f"Assembling {upload_id}: {session.total_chunks} chunks into {file_id}")

        loop = asyncio.get_running_loop()
        try:
            destination = ensure_within(self.settings.upload_dir, file_id)
            written = await loop.run_in_executor(None, self._write_output, session, session_dir, destination)
        except Exception as e:
            if isinstance(e, AssemblyStepError):
                reason = str(e)
            elif isinstance(e, OSError):
                reason = "I/O error while writing the output file"
            else:
                reason = "Unexpected error during assembly"
            logger.error(f"Assembly failed for {upload_id}: {e}", exc_info=not isinstance(e, AssemblyStepError))
            await self.store.mark_assembly_failed(upload_id, reason)
            audit_log(
                "upload.assemble",
                upload_id,
                details={"fileName": session.file_name, "owner": session.owner},
                success=False,
                error=reason,
            )
            raise AssemblyFailedError(reason) from e

        await self.store.set_session_file_id(upload_id, file_id)

        for index in range(session.total_chunks):
            delete_chunk(session_dir, index)

        audit_log(
            "upload.assemble",
            file_id,
            details={
                "uploadId": upload_id,
                "size": written,
                "chunks": session.total_chunks,
                "e2eEncrypted": session.e2e_encrypted,
                "owner": session.owner,
            },
        )
        logger.info(f"Assembled {upload_id} into {file_id} ({written} bytes)")
        return file_id

    async def finalize(self, upload_id: str) -> str:
        """
        Return the final path of an assembled upload and drop its session.

        Polls for up to finalize_wait_seconds while another request is
        assembling. A complete but unclaimed session is assembled here.

        Returns:
            Final relative path of the file

        Raises:
            SessionNotFoundError: If the session does not exist
            AssemblyFailedError: If assembly failed
            AssemblyNotCompleteError: If chunks are missing or assembly did not finish in time
        """
        self.store.session_dir(upload_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.finalize_wait_seconds

        while True:
            session = await self.store.load(upload_id)
            if session is None:
                raise SessionNotFoundError(f"Upload session {upload_id} not found")

            if session.is_finished:
                await self.store.delete(upload_id)
                logger.info(f"Finalized upload {upload_id}: {session.file_id}")
                return session.file_id

            if session.is_assembly_failed:
                raise AssemblyFailedError(session.assembly_error or "Assembly failed")

            if not session.is_claimed:
                if not session.is_complete:
                    raise AssemblyNotCompleteError(
                        f"Upload {upload_id} has {len(session.written_chunks)} of "
                        f"{session.total_chunks} chunks"
                    )
                if await self.store.try_start_assembly(upload_id):
                    await self._assemble(upload_id)
                    continue

            if loop.time() >= deadline:
                raise AssemblyNotCompleteError(f"Assembly of {upload_id} is still in progress")
            await asyncio.sleep(self.settings.finalize_poll_interval)

    async def get_status(self, upload_id: str) -> Optional[UploadSession]:
        """Session state for resume, or None if no session exists."""
        self.store.session_dir(upload_id)
        return await self.store.load(upload_id)

    def _check_owner(self, session: UploadSession, user: ApiKeyEntry) -> None:
        if user.is_admin or session.owner in (None, user.username):
            return
        raise SessionNotFoundError(f"Upload session {session.upload_id} not found")

    async def list_resumable(self, user: ApiKeyEntry) -> List[UploadSession]:
        """
        List sessions that are still accepting chunks.

        Expired and claimed sessions are skipped; non-admin users only see
        their own sessions.
        """
        sessions = []
        for upload_id in await self.store.list_sessions():
            session = await self.store.load(upload_id)
            if session is None or session.is_claimed:
                continue
            if session.is_expired(self.settings.session_expiry_seconds):
                continue
            if not user.is_admin and session.owner not in (None, user.username):
                continue
            sessions.append(session)
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def delete_upload(self, upload_id: str, user: ApiKeyEntry) -> None:
        """
        Remove a session and its chunks.

        Raises:
            SessionNotFoundError: If the session does not exist or belongs to another user
            SessionConflictError: If assembly is running
        """
        session = await self.get_status(upload_id)
        if session is None:
            raise SessionNotFoundError(f"Upload session {upload_id} not found")
        self._check_owner(session, user)
        if session.is_assembling:
            raise SessionConflictError(f"Upload {upload_id} is being assembled")
        await self.store.delete(upload_id)
        audit_log("upload.delete", upload_id, details={"owner": session.owner})

    async def reassemble(self, upload_id: str, user: ApiKeyEntry, e2e_password: Optional[str] = None) -> str:
        """
        Retry assembly of a session whose previous assembly failed.

        Args:
            upload_id: Upload identifier
            user: Authenticated user
            e2e_password: Replacement password for encrypted sessions

        Returns:
            Final relative path of the file

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionConflictError: If assembly is running or was claimed by another request
            AssemblyNotCompleteError: If chunks are still missing
            AssemblyFailedError: If assembly fails again
        """
        session = await self.get_status(upload_id)
        if session is None:
            raise SessionNotFoundError(f"Upload session {upload_id} not found")
        self._check_owner(session, user)

        if session.is_finished:
            return session.file_id
        if session.is_assembling:
            raise SessionConflictError(f"Upload {upload_id} is being assembled")
        if not session.is_complete:
            raise AssemblyNotCompleteError(
                f"Upload {upload_id} has {len(session.written_chunks)} of {session.total_chunks} chunks"
            )

        await self.store.reset_assembly(upload_id, password=e2e_password if session.e2e_encrypted else None)
        if not await self.store.try_start_assembly(upload_id):
            raise SessionConflictError(f"Upload {upload_id} was claimed by another request")

        logger.info(f"Manual reassembly of {upload_id} requested by {user.username}")
        return await self._assemble(upload_id)

    @staticmethod
    def status_payload(session: Optional[UploadSession]) -> Dict[str, Any]:
        """Build the resume status body. Never includes the E2E password."""
        if session is None:
            return {"exists": False}
        payload: Dict[str, Any] = {
            "exists": True,
            "file_name": session.file_name,
            "file_size": session.file_size,
            "total_chunks": session.total_chunks,
            "uploaded_chunks": list(session.written_chunks),
            "progress": round(session.progress, 2),
            "created_at": session.created_at,
            "e2e_encrypted": session.e2e_encrypted,
            "chunk_size": session.chunk_size,
            "completed": session.is_finished,
            "assembly_failed": session.is_assembly_failed,
        }
        if session.is_assembly_failed:
            payload["assembly_error"] = session.assembly_error
        return payload
