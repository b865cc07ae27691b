"""Durable, lock-guarded persistence of upload sessions on disk."""

import asyncio
import json
import logging
import os
import re
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional

from common.constants import SESSION_FILE_NAME, UPLOAD_ID_PATTERN
from server.domain import ASSEMBLY_FAILED, ASSEMBLY_IN_PROGRESS, UploadSession
from server.exceptions import (
    InvalidUploadIdError,
    PathTraversalError,
    SessionLockError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

LOCK_DIR_NAME = f"{SESSION_FILE_NAME}.lock"
LOCK_RETRIES = 5
LOCK_BASE_DELAY = 0.1
STALE_LOCK_SECONDS = 10.0

_UPLOAD_ID_RE = re.compile(UPLOAD_ID_PATTERN)


class UploadSessionStore:
    """
    Stores one session.json per upload under <temp_root>/<uploadId>/.

    Every read-modify-write goes through an in-process asyncio.Lock for the
    uploadId and then a lock directory created with an atomic mkdir, so
    concurrent chunk requests in this process and in sibling worker
    processes are serialized. The session is always re-read under the lock.
    """

    def __init__(
        self,
        temp_root: Path,
        lock_retries: int = LOCK_RETRIES,
        lock_base_delay: float = LOCK_BASE_DELAY,
        stale_lock_seconds: float = STALE_LOCK_SECONDS,
    ):
        self.temp_root = Path(temp_root)
        self.lock_retries = lock_retries
        self.lock_base_delay = lock_base_delay
        self.stale_lock_seconds = stale_lock_seconds
        self._local_locks: Dict[str, asyncio.Lock] = {}

    def ensure_root(self) -> None:
        """Ensure the temp root directory exists."""
        self.temp_root.mkdir(parents=True, exist_ok=True)

    def session_dir(self, upload_id: str) -> Path:
        """
        Map an uploadId to its session directory.

        Args:
            upload_id: Client supplied upload identifier

        Returns:
            Resolved directory path inside the temp root

        Raises:
            InvalidUploadIdError: If upload_id contains characters outside [A-Za-z0-9_-]
            PathTraversalError: If the resolved path is not directly inside the temp root
        """
        if not isinstance(upload_id, str) or not _UPLOAD_ID_RE.fullmatch(upload_id):
            raise InvalidUploadIdError("Invalid upload ID")

        root = self.temp_root.resolve()
        candidate = (root / upload_id).resolve()
        if candidate.parent != root:
            raise PathTraversalError("Upload path escapes the temp directory")
        return candidate

    def _session_file(self, upload_id: str) -> Path:
        return self.session_dir(upload_id) / SESSION_FILE_NAME

    def _read(self, upload_id: str) -> Optional[UploadSession]:
        """Read session.json; raises ValueError if the record is corrupt."""
        path = self._session_file(upload_id)
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e.msg}") from e
        session = UploadSession.from_dict(data)
        if session.upload_id != upload_id:
            raise ValueError("uploadId does not match its directory")
        return session

    def _write(self, session: UploadSession) -> None:
        """Atomically replace session.json (temp file, fsync, rename)."""
        path = self._session_file(session.upload_id)
        tmp_path = path.with_name(f".{SESSION_FILE_NAME}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(session.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _local_lock(self, upload_id: str) -> asyncio.Lock:
        lock = self._local_locks.get(upload_id)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[upload_id] = lock
        return lock

    def _break_stale_lock(self, upload_id: str, lock_dir: Path) -> bool:
        try:
            age = time.time() - lock_dir.stat().st_mtime
        except FileNotFoundError:
            return True
        if age <= self.stale_lock_seconds:
            return False
        logger.warning(f"Breaking stale session lock for {upload_id} (age {age:.1f}s)")
        try:
            lock_dir.rmdir()
        except FileNotFoundError:
            pass
        return True

    async def _acquire_lock_dir(self, upload_id: str, lock_dir: Path) -> None:
        for attempt in range(1, self.lock_retries + 1):
            try:
                os.mkdir(lock_dir)
                return
            except FileNotFoundError:
                raise SessionNotFoundError(f"Upload session {upload_id} not found")
            except FileExistsError:
                if self._break_stale_lock(upload_id, lock_dir):
                    continue
                if attempt < self.lock_retries:
                    await asyncio.sleep(self.lock_base_delay * 2 ** (attempt - 1))

        logger.error(f"Could not lock session {upload_id} after {self.lock_retries} attempts")
        raise SessionLockError(f"Upload session {upload_id} is busy, retry the request")

    @asynccontextmanager
    async def _locked(self, upload_id: str):
        lock_dir = self.session_dir(upload_id) / LOCK_DIR_NAME
        async with self._local_lock(upload_id):
            await self._acquire_lock_dir(upload_id, lock_dir)
            try:
                yield
            finally:
                try:
                    lock_dir.rmdir()
                except FileNotFoundError:
                    pass

    def _require(self, upload_id: str) -> UploadSession:
        try:
            session = self._read(upload_id)
        except ValueError as e:
            logger.error(f"Corrupt session record for {upload_id}: {e}")
            raise SessionNotFoundError(f"Upload session {upload_id} not found") from e
        if session is None:
            raise SessionNotFoundError(f"Upload session {upload_id} not found")
        return session

    async def create(self, session: UploadSession) -> bool:
        """
        Create the session directory and its initial session.json.

        An existing session.json is never overwritten (first writer wins).

        Args:
            session: Initial session state

        Returns:
            True if this call created the record, False if it already existed
        """
        directory = self.session_dir(session.upload_id)
        directory.mkdir(parents=True, exist_ok=True)

        path = directory / SESSION_FILE_NAME
        tmp_path = directory / f".{SESSION_FILE_NAME}.{uuid.uuid4().hex}.init"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(session.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp_path, path)
            except FileExistsError:
                return False
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        logger.info(
            f"Created upload session {session.upload_id}: {session.file_name} "
            f"({session.file_size} bytes, {session.total_chunks} chunks)"
        )
        return True

    async def load(self, upload_id: str) -> Optional[UploadSession]:
        """
        Read a session without locking.

        A structurally invalid record is logged, its directory deleted, and
        the session treated as absent.

        Returns:
            UploadSession, or None if it does not exist
        """
        try:
            return self._read(upload_id)
        except ValueError as e:
            logger.error(f"Discarding corrupt session {upload_id}: {e}")
            await self.delete(upload_id)
            return None

    async def mark_chunk_received(self, upload_id: str, chunk_index: int) -> UploadSession:
        """Record that the bytes of chunk_index were accepted. Idempotent."""
        async with self._locked(upload_id):
            session = self._require(upload_id)
            if chunk_index not in session.received_chunks:
                session.received_chunks = sorted(session.received_chunks + [chunk_index])
                self._write(session)
            return session

    async def mark_chunk_written(self, upload_id: str, chunk_index: int) -> UploadSession:
        """Record that chunk_index is durably on disk. Idempotent."""
        async with self._locked(upload_id):
            session = self._require(upload_id)
            if chunk_index not in session.written_chunks:
                session.written_chunks = sorted(session.written_chunks + [chunk_index])
                self._write(session)
            return session

    async def is_complete(self, upload_id: str) -> bool:
        session = await self.load(upload_id)
        return session is not None and session.is_complete

    async def try_start_assembly(self, upload_id: str) -> bool:
        """
        Claim the right to assemble this upload.

        Re-reads the session under the lock; if no file_id is recorded,
        writes the in-progress sentinel and returns True. Exactly one caller
        can win the claim for a session.

        Returns:
            True if the caller now owns assembly, False otherwise
        """
        async with self._locked(upload_id):
            session = self._require(upload_id)
            if session.file_id:
                logger.debug(f"Assembly claim lost for {upload_id} (fileId={session.file_id})")
                return False
            if not session.is_complete:
                return False
            session.file_id = ASSEMBLY_IN_PROGRESS
            session.assembly_error = None
            self._write(session)

        logger.info(f"Assembly claimed for {upload_id}")
        return True

    async def set_session_file_id(self, upload_id: str, file_id: str) -> None:
        """Record the final relative path after a successful assembly."""
        async with self._locked(upload_id):
            session = self._require(upload_id)
            session.file_id = file_id
            session.assembly_error = None
            self._write(session)

    async def mark_assembly_failed(self, upload_id: str, reason: str) -> None:
        """Move a claimed session to the failed state. The claim is kept."""
        async with self._locked(upload_id):
            session = self._require(upload_id)
            session.file_id = ASSEMBLY_FAILED
            session.assembly_error = reason
            self._write(session)

    async def reset_assembly(self, upload_id: str, password: Optional[str] = None) -> UploadSession:
        """
        Release a failed claim so assembly can be attempted again.

        Args:
            upload_id: Upload identifier
            password: Replacement E2E password, if given

        Returns:
            The updated session

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        async with self._locked(upload_id):
            session = self._require(upload_id)
            if session.is_assembly_failed:
                session.file_id = None
                session.assembly_error = None
            if password:
                session.e2e_password = password
            self._write(session)
            return session

    async def delete(self, upload_id: str) -> None:
        """Remove the session directory and its chunks. Missing paths are ignored."""
        directory = self.session_dir(upload_id)
        self._local_locks.pop(upload_id, None)
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to delete session directory for {upload_id}: {e}")
            return
        logger.info(f"Deleted upload session {upload_id}")

    def directory_age_seconds(self, upload_id: str) -> Optional[float]:
        """Age of the session directory, or None if it does not exist."""
        try:
            return time.time() - self.session_dir(upload_id).stat().st_mtime
        except FileNotFoundError:
            return None

    async def list_sessions(self) -> List[str]:
        """
        List uploadIds that have a session directory under the temp root.

        Returns:
            Sorted list of upload identifiers
        """
        if not self.temp_root.exists():
            return []
        upload_ids = []
        for entry in self.temp_root.iterdir():
            if entry.is_dir() and _UPLOAD_ID_RE.fullmatch(entry.name):
                upload_ids.append(entry.name)
        return sorted(upload_ids)
