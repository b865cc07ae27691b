"""Startup recovery and background sweep of expired upload sessions."""

import asyncio
import logging
from typing import Dict

from server.session_store import UploadSessionStore

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 6 * 3600


async def recover_sessions(store: UploadSessionStore, ttl_seconds: float) -> Dict[str, int]:
    """
    Scan the temp root after a restart.

    Unreadable and expired sessions are deleted. Sessions left in the
    assembling state by a previous process are moved to the failed state so
    they can be reassembled on request.

    Args:
        store: Session store to scan
        ttl_seconds: Session time-to-live

    Returns:
        Counts of 'active', 'expired', 'invalid' and 'interrupted' sessions
    """
    counts = {"active": 0, "expired": 0, "invalid": 0, "interrupted": 0}

    for upload_id in await store.list_sessions():
        session = await store.load(upload_id)
        if session is None:
            # load() already removed a corrupt record; a bare directory is removed once stale
            age = store.directory_age_seconds(upload_id)
            if age is not None and age > ttl_seconds:
                await store.delete(upload_id)
            counts["invalid"] += 1
            continue

        if session.is_expired(ttl_seconds):
            await store.delete(upload_id)
            counts["expired"] += 1
            continue

        if session.is_assembling:
            logger.warning(f"Session {upload_id} was interrupted during assembly, marking as failed")
            await store.mark_assembly_failed(upload_id, "Server stopped during assembly")
            counts["interrupted"] += 1
            continue

        counts["active"] += 1
        logger.info(
            f"Recovered upload session {upload_id}: {session.file_name} "
            f"({len(session.written_chunks)}/{session.total_chunks} chunks)"
        )

    logger.info(
        f"Session recovery complete: {counts['active']} active, {counts['expired']} expired, "
        f"{counts['invalid']} invalid, {counts['interrupted']} interrupted"
    )
    return counts


class ExpiredSessionCleaner:
    """
    Background task that periodically deletes expired upload sessions.
    """

    def __init__(
        self,
        store: UploadSessionStore,
        ttl_seconds: float,
        interval_seconds: int = CLEANUP_INTERVAL_SECONDS,
    ):
        """
        Initialize cleaner task.

        Args:
            store: Session store to sweep
            ttl_seconds: Sessions older than this are deleted
            interval_seconds: Time between sweeps (default 6 hours)
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self._running = False
        self._task = None

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._running:
            logger.warning("Cleanup task already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started expired session cleanup task (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Stopped expired session cleanup task")

    async def _run(self) -> None:
        """Main loop for cleanup task."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await self._cleanup_cycle()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cleanup task: {e}", exc_info=True)

    async def _cleanup_cycle(self) -> int:
        """
        Execute one cleanup cycle.

        Returns:
            Number of session directories removed
        """
        upload_ids = await self.store.list_sessions()
        if not upload_ids:
            logger.debug("No upload sessions to sweep")
            return 0

        removed = 0
        for upload_id in upload_ids:
            session = await self.store.load(upload_id)
            if session is None:
                age = self.store.directory_age_seconds(upload_id)
                if age is not None and age > self.ttl_seconds:
                    await self.store.delete(upload_id)
                    removed += 1
            elif session.is_assembling:
                logger.debug(f"Skipping upload session {upload_id}: assembly in progress")
            elif session.is_expired(self.ttl_seconds):
                logger.info(f"Removing expired upload session {upload_id} ({session.file_name})")
                await self.store.delete(upload_id)
                removed += 1

        logger.info(f"Cleanup cycle complete: {removed} removed, {len(upload_ids) - removed} remaining")
        return removed
