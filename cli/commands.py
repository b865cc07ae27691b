"""Command handler functions for CLI operations."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from cli.chunked_uploader import (
    ChunkedUploader,
    ChunkUploadError,
    UploadCancelledError,
    generate_upload_id,
)
from cli.config import Config
from cli.models import (
    CancelSessionCommand,
    ForgetPasswordCommand,
    PasswordCommand,
    ReassembleCommand,
    ResumeCommand,
    SessionsCommand,
    StatusCommand,
    UploadCommand,
)
from cli.password_cache import PasswordCache
from cli.upload_client import UploadClient, UploadClientError
from cli.utils import ProgressPrinter, format_file_size

logger = logging.getLogger(__name__)

T = TypeVar("T")

_config: Optional[Config] = None
_password_cache: Optional[PasswordCache] = None


def get_config() -> Config:
    """
    Get or create global Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        logger.debug("Loading CLI config")
        _config = Config()
    return _config


def get_password_cache() -> PasswordCache:
    """
    Get or create the password cache for this CLI session.

    Returns:
        PasswordCache instance
    """
    global _password_cache
    if _password_cache is None:
        _password_cache = PasswordCache(ttl_seconds=get_config().get_password_ttl())
    return _password_cache


async def _with_client(
    client: Optional[UploadClient],
    action: Callable[[UploadClient], Awaitable[T]],
) -> T:
    if client is not None:
        return await action(client)
    async with UploadClient.from_config(get_config()) as owned:
        return await action(owned)


async def _build_uploader(client: UploadClient, path: Path, printer: ProgressPrinter, **kwargs) -> ChunkedUploader:
    config = get_config()
    limits = config.get_upload_settings(await client.get_config())
    return ChunkedUploader(
        client,
        str(path),
        parallel_uploads=limits['parallel_uploads'],
        retry_attempts=limits['chunk_retry_attempts'],
        retry_delay_ms=limits['chunk_retry_delay_ms'],
        max_chunk_size=limits['max_chunk_size'],
        max_file_size=limits['max_file_size'],
        network=config.get_network_info(),
        on_progress=printer,
        **kwargs,
    )


def _run_upload(
    upload_id: str,
    display_path: str,
    client: Optional[UploadClient],
    action: Callable[[UploadClient], Awaitable[str]],
    printer: ProgressPrinter,
) -> str:
    resume_hint = f"Resume with: resume {upload_id} {display_path}"
    try:
        return asyncio.run(_with_client(client, action))
    except ChunkUploadError as e:
        logger.error(f"Upload {upload_id} failed at chunk {e.chunk_index}: {e.cause}")
        return f"Upload failed at chunk {e.chunk_index}: {e.cause}\n{resume_hint}"
    except (UploadCancelledError, KeyboardInterrupt):
        return f"Upload cancelled. {resume_hint}"
    except UploadClientError as e:
        return f"Upload failed: {e}"
    except OSError as e:
        return f"Error reading file: {e}"
    finally:
        printer.finish()


def handle_upload(cmd: UploadCommand, client: Optional[UploadClient] = None) -> str:
    """
    Handle 'upload' command.

    Args:
        cmd: UploadCommand with path, folder and encrypt flag
        client: Optional UploadClient for dependency injection (testing)

    Returns:
        Success or error message
    """
    path = Path(cmd.path).expanduser()
    if not path.is_file():
        return f"Error: file not found: {cmd.path}"

    password = None
    if cmd.encrypt:
        password = get_password_cache().get()
        if not password:
            return "Error: no E2E password cached. Run: password <password>"

    upload_id = generate_upload_id()
    printer = ProgressPrinter()
    logger.info(f"Executing upload command: {path} as {upload_id} (encrypted={cmd.encrypt})")

    async def action(c: UploadClient) -> str:
        uploader = await _build_uploader(
            c, path, printer,
            upload_id=upload_id,
            folder_path=cmd.folder,
            encrypt=cmd.encrypt,
            password=password,
        )
        file_id = await uploader.upload()
        return f"Uploaded {path.name} ({format_file_size(uploader.file_size)}) -> {file_id}"

    return _run_upload(upload_id, cmd.path, client, action, printer)


def handle_resume(cmd: ResumeCommand, client: Optional[UploadClient] = None) -> str:
    """
    Handle 'resume' command.

    Queries the server for the chunks it already holds and uploads the rest.

    Args:
        cmd: ResumeCommand with upload_id and path
        client: Optional UploadClient for dependency injection (testing)

    Returns:
        Success or error message
    """
    path = Path(cmd.path).expanduser()
    if not path.is_file():
        return f"Error: file not found: {cmd.path}"

    printer = ProgressPrinter()

    async def action(c: UploadClient) -> str:
        status = await c.get_status(cmd.upload_id)
        if not status.get("exists"):
            return f"No upload session {cmd.upload_id} on the server (it may have expired)"
        if status.get("completed"):
            return f"Upload {cmd.upload_id} is already assembled; nothing to resume"
        if status.get("assemblyFailed"):
            return f"Assembly of {cmd.upload_id} failed: {status.get('assemblyError')}. Use: reassemble {cmd.upload_id}"
        if status.get("fileName") != path.name:
            return f"Error: session is for '{status.get('fileName')}', not '{path.name}'"
        if status.get("fileSize") != path.stat().st_size:
            return "Error: local file size differs from the size recorded on the server"
        chunk_size = status.get("chunkSize")
        if not chunk_size:
            return "Error: session has no recorded chunk size and cannot be resumed"

        encrypted = bool(status.get("e2eEncrypted"))
        password = get_password_cache().get() if encrypted else None
        if encrypted and not password:
            return "Error: session is encrypted and no E2E password is cached. Run: password <password>"

        uploaded = status.get("uploadedChunks") or []
        logger.info(f"Resuming {cmd.upload_id}: {len(uploaded)}/{status.get('totalChunks')} chunks on server")

        uploader = await _build_uploader(
            c, path, printer,
            upload_id=cmd.upload_id,
            chunk_size=chunk_size,
            already_uploaded=uploaded,
            encrypt=encrypted,
            password=password,
        )
        file_id = await uploader.upload()
        return f"Uploaded {path.name} ({format_file_size(uploader.file_size)}) -> {file_id}"

    return _run_upload(cmd.upload_id, cmd.path, client, action, printer)


def handle_status(cmd: StatusCommand, client: Optional[UploadClient] = None) -> str:
    """
    Handle 'status' command.

    Returns:
        Formatted session state
    """
    try:
        status = asyncio.run(_with_client(client, lambda c: c.get_status(cmd.upload_id)))
    except UploadClientError as e:
        return f"Error: {e}"

    if not status.get("exists"):
        return f"No upload session {cmd.upload_id}"

    uploaded = status.get("uploadedChunks") or []
    lines = [
        f"Upload {cmd.upload_id}",
        f"  File:      {status.get('fileName')} ({format_file_size(status.get('fileSize', 0))})",
        f"  Chunks:    {len(uploaded)}/{status.get('totalChunks')} ({status.get('progress', 0):.1f}%)",
        f"  Encrypted: {'yes' if status.get('e2eEncrypted') else 'no'}",
        f"  Created:   {_format_timestamp(status.get('createdAt'))}",
    ]
    if status.get("completed"):
        lines.append("  State:     assembled")
    elif status.get("assemblyFailed"):
        lines.append(f"  State:     assembly failed ({status.get('assemblyError')})")
    else:
        lines.append("  State:     in progress")
    return "\n".join(lines)


def handle_sessions(cmd: SessionsCommand, client: Optional[UploadClient] = None) -> str:
    """
    Handle 'sessions' command.

    Returns:
        Formatted list of resumable uploads
    """
    try:
        sessions = asyncio.run(_with_client(client, lambda c: c.list_sessions()))
    except UploadClientError as e:
        return f"Error: {e}"

    if not sessions:
        return "No resumable uploads"

    lines = ["Resumable uploads:"]
    for session in sessions:
        marker = " [encrypted]" if session.get("e2eEncrypted") else ""
        lines.append(
            f"  {session['uploadId']}  {session['fileName']}  "
            f"{format_file_size(session['fileSize'])}  {session['progress']:.1f}%{marker}"
        )
    return "\n".join(lines)


def handle_cancel_session(cmd: CancelSessionCommand, client: Optional[UploadClient] = None) -> str:
    """
    Handle 'cancel-session' command.

    Returns:
        Success or error message
    """
    try:
        asyncio.run(_with_client(client, lambda c: c.delete_upload(cmd.upload_id)))
    except UploadClientError as e:
        return f"Error: {e}"
    return f"Deleted upload session {cmd.upload_id}"


def handle_reassemble(cmd: ReassembleCommand, client: Optional[UploadClient] = None) -> str:
    """
    Handle 'reassemble' command.

    The cached E2E password, if any, replaces the one stored with the session.

    Returns:
        Success or error message
    """
    password = get_password_cache().get()
    try:
        file_id = asyncio.run(
            _with_client(client, lambda c: c.reassemble(cmd.upload_id, e2e_password=password))
        )
    except UploadClientError as e:
        return f"Reassembly failed: {e}"
    return f"Reassembled {cmd.upload_id} -> {file_id}"


def handle_password(cmd: PasswordCommand) -> str:
    """Handle 'password' command."""
    get_password_cache().store(cmd.password)
    return "E2E password cached for this session"


def handle_forget_password(cmd: ForgetPasswordCommand) -> str:
    """Handle 'forget-password' command."""
    get_password_cache().clear()
    return "E2E password cleared"


def _format_timestamp(value: Optional[int]) -> str:
    if not value:
        return "unknown"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")
