"""Manages temp chunk files of an upload session: write, stream, delete."""

import os
import uuid
from pathlib import Path
from typing import Iterator

from common.constants import CHUNK_FILE_PREFIX


def get_chunk_path(session_dir: Path, chunk_index: int) -> Path:
    """
    Get file path for a chunk.

    Args:
        session_dir: Directory of the upload session
        chunk_index: Zero-based chunk index

    Returns:
        Path object for chunk file
    """
    return session_dir / f"{CHUNK_FILE_PREFIX}{chunk_index}"


def write_chunk(session_dir: Path, chunk_index: int, data: bytes) -> Path:
    """
    Durably write chunk data, replacing any previous upload of the same index.

    Data goes to a temp file that is fsynced and renamed over the final
    name, so a chunk file is either absent or complete.

    Args:
        session_dir: Directory of the upload session
        chunk_index: Zero-based chunk index
        data: Raw or encrypted chunk bytes as received

    Returns:
        Path to the written chunk file

    Raises:
        OSError: If the write fails
    """
    filepath = get_chunk_path(session_dir, chunk_index)
    tmp_path = session_dir / f".{filepath.name}.{uuid.uuid4().hex}.tmp"
    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, filepath)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return filepath


def read_chunk(session_dir: Path, chunk_index: int) -> bytes:
    """
    Read entire chunk from disk.

    Raises:
        FileNotFoundError: If chunk does not exist
    """
    return get_chunk_path(session_dir, chunk_index).read_bytes()


def read_chunk_streaming(session_dir: Path, chunk_index: int, piece_size: int = 1024 * 1024) -> Iterator[bytes]:
    """
    Stream chunk data in pieces.

    Args:
        session_dir: Directory of the upload session
        chunk_index: Zero-based chunk index
        piece_size: Size of each piece in bytes (default 1MB)

    Yields:
        Chunk data pieces

    Raises:
        FileNotFoundError: If chunk does not exist
    """
    filepath = get_chunk_path(session_dir, chunk_index)
    with open(filepath, 'rb') as f:
        while True:
            piece = f.read(piece_size)
            if not piece:
                break
            yield piece


def delete_chunk(session_dir: Path, chunk_index: int) -> bool:
    """
    Delete chunk file from disk.

    Returns:
        True if file was deleted, False if it didn't exist
    """
    filepath = get_chunk_path(session_dir, chunk_index)
    try:
        filepath.unlink()
        return True
    except FileNotFoundError:
        return False

