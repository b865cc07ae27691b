"""Utility helper functions for the upload server."""

from pathlib import Path
from typing import Optional

from server.config import ApiKeyEntry
from server.exceptions import PathTraversalError, ValidationError


def validate_file_name(file_name: str) -> str:
    """
    Check that a file name is a bare name with no directory part.

    Args:
        file_name: Client supplied file name

    Returns:
        The file name, stripped of surrounding whitespace

    Raises:
        ValidationError: If the name is empty, contains separators or is . / ..
    """
    name = (file_name or "").strip()
    if not name:
        raise ValidationError("fileName is required")
    if "/" in name or "\\" in name or "\x00" in name or name in (".", ".."):
        raise ValidationError("fileName must be a plain file name")
    return name


def normalize_folder_path(folder_path: Optional[str]) -> str:
    """
    Normalize a relative folder path to 'a/b/c' form.

    Empty and '.' segments are dropped. '' means the root folder.

    Raises:
        PathTraversalError: If any segment is '..' or the path is absolute
    """
    if not folder_path:
        return ""
    raw = folder_path.replace("\\", "/")
    if raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        raise PathTraversalError("folderPath must be relative")

    segments = []
    for segment in raw.split("/"):
        segment = segment.strip()
        if not segment or segment == ".":
            continue
        if segment == ".." or "\x00" in segment:
            raise PathTraversalError("folderPath must not leave the upload directory")
        segments.append(segment)
    return "/".join(segments)


def resolve_destination(folder_path: Optional[str], user: ApiKeyEntry) -> str:
    """
    Map a requested folder to the folder actually written for this user.

    Non-admin users are scoped under '<username>/'; admins write to the
    folder as given.

    Args:
        folder_path: Requested folder, relative to the user's root
        user: Authenticated user

    Returns:
        Relative folder path under the upload root ('' for the root itself)
    """
    folder = normalize_folder_path(folder_path)
    if user.is_admin:
        return folder
    username = normalize_folder_path(user.username)
    if not username or "/" in username:
        raise PathTraversalError("Invalid username for upload scoping")
    return f"{username}/{folder}" if folder else username


def ensure_within(root: Path, relative: str) -> Path:
    """
    Join a relative path onto root and verify it stays inside root.

    Returns:
        Resolved absolute path

    Raises:
        PathTraversalError: If the resolved path escapes root
    """
    resolved_root = root.resolve()
    candidate = (resolved_root / relative).resolve()
    if candidate != resolved_root and resolved_root not in candidate.parents:
        raise PathTraversalError("Destination escapes the upload directory")
    return candidate


def build_file_id(folder: str, file_name: str) -> str:
    """Relative path recorded as the session fileId."""
    return f"{folder}/{file_name}" if folder else file_name
