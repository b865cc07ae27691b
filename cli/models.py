"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class UploadCommand:
    """Upload a file, optionally encrypted."""

    path: str
    folder: str | None = None
    encrypt: bool = False
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class ResumeCommand:
    """Resume an upload from the chunks the server already has."""

    upload_id: str
    path: str
    command: Literal["resume"] = "resume"


@dataclass(frozen=True)
class StatusCommand:
    """Show server-side state of an upload."""

    upload_id: str
    command: Literal["status"] = "status"


@dataclass(frozen=True)
class SessionsCommand:
    """List resumable uploads."""

    command: Literal["sessions"] = "sessions"


@dataclass(frozen=True)
class CancelSessionCommand:
    """Delete an unfinished upload on the server."""

    upload_id: str
    command: Literal["cancel-session"] = "cancel-session"


@dataclass(frozen=True)
class ReassembleCommand:
    """Retry a failed assembly."""

    upload_id: str
    command: Literal["reassemble"] = "reassemble"


@dataclass(frozen=True)
class PasswordCommand:
    """Cache the E2E password."""

    password: str
    command: Literal["password"] = "password"


@dataclass(frozen=True)
class ForgetPasswordCommand:
    """Drop the cached E2E password."""

    command: Literal["forget-password"] = "forget-password"


CommandRequest = (
    UploadCommand
    | ResumeCommand
    | StatusCommand
    | SessionsCommand
    | CancelSessionCommand
    | ReassembleCommand
    | PasswordCommand
    | ForgetPasswordCommand
)
