"""Command parser for CLI input."""

import shlex

from cli.models import (
    CancelSessionCommand,
    CommandRequest,
    ForgetPasswordCommand,
    PasswordCommand,
    ReassembleCommand,
    ResumeCommand,
    SessionsCommand,
    StatusCommand,
    UploadCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "upload":
        return _parse_upload(tokens[1:])
    elif command_name == "resume":
        return _parse_resume(tokens[1:])
    elif command_name == "status":
        return StatusCommand(upload_id=_single_upload_id("status", tokens[1:]))
    elif command_name == "sessions":
        _no_arguments("sessions", tokens[1:])
        return SessionsCommand()
    elif command_name == "cancel-session":
        return CancelSessionCommand(upload_id=_single_upload_id("cancel-session", tokens[1:]))
    elif command_name == "reassemble":
        return ReassembleCommand(upload_id=_single_upload_id("reassemble", tokens[1:]))
    elif command_name == "password":
        return _parse_password(tokens[1:])
    elif command_name == "forget-password":
        _no_arguments("forget-password", tokens[1:])
        return ForgetPasswordCommand()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_upload(args: list[str]) -> UploadCommand:
    """Parse 'upload <path> [--folder F] [--encrypt]' command."""
    path = None
    folder = None
    encrypt = False

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--encrypt":
            encrypt = True
        elif arg == "--folder":
            if i + 1 >= len(args):
                raise ParseError("--folder requires a value")
            folder = args[i + 1]
            i += 1
        elif arg.startswith("--"):
            raise ParseError(f"Unknown option: {arg}")
        elif path is None:
            path = arg
        else:
            raise ParseError("upload accepts exactly one file path")
        i += 1

    if path is None:
        raise ParseError("upload requires a file path")

    return UploadCommand(path=path, folder=folder, encrypt=encrypt)


def _parse_resume(args: list[str]) -> ResumeCommand:
    """Parse 'resume <upload-id> <path>' command."""
    if len(args) != 2:
        raise ParseError("resume requires exactly 2 arguments: <upload-id> <path>")

    upload_id, path = args
    return ResumeCommand(upload_id=upload_id, path=path)


def _parse_password(args: list[str]) -> PasswordCommand:
    """Parse 'password <password>' command."""
    if len(args) != 1:
        raise ParseError('password requires exactly 1 argument (quote it if it contains spaces)')
    if not args[0]:
        raise ParseError("password must not be empty")
    return PasswordCommand(password=args[0])


def _single_upload_id(command_name: str, args: list[str]) -> str:
    if len(args) != 1:
        raise ParseError(f"{command_name} requires exactly 1 argument: <upload-id>")
    return args[0]


def _no_arguments(command_name: str, args: list[str]) -> None:
    if args:
        raise ParseError(f"{command_name} takes no arguments")
