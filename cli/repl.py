"""REPL with prompt_toolkit for user interaction."""

import logging
import os
import sys
from typing import Callable, Dict

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import InMemoryHistory

from cli.commands import (
    handle_cancel_session,
    handle_forget_password,
    handle_password,
    handle_reassemble,
    handle_resume,
    handle_sessions,
    handle_status,
    handle_upload,
)
from cli.constants import (
    COMMANDS,
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
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
from cli.parser import ParseError, parse_command

logger = logging.getLogger(__name__)

HANDLERS: Dict[type, Callable[..., str]] = {
    UploadCommand: handle_upload,
    ResumeCommand: handle_resume,
    StatusCommand: handle_status,
    SessionsCommand: handle_sessions,
    CancelSessionCommand: handle_cancel_session,
    ReassembleCommand: handle_reassemble,
    PasswordCommand: handle_password,
    ForgetPasswordCommand: handle_forget_password,
}


class SecretFilteringHistory(InMemoryHistory):
    """In-memory history that never records a typed password."""

    def append_string(self, string: str) -> None:
        if is_password_line(string):
            return
        super().append_string(string)


def is_password_line(line: str) -> bool:
    """Whether a REPL line carries a password argument."""
    words = line.strip().split(None, 1)
    return bool(words) and words[0].lower() == "password"


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    os.system("cls" if sys.platform == "win32" else "clear")


def show_welcome() -> None:
    clear_screen()
    print(LOGO)
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


def dispatch_command(cmd_obj) -> str:
    """Dispatch parsed command to its handler."""
    handler = HANDLERS.get(type(cmd_obj))
    if handler is None:
        return f"Unknown command type: {type(cmd_obj)}"
    logger.debug(f"Dispatching {cmd_obj.command}")
    return handler(cmd_obj)


def prompt_password(session: PromptSession) -> str:
    """Ask for the E2E password without echoing it."""
    password = session.prompt("E2E password: ", is_password=True)
    if not password:
        return "Error: password must not be empty"
    return handle_password(PasswordCommand(password=password))


def repl_loop() -> None:
    """Start interactive REPL with prompt_toolkit."""
    session: PromptSession = PromptSession(
        completer=WordCompleter(COMMANDS, ignore_case=True),
        history=SecretFilteringHistory(),
        style=STYLE,
    )

    show_welcome()

    while True:
        try:
            stripped = session.prompt([("class:prompt", PROMPT_TEXT)]).strip()

            if not stripped:
                continue

            if stripped == "exit":
                print("Goodbye!")
                break

            if stripped == "help":
                print(HELP_TEXT)
                continue

            if stripped == "clear":
                show_welcome()
                continue

            if stripped == "password":
                print(prompt_password(session))
                continue

            print(dispatch_command(parse_command(stripped)))

        except ParseError as e:
            print(f"Error: {e}")
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            break
