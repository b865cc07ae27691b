"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["upload", "resume", "status", "sessions", "cancel-session", "reassemble",
            "password", "forget-password", "clear", "exit", "help"]

STYLE = Style.from_dict(
    {
        "prompt": "#2E9E6B bold",
        "command": "#0088ff bold",
    }
)

GREEN = "\033[38;2;46;158;107m"
YELLOW = "\033[33m"
RESET = "\033[0m"

LOGO = f"""{GREEN}
 ███████╗ ██████╗ █████╗ ████████╗ ██████╗ ██╗      █████╗
 ██╔════╝██╔════╝██╔══██╗╚══██╔══╝██╔═══██╗██║     ██╔══██╗
 ███████╗██║     ███████║   ██║   ██║   ██║██║     ███████║
 ╚════██║██║     ██╔══██║   ██║   ██║   ██║██║     ██╔══██║
 ███████║╚██████╗██║  ██║   ██║   ╚██████╔╝███████╗██║  ██║
 ╚══════╝ ╚═════╝╚═╝  ╚═╝   ╚═╝    ╚═════╝ ╚══════╝╚═╝  ╚═╝
{RESET}"""

WELCOME_TITLE = "Scatola CLI - Resumable encrypted uploads"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "scatola> "

HELP_TEXT = """Available commands:
  upload <path> [--folder F] [--encrypt]   Upload a file (--encrypt uses the cached password)
  resume <upload-id> <path>                Upload only the chunks the server is missing
  status <upload-id>                       Show server-side state of an upload
  sessions                                 List resumable uploads
  cancel-session <upload-id>               Delete an unfinished upload on the server
  reassemble <upload-id>                   Retry a failed assembly (uses the cached password)
  password [<password>]                    Cache the E2E password (prompts without echo if omitted)
  forget-password                          Drop the cached E2E password
  clear                                    Clear screen and redisplay welcome message
  help                                     Show this help
  exit                                     Exit REPL

Press Ctrl+C during an upload to cancel it; it can be resumed later.
Examples:
  password "correct horse battery staple"
  upload ./video.mp4 --folder holidays --encrypt
  resume 1718000000000-k3j2h1g0f9e8d ./video.mp4"""
