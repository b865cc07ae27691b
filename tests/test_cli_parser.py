"""Tests for CLI command parsing."""

import pytest

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


class TestUploadParsing:
    """Test 'upload' argument handling."""

    def test_plain_upload(self):
        assert parse_command("upload ./video.mp4") == UploadCommand(path="./video.mp4")

    def test_upload_with_options(self):
        cmd = parse_command('upload "my file.bin" --folder holidays/2024 --encrypt')

        assert cmd == UploadCommand(path="my file.bin", folder="holidays/2024", encrypt=True)

    def test_options_before_path(self):
        cmd = parse_command("upload --encrypt a.bin")

        assert cmd.path == "a.bin"
        assert cmd.encrypt is True

    @pytest.mark.parametrize("line,message", [
        ("upload", "requires a file path"),
        ("upload a.bin b.bin", "exactly one file path"),
        ("upload a.bin --folder", "--folder requires a value"),
        ("upload a.bin --fast", "Unknown option"),
    ])
    def test_upload_errors(self, line, message):
        with pytest.raises(ParseError, match=message):
            parse_command(line)


class TestSessionParsing:
    """Test commands addressed by upload id."""

    def test_resume(self):
        assert parse_command("resume up-1 ./a.bin") == ResumeCommand(upload_id="up-1", path="./a.bin")

    def test_resume_requires_two_arguments(self):
        with pytest.raises(ParseError):
            parse_command("resume up-1")

    @pytest.mark.parametrize("line,expected", [
        ("status up-1", StatusCommand(upload_id="up-1")),
        ("cancel-session up-1", CancelSessionCommand(upload_id="up-1")),
        ("reassemble up-1", ReassembleCommand(upload_id="up-1")),
        ("sessions", SessionsCommand()),
        ("forget-password", ForgetPasswordCommand()),
    ])
    def test_simple_commands(self, line, expected):
        assert parse_command(line) == expected

    @pytest.mark.parametrize("line", ["status", "status a b", "reassemble", "sessions extra"])
    def test_wrong_argument_count(self, line):
        with pytest.raises(ParseError):
            parse_command(line)


class TestPasswordParsing:

    def test_quoted_password(self):
        assert parse_command('password "correct horse"') == PasswordCommand(password="correct horse")

    @pytest.mark.parametrize("line", ["password", 'password ""', "password a b"])
    def test_invalid_password(self, line):
        with pytest.raises(ParseError):
            parse_command(line)


@pytest.mark.parametrize("line,message", [
    ("", "Empty command"),
    ("   ", "Empty command"),
    ("frobnicate", "Unknown command"),
    ('upload "unterminated', "Invalid syntax"),
])
def test_parse_errors(line, message):
    with pytest.raises(ParseError, match=message):
        parse_command(line)
