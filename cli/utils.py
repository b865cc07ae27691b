"""Utility functions for CLI operations."""

import sys
from typing import Optional

from cli.chunked_uploader import UploadProgress
from cli.constants import GREEN, RESET


class ProgressPrinter:
    """Progress callback that redraws one status line on stdout."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self._finished = False

    def __call__(self, event: UploadProgress) -> None:
        uploaded_str = format_file_size(event.uploaded_size)
        total_str = format_file_size(event.total_size)
        self.stream.write(
            f"\rUploading {event.file_name}: {uploaded_str} / {total_str} "
            f"({GREEN}{event.progress:.1f}%{RESET}) "
            f"{format_file_size(int(event.speed))}/s, ETA {format_duration(event.remaining_time)}   "
        )
        self.stream.flush()

    def finish(self) -> None:
        """Finalize progress display with newline."""
        if not self._finished:
            self._finished = True
            self.stream.write('\n')
            self.stream.flush()


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as 'Hh Mm Ss'; '--' when unknown."""
    if seconds is None:
        return "--"
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
