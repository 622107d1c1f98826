"""Formatting utilities for run summaries."""


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Human readable size string.
    """
    if size_bytes < 1024:
        return f"{size_bytes}B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes // 1024}KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes // (1024 * 1024)}MB"
    else:
        return f"{size_bytes // (1024 * 1024 * 1024)}GB"


def format_duration(seconds: float) -> str:
    """Format a duration as ``1h 2m 3s``, ``2m 3s`` or ``3.4s``.

    Args:
        seconds: Duration in seconds.

    Returns:
        Human readable duration string.
    """
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes, secs = divmod(int(round(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


def parse_type_list(value: str) -> list:
    """Split a comma separated type filter, dropping empty entries."""
    return [part.strip().lower() for part in (value or '').split(',') if part.strip()]
