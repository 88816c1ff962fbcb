"""
File and time utility functions for the RBS content service.
Common file operations to avoid code duplication.
"""
import os
import tempfile
from datetime import datetime, timezone
from typing import Optional


def load_text_file(filepath: str) -> Optional[str]:
    """
    Load a UTF-8 text file.

    Args:
        filepath: Path to the file

    Returns:
        File contents, or None if the file doesn't exist
    """
    if os.path.exists(filepath):
        with open(filepath, 'r', encoding='utf-8') as f:
            return f.read()
    return None


def save_text_file(filepath: str, data: str, ensure_dir: bool = True) -> None:
    """
    Replace a UTF-8 text file in one step.

    The data is written to a temporary file in the same directory and moved
    over the target, so readers never see a partially written value.

    Args:
        filepath: Path to save the file
        data: Text to save
        ensure_dir: Whether to create parent directory if it doesn't exist
    """
    directory = os.path.dirname(filepath) or "."
    if ensure_dir:
        os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(data)
        os.replace(tmp_path, filepath)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def utc_now() -> datetime:
    """Default clock: current time in UTC."""
    return datetime.now(timezone.utc)


def get_utc_timestamp(now: Optional[datetime] = None) -> str:
    """
    Get a UTC timestamp in ISO format.

    Args:
        now: Time to format (defaults to the current time)

    Returns:
        ISO formatted timestamp string with a Z suffix instead of +00:00
    """
    now = now or utc_now()
    return now.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def get_date_key(now: Optional[datetime] = None) -> str:
    """Get the UTC calendar date (YYYY-MM-DD) for a point in time."""
    now = now or utc_now()
    return now.astimezone(timezone.utc).date().isoformat()
