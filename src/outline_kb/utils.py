"""Small helpers shared across the storage layer."""

import time
import uuid


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def human_readable_size(size_bytes: int) -> str:
    """Format a byte count as B/KB/MB/GB with one decimal."""
    size = float(size_bytes)
    if size < 1024:
        return f"{size_bytes} B"
    for unit in ("KB", "MB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.1f} GB"
