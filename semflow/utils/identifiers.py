"""ID generation and timestamp utilities."""

import time
import uuid
from datetime import datetime, timezone


def generate_frame_id() -> str:
    """Generate a unique trace frame ID (UUID4)."""
    return str(uuid.uuid4())


def generate_response_id() -> str:
    """Generate a unique ID for synthetic chat responses (UUID4)."""
    return str(uuid.uuid4())


def generate_function_id() -> str:
    """Generate an ID for ad-hoc function definitions offered to agents."""
    return uuid.uuid4().hex[:16]


def utc_timestamp() -> str:
    """Generate an ISO8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def now_millis() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def readable_elapsed(elapsed_millis: int) -> str:
    """Render an elapsed duration the way the trace viewer shows it."""
    if elapsed_millis < 1000:
        return f"{elapsed_millis} ms"
    seconds = elapsed_millis / 1000
    if seconds < 60:
        return f"{seconds:.1f} seconds"
    return f"{seconds / 60:.1f} minutes"
