"""
Utility helpers for the SpectraView pipeline.

Includes clock, identifier and overflow-key helpers.
"""

import time
import uuid
from typing import Callable

Clock = Callable[[], int]

EVENT_KEY_PREFIX = "event_"
BATCH_KEY_PREFIX = "batch_"

USER_AGENT = "spectraview-python"


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def generate_session_id() -> str:
    """Generate a UUID string for a new recording session."""
    return str(uuid.uuid4())


def event_key(timestamp: int) -> str:
    """Overflow key for a single mirrored event: ``event_<timestamp>_<random>``."""
    return f"{EVENT_KEY_PREFIX}{timestamp}_{uuid.uuid4().hex[:12]}"


def batch_key(timestamp: int) -> str:
    """Overflow key for a failed batch: ``batch_<timestamp>``."""
    return f"{BATCH_KEY_PREFIX}{timestamp}"


def is_event_key(key: str) -> bool:
    return key.startswith(EVENT_KEY_PREFIX)


def is_batch_key(key: str) -> bool:
    return key.startswith(BATCH_KEY_PREFIX)
