"""IMPRO Client Components"""

from .connection import (
    ConnectionManager,
    ConnectionState,
    ConnectionTimeout,
    QueuedOperation,
    SendResult,
    backoff_delay,
)
from .normalizer import normalize_snapshot
from .scoreboard import ScoreboardClient

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionTimeout",
    "QueuedOperation",
    "SendResult",
    "backoff_delay",
    "normalize_snapshot",
    "ScoreboardClient",
]
