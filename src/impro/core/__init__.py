"""IMPRO Core Components"""

from .models import ScoreboardState, RoundState, RoundConfig, default_state
from .operations import OPERATIONS
from .state import ScoreboardStore, RoomRegistry

__all__ = [
    "ScoreboardState",
    "RoundState",
    "RoundConfig",
    "default_state",
    "OPERATIONS",
    "ScoreboardStore",
    "RoomRegistry",
]
