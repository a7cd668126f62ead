"""
IMPRO Database Module
SQLite-based storage for room snapshots and their mutation log.

Database location:
- Linux: ~/.local/share/impro/impro.db
- macOS: ~/Library/Application Support/impro/impro.db
- Windows: %LOCALAPPDATA%/impro/impro.db
"""

from .database import (
    Database,
    MemorySnapshotStore,
    RoomSnapshotStore,
    get_db,
    get_data_dir,
    get_default_db_path,
)

__all__ = [
    "Database",
    "MemorySnapshotStore",
    "RoomSnapshotStore",
    "get_db",
    "get_data_dir",
    "get_default_db_path",
]
