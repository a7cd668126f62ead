"""
IMPRO Database - SQLite storage for room snapshots and their mutation log.

Database is stored in a platform-appropriate data directory:
- Linux: ~/.local/share/impro/impro.db
- macOS: ~/Library/Application Support/impro/impro.db
- Windows: %LOCALAPPDATA%/impro/impro.db

The database auto-creates and self-heals if corrupted.
"""

import os
import sys
import sqlite3
import json
import shutil
import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Deque
from dataclasses import dataclass, asdict
from contextlib import contextmanager

logger = logging.getLogger(__name__)


def get_data_dir() -> Path:
    """Get platform-appropriate data directory for IMPRO."""
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        # Linux/Unix - follow XDG spec
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "impro"


def get_default_db_path() -> Path:
    """Get the default database path."""
    return get_data_dir() / "impro.db"


@dataclass
class RoomSnapshot:
    """Latest persisted scoreboard of one room."""
    room: str = ""
    version: int = 0
    state: Optional[Dict[str, Any]] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RoomEvent:
    """One accepted operation, as recorded in the mutation log."""
    id: Optional[int] = None
    room: str = ""
    version: int = 0
    action: str = ""
    payload: str = "null"  # JSON
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Database:
    """SQLite database manager for IMPRO with self-healing capabilities."""

    # Current schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else get_default_db_path()
        self._ensure_data_dir()
        self._init_db()

    def _ensure_data_dir(self):
        """Create data directory if it doesn't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Data directory: {self.db_path.parent}")

    def _check_db_health(self) -> bool:
        """Check if database is healthy and accessible."""
        if not self.db_path.exists():
            return False

        try:
            conn = sqlite3.connect(str(self.db_path))
            try:
                result = conn.execute("PRAGMA integrity_check").fetchone()
            finally:
                conn.close()
            return result[0] == "ok"
        except sqlite3.DatabaseError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def _backup_corrupted_db(self):
        """Backup corrupted database before recreation."""
        if not self.db_path.exists():
            return
        backup_path = self.db_path.with_suffix(
            f".corrupted.{datetime.now().strftime('%Y%m%d_%H%M%S')}.db"
        )
        try:
            shutil.move(str(self.db_path), str(backup_path))
            logger.warning(f"Corrupted database backed up to: {backup_path}")
        except OSError as e:
            logger.error(f"Failed to backup corrupted database: {e}")
            self.db_path.unlink(missing_ok=True)

    def _init_db(self):
        """Initialize database schema with self-healing."""
        if self.db_path.exists() and not self._check_db_health():
            logger.warning("Database corruption detected, recreating...")
            self._backup_corrupted_db()

        try:
            self._create_schema()
            logger.info(f"Database initialized at {self.db_path}")
        except sqlite3.DatabaseError as e:
            logger.error(f"Failed to initialize database: {e}")
            # Last resort - move it aside and retry
            self._backup_corrupted_db()
            self._create_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_conn(self):
        """Context manager for database connections with auto-recovery."""
        try:
            conn = self._connect()
        except sqlite3.DatabaseError as e:
            logger.error(f"Database connection error: {e}")
            if "malformed" not in str(e).lower() and "corrupt" not in str(e).lower():
                raise
            logger.warning("Attempting database recovery...")
            self._backup_corrupted_db()
            self._create_schema()
            conn = self._connect()

        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            conn.close()

    def _create_schema(self):
        """Create database schema."""
        conn = sqlite3.connect(str(self.db_path))
        cursor = conn.cursor()

        try:
            # Schema version table for future migrations
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Latest snapshot per room
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS room_snapshots (
                    room TEXT PRIMARY KEY,
                    version INTEGER NOT NULL DEFAULT 0,
                    state TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Append-only log of accepted operations
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS room_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    room TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    payload TEXT DEFAULT 'null',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_room ON room_events(room, id)")

            cursor.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,)
            )

            conn.commit()
            logger.debug("Database schema initialized")
        finally:
            conn.close()

    # =====================
    # Snapshots
    # =====================

    def load_snapshot(self, room: str) -> Optional[RoomSnapshot]:
        """Get the latest snapshot of a room, or None if it was never saved."""
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT room, version, state, updated_at FROM room_snapshots WHERE room = ?",
                (room,)
            ).fetchone()

        if row is None:
            return None
        try:
            state = json.loads(row["state"])
        except ValueError:
            logger.error(f"Stored snapshot for room '{room}' is not valid JSON, ignoring it")
            return None
        return RoomSnapshot(room=row["room"], version=row["version"],
                            state=state, updated_at=row["updated_at"])

    def save_snapshot(self, room: str, version: int, state: Dict[str, Any],
                      action: Optional[str] = None, payload: Any = None) -> None:
        """
        Store a room's snapshot, and log the operation that produced it.

        Args:
            room: Room name
            version: Store version after the operation
            state: Serialized scoreboard
            action: Operation name to record in room_events (skipped if None)
            payload: Operation payload to record alongside the action
        """
        now = datetime.now().isoformat()
        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO room_snapshots (room, version, state, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(room) DO UPDATE SET
                    version = excluded.version,
                    state = excluded.state,
                    updated_at = excluded.updated_at
            """, (room, version, json.dumps(state), now))

            if action:
                conn.execute("""
                    INSERT INTO room_events (room, version, action, payload, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (room, version, action, json.dumps(payload, default=str), now))

    def list_rooms(self) -> List[RoomSnapshot]:
        """All persisted rooms, most recently updated first (without state)."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT room, version, updated_at FROM room_snapshots ORDER BY updated_at DESC"
            ).fetchall()
        return [RoomSnapshot(room=r["room"], version=r["version"], updated_at=r["updated_at"])
                for r in rows]

    def delete_room(self, room: str) -> bool:
        """Delete a room's snapshot and its event log."""
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM room_snapshots WHERE room = ?", (room,))
            conn.execute("DELETE FROM room_events WHERE room = ?", (room,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted room {room}")
        return deleted

    # =====================
    # Event log
    # =====================

    def get_room_events(self, room: str, limit: int = 50) -> List[RoomEvent]:
        """Most recent events of a room, oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT * FROM (
                    SELECT * FROM room_events WHERE room = ? ORDER BY id DESC LIMIT ?
                ) ORDER BY id ASC
            """, (room, limit)).fetchall()
        return [RoomEvent(**dict(row)) for row in rows]


class RoomSnapshotStore:
    """Durable store for a single room, backed by the shared Database."""

    def __init__(self, db: Database, room: str):
        self.db = db
        self.room = room
        self.version = 0

    def load(self) -> Optional[Dict[str, Any]]:
        snapshot = self.db.load_snapshot(self.room)
        if snapshot is None:
            return None
        self.version = snapshot.version
        return snapshot.state

    def save(self, snapshot: Dict[str, Any], version: int = 0,
             action: Optional[str] = None, payload: Any = None) -> None:
        self.db.save_snapshot(self.room, version, snapshot, action, payload)
        self.version = version


class MemorySnapshotStore:
    """In-process store with the same interface, used when storage is disabled.

    Only the most recent MAX_EVENTS action names are kept.
    """

    MAX_EVENTS = 100

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: Optional[str] = None
        self.version = 0
        self.events: Deque[str] = deque(maxlen=self.MAX_EVENTS)

    def load(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return json.loads(self._snapshot) if self._snapshot else None

    def save(self, snapshot: Dict[str, Any], version: int = 0,
             action: Optional[str] = None, payload: Any = None) -> None:
        with self._lock:
            self._snapshot = json.dumps(snapshot)
            self.version = version
            if action:
                self.events.append(action)


# Global database instance
_db_instance: Optional[Database] = None


def get_db(db_path: Optional[Path] = None) -> Database:
    """Get or create the global database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database(db_path)
    return _db_instance
