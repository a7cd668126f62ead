"""
IMPRO State Management

One authoritative scoreboard per room, with thread-safe mutations and change
notifications.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

from .models import ScoreboardState, default_state
from .operations import OPERATIONS
from .templates import DEFAULT_TEMPLATES

logger = logging.getLogger(__name__)

# (room, snapshot) -> None
StateListener = Callable[[str, dict], None]


class ScoreboardStore:
    """
    Authoritative state container for a single room.

    Every mutation is a named operation from OPERATIONS. Operations run one at
    a time under a re-entrant lock; an accepted one bumps the version, is
    persisted, and is broadcast to listeners before the lock is released, so
    listeners see snapshots in mutation order.
    """

    def __init__(self, room: str, initial: Optional[ScoreboardState] = None,
                 snapshot_store=None, seed_templates: bool = True):
        self.room = room
        self._lock = threading.RLock()
        self._snapshot_store = snapshot_store
        self._listeners: List[StateListener] = []
        self._version = 0
        self._state = initial or default_state()

        if snapshot_store is not None:
            stored = snapshot_store.load()
            if stored is not None:
                self._state = ScoreboardState.from_dict(stored)
                self._version = getattr(snapshot_store, "version", 0)
                logger.info(f"Room '{room}' restored at version {self._version}")

        if seed_templates and not self._state.rounds.templates:
            self._state = self._state.with_rounds(templates=DEFAULT_TEMPLATES)

    @property
    def state(self) -> ScoreboardState:
        """Current snapshot. Immutable, so safe to hand out."""
        with self._lock:
            return self._state

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def snapshot(self) -> dict:
        """Fresh serialized copy of the current state."""
        with self._lock:
            return self._state.to_dict()

    def apply(self, name: str, payload: Any = None) -> bool:
        """
        Apply a named operation.

        Args:
            name: Operation (event) name, e.g. "updateScore"
            payload: Raw payload as received from the client

        Returns:
            True if the state changed, False for a rejected or unknown
            operation
        """
        operation = OPERATIONS.get(name)
        if operation is None:
            logger.debug(f"Unknown operation '{name}' ignored")
            return False

        with self._lock:
            try:
                new_state = operation(self._state, payload)
            except Exception:
                logger.exception(f"Operation '{name}' failed in room '{self.room}'")
                return False

            if new_state is self._state:
                logger.debug(f"Operation '{name}' rejected in room '{self.room}': {payload!r}")
                return False

            self._state = new_state
            self._version += 1
            snapshot = new_state.to_dict()
            self._persist(snapshot, name, payload)
            self._notify_listeners(snapshot)
            return True

    def _persist(self, snapshot: dict, action: str, payload: Any) -> None:
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(snapshot, self._version, action, payload)
        except Exception:
            logger.exception(f"Failed to persist room '{self.room}' at version {self._version}")

    def add_listener(self, callback: StateListener) -> None:
        """Add a state change listener."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: StateListener) -> None:
        """Remove a state change listener."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify_listeners(self, snapshot: dict) -> None:
        for callback in list(self._listeners):
            try:
                callback(self.room, snapshot)
            except Exception:
                logger.exception(f"State listener failed for room '{self.room}'")


class RoomRegistry:
    """Creates one ScoreboardStore per room on first use."""

    def __init__(self, store_factory: Optional[Callable[[str], Any]] = None,
                 team_names: Optional[Mapping[str, str]] = None,
                 team_colors: Optional[Mapping[str, str]] = None,
                 seed_templates: bool = True):
        """
        Args:
            store_factory: room -> durable snapshot store (or None for none)
            team_names: Initial team names for new rooms
            team_colors: Initial team colors for new rooms
            seed_templates: Seed default templates into rooms without any
        """
        self._lock = threading.RLock()
        self._stores: Dict[str, ScoreboardStore] = {}
        self._listeners: List[StateListener] = []
        self._store_factory = store_factory
        self._team_names = team_names
        self._team_colors = team_colors
        self._seed_templates = seed_templates

    def get(self, room: str) -> ScoreboardStore:
        with self._lock:
            store = self._stores.get(room)
            if store is None:
                snapshot_store = self._store_factory(room) if self._store_factory else None
                store = ScoreboardStore(
                    room,
                    initial=default_state(self._team_names, self._team_colors),
                    snapshot_store=snapshot_store,
                    seed_templates=self._seed_templates,
                )
                for callback in self._listeners:
                    store.add_listener(callback)
                self._stores[room] = store
                logger.info(f"Room '{room}' created")
            return store

    def rooms(self) -> List[str]:
        with self._lock:
            return sorted(self._stores)

    def apply(self, room: str, name: str, payload: Any = None) -> bool:
        return self.get(room).apply(name, payload)

    def add_listener(self, callback: StateListener) -> None:
        """Listen to every room, including rooms created later."""
        with self._lock:
            self._listeners.append(callback)
            for store in self._stores.values():
                store.add_listener(callback)

    def remove_listener(self, callback: StateListener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)
            for store in self._stores.values():
                store.remove_listener(callback)
