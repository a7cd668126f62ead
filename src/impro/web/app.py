"""
IMPRO Web Application

Flask application with Socket.IO events for real-time scoreboard sync, plus a
small JSON API.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit, join_room

from .. import __version__
from ..config import Config, get_config
from ..core.operations import OPERATIONS
from ..core.state import RoomRegistry
from ..db import Database, MemorySnapshotStore, RoomSnapshotStore, get_db

logger = logging.getLogger(__name__)

socketio = SocketIO(cors_allowed_origins="*")

# Set by create_app
_registry: Optional[RoomRegistry] = None
_db = None
_default_room = "default"

# sid -> room name
_client_rooms: Dict[str, str] = {}
_client_rooms_lock = threading.Lock()


def get_registry() -> Optional[RoomRegistry]:
    """Get the room registry of the running app."""
    return _registry


def room_channel(room: str) -> str:
    """Socket.IO room that the clients of a scoreboard room join."""
    return f"room:{room}"


def build_registry(config: Config) -> RoomRegistry:
    """Create a room registry backed by SQLite, or by memory if storage is off."""
    global _db
    if config.storage.enabled:
        db_path = config.storage.db_path
        db = Database(Path(db_path)) if db_path else get_db()
        _db = db

        def store_factory(room):
            return RoomSnapshotStore(db, room)
    else:
        _db = None

        def store_factory(room):
            return MemorySnapshotStore()

    return RoomRegistry(
        store_factory=store_factory,
        team_names={"team1": config.team1.name, "team2": config.team2.name},
        team_colors={"team1": config.team1.color, "team2": config.team2.color},
        seed_templates=config.storage.seed_templates,
    )


def _resolve_room(auth: Any) -> str:
    """Room from the connect auth payload, then the query string, then the default."""
    room = auth.get("room") if isinstance(auth, dict) else None
    if not isinstance(room, str) or not room.strip():
        room = request.args.get("room", "")
    room = room.strip()
    return room or _default_room


def _current_room() -> str:
    with _client_rooms_lock:
        return _client_rooms.get(request.sid, _default_room)


def _broadcast_state(room: str, snapshot: dict) -> None:
    socketio.emit("updateState", snapshot, to=room_channel(room))


def handle_connect(auth=None):
    """Join the client to its room and send it the current snapshot."""
    room = _resolve_room(auth)
    with _client_rooms_lock:
        _client_rooms[request.sid] = room
    join_room(room_channel(room))
    logger.info(f"Client {request.sid} connected to room '{room}'")
    emit("updateState", _registry.get(room).snapshot())


def handle_disconnect(reason=None):
    with _client_rooms_lock:
        room = _client_rooms.pop(request.sid, None)
    logger.info(f"Client {request.sid} left room '{room}' ({reason or 'disconnect'})")


def handle_request_state(data=None):
    emit("updateState", _registry.get(_current_room()).snapshot())


def make_operation_handler(name: str):
    """
    Socket.IO handler for one named operation.

    Accepted operations are broadcast to the whole room by the registry
    listener. A rejected one only re-sends the unchanged snapshot to the
    requesting client.
    """
    def handler(data=None):
        store = _registry.get(_current_room())
        applied = store.apply(name, data)
        if not applied:
            emit("updateState", store.snapshot())
        return {"applied": applied}

    handler.__name__ = f"handle_{name}"
    return handler


def register_socketio_handlers() -> None:
    """Register connection handlers and one handler per operation."""
    socketio.on_event("connect", handle_connect)
    socketio.on_event("disconnect", handle_disconnect)
    socketio.on_event("requestState", handle_request_state)
    for name in OPERATIONS:
        socketio.on_event(name, make_operation_handler(name))


def create_app(config: Optional[Config] = None, registry: Optional[RoomRegistry] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Configuration (defaults to the global config)
        registry: Room registry to serve. Built from config if omitted;
            the room event routes need that, since they read the database.

    Returns:
        Configured Flask application
    """
    global _registry, _default_room, _db

    config = config or get_config()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = "impro-secret-key"
    app.config["DEBUG"] = config.web.debug

    if registry is None:
        registry = build_registry(config)
    else:
        # No database behind a caller-supplied registry
        _db = None
    _registry = registry
    _default_room = config.default_room
    _registry.add_listener(_broadcast_state)

    socketio.init_app(app, cors_allowed_origins=config.web.cors_allowed_origins)
    register_socketio_handlers()

    # ============ API Routes ============

    @app.route("/api/health", methods=["GET"])
    def health():
        """Liveness check."""
        return jsonify({
            "status": "ok",
            "version": __version__,
            "rooms": _registry.rooms(),
            "storage": _db is not None,
        })

    @app.route("/api/state", methods=["GET"])
    def get_state():
        """Get the current snapshot of a room."""
        room = request.args.get("room") or _default_room
        return jsonify(_registry.get(room).snapshot())

    @app.route("/api/state/<operation>", methods=["POST"])
    def apply_operation(operation):
        """Apply a named operation with the JSON body as payload."""
        if operation not in OPERATIONS:
            return jsonify({"error": f"Unknown operation: {operation}"}), 404

        room = request.args.get("room") or _default_room
        store = _registry.get(room)
        applied = store.apply(operation, request.get_json(silent=True))
        return jsonify({"status": "ok", "applied": applied, "state": store.snapshot()})

    @app.route("/api/rooms", methods=["GET"])
    def list_rooms():
        """Rooms that are live in this process, plus persisted ones."""
        persisted = [r.to_dict() for r in _db.list_rooms()] if _db is not None else []
        return jsonify({"active": _registry.rooms(), "persisted": persisted})

    @app.route("/api/rooms/<room>/events", methods=["GET"])
    def room_events(room):
        """Recent operations applied to a room."""
        if _db is None:
            return jsonify({"error": "Storage is disabled"}), 404
        limit = request.args.get("limit", 50, type=int)
        events = _db.get_room_events(room, limit=limit)
        return jsonify({"room": room, "events": [e.to_dict() for e in events]})

    return app
