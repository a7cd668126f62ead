"""
IMPRO Scoreboard Client

High-level client for control panels and displays: one method per server
operation, plus the latest normalized scoreboard pushed by the server.
"""

import logging
import threading
from typing import Any, Callable, List, Optional

from .connection import ConnectionManager, SendResult
from .normalizer import normalize_snapshot
from ..core.models import ScoreboardState, default_state

logger = logging.getLogger(__name__)


class ScoreboardClient:
    """
    Scoreboard operations on top of a ConnectionManager.

    Every updateState broadcast replaces the local state; the client never
    applies operations locally.
    """

    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self._lock = threading.RLock()
        self._state: Optional[ScoreboardState] = None
        self._listeners: List[Callable[[ScoreboardState], None]] = []
        connection.subscribe("updateState", self._on_update_state)

    @property
    def state(self) -> ScoreboardState:
        """Latest server state, or defaults before the first broadcast."""
        with self._lock:
            return self._state or default_state()

    @property
    def has_state(self) -> bool:
        with self._lock:
            return self._state is not None

    def add_listener(self, callback: Callable[[ScoreboardState], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ScoreboardState], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def close(self) -> None:
        self.connection.unsubscribe("updateState", self._on_update_state)

    def _on_update_state(self, raw: Any = None) -> None:
        state = normalize_snapshot(raw)
        with self._lock:
            self._state = state
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(state)
            except Exception:
                logger.exception("Scoreboard listener failed")

    def _send(self, name: str, payload: Any = None) -> SendResult:
        return self.connection.send(name, payload)

    # ============ Teams and display ============

    def update_team(self, team_id: str, name: Optional[str] = None,
                    color: Optional[str] = None) -> SendResult:
        updates = {}
        if name is not None:
            updates["name"] = name
        if color is not None:
            updates["color"] = color
        return self._send("updateTeam", {"teamId": team_id, "updates": updates})

    def update_score(self, team_id: str, action: float) -> Optional[SendResult]:
        """Add (positive action) or remove (negative) one point. Zero is ignored."""
        if not action:
            return None
        return self._send("updateScore", {"teamId": team_id, "action": 1 if action > 0 else -1})

    def update_penalty(self, team_id: str, penalty_type: str) -> SendResult:
        return self._send("updatePenalty", {"teamId": team_id, "type": penalty_type, "action": "increment"})

    def reset_penalties(self, team_id: str) -> SendResult:
        return self._send("resetPenalties", {"teamId": team_id})

    def reset_all(self) -> SendResult:
        return self._send("resetAll", {})

    def set_scoring_mode(self, mode: str) -> SendResult:
        return self._send("setScoringMode", {"mode": mode})

    def switch_team_emojis(self) -> SendResult:
        return self._send("switchTeamEmojis", {})

    def update_logo(self, data_url: Optional[str]) -> SendResult:
        return self._send("updateLogo", data_url)

    def update_logo_size(self, size: float) -> SendResult:
        return self._send("updateLogoSize", {"size": size})

    def update_text(self, field: str, text: Optional[str]) -> SendResult:
        return self._send("updateText", {"field": field, "text": text})

    def update_text_style(self, target: str, color: Optional[str] = None,
                          size: Optional[float] = None) -> SendResult:
        payload = {"target": target}
        if color is not None:
            payload["color"] = color
        if size is not None:
            payload["size"] = size
        return self._send("updateTextStyle", payload)

    def update_visibility(self, target: str, visible: bool) -> SendResult:
        return self._send("updateVisibility", {"target": target, "visible": visible})

    def update_round_setting(self, target: str, visible: bool) -> SendResult:
        return self._send("updateRoundSetting", {"target": target, "visible": visible})

    # ============ Game and rounds ============

    def start_game(self) -> SendResult:
        return self._send("startGame", {})

    def finish_game(self) -> SendResult:
        return self._send("finishGame", {})

    def start_round(self, config: dict) -> SendResult:
        return self._send("startRound", {"config": config})

    def end_round(self, points: dict, penalties: Optional[dict] = None,
                  notes: Optional[str] = None) -> SendResult:
        payload = {"points": points}
        if penalties is not None:
            payload["penalties"] = penalties
        if notes is not None:
            payload["notes"] = notes
        return self._send("endRound", payload)

    def reset_rounds(self) -> SendResult:
        return self._send("resetRounds", {})

    def create_next_round(self, round_type: str) -> SendResult:
        return self._send("createNextRound", {"type": round_type})

    def set_next_round_draft(self, config: Optional[dict]) -> SendResult:
        return self._send("setNextRoundDraft", {"config": config})

    def enqueue_upcoming(self, config: dict) -> SendResult:
        return self._send("enqueueUpcoming", {"config": config})

    def dequeue_upcoming(self) -> SendResult:
        return self._send("dequeueUpcoming", {})

    # ============ Templates and playlists ============

    def save_template(self, name: str, config: dict, description: Optional[str] = None,
                      tags: Optional[List[str]] = None) -> SendResult:
        payload = {"name": name, "config": config}
        if description is not None:
            payload["description"] = description
        if tags is not None:
            payload["tags"] = list(tags)
        return self._send("saveTemplate", payload)

    def update_template(self, template_id: str, **updates) -> SendResult:
        return self._send("updateTemplate", {"id": template_id, "updates": updates})

    def delete_template(self, template_id: str) -> SendResult:
        return self._send("deleteTemplate", {"id": template_id})

    def create_playlist(self, name: str, template_ids: List[str],
                        description: Optional[str] = None) -> SendResult:
        payload = {"name": name, "rounds": list(template_ids)}
        if description is not None:
            payload["description"] = description
        return self._send("createPlaylist", payload)

    def update_playlist(self, playlist_id: str, **updates) -> SendResult:
        return self._send("updatePlaylist", {"id": playlist_id, "updates": updates})

    def delete_playlist(self, playlist_id: str) -> SendResult:
        return self._send("deletePlaylist", {"id": playlist_id})

    def start_playlist(self, playlist_id: str) -> SendResult:
        return self._send("startPlaylist", {"id": playlist_id})

    def stop_playlist(self) -> SendResult:
        return self._send("stopPlaylist", {})

    def next_in_playlist(self) -> SendResult:
        return self._send("nextInPlaylist", {})

    def previous_in_playlist(self) -> SendResult:
        return self._send("previousInPlaylist", {})

    def advance_playlist(self) -> SendResult:
        """
        Move the active playlist to its next round and start it.

        The server moves the cursor and puts the template in the next-round
        draft; the round itself is then started from that template's config.
        """
        state = self.state
        active = state.rounds.active_playlist
        playlist = state.rounds.find_playlist(active.id) if active else None
        if playlist is None or active.current_index + 1 >= len(playlist.rounds):
            return SendResult.DROPPED
        template = playlist.rounds[active.current_index + 1]
        self._send("nextInPlaylist", {})
        return self._send("startRound", {"config": template.config.template_dict()})

    def request_state(self) -> SendResult:
        return self.connection.send("requestState", {}, queue_if_disconnected=False)
