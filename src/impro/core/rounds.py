"""
Round Lifecycle

Game status (notStarted -> live -> finished), the current round, round
history, templates, playlists and the upcoming-round queue.

Every transition is a function (state, payload) -> state. A transition whose
precondition does not hold returns the state it was given, unchanged; the
store treats that as a no-op.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from .models import (
    ROUND_SETTING_KEYS,
    ROUND_TYPES,
    ActivePlaylist,
    CompletedRound,
    RoundConfig,
    RoundPlaylist,
    RoundTemplate,
    ScoreboardState,
    as_mapping,
    as_optional_str,
    decode_round_config,
    decode_tags,
    total_points,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _payload_id(payload: Any) -> Optional[str]:
    """Id-only events accept either {"id": ...} or a bare id string."""
    if isinstance(payload, str):
        return payload
    value = as_mapping(payload).get("id")
    return value if isinstance(value, str) else None


def apply_round_totals(state: ScoreboardState) -> ScoreboardState:
    """In round scoring mode, team scores are the history totals."""
    if state.scoring_mode != "round":
        return state
    totals = total_points(state.rounds.history)
    for team_id, total in totals.items():
        team = state.team(team_id)
        if team.score != total:
            state = state.with_team(replace(team, score=total))
    return state


# ============ Game status ============

def start_game(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    rounds = state.rounds
    if not rounds.is_between_rounds or rounds.game_status != "notStarted":
        return state
    logger.info("Match started")
    return state.with_rounds(game_status="live")


def finish_game(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    rounds = state.rounds
    if rounds.game_status != "live" or rounds.in_progress:
        return state
    logger.info(f"Match finished after {len(rounds.history)} rounds")
    return state.with_rounds(game_status="finished")


# ============ Rounds ============

def start_round(state: ScoreboardState, payload: Any) -> ScoreboardState:
    """Start a round; the number is always len(history) + 1."""
    rounds = state.rounds
    if rounds.game_status != "live" or rounds.in_progress:
        return state
    config = decode_round_config(as_mapping(payload).get("config"), rounds.next_round_number)
    if config is None:
        return state
    logger.info(f"Round {config.number} started: {config.type}")
    return state.with_rounds(current=config, is_between_rounds=False, next_round_draft=None)


def end_round(state: ScoreboardState, payload: Any) -> ScoreboardState:
    rounds = state.rounds
    if not rounds.in_progress:
        return state
    entry = CompletedRound.from_results(rounds.current, payload)
    state = state.with_rounds(
        current=None,
        is_between_rounds=True,
        history=rounds.history + (entry,),
    )
    logger.info(f"Round {entry.config.number} ended with points {dict(entry.points)}")
    return apply_round_totals(state)


def reset_rounds(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    state = state.with_rounds(current=None, is_between_rounds=True, history=())
    return apply_round_totals(state)


def create_next_round(state: ScoreboardState, payload: Any) -> ScoreboardState:
    round_type = payload if isinstance(payload, str) else as_mapping(payload).get("type")
    if round_type not in ROUND_TYPES:
        return state
    draft = RoundConfig(number=state.rounds.next_round_number, type=round_type)
    return state.with_rounds(next_round_draft=draft)


def update_round_setting(state: ScoreboardState, payload: Any) -> ScoreboardState:
    payload = as_mapping(payload)
    attr = ROUND_SETTING_KEYS.get(payload.get("target"))
    visible = payload.get("visible")
    if attr is None or not isinstance(visible, bool):
        return state
    return state.with_rounds(settings=replace(state.rounds.settings, **{attr: visible}))


# ============ Drafts and upcoming queue ============

def set_next_round_draft(state: ScoreboardState, payload: Any) -> ScoreboardState:
    payload = as_mapping(payload)
    if "config" not in payload:
        return state
    if payload["config"] is None:
        return state.with_rounds(next_round_draft=None)
    draft = decode_round_config(payload["config"], state.rounds.next_round_number)
    if draft is None:
        return state
    return state.with_rounds(next_round_draft=draft)


def enqueue_upcoming(state: ScoreboardState, payload: Any) -> ScoreboardState:
    rounds = state.rounds
    config = decode_round_config(as_mapping(payload).get("config"),
                                 rounds.next_round_number + len(rounds.upcoming))
    if config is None:
        return state
    return state.with_rounds(upcoming=rounds.upcoming + (config,))


def dequeue_upcoming(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    if not state.rounds.upcoming:
        return state
    return state.with_rounds(upcoming=state.rounds.upcoming[1:])


# ============ Templates ============

def _template_fields(payload: Any, template: Optional[RoundTemplate] = None) -> Optional[dict]:
    """Decode name/description/tags/config for a new or updated template."""
    payload = as_mapping(payload)
    fields = {}
    if "name" in payload or template is None:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        fields["name"] = name.strip()
    if "config" in payload or template is None:
        config = decode_round_config(payload.get("config"))
        if config is None:
            return None
        fields["config"] = config
    if "description" in payload:
        fields["description"] = as_optional_str(payload.get("description"))
    if "tags" in payload:
        fields["tags"] = decode_tags(payload.get("tags"))
    return fields


def save_template(state: ScoreboardState, payload: Any) -> ScoreboardState:
    fields = _template_fields(payload)
    if fields is None:
        return state
    template = RoundTemplate(id=str(uuid.uuid4()), **fields)
    logger.info(f"Template saved: {template.name}")
    return state.with_rounds(templates=state.rounds.templates + (template,))


def update_template(state: ScoreboardState, payload: Any) -> ScoreboardState:
    template = state.rounds.find_template(_payload_id(payload))
    if template is None:
        return state
    fields = _template_fields(as_mapping(payload).get("updates"), template)
    if not fields:
        return state
    updated = replace(template, **fields)
    templates = tuple(updated if t.id == template.id else t for t in state.rounds.templates)
    return state.with_rounds(templates=templates)


def delete_template(state: ScoreboardState, payload: Any) -> ScoreboardState:
    template = state.rounds.find_template(_payload_id(payload))
    if template is None:
        return state
    return state.with_rounds(templates=tuple(t for t in state.rounds.templates if t.id != template.id))


# ============ Playlists ============

def _resolve_templates(state: ScoreboardState, template_ids: Any):
    if not isinstance(template_ids, (list, tuple)):
        return ()
    found = (state.rounds.find_template(template_id) for template_id in template_ids)
    return tuple(template for template in found if template is not None)


def _draft_from(state: ScoreboardState, template: RoundTemplate) -> RoundConfig:
    return replace(template.config, number=state.rounds.next_round_number)


def create_playlist(state: ScoreboardState, payload: Any) -> ScoreboardState:
    payload = as_mapping(payload)
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        return state
    timestamp = _now()
    playlist = RoundPlaylist(
        id=str(uuid.uuid4()),
        name=name.strip(),
        rounds=_resolve_templates(state, payload.get("rounds")),
        description=as_optional_str(payload.get("description")),
        created=timestamp,
        last_modified=timestamp,
    )
    logger.info(f"Playlist created: {playlist.name} ({len(playlist.rounds)} rounds)")
    return state.with_rounds(playlists=state.rounds.playlists + (playlist,))


def update_playlist(state: ScoreboardState, payload: Any) -> ScoreboardState:
    playlist = state.rounds.find_playlist(_payload_id(payload))
    if playlist is None:
        return state
    updates = as_mapping(as_mapping(payload).get("updates"))
    fields = {}
    if "name" in updates:
        name = updates["name"]
        if not isinstance(name, str) or not name.strip():
            return state
        fields["name"] = name.strip()
    if "description" in updates:
        fields["description"] = as_optional_str(updates["description"])
    if "rounds" in updates:
        fields["rounds"] = _resolve_templates(state, updates["rounds"])
    if not fields:
        return state

    updated = replace(playlist, last_modified=_now(), **fields)
    playlists = tuple(updated if p.id == playlist.id else p for p in state.rounds.playlists)
    state = state.with_rounds(playlists=playlists)

    active = state.rounds.active_playlist
    if active and active.id == playlist.id and active.current_index >= len(updated.rounds):
        state = state.with_rounds(active_playlist=None)
    return state


def delete_playlist(state: ScoreboardState, payload: Any) -> ScoreboardState:
    playlist = state.rounds.find_playlist(_payload_id(payload))
    if playlist is None:
        return state
    rounds = state.rounds
    active = rounds.active_playlist
    return state.with_rounds(
        playlists=tuple(p for p in rounds.playlists if p.id != playlist.id),
        active_playlist=None if active and active.id == playlist.id else active,
    )


def start_playlist(state: ScoreboardState, payload: Any) -> ScoreboardState:
    playlist = state.rounds.find_playlist(_payload_id(payload))
    if playlist is None or not playlist.rounds:
        return state
    logger.info(f"Playlist started: {playlist.name}")
    return state.with_rounds(
        active_playlist=ActivePlaylist(id=playlist.id, current_index=0),
        next_round_draft=_draft_from(state, playlist.rounds[0]),
    )


def stop_playlist(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    if state.rounds.active_playlist is None:
        return state
    return state.with_rounds(active_playlist=None)


def _move_cursor(state: ScoreboardState, step: int) -> ScoreboardState:
    active = state.rounds.active_playlist
    if active is None:
        return state
    playlist = state.rounds.find_playlist(active.id)
    if playlist is None:
        return state
    index = active.current_index + step
    if index < 0 or index >= len(playlist.rounds):
        return state
    return state.with_rounds(
        active_playlist=replace(active, current_index=index),
        next_round_draft=_draft_from(state, playlist.rounds[index]),
    )


def next_in_playlist(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    return _move_cursor(state, 1)


def previous_in_playlist(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    return _move_cursor(state, -1)
