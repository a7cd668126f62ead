"""
IMPRO Operations

Team, score and display mutations, plus the registry of every named
operation the store accepts.

Like the round transitions, each operation is (state, payload) -> state and
returns its input unchanged when the payload is rejected.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict

from . import rounds
from .models import (
    PENALTY_TYPES,
    SCORING_MODES,
    TEAM_IDS,
    Penalties,
    ScoreboardState,
    as_mapping,
    default_state,
)

logger = logging.getLogger(__name__)

Operation = Callable[[ScoreboardState, Any], ScoreboardState]

TEXT_FIELDS = {"titleText": "title_text", "footerText": "footer_text"}
TEXT_STYLE_TARGETS = {"title": "title_text", "footer": "footer_text"}
VISIBILITY_TARGETS = {"score": "show_score", "penalties": "show_penalties", "emojis": "show_emojis"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _team_id(payload: Any):
    team_id = as_mapping(payload).get("teamId")
    return team_id if team_id in TEAM_IDS else None


# ============ Teams ============

def update_team(state: ScoreboardState, payload: Any) -> ScoreboardState:
    """Rename and/or recolor a team. A blank name rejects the whole update."""
    team_id = _team_id(payload)
    if team_id is None:
        return state
    updates = as_mapping(as_mapping(payload).get("updates"))
    changes = {}

    if "name" in updates:
        name = updates["name"]
        if not isinstance(name, str) or not name.strip():
            return state
        changes["name"] = name.strip()
    if isinstance(updates.get("color"), str):
        changes["color"] = updates["color"]

    if not changes:
        return state
    return state.with_team(replace(state.team(team_id), **changes))


def update_score(state: ScoreboardState, payload: Any) -> ScoreboardState:
    """
    Add or subtract one point; only the sign of the action counts.

    Manual scoring only. In round mode scores are the history totals.
    """
    if state.scoring_mode != "manual":
        return state
    team_id = _team_id(payload)
    action = as_mapping(payload).get("action")
    if team_id is None or not _is_number(action) or action == 0:
        return state
    team = state.team(team_id)
    score = max(0, team.score + (1 if action > 0 else -1))
    if score == team.score:
        return state
    return state.with_team(replace(team, score=score))


def update_penalty(state: ScoreboardState, payload: Any) -> ScoreboardState:
    team_id = _team_id(payload)
    payload = as_mapping(payload)
    penalty_type = payload.get("type")
    if team_id is None or penalty_type not in PENALTY_TYPES:
        return state
    if payload.get("action", "increment") != "increment":
        return state
    team = state.team(team_id)
    penalties = replace(team.penalties, **{penalty_type: getattr(team.penalties, penalty_type) + 1})
    return state.with_team(replace(team, penalties=penalties))


def reset_penalties(state: ScoreboardState, payload: Any) -> ScoreboardState:
    team_id = _team_id(payload)
    if team_id is None:
        return state
    return state.with_team(replace(state.team(team_id), penalties=Penalties()))


def reset_all(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    """
    Restart the match.

    Team names and colors, the scoring mode, the template and playlist
    library and the round display settings survive. Everything else goes
    back to its initial value.
    """
    fresh = default_state(
        team_names={team_id: state.team(team_id).name for team_id in TEAM_IDS},
        team_colors={team_id: state.team(team_id).color for team_id in TEAM_IDS},
    )
    logger.info("Match reset")
    return replace(fresh, scoring_mode=state.scoring_mode).with_rounds(
        templates=state.rounds.templates,
        playlists=state.rounds.playlists,
        settings=state.rounds.settings,
    )


def set_scoring_mode(state: ScoreboardState, payload: Any) -> ScoreboardState:
    mode = payload if isinstance(payload, str) else as_mapping(payload).get("mode")
    if mode not in SCORING_MODES:
        return state
    if mode != state.scoring_mode:
        state = replace(state, scoring_mode=mode)
    return rounds.apply_round_totals(state)


def switch_team_emojis(state: ScoreboardState, payload: Any = None) -> ScoreboardState:
    """team1 alternates hand/fist and team2 always gets the other one."""
    emoji1 = "fist" if state.team1.emoji == "hand" else "hand"
    emoji2 = "fist" if emoji1 == "hand" else "hand"
    state = state.with_team(replace(state.team1, emoji=emoji1))
    return state.with_team(replace(state.team2, emoji=emoji2))


# ============ Display ============

def update_logo(state: ScoreboardState, payload: Any) -> ScoreboardState:
    if isinstance(payload, dict):
        payload = payload.get("logoUrl")
    if payload is not None and not isinstance(payload, str):
        return state
    return replace(state, logo_url=payload or None)


def update_logo_size(state: ScoreboardState, payload: Any) -> ScoreboardState:
    size = as_mapping(payload).get("size")
    if not _is_number(size) or size <= 0:
        return state
    return replace(state, logo_size=size)


def update_text(state: ScoreboardState, payload: Any) -> ScoreboardState:
    payload = as_mapping(payload)
    attr = TEXT_FIELDS.get(payload.get("field"))
    if attr is None or "text" not in payload:
        return state
    text = payload["text"]
    if text is not None and not isinstance(text, str):
        return state
    return replace(state, **{attr: (text or "").strip() or None})


def update_text_style(state: ScoreboardState, payload: Any) -> ScoreboardState:
    payload = as_mapping(payload)
    prefix = TEXT_STYLE_TARGETS.get(payload.get("target"))
    if prefix is None:
        return state
    changes = {}
    if isinstance(payload.get("color"), str):
        changes[prefix + "_color"] = payload["color"]
    size = payload.get("size")
    if _is_number(size) and size > 0:
        changes[prefix + "_size"] = size
    if not changes:
        return state
    return replace(state, **changes)


def update_visibility(state: ScoreboardState, payload: Any) -> ScoreboardState:
    payload = as_mapping(payload)
    attr = VISIBILITY_TARGETS.get(payload.get("target"))
    visible = payload.get("visible")
    if attr is None or not isinstance(visible, bool):
        return state
    return replace(state, **{attr: visible})


# Socket.IO event name -> operation
OPERATIONS: Dict[str, Operation] = {
    "updateTeam": update_team,
    "updateScore": update_score,
    "updatePenalty": update_penalty,
    "resetPenalties": reset_penalties,
    "resetAll": reset_all,
    "setScoringMode": set_scoring_mode,
    "switchTeamEmojis": switch_team_emojis,
    "updateLogo": update_logo,
    "updateLogoSize": update_logo_size,
    "updateText": update_text,
    "updateTextStyle": update_text_style,
    "updateVisibility": update_visibility,
    "updateRoundSetting": rounds.update_round_setting,
    "startGame": rounds.start_game,
    "finishGame": rounds.finish_game,
    "startRound": rounds.start_round,
    "endRound": rounds.end_round,
    "resetRounds": rounds.reset_rounds,
    "createNextRound": rounds.create_next_round,
    "setNextRoundDraft": rounds.set_next_round_draft,
    "enqueueUpcoming": rounds.enqueue_upcoming,
    "dequeueUpcoming": rounds.dequeue_upcoming,
    "saveTemplate": rounds.save_template,
    "updateTemplate": rounds.update_template,
    "deleteTemplate": rounds.delete_template,
    "createPlaylist": rounds.create_playlist,
    "updatePlaylist": rounds.update_playlist,
    "deletePlaylist": rounds.delete_playlist,
    "startPlaylist": rounds.start_playlist,
    "stopPlaylist": rounds.stop_playlist,
    "nextInPlaylist": rounds.next_in_playlist,
    "previousInPlaylist": rounds.previous_in_playlist,
}
