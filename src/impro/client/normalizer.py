"""
Client-side snapshot normalization.

Servers of different vintages send slightly different shapes. Everything a
client receives goes through normalize_snapshot() before it is used, so the
rest of the client only ever sees a canonical ScoreboardState.
"""

import logging
from dataclasses import replace
from typing import Any, Mapping

from ..core.models import (
    TEAM_EMOJIS,
    TEAM_IDS,
    ScoreboardState,
    as_mapping,
    as_number,
    default_state,
    total_points,
)

logger = logging.getLogger(__name__)


def _merge_drifted_fields(raw: Mapping[str, Any]) -> dict:
    """Fold legacy top-level keys into the canonical layout."""
    data = dict(raw)
    rounds = dict(as_mapping(raw.get("rounds")))
    if "current" not in rounds and isinstance(raw.get("currentRound"), Mapping):
        rounds["current"] = raw["currentRound"]
    if "history" not in rounds and isinstance(raw.get("roundHistory"), list):
        rounds["history"] = raw["roundHistory"]
    data["rounds"] = rounds

    for team_id in TEAM_IDS:
        team = dict(as_mapping(raw.get(team_id)))
        legacy_emoji = raw.get(f"{team_id}Emoji")
        if team.get("emoji") is None and legacy_emoji in TEAM_EMOJIS:
            team["emoji"] = legacy_emoji
        data[team_id] = team

    for prefix in ("title", "footer"):
        style = as_mapping(raw.get(f"{prefix}Style"))
        if f"{prefix}TextColor" not in data and isinstance(style.get("color"), str):
            data[f"{prefix}TextColor"] = style["color"]
        if f"{prefix}TextSize" not in data and "size" in style:
            data[f"{prefix}TextSize"] = style["size"]
    return data


def normalize_snapshot(raw: Any) -> ScoreboardState:
    """
    Rebuild a canonical ScoreboardState from whatever the server sent.

    Missing or malformed fields take safe defaults. A current round held
    while the game is not live becomes the next-round draft. In round scoring
    mode team scores are the sum of history points and the received scores
    are ignored; in manual mode the received scores are kept (never below 0).
    """
    if not isinstance(raw, Mapping):
        logger.warning(f"Ignoring malformed snapshot of type {type(raw).__name__}")
        return default_state()

    data = _merge_drifted_fields(raw)
    state = ScoreboardState.from_dict(data)

    for prefix in ("title", "footer"):
        size = getattr(state, f"{prefix}_text_size")
        if as_number(size, 0) <= 0:
            state = replace(state, **{f"{prefix}_text_size": getattr(ScoreboardState, f"{prefix}_text_size")})

    rounds = state.rounds
    if rounds.current is not None and rounds.game_status != "live":
        state = state.with_rounds(
            current=None,
            is_between_rounds=True,
            next_round_draft=rounds.next_round_draft or rounds.current,
        )

    if state.scoring_mode == "round":
        for team_id, total in total_points(state.rounds.history).items():
            state = state.with_team(replace(state.team(team_id), score=total))
    return state
