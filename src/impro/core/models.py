"""
IMPRO Snapshot Model

Immutable dataclasses for the scoreboard snapshot, plus the decoding helpers
that turn loosely-shaped JSON payloads into them at the boundary.

Wire keys are camelCase (they are read by browser clients); attribute names
are snake_case.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


TEAM_IDS = ("team1", "team2")
PENALTY_TYPES = ("major", "minor")
SCORING_MODES = ("round", "manual")
GAME_STATUSES = ("notStarted", "live", "finished")
TEAM_EMOJIS = ("hand", "fist")
ROUND_TYPES = (
    "shortform",
    "longform",
    "musical",
    "character",
    "narrative",
    "challenge",
    "custom",
)

SAFE_COLOR = "#cccccc"
_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


# ============ Coercion helpers ============

def as_count(value: Any, default: int = 0) -> int:
    """Coerce to a non-negative int, falling back to default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return max(0, int(value))
    return default


def as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def as_number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def as_optional_str(value: Any, default: Optional[str] = None) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return default


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def is_hex_color(value: Any) -> bool:
    return isinstance(value, str) and bool(_HEX_COLOR.match(value))


def safe_color(value: Any, fallback: str = SAFE_COLOR) -> str:
    """Return value if it is a #RRGGBB color, else the fallback."""
    return value if is_hex_color(value) else fallback


# ============ Teams ============

@dataclass(frozen=True)
class Penalties:
    major: int = 0
    minor: int = 0

    def to_dict(self) -> dict:
        return {"major": self.major, "minor": self.minor}

    @classmethod
    def from_dict(cls, data: Any) -> "Penalties":
        data = as_mapping(data)
        return cls(major=as_count(data.get("major")), minor=as_count(data.get("minor")))


@dataclass(frozen=True)
class Team:
    """One of the two teams on the board."""
    id: str
    name: str
    color: str
    score: int = 0
    penalties: Penalties = field(default_factory=Penalties)
    emoji: Optional[str] = None

    @property
    def display_color(self) -> str:
        """Stored color, or a neutral default if it is not #RRGGBB."""
        return safe_color(self.color)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "score": self.score,
            "penalties": self.penalties.to_dict(),
            "emoji": self.emoji,
        }

    @classmethod
    def from_dict(cls, team_id: str, data: Any, default_name: str,
                  default_color: str) -> "Team":
        data = as_mapping(data)
        name = data.get("name")
        color = data.get("color")
        emoji = data.get("emoji")
        return cls(
            id=team_id,
            name=name if isinstance(name, str) and name.strip() else default_name,
            color=color if isinstance(color, str) and color else default_color,
            score=as_count(data.get("score")),
            penalties=Penalties.from_dict(data.get("penalties")),
            emoji=emoji if emoji in TEAM_EMOJIS else None,
        )


# ============ Rounds ============

@dataclass(frozen=True)
class RoundConfig:
    """Configuration of one round. Templates carry it without a number."""
    number: int = 1
    type: str = "shortform"
    theme: str = ""
    is_mixed: bool = False
    min_players: int = 2
    max_players: int = 8
    time_limit: Optional[int] = None
    title: Optional[str] = None

    def is_valid(self) -> bool:
        if self.type not in ROUND_TYPES or self.number < 1:
            return False
        if self.min_players < 1 or self.max_players < self.min_players:
            return False
        if self.time_limit is not None and self.time_limit <= 0:
            return False
        return True

    def template_dict(self) -> dict:
        data = {
            "type": self.type,
            "theme": self.theme,
            "isMixed": self.is_mixed,
            "minPlayers": self.min_players,
            "maxPlayers": self.max_players,
            "timeLimit": self.time_limit,
        }
        if self.title is not None:
            data["title"] = self.title
        return data

    def to_dict(self) -> dict:
        return {"number": self.number, **self.template_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "RoundConfig":
        """Lenient decode: bad or missing fields take their defaults."""
        data = as_mapping(data)
        round_type = data.get("type")
        time_limit = data.get("timeLimit")
        theme = data.get("theme")
        return cls(
            number=max(1, as_count(data.get("number"), 1)),
            type=round_type if round_type in ROUND_TYPES else "custom" if round_type else "shortform",
            theme=theme if isinstance(theme, str) else "",
            is_mixed=as_bool(data.get("isMixed"), False),
            min_players=as_count(data.get("minPlayers"), 2),
            max_players=as_count(data.get("maxPlayers"), 8),
            time_limit=as_count(time_limit) if as_count(time_limit) > 0 else None,
            title=as_optional_str(data.get("title")),
        )


def decode_round_config(data: Any, number: int = 1) -> Optional[RoundConfig]:
    """
    Strict decode used by mutations.

    Absent fields take defaults, but a round type outside ROUND_TYPES or
    inconsistent player/time limits reject the whole config.

    Args:
        data: Raw config mapping from a payload
        number: Round number to assign (caller-supplied numbers are ignored)

    Returns:
        The decoded config, or None if it is invalid
    """
    if not isinstance(data, Mapping):
        return None
    if "type" in data and data["type"] not in ROUND_TYPES:
        return None
    for key in ("minPlayers", "maxPlayers"):
        if key in data and (isinstance(data[key], bool) or not isinstance(data[key], int)):
            return None
    time_limit = data.get("timeLimit")
    if time_limit is not None and (isinstance(time_limit, bool) or not isinstance(time_limit, (int, float))):
        return None

    config = RoundConfig(
        number=number,
        type=data.get("type", "shortform"),
        theme=data["theme"] if isinstance(data.get("theme"), str) else "",
        is_mixed=as_bool(data.get("isMixed"), False),
        min_players=data.get("minPlayers", 2),
        max_players=data.get("maxPlayers", 8),
        time_limit=int(time_limit) if time_limit is not None else None,
        title=as_optional_str(data.get("title")),
    )
    return config if config.is_valid() else None


def _team_points(data: Any) -> Dict[str, int]:
    data = as_mapping(data)
    return {team_id: as_count(data.get(team_id)) for team_id in TEAM_IDS}


def _team_penalties(data: Any) -> Dict[str, Penalties]:
    data = as_mapping(data)
    return {team_id: Penalties.from_dict(data.get(team_id)) for team_id in TEAM_IDS}


@dataclass(frozen=True)
class CompletedRound:
    """A history entry: the round's config plus its point/penalty deltas."""
    config: RoundConfig
    points: Mapping[str, int]
    penalties: Mapping[str, Penalties]
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            **self.config.to_dict(),
            "points": dict(self.points),
            "penalties": {team_id: p.to_dict() for team_id, p in self.penalties.items()},
            "notes": self.notes,
        }

    @classmethod
    def from_results(cls, config: RoundConfig, results: Any) -> "CompletedRound":
        results = as_mapping(results)
        return cls(
            config=config,
            points=_team_points(results.get("points")),
            penalties=_team_penalties(results.get("penalties")),
            notes=as_optional_str(results.get("notes")),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "CompletedRound":
        return cls.from_results(RoundConfig.from_dict(data), data)


def total_points(history: Iterable[CompletedRound]) -> Dict[str, int]:
    """Cumulative score per team, derived from round history."""
    totals = {team_id: 0 for team_id in TEAM_IDS}
    for entry in history:
        for team_id in TEAM_IDS:
            totals[team_id] += entry.points.get(team_id, 0)
    return totals


@dataclass(frozen=True)
class RoundTemplate:
    id: str
    name: str
    config: RoundConfig
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "config": self.config.template_dict(),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["RoundTemplate"]:
        data = as_mapping(data)
        template_id = data.get("id")
        name = data.get("name")
        if not isinstance(template_id, str) or not isinstance(name, str):
            return None
        return cls(
            id=template_id,
            name=name,
            config=RoundConfig.from_dict(data.get("config")),
            description=as_optional_str(data.get("description")),
            tags=decode_tags(data.get("tags")),
        )


def decode_tags(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(tag for tag in value if isinstance(tag, str))


@dataclass(frozen=True)
class RoundPlaylist:
    """Ordered sequence of template copies."""
    id: str
    name: str
    rounds: Tuple[RoundTemplate, ...] = ()
    description: Optional[str] = None
    created: Optional[str] = None
    last_modified: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "rounds": [template.to_dict() for template in self.rounds],
            "created": self.created,
            "lastModified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["RoundPlaylist"]:
        data = as_mapping(data)
        playlist_id = data.get("id")
        name = data.get("name")
        if not isinstance(playlist_id, str) or not isinstance(name, str):
            return None
        rounds = data.get("rounds") if isinstance(data.get("rounds"), list) else []
        return cls(
            id=playlist_id,
            name=name,
            rounds=tuple(t for t in (RoundTemplate.from_dict(r) for r in rounds) if t),
            description=as_optional_str(data.get("description")),
            created=as_optional_str(data.get("created")),
            last_modified=as_optional_str(data.get("lastModified")),
        )


@dataclass(frozen=True)
class ActivePlaylist:
    id: str
    current_index: int = 0

    def to_dict(self) -> dict:
        return {"id": self.id, "currentIndex": self.current_index}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ActivePlaylist"]:
        data = as_mapping(data)
        if not isinstance(data.get("id"), str):
            return None
        return cls(id=data["id"], current_index=as_count(data.get("currentIndex")))


# Wire key -> attribute name
ROUND_SETTING_KEYS = {
    "showRoundNumber": "show_round_number",
    "showTheme": "show_theme",
    "showType": "show_type",
    "showMixedStatus": "show_mixed_status",
    "showPlayerLimits": "show_player_limits",
    "showTimeLimit": "show_time_limit",
    "showRoundHistory": "show_round_history",
}


@dataclass(frozen=True)
class RoundSettings:
    """Display toggles for round information."""
    show_round_number: bool = True
    show_theme: bool = True
    show_type: bool = True
    show_mixed_status: bool = True
    show_player_limits: bool = True
    show_time_limit: bool = True
    show_round_history: bool = True

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, attr in ROUND_SETTING_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "RoundSettings":
        data = as_mapping(data)
        defaults = cls()
        return cls(**{
            attr: as_bool(data.get(key), getattr(defaults, attr))
            for key, attr in ROUND_SETTING_KEYS.items()
        })


@dataclass(frozen=True)
class RoundState:
    current: Optional[RoundConfig] = None
    is_between_rounds: bool = True
    game_status: str = "notStarted"
    history: Tuple[CompletedRound, ...] = ()
    templates: Tuple[RoundTemplate, ...] = ()
    playlists: Tuple[RoundPlaylist, ...] = ()
    active_playlist: Optional[ActivePlaylist] = None
    next_round_draft: Optional[RoundConfig] = None
    upcoming: Tuple[RoundConfig, ...] = ()
    settings: RoundSettings = field(default_factory=RoundSettings)

    @property
    def in_progress(self) -> bool:
        return self.current is not None and not self.is_between_rounds

    @property
    def next_round_number(self) -> int:
        return len(self.history) + 1

    def find_template(self, template_id: Any) -> Optional[RoundTemplate]:
        return next((t for t in self.templates if t.id == template_id), None)

    def find_playlist(self, playlist_id: Any) -> Optional[RoundPlaylist]:
        return next((p for p in self.playlists if p.id == playlist_id), None)

    def to_dict(self) -> dict:
        return {
            "current": self.current.to_dict() if self.current else None,
            "isBetweenRounds": self.is_between_rounds,
            "gameStatus": self.game_status,
            "history": [entry.to_dict() for entry in self.history],
            "templates": [template.to_dict() for template in self.templates],
            "playlists": [playlist.to_dict() for playlist in self.playlists],
            "activePlaylist": self.active_playlist.to_dict() if self.active_playlist else None,
            "nextRoundDraft": self.next_round_draft.to_dict() if self.next_round_draft else None,
            "upcoming": [config.to_dict() for config in self.upcoming],
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RoundState":
        data = as_mapping(data)
        current = data.get("current")
        draft = data.get("nextRoundDraft")
        status = data.get("gameStatus")

        def items(key):
            value = data.get(key)
            return value if isinstance(value, list) else []

        current_config = RoundConfig.from_dict(current) if isinstance(current, Mapping) else None
        return cls(
            current=current_config,
            is_between_rounds=current_config is None,
            game_status=status if status in GAME_STATUSES else "notStarted",
            history=tuple(CompletedRound.from_dict(h) for h in items("history")),
            templates=tuple(t for t in (RoundTemplate.from_dict(t) for t in items("templates")) if t),
            playlists=tuple(p for p in (RoundPlaylist.from_dict(p) for p in items("playlists")) if p),
            active_playlist=ActivePlaylist.from_dict(data.get("activePlaylist")),
            next_round_draft=RoundConfig.from_dict(draft) if isinstance(draft, Mapping) else None,
            upcoming=tuple(RoundConfig.from_dict(u) for u in items("upcoming")),
            settings=RoundSettings.from_dict(data.get("settings")),
        )


# ============ Scoreboard ============

DEFAULT_TEAM_NAMES = {"team1": "Blue Team", "team2": "Red Team"}
DEFAULT_TEAM_COLORS = {"team1": "#3b82f6", "team2": "#ef4444"}


@dataclass(frozen=True)
class ScoreboardState:
    """The complete, immutable scoreboard snapshot."""
    team1: Team = field(default_factory=lambda: Team("team1", DEFAULT_TEAM_NAMES["team1"], DEFAULT_TEAM_COLORS["team1"]))
    team2: Team = field(default_factory=lambda: Team("team2", DEFAULT_TEAM_NAMES["team2"], DEFAULT_TEAM_COLORS["team2"]))
    logo_url: Optional[str] = None
    logo_size: float = 50
    title_text: Optional[str] = ""
    footer_text: Optional[str] = None
    title_text_color: str = "#FFFFFF"
    title_text_size: float = 2
    footer_text_color: str = "#FFFFFF"
    footer_text_size: float = 1.25
    show_score: bool = True
    show_penalties: bool = True
    show_emojis: bool = True
    scoring_mode: str = "round"
    rounds: RoundState = field(default_factory=RoundState)

    def team(self, team_id: str) -> Team:
        return getattr(self, team_id)

    def with_team(self, team: Team) -> "ScoreboardState":
        return replace(self, **{team.id: team})

    def with_rounds(self, **changes) -> "ScoreboardState":
        return replace(self, rounds=replace(self.rounds, **changes))

    def to_dict(self) -> dict:
        """Serialize to a fresh JSON-compatible dict (never shares structure)."""
        return {
            "team1": self.team1.to_dict(),
            "team2": self.team2.to_dict(),
            "logoUrl": self.logo_url,
            "logoSize": self.logo_size,
            "titleText": self.title_text,
            "footerText": self.footer_text,
            "titleTextColor": self.title_text_color,
            "titleTextSize": self.title_text_size,
            "footerTextColor": self.footer_text_color,
            "footerTextSize": self.footer_text_size,
            "showScore": self.show_score,
            "showPenalties": self.show_penalties,
            "showEmojis": self.show_emojis,
            "scoringMode": self.scoring_mode,
            "rounds": self.rounds.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ScoreboardState":
        """Decode a stored snapshot; missing fields take their defaults."""
        data = as_mapping(data)
        defaults = cls()
        mode = data.get("scoringMode")
        return cls(
            team1=Team.from_dict("team1", data.get("team1"), defaults.team1.name, defaults.team1.color),
            team2=Team.from_dict("team2", data.get("team2"), defaults.team2.name, defaults.team2.color),
            logo_url=as_optional_str(data.get("logoUrl")),
            logo_size=as_number(data.get("logoSize"), defaults.logo_size),
            title_text=as_optional_str(data.get("titleText"), defaults.title_text),
            footer_text=as_optional_str(data.get("footerText")),
            title_text_color=data.get("titleTextColor") if isinstance(data.get("titleTextColor"), str) else defaults.title_text_color,
            title_text_size=as_number(data.get("titleTextSize"), defaults.title_text_size),
            footer_text_color=data.get("footerTextColor") if isinstance(data.get("footerTextColor"), str) else defaults.footer_text_color,
            footer_text_size=as_number(data.get("footerTextSize"), defaults.footer_text_size),
            show_score=as_bool(data.get("showScore"), True),
            show_penalties=as_bool(data.get("showPenalties"), True),
            show_emojis=as_bool(data.get("showEmojis"), True),
            scoring_mode=mode if mode in SCORING_MODES else "round",
            rounds=RoundState.from_dict(data.get("rounds")),
        )


def default_state(team_names: Optional[Mapping[str, str]] = None,
                  team_colors: Optional[Mapping[str, str]] = None) -> ScoreboardState:
    """Fresh scoreboard, optionally with configured team names and colors."""
    names = {**DEFAULT_TEAM_NAMES, **(team_names or {})}
    colors = {**DEFAULT_TEAM_COLORS, **(team_colors or {})}
    return ScoreboardState(
        team1=Team("team1", names["team1"], colors["team1"]),
        team2=Team("team2", names["team2"], colors["team2"]),
    )
