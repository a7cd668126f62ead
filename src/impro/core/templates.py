"""
Default round templates seeded into rooms that have none.
"""

from .models import RoundConfig, RoundTemplate


DEFAULT_TEMPLATES = (
    RoundTemplate(
        id="shortform-basic",
        name="Basic Shortform",
        description="Standard shortform round with 2-4 players",
        config=RoundConfig(type="shortform", min_players=2, max_players=4, time_limit=180),
        tags=("basic", "shortform"),
    ),
    RoundTemplate(
        id="musical-duet",
        name="Musical Duet",
        description="Two-person musical performance",
        config=RoundConfig(type="musical", min_players=2, max_players=2, time_limit=240),
        tags=("musical", "duet"),
    ),
    RoundTemplate(
        id="character-switches",
        name="Character Switch Scene",
        description="Scene where players swap characters periodically",
        config=RoundConfig(type="character", is_mixed=True, theme="Character Switches",
                           min_players=3, max_players=4, time_limit=300),
        tags=("character", "advanced"),
    ),
    RoundTemplate(
        id="story-chain",
        name="Narrative Chain",
        description="Connected scenes telling a complete story",
        config=RoundConfig(type="narrative", min_players=4, max_players=6, time_limit=420),
        tags=("narrative", "longform"),
    ),
    RoundTemplate(
        id="challenge-emotional",
        name="Emotional Rollercoaster",
        description="Scene with rapid emotional changes",
        config=RoundConfig(type="challenge", theme="Emotional Switches",
                           min_players=2, max_players=3, time_limit=240),
        tags=("challenge", "emotions"),
    ),
    RoundTemplate(
        id="mixed-genre",
        name="Genre Blender",
        description="Scene that switches between different movie/TV genres",
        config=RoundConfig(type="challenge", theme="Genre Switches",
                           min_players=3, max_players=5, time_limit=360),
        tags=("challenge", "genres", "advanced"),
    ),
    RoundTemplate(
        id="longform-start",
        name="Longform Opening",
        description="Initial scene to establish a longform narrative",
        config=RoundConfig(type="longform", min_players=4, max_players=8, time_limit=600),
        tags=("longform", "opening"),
    ),
    RoundTemplate(
        id="musical-group",
        name="Group Musical Number",
        description="Full-cast musical performance",
        config=RoundConfig(type="musical", is_mixed=True, min_players=4, max_players=8, time_limit=300),
        tags=("musical", "group", "finale"),
    ),
)
