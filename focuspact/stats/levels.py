"""Levels earned from lifetime focus sessions.

Leveling Curve
--------------
Levels 2-5 double: reaching level L takes 2^(L-1) sessions (2, 4, 8, 16).
From level 6 on, each level costs ``10 + 5 * (L - 5)`` more sessions than
the previous one.  The curve lives in :func:`_pomo_delta` so it's trivial
to re-tune.  Levels are capped at ``MAX_LEVEL``.

Level Titles
------------
    1  Beginner        6  Master
    2  Novice          7  Grandmaster
    3  Apprentice      8  Legend
    4  Adept           9  Mythic
    5  Expert         10+ Immortal
"""

from __future__ import annotations


MAX_LEVEL = 100

LEVEL_TITLES: list[str] = [
    "Beginner",
    "Novice",
    "Apprentice",
    "Adept",
    "Expert",
    "Master",
    "Grandmaster",
    "Legend",
    "Mythic",
    "Immortal",
]


# ── level math ───────────────────────────────────────────────────────────


def _pomo_delta(level: int) -> int:
    """Sessions needed to go from *level - 1* to *level* (for level >= 6)."""
    return 10 + 5 * (level - 5)


def pomos_for_level(level: int) -> int:
    """Total cumulative sessions required to *reach* the given level.

    ``pomos_for_level(1)`` is 0 (everyone starts at level 1).
    """
    if level <= 1:
        return 0
    if level <= 5:
        return 2 ** (level - 1)
    return 16 + sum(_pomo_delta(l) for l in range(6, level + 1))


def level_for_pomos(total_pomos: int) -> int:
    """Return the level for a lifetime focus-session count."""
    level = 1
    while level < MAX_LEVEL and pomos_for_level(level + 1) <= total_pomos:
        level += 1
    return level


def title_for_level(level: int) -> str:
    if level <= 0:
        return LEVEL_TITLES[0]
    if level > len(LEVEL_TITLES):
        return LEVEL_TITLES[-1]
    return LEVEL_TITLES[level - 1]


def level_info(total_pomos: int) -> dict:
    """Return ``level``, ``title``, ``progress`` (0-100) and
    ``pomos_for_next_level`` (cumulative threshold)."""
    level = level_for_pomos(total_pomos)
    floor = pomos_for_level(level)
    ceiling = pomos_for_level(level + 1)
    progress = (total_pomos - floor) / (ceiling - floor) * 100
    return {
        "level": level,
        "title": title_for_level(level),
        "progress": min(100.0, max(0.0, progress)),
        "pomos_for_next_level": ceiling,
    }
