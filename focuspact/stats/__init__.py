"""Stats package."""

from .aggregator import (
    UserStats,
    compute_stats,
    get_my_stats,
    stats_from_days,
    period_summary,
    activity,
)
from .streaks import (
    FitnessPoint,
    current_daily_streak,
    best_historical_streak,
    best_streak,
    weekly_streak,
    focus_fitness,
)
from .levels import level_for_pomos, pomos_for_level, title_for_level, level_info

__all__ = [
    "UserStats",
    "compute_stats",
    "get_my_stats",
    "stats_from_days",
    "period_summary",
    "activity",
    "FitnessPoint",
    "current_daily_streak",
    "best_historical_streak",
    "best_streak",
    "weekly_streak",
    "focus_fitness",
    "level_for_pomos",
    "pomos_for_level",
    "title_for_level",
    "level_info",
]
