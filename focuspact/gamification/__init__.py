"""Gamification package."""

from .challenges import (
    ChallengeType,
    ChallengeEvaluator,
    EVALUATOR,
    PROGRESS,
    progress_for,
    evaluate_challenges,
    sweep_challenges,
    get_active_challenges,
    get_user_challenges,
    sync_my_progress,
    create_challenge,
    toggle_challenge_active,
    get_all_challenges,
)
from .badges import TEAM_BADGE_KEY, ensure_team_badge, award_on_pact_completion

__all__ = [
    "ChallengeType",
    "ChallengeEvaluator",
    "EVALUATOR",
    "PROGRESS",
    "progress_for",
    "evaluate_challenges",
    "sweep_challenges",
    "get_active_challenges",
    "get_user_challenges",
    "sync_my_progress",
    "create_challenge",
    "toggle_challenge_active",
    "get_all_challenges",
    "TEAM_BADGE_KEY",
    "ensure_team_badge",
    "award_on_pact_completion",
]
