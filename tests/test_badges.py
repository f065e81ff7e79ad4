"""Tests for the team badge awarded on pact completion."""

from __future__ import annotations

from datetime import timedelta

import pytest

from focuspact.database.db import get_session
from focuspact.database.models import ChallengeCompletion, ChallengeDefinition
from focuspact.gamification import (
    TEAM_BADGE_KEY,
    award_on_pact_completion,
    ensure_team_badge,
    get_user_challenges,
)
from focuspact.pacts import create_pact, join_pact

from helpers import NOW, TODAY, make_user, user_id


@pytest.fixture
def team():
    alice, bob, carol = make_user("alice"), make_user("bob"), make_user("carol")
    created = create_pact(alice, TODAY + timedelta(days=1), now=NOW)
    join_pact(bob, created["join_code"], now=NOW + timedelta(minutes=1))
    join_pact(carol, created["join_code"], now=NOW + timedelta(minutes=2))
    return created["pact_id"], [alice, bob, carol]


# ═══════════════════════════════════════════════════════════════════════
#  BADGE DEFINITION
# ═══════════════════════════════════════════════════════════════════════


class TestEnsureTeamBadge:

    def test_created_once(self):
        with get_session() as db:
            first = ensure_team_badge(db).id
        with get_session() as db:
            assert ensure_team_badge(db).id == first
            assert db.query(ChallengeDefinition).filter_by(key=TEAM_BADGE_KEY).count() == 1

    def test_definition_shape(self):
        with get_session() as db:
            badge = ensure_team_badge(db)
            assert badge.name == "Team Player"
            assert badge.type == "total"
            assert badge.target == 1
            assert badge.is_badge is True


# ═══════════════════════════════════════════════════════════════════════
#  AWARDING
# ═══════════════════════════════════════════════════════════════════════


class TestAward:

    def test_every_participant_in_join_order(self, team):
        pact_id, members = team
        awarded = award_on_pact_completion(pact_id, now=NOW)
        assert awarded == [user_id(m) for m in members]

    def test_idempotent(self, team):
        pact_id, _ = team
        award_on_pact_completion(pact_id, now=NOW)
        assert award_on_pact_completion(pact_id, now=NOW + timedelta(days=1)) == []
        with get_session() as db:
            assert db.query(ChallengeCompletion).count() == 3

    def test_completed_at_kept_from_first_award(self, team):
        pact_id, members = team
        award_on_pact_completion(pact_id, now=NOW)
        award_on_pact_completion(pact_id, now=NOW + timedelta(days=1))
        with get_session() as db:
            stamps = {row.completed_at for row in db.query(ChallengeCompletion)}
        assert stamps == {NOW}

    def test_existing_holder_skipped(self, team):
        pact_id, members = team
        holder = user_id(members[0])
        with get_session() as db:
            badge = ensure_team_badge(db)
            db.add(ChallengeCompletion(
                user_id=holder, challenge_id=badge.id, completed=True, completed_at=NOW,
            ))
        awarded = award_on_pact_completion(pact_id, now=NOW)
        assert awarded == [user_id(members[1]), user_id(members[2])]

    def test_badge_listed_as_completed(self, team):
        pact_id, members = team
        award_on_pact_completion(pact_id, now=NOW)
        completed = get_user_challenges(members[0], NOW)["completed"]
        assert [c["name"] for c in completed] == ["Team Player"]
