"""Tests for the challenge catalog and the progress evaluator.

Covers: each challenge type's progress function, one-way completion,
completed_at stamped once, idempotent re-evaluation, inactive and badge
definitions being skipped, the best-streak high-water mark, the
completion signal, caller-facing reads and the admin-only catalog ops.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from focuspact.database.db import get_session
from focuspact.database.models import ChallengeCompletion, ChallengeDefinition, User
from focuspact.errors import NotAuthenticated, NotFound, PermissionDenied, ValidationError
from focuspact.gamification import (
    EVALUATOR,
    ChallengeEvaluator,
    ChallengeType,
    PROGRESS,
    create_challenge,
    ensure_team_badge,
    get_active_challenges,
    get_all_challenges,
    get_user_challenges,
    sync_my_progress,
    toggle_challenge_active,
)
from focuspact.gamification.challenges import mark_completed
from focuspact.stats import UserStats

from helpers import NOW, TODAY, SignalCollector, add_sessions, days_ago, make_user, user_id


@pytest.fixture
def admin(settings):
    settings.admin_emails = ["Boss@Example.com"]
    return make_user("boss", email="boss@example.com")


@pytest.fixture
def alice():
    return make_user("alice")


@pytest.fixture
def evaluator(qapp):
    return ChallengeEvaluator(parent=None)


def _completion(uid: int, cid: int) -> ChallengeCompletion | None:
    with get_session() as db:
        return db.query(ChallengeCompletion).filter_by(user_id=uid, challenge_id=cid).first()


# ═══════════════════════════════════════════════════════════════════════
#  PROGRESS FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════


class TestProgressFunctions:

    STATS = UserStats(total=40, today=2, week=9, month=20, current_streak=3, best_streak=11)

    def _challenge(self, kind: ChallengeType, month: int | None = None):
        return ChallengeDefinition(name="c", type=kind.value, target=1, recurring_month=month)

    def test_every_type_has_a_function(self):
        assert set(PROGRESS) == set(ChallengeType)

    @pytest.mark.parametrize("kind, expected", [
        (ChallengeType.TOTAL, 40),
        (ChallengeType.DAILY, 2),
        (ChallengeType.WEEKLY, 9),
        (ChallengeType.MONTHLY, 20),
        (ChallengeType.STREAK, 11),
    ])
    def test_simple_types(self, kind, expected):
        assert PROGRESS[kind](self.STATS, self._challenge(kind), TODAY) == expected

    def test_streak_uses_best_not_current(self):
        value = PROGRESS[ChallengeType.STREAK](self.STATS, self._challenge(ChallengeType.STREAK), TODAY)
        assert value == self.STATS.best_streak

    def test_recurring_monthly_in_month(self):
        c = self._challenge(ChallengeType.RECURRING_MONTHLY, month=3)
        assert PROGRESS[ChallengeType.RECURRING_MONTHLY](self.STATS, c, TODAY) == 20

    def test_recurring_monthly_out_of_month(self):
        c = self._challenge(ChallengeType.RECURRING_MONTHLY, month=4)
        assert PROGRESS[ChallengeType.RECURRING_MONTHLY](self.STATS, c, TODAY) == 0


# ═══════════════════════════════════════════════════════════════════════
#  EVALUATOR
# ═══════════════════════════════════════════════════════════════════════


class TestEvaluator:

    def test_satisfied_challenge_completes(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="Three Today", type="daily", target=3)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 3)
        assert evaluator.evaluate(uid, now=NOW) == [cid]
        row = _completion(uid, cid)
        assert row.completed
        assert row.completed_at == NOW

    def test_unsatisfied_writes_nothing(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="Three Today", type="daily", target=3)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 2)
        assert evaluator.evaluate(uid, now=NOW) == []
        assert _completion(uid, cid) is None

    def test_reevaluation_is_idempotent(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="First", type="total", target=1)
        uid = user_id(alice)
        add_sessions(uid, TODAY)
        assert evaluator.evaluate(uid, now=NOW) == [cid]
        assert evaluator.evaluate(uid, now=NOW + timedelta(hours=1)) == []
        with get_session() as db:
            assert db.query(ChallengeCompletion).count() == 1

    def test_completion_survives_lost_progress(self, evaluator, admin, alice):
        """A daily challenge stays completed the next (empty) day."""
        cid = create_challenge(admin, name="Three Today", type="daily", target=3)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 3)
        evaluator.evaluate(uid, now=NOW)
        tomorrow = NOW + timedelta(days=1)
        assert evaluator.evaluate(uid, now=tomorrow) == []
        row = _completion(uid, cid)
        assert row.completed
        assert row.completed_at == NOW

    def test_incomplete_row_is_patched_once(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="First", type="total", target=1)
        uid = user_id(alice)
        with get_session() as db:
            db.add(ChallengeCompletion(user_id=uid, challenge_id=cid, completed=False))
        add_sessions(uid, TODAY)
        assert evaluator.evaluate(uid, now=NOW) == [cid]
        assert _completion(uid, cid).completed_at == NOW

    def test_inactive_challenge_skipped(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="First", type="total", target=1)
        toggle_challenge_active(admin, cid)
        uid = user_id(alice)
        add_sessions(uid, TODAY)
        assert evaluator.evaluate(uid, now=NOW) == []

    def test_team_badge_never_evaluated(self, evaluator, alice):
        with get_session() as db:
            badge_id = ensure_team_badge(db).id
        uid = user_id(alice)
        add_sessions(uid, TODAY, 5)
        assert evaluator.evaluate(uid, now=NOW) == []
        assert _completion(uid, badge_id) is None

    def test_streak_challenge_and_high_water_mark(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="Week Warrior", type="streak", target=7)
        uid = user_id(alice)
        for n in range(7):
            add_sessions(uid, days_ago(n))
        assert evaluator.evaluate(uid, now=NOW) == [cid]
        with get_session() as db:
            assert db.get(User, uid).best_daily_streak == 7

    def test_high_water_mark_never_lowered(self, evaluator, alice):
        uid = user_id(alice)
        with get_session() as db:
            db.get(User, uid).best_daily_streak = 20
        add_sessions(uid, TODAY)
        evaluator.evaluate(uid, now=NOW)
        with get_session() as db:
            assert db.get(User, uid).best_daily_streak == 20

    def test_recurring_monthly_only_in_its_month(self, evaluator, admin, alice):
        march = create_challenge(admin, name="March", type="recurring_monthly", target=2, recurring_month=3)
        april = create_challenge(admin, name="April", type="recurring_monthly", target=2, recurring_month=4)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 2)
        assert evaluator.evaluate(uid, now=NOW) == [march]
        assert _completion(uid, april) is None

    def test_unknown_user_is_a_noop(self, evaluator, admin):
        create_challenge(admin, name="First", type="total", target=1)
        assert evaluator.evaluate(9999, now=NOW) == []

    def test_signal_emitted_per_completion(self, evaluator, admin, alice):
        first = create_challenge(admin, name="First", type="total", target=1, badge="Star")
        second = create_challenge(admin, name="Two", type="total", target=2)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 2)
        collector = SignalCollector()
        evaluator.challenge_completed.connect(collector)
        evaluator.evaluate(uid, now=NOW)
        assert [d["challenge_id"] for d in collector.items] == [first, second]
        assert collector[0]["badge"] == "Star"

    def test_no_signal_on_rerun(self, evaluator, admin, alice):
        create_challenge(admin, name="First", type="total", target=1)
        uid = user_id(alice)
        add_sessions(uid, TODAY)
        evaluator.evaluate(uid, now=NOW)
        collector = SignalCollector()
        evaluator.challenge_completed.connect(collector)
        evaluator.evaluate(uid, now=NOW)
        assert len(collector) == 0


class TestMarkCompleted:

    def test_only_first_writer_flips(self, admin, alice):
        cid = create_challenge(admin, name="First", type="total", target=1)
        uid = user_id(alice)
        with get_session() as db:
            assert mark_completed(db, uid, cid, NOW) is True
            assert mark_completed(db, uid, cid, NOW + timedelta(hours=1)) is False
        assert _completion(uid, cid).completed_at == NOW


class TestSweep:
    """Catch-up evaluation for work whose deferred task never ran."""

    def test_completes_what_no_task_evaluated(self, evaluator, admin, alice):
        cid = create_challenge(admin, name="Three Today", type="daily", target=3)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 3)
        summary = evaluator.sweep(NOW)
        assert summary == {"checked": 1, "completed": 1, "errors": 0}
        assert _completion(uid, cid).completed_at == NOW

    def test_only_recently_active_users(self, evaluator, admin, alice):
        create_challenge(admin, name="First", type="total", target=1)
        bob = make_user("bob")
        add_sessions(user_id(alice), TODAY)
        add_sessions(user_id(bob), days_ago(5))
        assert evaluator.sweep(NOW)["checked"] == 1

    def test_lookback_follows_settings(self, evaluator, admin, alice, settings):
        create_challenge(admin, name="First", type="total", target=1)
        add_sessions(user_id(alice), days_ago(5))
        settings.challenge_sweep_lookback_hours = 24 * 7
        assert evaluator.sweep(NOW)["completed"] == 1

    def test_failing_user_is_skipped(self, evaluator, admin, alice, monkeypatch):
        create_challenge(admin, name="First", type="total", target=1)
        bob = make_user("bob")
        alice_id, bob_id = user_id(alice), user_id(bob)
        add_sessions(alice_id, TODAY)
        add_sessions(bob_id, TODAY)
        real = evaluator._evaluate

        def flaky(db, uid, now):
            if uid == alice_id:
                raise RuntimeError("boom")
            return real(db, uid, now)

        monkeypatch.setattr(evaluator, "_evaluate", flaky)
        summary = evaluator.sweep(NOW)
        assert summary == {"checked": 1, "completed": 1, "errors": 1}

    def test_break_sessions_ignored(self, evaluator, alice):
        add_sessions(user_id(alice), TODAY, mode="break")
        assert evaluator.sweep(NOW)["checked"] == 0


# ═══════════════════════════════════════════════════════════════════════
#  CALLER-FACING READS
# ═══════════════════════════════════════════════════════════════════════


class TestReads:

    def test_active_catalog_excludes_badges_and_inactive(self, admin):
        keep = create_challenge(admin, name="Keep", type="total", target=5)
        off = create_challenge(admin, name="Off", type="total", target=5)
        toggle_challenge_active(admin, off)
        with get_session() as db:
            ensure_team_badge(db)
        assert [c["id"] for c in get_active_challenges()] == [keep]

    def test_user_challenges_split(self, admin, alice):
        done = create_challenge(admin, name="First", type="total", target=1)
        todo = create_challenge(admin, name="Ten", type="total", target=10)
        uid = user_id(alice)
        add_sessions(uid, TODAY, 3)
        EVALUATOR.evaluate(uid, now=NOW)
        result = get_user_challenges(alice, NOW)
        assert [c["id"] for c in result["completed"]] == [done]
        assert [(c["id"], c["progress"]) for c in result["active"]] == [(todo, 3)]

    def test_retired_completion_still_listed(self, admin, alice):
        cid = create_challenge(admin, name="First", type="total", target=1)
        uid = user_id(alice)
        add_sessions(uid, TODAY)
        EVALUATOR.evaluate(uid, now=NOW)
        toggle_challenge_active(admin, cid)
        result = get_user_challenges(alice, NOW)
        assert [c["id"] for c in result["completed"]] == [cid]
        assert result["active"] == []

    def test_anonymous_reads_empty(self):
        assert get_user_challenges(None, NOW) == {"active": [], "completed": []}

    def test_sync_my_progress(self, admin, alice):
        cid = create_challenge(admin, name="First", type="total", target=1)
        add_sessions(user_id(alice), TODAY)
        result = sync_my_progress(alice, NOW)
        assert result["newly_completed"] == [cid]
        assert result["challenges"] == 1

    def test_sync_requires_auth(self):
        with pytest.raises(NotAuthenticated):
            sync_my_progress(None, NOW)


# ═══════════════════════════════════════════════════════════════════════
#  ADMIN CATALOG
# ═══════════════════════════════════════════════════════════════════════


class TestAdmin:

    def test_admin_email_is_case_insensitive(self, admin):
        assert create_challenge(admin, name="X", type="total", target=1) > 0

    def test_non_admin_denied(self, alice):
        with pytest.raises(PermissionDenied):
            create_challenge(alice, name="X", type="total", target=1)
        with pytest.raises(PermissionDenied):
            get_all_challenges(alice)

    def test_anonymous_denied(self):
        with pytest.raises(NotAuthenticated):
            get_all_challenges(None)

    @pytest.mark.parametrize("kwargs", [
        dict(name="X", type="yearly", target=1),
        dict(name="  ", type="total", target=1),
        dict(name="X", type="total", target=0),
        dict(name="X", type="recurring_monthly", target=1),
        dict(name="X", type="recurring_monthly", target=1, recurring_month=13),
        dict(name="X", type="total", target=1, recurring_month=3),
    ])
    def test_validation(self, admin, kwargs):
        with pytest.raises(ValidationError):
            create_challenge(admin, **kwargs)

    def test_toggle_round_trip(self, admin):
        cid = create_challenge(admin, name="X", type="total", target=1)
        assert toggle_challenge_active(admin, cid) is False
        assert toggle_challenge_active(admin, cid) is True

    def test_toggle_missing(self, admin):
        with pytest.raises(NotFound):
            toggle_challenge_active(admin, 555)

    def test_all_challenges_includes_inactive(self, admin):
        a = create_challenge(admin, name="A", type="total", target=1)
        b = create_challenge(admin, name="B", type="weekly", target=5)
        toggle_challenge_active(admin, b)
        assert [c["id"] for c in get_all_challenges(admin)] == [a, b]
