"""Tests for streak computation and milestone celebrations."""

from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from notifier.errors import NotFoundError
from notifier.models.audit_log import AuditLog
from notifier.models.habit import HabitCompletion, StreakCelebration
from notifier.models.notification import Channel
from notifier.services.milestones import MilestoneDetector, celebration_message
from notifier.services.streaks import compute_streak, record_completion, streak_run

NOON = datetime(2026, 3, 10, 12, 0, 0)
TODAY = NOON.date()


def celebrations(session: Session, habit) -> list[StreakCelebration]:
    return list(
        session.exec(select(StreakCelebration).where(StreakCelebration.habit_id == habit.id)).all()
    )


# =============================================================================
# Streak computation
# =============================================================================


class TestComputeStreak:
    """Tests for compute_streak."""

    def test_counts_back_from_today(self):
        days = [TODAY - timedelta(days=i) for i in range(5)]
        assert compute_streak(days, TODAY) == 5

    def test_streak_survives_until_today_is_over(self):
        days = [TODAY - timedelta(days=i) for i in range(1, 4)]
        assert compute_streak(days, TODAY) == 3

    def test_gap_breaks_streak(self):
        days = [TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=3)]
        assert compute_streak(days, TODAY) == 2

    def test_stale_history_is_zero(self):
        assert compute_streak([TODAY - timedelta(days=2)], TODAY) == 0
        assert compute_streak([], TODAY) == 0

    def test_run_start_is_first_day_of_current_run(self):
        days = [TODAY - timedelta(days=1), TODAY - timedelta(days=2), TODAY - timedelta(days=5)]
        assert streak_run(days, TODAY) == (2, TODAY - timedelta(days=2))
        assert streak_run([], TODAY) == (0, None)


# =============================================================================
# Milestone detection
# =============================================================================


class TestMilestoneDetector:
    """Tests for MilestoneDetector.on_streak_advance."""

    def test_non_milestone_returns_none(self, db_session: Session, habit):
        detector = MilestoneDetector()

        assert detector.on_streak_advance(db_session, habit.id, 6, NOON) is None
        db_session.refresh(habit)
        assert habit.last_streak_value == 6

    def test_fires_once_per_milestone(self, db_session: Session, habit):
        detector = MilestoneDetector()

        first = detector.on_streak_advance(db_session, habit.id, 7, NOON)
        replay = detector.on_streak_advance(db_session, habit.id, 7, NOON)

        assert first is not None
        assert first.milestone == 7
        assert first.streak_epoch == 0
        assert first.message == celebration_message("Ada", "Morning run", 7)
        assert replay is None
        assert len(celebrations(db_session, habit)) == 1

    def test_reset_streak_celebrates_again(self, db_session: Session, habit):
        detector = MilestoneDetector()
        assert detector.on_streak_advance(db_session, habit.id, 7, NOON) is not None

        assert detector.on_streak_advance(db_session, habit.id, 0, NOON) is None
        again = detector.on_streak_advance(db_session, habit.id, 7, NOON)

        assert again is not None
        assert again.streak_epoch == 1
        assert len(celebrations(db_session, habit)) == 2

    def test_replay_after_progress_does_not_celebrate(self, db_session: Session, habit):
        detector = MilestoneDetector()
        fired = [
            value for value in range(1, 31)
            if detector.on_streak_advance(db_session, habit.id, value, NOON) is not None
        ]
        assert fired == [7, 14, 21, 30]

        assert detector.on_streak_advance(db_session, habit.id, 7, NOON) is None

        db_session.refresh(habit)
        assert habit.streak_epoch == 0
        assert [c.milestone for c in celebrations(db_session, habit)].count(7) == 1

    def test_later_run_start_celebrates_again(self, db_session: Session, habit):
        detector = MilestoneDetector()
        first_start = TODAY - timedelta(days=30)
        assert detector.on_streak_advance(
            db_session, habit.id, 7, NOON, streak_started_on=first_start
        ) is not None

        # Same run reported again is a replay
        assert detector.on_streak_advance(
            db_session, habit.id, 7, NOON, streak_started_on=first_start
        ) is None

        again = detector.on_streak_advance(
            db_session, habit.id, 7, NOON, streak_started_on=TODAY - timedelta(days=6)
        )
        assert again is not None
        assert again.streak_epoch == 1

    def test_custom_milestones(self, db_session: Session, habit):
        detector = MilestoneDetector(milestones=[3])

        assert detector.on_streak_advance(db_session, habit.id, 3, NOON) is not None
        assert detector.on_streak_advance(db_session, habit.id, 7, NOON) is None

    def test_dispatches_through_router(self, db_session: Session, habit, device, router, adapters):
        detector = MilestoneDetector(router)

        result = detector.on_streak_advance(db_session, habit.id, 7, NOON)

        assert result.notification_sent is True
        assert result.channel == Channel.PUSH
        [(token, content)] = adapters[Channel.PUSH].sent
        assert token == device.device_token
        assert content.title == "One week strong"
        [row] = celebrations(db_session, habit)
        assert row.notification_sent is True
        assert row.notification_channel == Channel.PUSH

    def test_preferred_celebration_channel(self, db_session: Session, habit, profile, router, adapters):
        profile.celebration_channel = Channel.SMS
        db_session.add(profile)
        db_session.commit()

        result = MilestoneDetector(router).on_streak_advance(db_session, habit.id, 14, NOON)

        assert result.channel == Channel.SMS
        assert adapters[Channel.SMS].sent[0][0] == profile.phone_number

    def test_disabled_celebrations_still_recorded(self, db_session: Session, habit, profile, router, adapters):
        profile.streak_celebrations_enabled = False
        db_session.add(profile)
        db_session.commit()

        result = MilestoneDetector(router).on_streak_advance(db_session, habit.id, 7, NOON)

        assert result is not None
        assert result.notification_sent is False
        assert all(adapter.sent == [] for adapter in adapters.values())

    def test_writes_audit_row(self, db_session: Session, habit):
        MilestoneDetector().on_streak_advance(db_session, habit.id, 21, NOON)

        [entry] = db_session.exec(
            select(AuditLog).where(AuditLog.action == "streak.celebrated")
        ).all()
        assert entry.details["milestone"] == 21

    def test_unknown_habit(self, db_session: Session):
        with pytest.raises(NotFoundError):
            MilestoneDetector().on_streak_advance(db_session, uuid4(), 7, NOON)


# =============================================================================
# Completions
# =============================================================================


class TestRecordCompletion:
    """Tests for record_completion."""

    def test_seventh_day_celebrates(self, db_session: Session, habit):
        for i in range(1, 7):
            db_session.add(HabitCompletion(habit_id=habit.id, completed_on=TODAY - timedelta(days=i)))
        db_session.commit()

        result = record_completion(db_session, MilestoneDetector(), habit.id, now=NOON)

        assert result.created is True
        assert result.completed_on == TODAY
        assert result.streak == 7
        assert result.celebration.milestone == 7

    def test_duplicate_completion_is_idempotent(self, db_session: Session, habit):
        detector = MilestoneDetector()
        record_completion(db_session, detector, habit.id, now=NOON)

        again = record_completion(db_session, detector, habit.id, now=NOON)

        assert again.created is False
        assert again.streak == 1
        rows = db_session.exec(
            select(HabitCompletion).where(HabitCompletion.habit_id == habit.id)
        ).all()
        assert len(rows) == 1

    def test_local_day_follows_profile_timezone(self, db_session: Session, habit, profile):
        profile.timezone = "Pacific/Auckland"
        db_session.add(profile)
        db_session.commit()

        result = record_completion(db_session, MilestoneDetector(), habit.id, now=NOON)

        # 12:00 UTC is already 01:00 the next day in Auckland
        assert result.completed_on == date(2026, 3, 11)

    def test_unknown_habit(self, db_session: Session):
        with pytest.raises(NotFoundError):
            record_completion(db_session, MilestoneDetector(), uuid4(), now=NOON)

    def test_new_run_after_gap_celebrates_again(self, db_session: Session, habit):
        detector = MilestoneDetector()
        for i in range(21, 27):
            db_session.add(HabitCompletion(habit_id=habit.id, completed_on=TODAY - timedelta(days=i)))
        db_session.commit()
        first = record_completion(
            db_session, detector, habit.id,
            completed_on=TODAY - timedelta(days=20), now=NOON - timedelta(days=20),
        )
        assert first.celebration.streak_epoch == 0

        for i in range(1, 7):
            db_session.add(HabitCompletion(habit_id=habit.id, completed_on=TODAY - timedelta(days=i)))
        db_session.commit()
        second = record_completion(db_session, detector, habit.id, now=NOON)

        assert second.streak == 7
        assert second.celebration.milestone == 7
        assert second.celebration.streak_epoch == 1

    def test_repeat_completion_after_milestone_is_not_a_reset(self, db_session: Session, habit):
        detector = MilestoneDetector()
        for i in range(1, 7):
            db_session.add(HabitCompletion(habit_id=habit.id, completed_on=TODAY - timedelta(days=i)))
        db_session.commit()
        record_completion(db_session, detector, habit.id, now=NOON)

        again = record_completion(db_session, detector, habit.id, now=NOON + timedelta(hours=2))

        assert again.celebration is None
        db_session.refresh(habit)
        assert habit.streak_epoch == 0
        assert habit.streak_started_on == TODAY - timedelta(days=6)
