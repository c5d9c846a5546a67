"""Habit, HabitCompletion and StreakCelebration entity models."""

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from notifier.models.notification import Channel


class Habit(SQLModel, table=True):
    """Habit with an optional daily reminder time."""

    __tablename__ = "habits"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    title: str = Field(max_length=200)
    reminder_time: str | None = Field(default=None, max_length=5)  # local "HH:MM"
    reminder_channel: Channel | None = Field(default=None)
    is_active: bool = Field(default=True, index=True)

    # Streak epoch increments when the current run restarts
    last_streak_value: int = Field(default=0)
    streak_started_on: date | None = Field(default=None)
    streak_epoch: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class HabitCompletion(SQLModel, table=True):
    """One completion of a habit on a local calendar day."""

    __tablename__ = "habit_completions"
    __table_args__ = (UniqueConstraint("habit_id", "completed_on"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    habit_id: UUID = Field(foreign_key="habits.id", index=True)
    completed_on: date = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StreakCelebration(SQLModel, table=True):
    """Persisted "already celebrated" fact for a milestone within an epoch."""

    __tablename__ = "streak_celebrations"
    __table_args__ = (UniqueConstraint("habit_id", "milestone", "streak_epoch"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    habit_id: UUID = Field(foreign_key="habits.id", index=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    milestone: int
    streak_epoch: int = Field(default=0)
    message: str
    notification_sent: bool = Field(default=False)
    notification_channel: Channel | None = Field(default=None)
    celebrated_at: datetime = Field(default_factory=datetime.utcnow)


class StreakAdvance(SQLModel):
    """Schema for reporting a new streak value."""

    new_value: int = Field(ge=0)


class CompletionCreate(SQLModel):
    """Schema for recording a habit completion."""

    completed_on: date | None = None
