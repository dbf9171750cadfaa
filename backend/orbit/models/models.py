from sqlalchemy import (
    Column, String, Integer, Boolean, Date, DateTime, JSON, ForeignKey, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
import uuid
from orbit.database import Base
from orbit.services.local_day import utcnow


def generate_uuid():
    return str(uuid.uuid4())


# Instance item types produced by recurring patterns
ITEM_TYPES = ("task", "deadline", "exam", "calendar_event")


class College(Base):
    __tablename__ = "colleges"

    id = Column(String, primary_key=True, default=generate_uuid)
    full_name = Column(String, nullable=False)
    acronym = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    users = relationship("User", back_populates="college")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    college_id = Column(String, ForeignKey("colleges.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    college = relationship("College", back_populates="users")
    streak = relationship("UserStreak", back_populates="user", uselist=False, cascade="all, delete-orphan")
    patterns = relationship("RecurringPattern", back_populates="user", cascade="all, delete-orphan")


class Course(Base):
    __tablename__ = "courses"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)


# ============================================================================
# RECURRENCE MODELS
# ============================================================================

class RecurringPattern(Base):
    """
    A user-authored recurrence rule that materializes dated instances.

    item_type selects the instance table (tasks, deadlines, exams,
    calendar_events) and the shape of `template`.
    """
    __tablename__ = "recurring_patterns"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String, nullable=False, default="task", index=True)

    # Rule
    recurrence_type = Column(String, nullable=False)  # daily, weekly, biweekly, monthly, custom
    interval_days = Column(Integer, nullable=True)
    days_of_week = Column(JSON, default=list)  # 0 = Sunday ... 6 = Saturday
    days_of_month = Column(JSON, default=list)  # 1..31
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    occurrence_count = Column(Integer, nullable=True)

    # Minutes to add to a local wall-clock time to get UTC (JS getTimezoneOffset)
    timezone_offset = Column(Integer, nullable=False, default=0)

    template = Column(JSON, nullable=False)

    # Generation bookkeeping
    is_active = Column(Boolean, default=True, index=True)
    last_generated = Column(DateTime, nullable=True)
    instance_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="patterns")


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("recurring_pattern_id", "instance_date", name="uq_task_pattern_date"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    notes = Column(Text, default="")
    due_at = Column(DateTime, nullable=True, index=True)
    priority = Column(String, nullable=True)  # "low", "medium", "high"
    checklist = Column(JSON, default=list)

    status = Column(String, default="open", index=True)  # "open", "done"
    completed_at = Column(DateTime, nullable=True)

    recurring_pattern_id = Column(
        String, ForeignKey("recurring_patterns.id", ondelete="SET NULL"), nullable=True, index=True
    )
    instance_date = Column(Date, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Deadline(Base):
    __tablename__ = "deadlines"
    __table_args__ = (
        UniqueConstraint("recurring_pattern_id", "instance_date", name="uq_deadline_pattern_date"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    notes = Column(Text, default="")
    due_at = Column(DateTime, nullable=True, index=True)
    link = Column(String, nullable=True)

    status = Column(String, default="open", index=True)
    completed_at = Column(DateTime, nullable=True)

    recurring_pattern_id = Column(
        String, ForeignKey("recurring_patterns.id", ondelete="SET NULL"), nullable=True, index=True
    )
    instance_date = Column(Date, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Exam(Base):
    __tablename__ = "exams"
    __table_args__ = (
        UniqueConstraint("recurring_pattern_id", "instance_date", name="uq_exam_pattern_date"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    notes = Column(Text, default="")
    exam_at = Column(DateTime, nullable=True, index=True)
    location = Column(String, nullable=True)

    status = Column(String, default="open", index=True)
    completed_at = Column(DateTime, nullable=True)

    recurring_pattern_id = Column(
        String, ForeignKey("recurring_patterns.id", ondelete="SET NULL"), nullable=True, index=True
    )
    instance_date = Column(Date, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CalendarEvent(Base):
    __tablename__ = "calendar_events"
    __table_args__ = (
        UniqueConstraint("recurring_pattern_id", "instance_date", name="uq_calendar_event_pattern_date"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    notes = Column(Text, default="")
    start_at = Column(DateTime, nullable=False, index=True)
    end_at = Column(DateTime, nullable=True)
    all_day = Column(Boolean, default=False)
    location = Column(String, nullable=True)
    color = Column(String, nullable=True)

    status = Column(String, default="open", index=True)
    completed_at = Column(DateTime, nullable=True)

    recurring_pattern_id = Column(
        String, ForeignKey("recurring_patterns.id", ondelete="SET NULL"), nullable=True, index=True
    )
    instance_date = Column(Date, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# item_type -> instance model
INSTANCE_MODELS = {
    "task": Task,
    "deadline": Deadline,
    "exam": Exam,
    "calendar_event": CalendarEvent,
}


# ============================================================================
# GAMIFICATION MODELS
# ============================================================================

class UserStreak(Base):
    """Per-user streak, XP and level ledger."""
    __tablename__ = "user_streaks"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_activity_date = Column(Date, nullable=True)  # user's local calendar date
    streak_start_date = Column(Date, nullable=True)

    total_tasks_completed = Column(Integer, default=0, nullable=False)
    total_xp = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)

    early_bird_count = Column(Integer, default=0, nullable=False)  # completions before 08:00 local
    night_owl_count = Column(Integer, default=0, nullable=False)  # completions at/after 23:00 local

    vacation_mode = Column(Boolean, default=False, nullable=False)
    vacation_started_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="streak")


class GamificationCredit(Base):
    """One row per credited completion; the unique key makes crediting idempotent."""
    __tablename__ = "gamification_credits"
    __table_args__ = (
        UniqueConstraint("user_id", "item_type", "item_id", name="uq_credit_user_item"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String, nullable=False)
    item_id = Column(String, nullable=False)
    xp_awarded = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, index=True)


class DailyActivity(Base):
    __tablename__ = "daily_activity"
    __table_args__ = (
        UniqueConstraint("user_id", "activity_date", name="uq_daily_activity_user_date"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    activity_date = Column(Date, nullable=False, index=True)
    tasks_completed = Column(Integer, default=0, nullable=False)
    xp_earned = Column(Integer, default=0, nullable=False)


class MonthlyXpTotal(Base):
    __tablename__ = "monthly_xp_totals"
    __table_args__ = (
        UniqueConstraint("user_id", "year_month", name="uq_monthly_xp_user_month"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    college_id = Column(String, ForeignKey("colleges.id", ondelete="CASCADE"), nullable=False, index=True)
    year_month = Column(String, nullable=False, index=True)  # "YYYY-MM"
    total_xp = Column(Integer, default=0, nullable=False)


class DailyChallengeReward(Base):
    __tablename__ = "daily_challenge_rewards"
    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", "date_key", name="uq_challenge_reward"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    challenge_id = Column(String, nullable=False)
    date_key = Column(String, nullable=False, index=True)  # "YYYY-MM-DD"
    xp_awarded = Column(Integer, nullable=False)
    claimed_at = Column(DateTime, default=utcnow)


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(String, primary_key=True, default=generate_uuid)
    key = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=False)
    icon = Column(String, nullable=False)
    category = Column(String, nullable=False)  # streak, tasks, special
    tier = Column(String, nullable=False, default="bronze")
    xp_reward = Column(Integer, nullable=False, default=0)
    requirement_type = Column(String, nullable=False)  # streak, tasks, early_bird, night_owl
    requirement_value = Column(Integer, nullable=False)
    is_secret = Column(Boolean, default=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = Column(String, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    earned_at = Column(DateTime, default=utcnow)

    achievement = relationship("Achievement")
