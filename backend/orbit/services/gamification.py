"""
Gamification Service.
XP, levels, streaks, vacation mode and achievements.

Every completion goes through process_task_completion, which credits an
item at most once: the GamificationCredit row is inserted before any XP
moves, and a duplicate insert means another request already credited it.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orbit.models.models import (
    Achievement,
    DailyActivity,
    GamificationCredit,
    MonthlyXpTotal,
    User,
    UserAchievement,
    UserStreak,
)
from orbit.services.local_day import clamp_offset, local_date, local_now, utcnow, year_month

logger = logging.getLogger(__name__)

XP_PER_COMPLETION = 10

# Total XP needed to reach levels 1..10; after level 10 every level costs XP_PER_LEVEL_AFTER_TABLE
LEVEL_THRESHOLDS = [0, 75, 175, 300, 450, 625, 825, 1050, 1300, 1600]
XP_PER_LEVEL_AFTER_TABLE = 350

EARLY_BIRD_BEFORE_HOUR = 8
NIGHT_OWL_FROM_HOUR = 23


@dataclass(frozen=True)
class AchievementDefinition:
    key: str
    name: str
    description: str
    icon: str
    category: str
    tier: str
    xp_reward: int
    requirement_type: str  # streak, tasks, early_bird, night_owl
    requirement_value: int
    is_secret: bool = False


ACHIEVEMENT_DEFINITIONS: List[AchievementDefinition] = [
    # Streaks
    AchievementDefinition("streak_3", "Warming Up", "Complete something 3 days in a row", "flame", "streak", "bronze", 25, "streak", 3),
    AchievementDefinition("streak_7", "Week Warrior", "Keep a 7 day streak", "fire", "streak", "silver", 50, "streak", 7),
    AchievementDefinition("streak_14", "Fortnight Focus", "Keep a 14 day streak", "zap", "streak", "silver", 100, "streak", 14),
    AchievementDefinition("streak_30", "Monthly Master", "Keep a 30 day streak", "trophy", "streak", "gold", 200, "streak", 30),
    AchievementDefinition("streak_100", "Unstoppable", "Keep a 100 day streak", "crown", "streak", "platinum", 500, "streak", 100),
    # Completions
    AchievementDefinition("tasks_1", "First Step", "Complete your first item", "check", "tasks", "bronze", 10, "tasks", 1),
    AchievementDefinition("tasks_10", "Getting Things Done", "Complete 10 items", "list-checks", "tasks", "bronze", 25, "tasks", 10),
    AchievementDefinition("tasks_50", "Productive", "Complete 50 items", "target", "tasks", "silver", 75, "tasks", 50),
    AchievementDefinition("tasks_100", "Centurion", "Complete 100 items", "medal", "tasks", "gold", 150, "tasks", 100),
    AchievementDefinition("tasks_500", "Machine", "Complete 500 items", "rocket", "tasks", "platinum", 400, "tasks", 500),
    # Time of day
    AchievementDefinition("early_bird", "Early Bird", "Complete 5 items before 8 AM", "sunrise", "special", "silver", 50, "early_bird", 5, True),
    AchievementDefinition("night_owl", "Night Owl", "Complete 5 items after 11 PM", "moon", "special", "silver", 50, "night_owl", 5, True),
]


def calculate_level(total_xp: int) -> int:
    """Level for a total XP amount (levels start at 1)."""
    if total_xp >= LEVEL_THRESHOLDS[-1]:
        return len(LEVEL_THRESHOLDS) + (total_xp - LEVEL_THRESHOLDS[-1]) // XP_PER_LEVEL_AFTER_TABLE
    level = 1
    for index, threshold in enumerate(LEVEL_THRESHOLDS):
        if total_xp >= threshold:
            level = index + 1
    return level


def level_start_xp(level: int) -> int:
    if level <= len(LEVEL_THRESHOLDS):
        return LEVEL_THRESHOLDS[level - 1]
    return LEVEL_THRESHOLDS[-1] + (level - len(LEVEL_THRESHOLDS)) * XP_PER_LEVEL_AFTER_TABLE


def xp_stats(total_xp: int) -> Dict[str, Any]:
    level = calculate_level(total_xp)
    start = level_start_xp(level)
    span = level_start_xp(level + 1) - start
    into_level = total_xp - start
    return {
        "total_xp": total_xp,
        "level": level,
        "xp_in_level": into_level,
        "xp_for_next_level": span,
        "progress_percent": round(into_level / span * 100) if span else 0,
    }


def is_streak_broken(last_activity: Optional[date], today: date) -> bool:
    """A streak survives only if the last active day is today or yesterday."""
    if last_activity is None:
        return False
    return (today - last_activity).days > 1


def _insert_if_missing(db: Session, row) -> None:
    """Insert a ledger row in a savepoint; a unique-key clash means a concurrent request created it."""
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        logger.info(f"{type(row).__name__} row created concurrently; using the existing one")


def _serialize_achievement(achievement: Achievement, earned_at: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": achievement.id,
        "key": achievement.key,
        "name": achievement.name,
        "description": achievement.description,
        "icon": achievement.icon,
        "category": achievement.category,
        "tier": achievement.tier,
        "xp_reward": achievement.xp_reward,
        "requirement": {"type": achievement.requirement_type, "value": achievement.requirement_value},
        "is_secret": achievement.is_secret,
        "earned_at": earned_at.isoformat() if earned_at else None,
    }


class GamificationService:
    """
    XP and streak accounting.

    A streak counts consecutive local calendar days with at least one
    credited completion. Vacation mode freezes it: XP still accrues but
    the streak and its last-activity date do not move.
    """

    def seed_achievements(self, db: Session) -> int:
        """Insert any catalogue entries missing from the database."""
        existing = {row[0] for row in db.query(Achievement.key).all()}
        added = 0
        for definition in ACHIEVEMENT_DEFINITIONS:
            if definition.key in existing:
                continue
            db.add(Achievement(**asdict(definition)))
            added += 1
        if added:
            db.commit()
            logger.info(f"Seeded {added} achievements")
        return added

    def get_or_create_streak(self, db: Session, user_id: str, for_update: bool = False) -> UserStreak:
        """
        The user's streak row, created on first use.

        With for_update the row stays locked until the transaction ends, so
        concurrent completions for one user apply their streak and XP
        changes one after the other.
        """
        query = db.query(UserStreak).filter(UserStreak.user_id == user_id)
        if for_update:
            query = query.with_for_update().populate_existing()

        streak = query.first()
        if not streak:
            _insert_if_missing(db, UserStreak(
                user_id=user_id,
                current_streak=0,
                longest_streak=0,
                total_tasks_completed=0,
                total_xp=0,
                level=1,
                early_bird_count=0,
                night_owl_count=0,
                vacation_mode=False,
            ))
            streak = query.first()
        return streak

    # ------------------------------------------------------------------
    # XP ledger
    # ------------------------------------------------------------------

    def add_daily_xp(
        self,
        db: Session,
        user: User,
        day: date,
        xp: int,
        completions: int = 0,
    ) -> None:
        """
        Add XP to the user's DailyActivity row and, with a college, the month's total.

        Both rows are incremented in SQL, never read-modify-write, so
        concurrent requests cannot overwrite each other's XP.
        """
        activity_filter = (
            DailyActivity.user_id == user.id,
            DailyActivity.activity_date == day,
        )
        if not db.query(DailyActivity.id).filter(*activity_filter).first():
            _insert_if_missing(db, DailyActivity(
                user_id=user.id, activity_date=day, tasks_completed=0, xp_earned=0
            ))
        db.query(DailyActivity).filter(*activity_filter).update(
            {
                DailyActivity.tasks_completed: DailyActivity.tasks_completed + completions,
                DailyActivity.xp_earned: DailyActivity.xp_earned + xp,
            },
            synchronize_session="fetch"
        )

        # Unaffiliated users have no monthly row; the leaderboard only ranks colleges
        if not user.college_id or xp == 0:
            return

        month = year_month(day)
        monthly_filter = (
            MonthlyXpTotal.user_id == user.id,
            MonthlyXpTotal.year_month == month,
        )
        if not db.query(MonthlyXpTotal.id).filter(*monthly_filter).first():
            _insert_if_missing(db, MonthlyXpTotal(
                user_id=user.id,
                college_id=user.college_id,
                year_month=month,
                total_xp=0
            ))
        db.query(MonthlyXpTotal).filter(*monthly_filter).update(
            {
                MonthlyXpTotal.total_xp: MonthlyXpTotal.total_xp + xp,
                MonthlyXpTotal.college_id: user.college_id,
            },
            synchronize_session="fetch"
        )

    def award_bonus_xp(self, db: Session, user: User, streak: UserStreak, day: date, xp: int) -> None:
        """XP that is not tied to a completion (achievements, challenges)."""
        streak.total_xp += xp
        streak.level = calculate_level(streak.total_xp)
        self.add_daily_xp(db, user, day, xp)

    # ------------------------------------------------------------------
    # Completion crediting
    # ------------------------------------------------------------------

    def _advance_streak(self, streak: UserStreak, today: date) -> bool:
        """Move the streak for a completion on `today`. Returns True if it changed."""
        last = streak.last_activity_date

        if last is not None and last >= today:
            # Already active today (or the client clock moved backwards)
            return False

        if last is not None and (today - last).days == 1:
            streak.current_streak += 1
        else:
            streak.current_streak = 1
            streak.streak_start_date = today

        streak.last_activity_date = today
        streak.longest_streak = max(streak.longest_streak, streak.current_streak)
        return True

    def _claim_credit(self, db: Session, user_id: str, item_type: str, item_id: str, now: datetime) -> bool:
        """Insert the credit row. False if this item was already credited."""
        try:
            with db.begin_nested():
                db.add(GamificationCredit(
                    user_id=user_id,
                    item_type=item_type,
                    item_id=item_id,
                    xp_awarded=XP_PER_COMPLETION,
                    created_at=now,
                ))
        except IntegrityError:
            logger.info(f"Completion already credited: {user_id} {item_type} {item_id}")
            return False
        return True

    def _unchanged_result(self, streak: UserStreak) -> Dict[str, Any]:
        return {
            "credited": False,
            "xp_earned": 0,
            "total_xp": streak.total_xp,
            "level": streak.level,
            "level_up": False,
            "current_streak": streak.current_streak,
            "longest_streak": streak.longest_streak,
            "streak_updated": False,
            "new_achievements": [],
        }

    def process_task_completion(
        self,
        db: Session,
        user_id: str,
        timezone_offset: Optional[int] = 0,
        item_type: str = "task",
        item_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Credit XP for completing an item, at most once per (user, item_type, item_id).

        Returns:
            Dict with xp_earned, totals, streak and any newly earned achievements.
            A repeat call returns the current totals with xp_earned 0.
        """
        offset = clamp_offset(timezone_offset)
        now = now or utcnow()
        today = local_date(now, offset)
        local_hour = local_now(now, offset).hour

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ValueError(f"Unknown user {user_id}")

        streak = self.get_or_create_streak(db, user_id, for_update=True)

        if item_id:
            if not self._claim_credit(db, user_id, item_type, item_id, now):
                db.commit()
                return self._unchanged_result(streak)

        previous_level = streak.level

        streak_updated = False
        if not streak.vacation_mode:
            streak_updated = self._advance_streak(streak, today)

        streak.total_tasks_completed += 1
        streak.total_xp += XP_PER_COMPLETION
        streak.level = calculate_level(streak.total_xp)

        if local_hour < EARLY_BIRD_BEFORE_HOUR:
            streak.early_bird_count += 1
        elif local_hour >= NIGHT_OWL_FROM_HOUR:
            streak.night_owl_count += 1

        self.add_daily_xp(db, user, today, XP_PER_COMPLETION, completions=1)

        new_achievements = self.check_achievements(db, user, streak, today)

        db.commit()
        db.refresh(streak)

        return {
            "credited": True,
            "xp_earned": XP_PER_COMPLETION + sum(a["xp_reward"] for a in new_achievements),
            "total_xp": streak.total_xp,
            "level": streak.level,
            "level_up": streak.level > previous_level,
            "current_streak": streak.current_streak,
            "longest_streak": streak.longest_streak,
            "streak_updated": streak_updated,
            "new_achievements": new_achievements,
        }

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------

    def check_achievements(
        self,
        db: Session,
        user: User,
        streak: UserStreak,
        day: date,
    ) -> List[Dict[str, Any]]:
        """Award every unearned achievement whose requirement is now met."""
        earned_ids = {
            row[0] for row in db.query(UserAchievement.achievement_id).filter(
                UserAchievement.user_id == user.id
            ).all()
        }

        progress = {
            "streak": streak.current_streak,
            "tasks": streak.total_tasks_completed,
            "early_bird": streak.early_bird_count,
            "night_owl": streak.night_owl_count,
        }

        newly_earned = []
        for achievement in db.query(Achievement).all():
            if achievement.id in earned_ids:
                continue
            if progress.get(achievement.requirement_type, 0) < achievement.requirement_value:
                continue

            earned_at = utcnow()
            db.add(UserAchievement(user_id=user.id, achievement_id=achievement.id, earned_at=earned_at))
            if achievement.xp_reward:
                self.award_bonus_xp(db, user, streak, day, achievement.xp_reward)
            newly_earned.append(_serialize_achievement(achievement, earned_at))
            logger.info(f"User {user.id} earned achievement {achievement.key}")

        return newly_earned

    # ------------------------------------------------------------------
    # Reads and settings
    # ------------------------------------------------------------------

    def get_user_gamification_data(
        self,
        db: Session,
        user_id: str,
        timezone_offset: Optional[int] = 0,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Streak, XP stats, achievements and the last 7 days of activity.

        A streak whose last active day is before yesterday is reset to 0
        here, so the displayed value is right even without new completions.
        """
        offset = clamp_offset(timezone_offset)
        now = now or utcnow()
        today = local_date(now, offset)

        streak = self.get_or_create_streak(db, user_id)
        if (
            not streak.vacation_mode
            and streak.current_streak > 0
            and is_streak_broken(streak.last_activity_date, today)
        ):
            logger.info(f"Streak for user {user_id} lapsed: {streak.current_streak} -> 0")
            streak.current_streak = 0
            streak.streak_start_date = None
        db.commit()
        db.refresh(streak)

        earned = {
            ua.achievement_id: ua.earned_at
            for ua in db.query(UserAchievement).filter(UserAchievement.user_id == user_id).all()
        }
        achievements = [
            _serialize_achievement(a, earned.get(a.id))
            for a in db.query(Achievement).order_by(Achievement.category, Achievement.xp_reward).all()
        ]

        recent = db.query(DailyActivity).filter(
            DailyActivity.user_id == user_id
        ).order_by(DailyActivity.activity_date.desc()).limit(7).all()

        return {
            "streak": {
                "current_streak": streak.current_streak,
                "longest_streak": streak.longest_streak,
                "last_activity_date": streak.last_activity_date.isoformat() if streak.last_activity_date else None,
                "streak_start_date": streak.streak_start_date.isoformat() if streak.streak_start_date else None,
                "total_tasks_completed": streak.total_tasks_completed,
                "total_xp": streak.total_xp,
                "level": streak.level,
                "vacation_mode": streak.vacation_mode,
                "vacation_started_at": streak.vacation_started_at.isoformat() if streak.vacation_started_at else None,
            },
            "xp": xp_stats(streak.total_xp),
            "achievements": achievements,
            "unlocked_achievements": [a for a in achievements if a["earned_at"]],
            "recent_activity": [
                {
                    "date": a.activity_date.isoformat(),
                    "tasks_completed": a.tasks_completed,
                    "xp_earned": a.xp_earned,
                }
                for a in recent
            ],
        }

    def toggle_vacation_mode(
        self,
        db: Session,
        user_id: str,
        enabled: bool,
        now: Optional[datetime] = None,
    ) -> UserStreak:
        """
        Freeze or unfreeze the streak.

        last_activity_date is left alone, so after vacation the next
        completion's gap check resumes from the last pre-vacation day.
        """
        streak = self.get_or_create_streak(db, user_id, for_update=True)
        if enabled and not streak.vacation_mode:
            streak.vacation_started_at = now or utcnow()
        elif not enabled:
            streak.vacation_started_at = None
        streak.vacation_mode = enabled

        db.commit()
        db.refresh(streak)
        logger.info(f"Vacation mode {'on' if enabled else 'off'} for user {user_id}")
        return streak


# Singleton instance
_gamification_service: Optional[GamificationService] = None


def get_gamification_service() -> GamificationService:
    """Get the singleton GamificationService instance."""
    global _gamification_service
    if _gamification_service is None:
        _gamification_service = GamificationService()
    return _gamification_service
