"""
Daily Challenge Service.

Each user gets three challenges per local calendar day, picked
deterministically from CHALLENGE_POOL so the set never changes during the
day. Progress is read from the day's GamificationCredit rows and
DailyActivity XP; claiming pays each completed challenge once, keyed by
(user, challenge, date).
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orbit.models.models import DailyActivity, DailyChallengeReward, GamificationCredit, User
from orbit.services.gamification import get_gamification_service
from orbit.services.local_day import clamp_offset, day_bounds, parse_date_key, utcnow

logger = logging.getLogger(__name__)

CHALLENGES_PER_DAY = 3
SWEEP_BONUS_XP = 25
SWEEP_BONUS_ID = "sweep_bonus"

# Credit item types that count towards "assignment" challenges
ASSIGNMENT_ITEM_TYPES = ("deadline", "workItem")


@dataclass(frozen=True)
class ChallengeDefinition:
    id: str
    title: str
    description: str
    icon: str
    target_count: int
    xp_reward: int
    type: str  # task, flashcard, assignment, xp, any
    category: str  # at most one challenge per category per day


CHALLENGE_POOL: List[ChallengeDefinition] = [
    # tasks
    ChallengeDefinition("tasks_2", "Double Check", "Complete 2 tasks today", "check-circle", 2, 15, "task", "tasks"),
    ChallengeDefinition("tasks_3", "Task Tackler", "Complete 3 tasks today", "check-circle", 3, 15, "task", "tasks"),
    ChallengeDefinition("tasks_5", "Task Master", "Complete 5 tasks today", "check-circle", 5, 15, "task", "tasks"),
    # flashcards
    ChallengeDefinition("flashcards_5", "Flash Five", "Study 5 flashcards today", "book-open", 5, 15, "flashcard", "flashcards"),
    ChallengeDefinition("flashcards_10", "Quick Study", "Study 10 flashcards today", "book-open", 10, 15, "flashcard", "flashcards"),
    ChallengeDefinition("flashcards_20", "Card Shark", "Study 20 flashcards today", "book-open", 20, 15, "flashcard", "flashcards"),
    ChallengeDefinition("flashcards_30", "Study Machine", "Study 30 flashcards today", "book-open", 30, 15, "flashcard", "flashcards"),
    # assignments
    ChallengeDefinition("assignments_2", "Double Down", "Finish 2 assignments today", "file-text", 2, 15, "assignment", "assignments"),
    ChallengeDefinition("assignments_3", "Triple Threat", "Finish 3 assignments today", "file-text", 3, 15, "assignment", "assignments"),
    # xp
    ChallengeDefinition("xp_15", "XP Starter", "Earn 15 XP today", "zap", 15, 15, "xp", "xp"),
    ChallengeDefinition("xp_25", "XP Hunter", "Earn 25 XP today", "zap", 25, 15, "xp", "xp"),
    ChallengeDefinition("xp_50", "XP Grinder", "Earn 50 XP today", "zap", 50, 15, "xp", "xp"),
    ChallengeDefinition("xp_75", "XP Machine", "Earn 75 XP today", "zap", 75, 15, "xp", "xp"),
    # volume
    ChallengeDefinition("any_2", "Getting Started", "Complete 2 items today", "target", 2, 15, "any", "volume"),
    ChallengeDefinition("any_4", "Momentum", "Complete 4 items today", "target", 4, 15, "any", "volume"),
    ChallengeDefinition("any_6", "Productive Day", "Complete 6 items today", "target", 6, 15, "any", "volume"),
    ChallengeDefinition("any_8", "On a Roll", "Complete 8 items today", "target", 8, 15, "any", "volume"),
    # grind
    ChallengeDefinition("grind_10", "Grind Mode", "Complete 10 items today", "flame", 10, 15, "any", "grind"),
    ChallengeDefinition("grind_12", "Unstoppable", "Complete 12 items today", "flame", 12, 15, "any", "grind"),
    ChallengeDefinition("grind_15", "Beast Mode", "Complete 15 items today", "flame", 15, 15, "any", "grind"),
]


def seed_hash(value: str) -> int:
    """djb2 string hash kept to 31 bits."""
    h = 5381
    for ch in value:
        h = ((h << 5) + h + ord(ch)) & 0x7FFFFFFF
    return h


def get_daily_challenges(user_id: str, date_key: str) -> List[ChallengeDefinition]:
    """The user's challenges for a day; same inputs always give the same set."""
    h = seed_hash(f"{user_id}:{date_key}")

    by_category: Dict[str, List[ChallengeDefinition]] = {}
    for challenge in CHALLENGE_POOL:
        by_category.setdefault(challenge.category, []).append(challenge)

    categories = list(by_category)
    used = set()
    selected = []
    for slot in range(CHALLENGES_PER_DAY):
        available = [c for c in categories if c not in used]
        if not available:
            break
        # Different multipliers per slot spread the picks across the pool
        category = available[(h + slot * 2654435761) % len(available)]
        used.add(category)
        pool = by_category[category]
        selected.append(pool[(h + slot * 40503) % len(pool)])

    return selected


def _count_for(challenge: ChallengeDefinition, counts: Dict[str, int]) -> int:
    return counts.get(challenge.type, 0)


def compute_challenge_progress(
    db: Session,
    user_id: str,
    date_key: str,
    timezone_offset: Optional[int] = 0,
) -> List[Dict[str, Any]]:
    """Progress on the day's challenges. Read-only: nothing is awarded."""
    offset = clamp_offset(timezone_offset)
    day = parse_date_key(date_key)
    day_start, day_end = day_bounds(day, offset)

    item_types = [
        row[0] for row in db.query(GamificationCredit.item_type).filter(
            GamificationCredit.user_id == user_id,
            GamificationCredit.created_at >= day_start,
            GamificationCredit.created_at < day_end
        ).all()
    ]
    # Read the column directly; the row is incremented in SQL
    xp_today = db.query(DailyActivity.xp_earned).filter(
        DailyActivity.user_id == user_id,
        DailyActivity.activity_date == day
    ).scalar()
    claimed = {
        row[0] for row in db.query(DailyChallengeReward.challenge_id).filter(
            DailyChallengeReward.user_id == user_id,
            DailyChallengeReward.date_key == date_key
        ).all()
    }

    counts = {
        "task": sum(1 for t in item_types if t == "task"),
        "flashcard": sum(1 for t in item_types if t == "flashcard"),
        "assignment": sum(1 for t in item_types if t in ASSIGNMENT_ITEM_TYPES),
        "any": len(item_types),
        "xp": xp_today or 0,
    }

    progress = []
    for challenge in get_daily_challenges(user_id, date_key):
        current = min(_count_for(challenge, counts), challenge.target_count)
        entry = asdict(challenge)
        entry.update({
            "current_count": current,
            "completed": current >= challenge.target_count,
            "claimed": challenge.id in claimed,
        })
        progress.append(entry)

    return progress


def _insert_reward(db: Session, user_id: str, challenge_id: str, date_key: str, xp: int, now: datetime) -> bool:
    """False if the reward row already exists (claimed by another request)."""
    try:
        with db.begin_nested():
            db.add(DailyChallengeReward(
                user_id=user_id,
                challenge_id=challenge_id,
                date_key=date_key,
                xp_awarded=xp,
                claimed_at=now,
            ))
    except IntegrityError:
        logger.info(f"Challenge {challenge_id} already claimed for {user_id} on {date_key}")
        return False
    return True


def claim_completed_challenges(
    db: Session,
    user_id: str,
    date_key: str,
    timezone_offset: Optional[int] = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Pay out every completed, unclaimed challenge for the day.

    The sweep bonus is paid once per day, as soon as all of the day's
    challenges are complete, whether they were claimed in one call or
    several. Claimed XP can itself complete an XP challenge, so progress
    is evaluated a second time and anything newly completed is paid in
    the same call.
    """
    now = now or utcnow()
    day = parse_date_key(date_key)
    service = get_gamification_service()

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError(f"Unknown user {user_id}")
    streak = service.get_or_create_streak(db, user_id, for_update=True)
    previous_level = streak.level

    claimed_ids: List[str] = []
    xp_claimed = 0
    sweep_awarded = False
    sweep_paid = db.query(DailyChallengeReward.id).filter(
        DailyChallengeReward.user_id == user_id,
        DailyChallengeReward.challenge_id == SWEEP_BONUS_ID,
        DailyChallengeReward.date_key == date_key
    ).first() is not None

    for _ in range(2):
        progress = compute_challenge_progress(db, user_id, date_key, timezone_offset)
        payable = [p for p in progress if p["completed"] and not p["claimed"]]

        for challenge in payable:
            if _insert_reward(db, user_id, challenge["id"], date_key, challenge["xp_reward"], now):
                service.award_bonus_xp(db, user, streak, day, challenge["xp_reward"])
                claimed_ids.append(challenge["id"])
                xp_claimed += challenge["xp_reward"]

        if not sweep_paid and progress and all(p["completed"] for p in progress):
            if _insert_reward(db, user_id, SWEEP_BONUS_ID, date_key, SWEEP_BONUS_XP, now):
                service.award_bonus_xp(db, user, streak, day, SWEEP_BONUS_XP)
                xp_claimed += SWEEP_BONUS_XP
                sweep_awarded = True
            sweep_paid = True

        if not payable:
            break
        db.flush()

    db.commit()
    db.refresh(streak)

    if xp_claimed:
        logger.info(f"User {user_id} claimed {xp_claimed} challenge XP for {date_key}")

    return {
        "claimed": claimed_ids,
        "xp_claimed": xp_claimed,
        "sweep_bonus": sweep_awarded,
        "level": streak.level,
        "level_up": streak.level > previous_level,
        "challenges": compute_challenge_progress(db, user_id, date_key, timezone_offset),
    }


def list_rewards(db: Session, user_id: str) -> List[Dict[str, Any]]:
    rewards = db.query(DailyChallengeReward).filter(
        DailyChallengeReward.user_id == user_id
    ).order_by(DailyChallengeReward.claimed_at.desc()).all()
    return [
        {
            "challenge_id": r.challenge_id,
            "date_key": r.date_key,
            "xp_awarded": r.xp_awarded,
            "claimed_at": r.claimed_at.isoformat() if r.claimed_at else None,
        }
        for r in rewards
    ]
