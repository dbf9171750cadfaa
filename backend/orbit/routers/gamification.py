"""
Gamification API Router.
Endpoints for XP, streaks, vacation mode, achievements and daily challenges.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orbit.database import get_db
from orbit.dependencies.auth import get_current_user
from orbit.models.models import User
from orbit.services import daily_challenges
from orbit.services.gamification import get_gamification_service
from orbit.services.items import COMPLETABLE_ITEM_TYPES, ItemNotFoundError, get_item
from orbit.services.local_day import clamp_offset, date_key, local_date, utcnow

router = APIRouter(prefix="/api/gamification", tags=["gamification"])

# Completion sources tracked outside the instance tables
EXTERNAL_ITEM_TYPES = ("flashcard", "workItem")


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class RecordCompletionRequest(BaseModel):
    item_type: str = Field(..., alias="itemType")
    item_id: str = Field(..., alias="itemId", min_length=1)
    timezone_offset: int = Field(0, alias="timezoneOffset")

    class Config:
        populate_by_name = True


class VacationModeRequest(BaseModel):
    vacation_mode: bool = Field(..., alias="vacationMode")

    class Config:
        populate_by_name = True


class CompletionResult(BaseModel):
    credited: bool
    xp_earned: int
    total_xp: int
    level: int
    level_up: bool
    current_streak: int
    longest_streak: int
    streak_updated: bool
    new_achievements: List[Dict[str, Any]]


class ChallengeProgress(BaseModel):
    id: str
    title: str
    description: str
    icon: str
    target_count: int
    xp_reward: int
    type: str
    category: str
    current_count: int
    completed: bool
    claimed: bool


class ClaimResponse(BaseModel):
    claimed: List[str]
    xp_claimed: int
    sweep_bonus: bool
    level: int
    level_up: bool
    challenges: List[ChallengeProgress]


def _today_key(tz: Optional[int]) -> str:
    return date_key(local_date(utcnow(), clamp_offset(tz)))


# ============================================================================
# XP / STREAK ENDPOINTS
# ============================================================================

@router.get("")
def get_gamification(
    tz: Optional[int] = Query(0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current XP, level, streak and achievements, plus today's challenges."""
    data = get_gamification_service().get_user_gamification_data(db, current_user.id, tz)
    data["daily_challenges"] = daily_challenges.compute_challenge_progress(
        db, current_user.id, _today_key(tz), tz
    )
    return data


@router.patch("")
def update_gamification(
    request: VacationModeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Turn vacation mode on or off."""
    streak = get_gamification_service().toggle_vacation_mode(db, current_user.id, request.vacation_mode)
    return {
        "vacation_mode": streak.vacation_mode,
        "vacation_started_at": streak.vacation_started_at.isoformat() if streak.vacation_started_at else None,
        "current_streak": streak.current_streak,
    }


@router.post("/record", response_model=CompletionResult)
def record_completion(
    request: RecordCompletionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Credit XP for a completed item. Repeat calls for the same item earn nothing."""
    if request.item_type in COMPLETABLE_ITEM_TYPES:
        try:
            get_item(db, current_user.id, request.item_type, request.item_id)
        except ItemNotFoundError:
            raise HTTPException(status_code=404, detail="Item not found")
    elif request.item_type not in EXTERNAL_ITEM_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported item type: {request.item_type}")

    return get_gamification_service().process_task_completion(
        db,
        current_user.id,
        timezone_offset=request.timezone_offset,
        item_type=request.item_type,
        item_id=request.item_id,
    )


# ============================================================================
# DAILY CHALLENGES
# ============================================================================

@router.get("/daily-challenges", response_model=List[ChallengeProgress])
def get_daily_challenges(
    tz: Optional[int] = Query(0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Today's challenges with progress. Nothing is awarded."""
    return daily_challenges.compute_challenge_progress(db, current_user.id, _today_key(tz), tz)


@router.post("/daily-challenges", response_model=ClaimResponse)
def claim_daily_challenges(
    tz: Optional[int] = Query(0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Claim XP for every completed, unclaimed challenge today."""
    return daily_challenges.claim_completed_challenges(db, current_user.id, _today_key(tz), tz)


@router.get("/daily-challenges/rewards")
def get_challenge_rewards(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Every challenge reward the caller has been paid."""
    return {"rewards": daily_challenges.list_rewards(db, current_user.id)}
