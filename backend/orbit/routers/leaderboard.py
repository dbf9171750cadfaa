"""
Leaderboard API Router.
Monthly XP totals aggregated per college.
"""

import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from orbit.config import LEADERBOARD_CACHE_TTL_SECONDS
from orbit.database import get_db
from orbit.dependencies.auth import get_current_user
from orbit.models.models import User
from orbit.services.leaderboard import get_college_leaderboard
from orbit.services.local_day import clamp_offset, local_date, utcnow, year_month
from orbit.utils.cache import HybridCache

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def get_cache(request: Request) -> HybridCache:
    return request.app.state.cache


@router.get("/colleges")
def college_leaderboard(
    month: Optional[str] = Query(None, description="YYYY-MM, defaults to the caller's current local month"),
    tz: Optional[int] = Query(0),
    current_user: User = Depends(get_current_user),
    cache: HybridCache = Depends(get_cache),
    db: Session = Depends(get_db)
):
    if month is None:
        month = year_month(local_date(utcnow(), clamp_offset(tz)))
    elif not MONTH_PATTERN.match(month):
        raise HTTPException(status_code=400, detail="month must be YYYY-MM")

    return get_college_leaderboard(db, cache, current_user, month, ttl=LEADERBOARD_CACHE_TTL_SECONDS)
