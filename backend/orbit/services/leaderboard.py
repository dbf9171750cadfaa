"""
College leaderboard.

Ranks active colleges by the month's summed MonthlyXpTotal. The ranking
is the same for every caller, so it is cached per month; only the
"is this my college" flag is applied per request.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from orbit.models.models import College, MonthlyXpTotal, User
from orbit.utils.cache import HybridCache

logger = logging.getLogger(__name__)


def _cache_key(month: str) -> str:
    return f"leaderboard:colleges:{month}"


def rank_colleges(db: Session, month: str) -> List[Dict[str, Any]]:
    rows = db.query(
        College.id,
        College.full_name,
        College.acronym,
        func.sum(MonthlyXpTotal.total_xp).label("total_xp"),
        func.count(MonthlyXpTotal.user_id).label("member_count"),
    ).join(
        MonthlyXpTotal, MonthlyXpTotal.college_id == College.id
    ).filter(
        College.is_active == True,  # noqa: E712
        MonthlyXpTotal.year_month == month
    ).group_by(
        College.id, College.full_name, College.acronym
    ).order_by(
        func.sum(MonthlyXpTotal.total_xp).desc(), College.full_name
    ).all()

    return [
        {
            "rank": index + 1,
            "college_id": row.id,
            "name": row.full_name,
            "acronym": row.acronym,
            "total_xp": int(row.total_xp or 0),
            "member_count": row.member_count,
        }
        for index, row in enumerate(rows)
    ]


def get_college_leaderboard(
    db: Session,
    cache: HybridCache,
    user: Optional[User],
    month: str,
    ttl: Optional[int] = None,
) -> Dict[str, Any]:
    entries = cache.get(_cache_key(month))
    if entries is None:
        entries = rank_colleges(db, month)
        cache.set(_cache_key(month), entries, ttl)
        logger.debug(f"Leaderboard for {month} computed: {len(entries)} colleges")

    user_college_id = user.college_id if user else None
    return {
        "month": month,
        "colleges": [
            dict(entry, is_user_college=entry["college_id"] == user_college_id)
            for entry in entries
        ],
    }
