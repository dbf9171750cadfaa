"""
Scheduled job endpoints.
Called by an external scheduler with `Authorization: Bearer $CRON_SECRET`.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orbit.database import get_db
from orbit.dependencies.auth import verify_cron_secret
from orbit.services.recurring_patterns import generate_for_all_users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.post("/recurring-instances", dependencies=[Depends(verify_cron_secret)])
def generate_recurring_instances(db: Session = Depends(get_db)):
    """Top up recurring instances for every user with active patterns."""
    logger.info("Scheduled recurring instance generation started")
    return generate_for_all_users(db)
