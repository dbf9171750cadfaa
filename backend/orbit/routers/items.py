"""
Items API Router.
Tasks, deadlines, exams and calendar events, including recurring instances.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orbit.database import get_db
from orbit.dependencies.auth import get_current_user
from orbit.models.models import INSTANCE_MODELS, User
from orbit.services import recurring_patterns
from orbit.services.items import (
    COMPLETABLE_ITEM_TYPES,
    ItemNotFoundError,
    list_items,
    serialize_item,
    set_item_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/items", tags=["items"])


class StatusUpdateRequest(BaseModel):
    status: Literal["open", "done"]
    timezone_offset: int = Field(0, alias="timezoneOffset")

    class Config:
        populate_by_name = True


def _check_item_type(item_type: str) -> None:
    if item_type not in INSTANCE_MODELS:
        raise HTTPException(status_code=404, detail=f"Unknown item type: {item_type}")


@router.get("/{item_type}")
def get_items(
    item_type: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List items of one type, topping up recurring instances first."""
    _check_item_type(item_type)

    summary = recurring_patterns.generate_all_user_instances(db, current_user.id)
    if summary["errors"]:
        logger.warning(f"{summary['errors']} patterns failed to generate for user {current_user.id}")

    return {"items": [serialize_item(item) for item in list_items(db, current_user.id, item_type)]}


@router.patch("/{item_type}/{item_id}")
def update_item_status(
    item_type: str,
    item_id: str,
    request: StatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Open or complete an item. Completing it returns the XP result."""
    _check_item_type(item_type)
    if item_type not in COMPLETABLE_ITEM_TYPES:
        raise HTTPException(status_code=400, detail=f"{item_type} items cannot be completed")

    try:
        return set_item_status(
            db,
            current_user.id,
            item_type,
            item_id,
            request.status,
            timezone_offset=request.timezone_offset,
        )
    except ItemNotFoundError:
        raise HTTPException(status_code=404, detail="Item not found")
