"""
Item Service

Listing and status changes for the instance tables. Marking an item done
is the completion event the gamification engine credits.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from orbit.models.models import INSTANCE_MODELS
from orbit.services.gamification import get_gamification_service
from orbit.services.local_day import utcnow

logger = logging.getLogger(__name__)

ITEM_STATUSES = ("open", "done")

# Item types that can be completed (calendar events are scheduled, not finished)
COMPLETABLE_ITEM_TYPES = ("task", "deadline", "exam")

_ORDER_COLUMNS = {
    "task": "due_at",
    "deadline": "due_at",
    "exam": "exam_at",
    "calendar_event": "start_at",
}


class ItemNotFoundError(Exception):
    """Item does not exist or belongs to another user."""
    pass


def serialize_item(item) -> Dict[str, Any]:
    return {column.name: getattr(item, column.name) for column in item.__table__.columns}


def list_items(db: Session, user_id: str, item_type: str) -> List[Any]:
    model = INSTANCE_MODELS[item_type]
    order_column = getattr(model, _ORDER_COLUMNS[item_type])
    return db.query(model).filter(model.user_id == user_id).order_by(order_column).all()


def get_item(db: Session, user_id: str, item_type: str, item_id: str):
    model = INSTANCE_MODELS.get(item_type)
    if model is None:
        raise ItemNotFoundError(item_id)
    item = db.query(model).filter(model.id == item_id, model.user_id == user_id).first()
    if not item:
        raise ItemNotFoundError(item_id)
    return item


def set_item_status(
    db: Session,
    user_id: str,
    item_type: str,
    item_id: str,
    status: str,
    timezone_offset: Optional[int] = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Open or complete an item.

    Completing credits XP; reopening keeps the credit, so completing the
    same item again earns nothing.
    """
    item = get_item(db, user_id, item_type, item_id)
    now = now or utcnow()
    was_done = item.status == "done"

    item.status = status
    item.completed_at = now if status == "done" else None
    db.commit()
    db.refresh(item)

    gamification = None
    if status == "done" and not was_done:
        gamification = get_gamification_service().process_task_completion(
            db,
            user_id,
            timezone_offset=timezone_offset,
            item_type=item_type,
            item_id=item.id,
            now=now,
        )

    return {"item": serialize_item(item), "gamification": gamification}
