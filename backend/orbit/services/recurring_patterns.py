"""
Recurring Pattern Service

Turns recurring patterns into concrete task, deadline, exam and calendar
event rows, and keeps those rows in step with the pattern as it is
edited or deleted.

Instances are unique per (pattern, local date). Completed instances and
anything dated before the user's local today are history: edits and
regeneration never touch them.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orbit.config import (
    RECURRENCE_MAX_INSTANCES_PER_RUN,
    RECURRENCE_REFRESH_MINUTES,
    RECURRENCE_WINDOW_DAYS,
)
from orbit.models.models import INSTANCE_MODELS, RecurringPattern
from orbit.schemas.recurrence import (
    PatternCreate,
    PatternUpdate,
    TemplateValidationError,
    dump_template,
    parse_template,
)
from orbit.services.local_day import clamp_offset, local_date, local_to_utc, parse_clock, utcnow
from orbit.services.recurrence import RECURRENCE_TYPES, RecurrenceRule, expand_occurrences

logger = logging.getLogger(__name__)

DEFAULT_DUE_TIME = time(23, 59)
DEFAULT_EXAM_TIME = time(9, 0)
DEFAULT_EVENT_START = time(9, 0)


class PatternNotFoundError(Exception):
    """Pattern does not exist or belongs to another user."""
    pass


class PatternValidationError(ValueError):
    """Pattern rule or template is invalid."""
    pass


# =============================================================================
# LOOKUP
# =============================================================================

def list_patterns(db: Session, user_id: str):
    return db.query(RecurringPattern).filter(
        RecurringPattern.user_id == user_id
    ).order_by(RecurringPattern.created_at.desc()).all()


def get_pattern(db: Session, user_id: str, pattern_id: str) -> RecurringPattern:
    pattern = db.query(RecurringPattern).filter(
        RecurringPattern.id == pattern_id,
        RecurringPattern.user_id == user_id
    ).first()
    if not pattern:
        raise PatternNotFoundError(pattern_id)
    return pattern


def _validate_rule(pattern: RecurringPattern) -> None:
    if pattern.recurrence_type not in RECURRENCE_TYPES:
        raise PatternValidationError(
            f"recurrenceType must be one of: {', '.join(RECURRENCE_TYPES)}"
        )
    if pattern.end_date is not None and pattern.end_date < pattern.start_date:
        raise PatternValidationError("endDate must not be before startDate")


def _template_for(item_type: str, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        return dump_template(parse_template(item_type, data))
    except TemplateValidationError as e:
        raise PatternValidationError(str(e))


# =============================================================================
# INSTANCE MATERIALIZATION
# =============================================================================

def build_instance(pattern: RecurringPattern, template, day: date):
    """Build (but do not add) the instance row for one occurrence date."""
    offset = pattern.timezone_offset or 0
    common = {
        "user_id": pattern.user_id,
        "course_id": template.course_id,
        "title": template.title,
        "notes": template.notes,
        "status": "open",
        "recurring_pattern_id": pattern.id,
        "instance_date": day,
    }
    model = INSTANCE_MODELS[pattern.item_type]

    if pattern.item_type == "task":
        return model(
            due_at=local_to_utc(day, parse_clock(template.due_time, DEFAULT_DUE_TIME), offset),
            priority=template.priority,
            checklist=[item.model_dump() for item in template.checklist],
            **common,
        )
    if pattern.item_type == "deadline":
        return model(
            due_at=local_to_utc(day, parse_clock(template.due_time, DEFAULT_DUE_TIME), offset),
            link=template.link,
            **common,
        )
    if pattern.item_type == "exam":
        return model(
            exam_at=local_to_utc(day, parse_clock(template.time, DEFAULT_EXAM_TIME), offset),
            location=template.location,
            **common,
        )

    # calendar_event
    if template.all_day:
        start_at = local_to_utc(day, time(0, 0), offset)
        end_at = None
    else:
        start_at = local_to_utc(day, parse_clock(template.start_time, DEFAULT_EVENT_START), offset)
        end_at = local_to_utc(day, parse_clock(template.end_time, DEFAULT_EVENT_START), offset) if template.end_time else None
    return model(
        start_at=start_at,
        end_at=end_at,
        all_day=template.all_day,
        location=template.location,
        color=template.color,
        **common,
    )


def _materialize(
    db: Session,
    pattern: RecurringPattern,
    window_start: Optional[date],
    now: datetime,
    window_days: int,
) -> int:
    """
    Add missing instances for the pattern without committing.

    With no window_start, generation resumes the day after the latest
    existing instance, so an occurrence the user deleted by hand is not
    brought back on the next top-up.
    """
    if not pattern.is_active:
        return 0

    model = INSTANCE_MODELS[pattern.item_type]
    existing = {
        row[0] for row in db.query(model.instance_date).filter(
            model.recurring_pattern_id == pattern.id,
            model.instance_date.isnot(None)
        ).all()
    }

    if window_start is None:
        window_start = max(existing) + timedelta(days=1) if existing else pattern.start_date
    window_start = max(window_start, pattern.start_date)

    today = local_date(now, pattern.timezone_offset or 0)
    window_end = today + timedelta(days=window_days)

    template = parse_template(pattern.item_type, pattern.template)
    rule = RecurrenceRule.from_pattern(pattern)

    created = 0
    for day in expand_occurrences(rule, window_start, window_end):
        if day in existing:
            continue
        if created >= RECURRENCE_MAX_INSTANCES_PER_RUN:
            logger.warning(
                f"Pattern {pattern.id} hit the per-run limit of {RECURRENCE_MAX_INSTANCES_PER_RUN} "
                f"instances at {day}; the next top-up continues from there"
            )
            break
        db.add(build_instance(pattern, template, day))
        existing.add(day)
        created += 1

    pattern.instance_count = len(existing)
    pattern.last_generated = now
    return created


def generate_instances(
    db: Session,
    pattern: RecurringPattern,
    window_start: Optional[date] = None,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> int:
    """
    Materialize the pattern's occurrences up to today + the rolling window.

    Returns:
        Number of instances created
    """
    now = now or utcnow()
    created = _materialize(db, pattern, window_start, now, window_days or RECURRENCE_WINDOW_DAYS)
    db.commit()
    if created:
        logger.info(f"Generated {created} {pattern.item_type} instances for pattern {pattern.id}")
    return created


def _future_open_instances(db: Session, pattern: RecurringPattern, today: date):
    model = INSTANCE_MODELS[pattern.item_type]
    return db.query(model).filter(
        model.recurring_pattern_id == pattern.id,
        model.status != "done",
        model.instance_date >= today
    )


def regenerate_future_instances(
    db: Session,
    pattern: RecurringPattern,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Replace open instances dated today or later with a fresh expansion.

    Runs in a savepoint: either the old future instances are replaced in
    full, or nothing changes.
    """
    now = now or utcnow()
    today = local_date(now, pattern.timezone_offset or 0)

    with db.begin_nested():
        deleted = _future_open_instances(db, pattern, today).delete(synchronize_session=False)
        created = _materialize(db, pattern, today, now, RECURRENCE_WINDOW_DAYS)
    db.commit()

    logger.info(
        f"Regenerated pattern {pattern.id}: removed {deleted} future instances, created {created}"
    )
    return {"deleted": deleted, "created": created}


# =============================================================================
# PATTERN LIFECYCLE
# =============================================================================

def create_pattern(
    db: Session,
    user_id: str,
    data: PatternCreate,
    now: Optional[datetime] = None,
) -> RecurringPattern:
    """
    Validate, store and materialize a new pattern.

    Raises:
        PatternValidationError: missing/unknown recurrence type, bad dates, bad template
    """
    now = now or utcnow()
    if not data.recurrence_type:
        raise PatternValidationError("recurrenceType is required")

    offset = clamp_offset(data.timezone_offset)
    pattern = RecurringPattern(
        user_id=user_id,
        item_type=data.item_type,
        recurrence_type=data.recurrence_type,
        interval_days=data.interval_days,
        days_of_week=data.days_of_week or [],
        days_of_month=data.days_of_month or [],
        start_date=data.start_date or local_date(now, offset),
        end_date=data.end_date,
        occurrence_count=data.occurrence_count,
        timezone_offset=offset,
        template=_template_for(data.item_type, data.template),
        is_active=True if data.is_active is None else data.is_active,
        instance_count=0,
    )
    _validate_rule(pattern)

    db.add(pattern)
    db.commit()
    db.refresh(pattern)

    generate_instances(db, pattern, now=now)
    db.refresh(pattern)
    return pattern


def update_pattern(
    db: Session,
    user_id: str,
    pattern_id: str,
    data: PatternUpdate,
    now: Optional[datetime] = None,
) -> RecurringPattern:
    """
    Apply a partial update, then regenerate future instances.

    The pattern update is committed first. A failed regeneration is
    logged and leaves the previous future instances in place; it does not
    fail the update.
    """
    pattern = get_pattern(db, user_id, pattern_id)
    changes = data.model_dump(exclude_unset=True, exclude={"id"})

    if "template" in changes:
        changes["template"] = _template_for(pattern.item_type, changes["template"])
    if "timezone_offset" in changes:
        changes["timezone_offset"] = clamp_offset(changes["timezone_offset"])
    for list_field in ("days_of_week", "days_of_month"):
        if list_field in changes and changes[list_field] is None:
            changes[list_field] = []
    for required in ("recurrence_type", "start_date", "is_active"):
        if required in changes and changes[required] is None:
            del changes[required]

    for field_name, value in changes.items():
        setattr(pattern, field_name, value)

    try:
        _validate_rule(pattern)
    except PatternValidationError:
        db.rollback()
        raise

    db.commit()
    db.refresh(pattern)

    try:
        regenerate_future_instances(db, pattern, now=now)
    except Exception as e:
        db.rollback()
        logger.error(f"Regeneration failed for pattern {pattern.id}; update kept: {e}", exc_info=True)

    db.refresh(pattern)
    return pattern


def delete_pattern(
    db: Session,
    user_id: str,
    pattern_id: str,
    delete_instances: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Delete a pattern.

    With delete_instances, open instances dated today or later are removed
    and everything else is detached. Without it, every instance is
    detached and survives as a standalone item.
    """
    pattern = get_pattern(db, user_id, pattern_id)
    now = now or utcnow()
    today = local_date(now, pattern.timezone_offset or 0)
    model = INSTANCE_MODELS[pattern.item_type]

    deleted = 0
    if delete_instances:
        deleted = _future_open_instances(db, pattern, today).delete(synchronize_session=False)

    detached = db.query(model).filter(
        model.recurring_pattern_id == pattern.id
    ).update(
        {model.recurring_pattern_id: None, model.instance_date: None},
        synchronize_session=False
    )

    db.delete(pattern)
    db.commit()

    logger.info(f"Deleted pattern {pattern_id}: {deleted} instances removed, {detached} detached")
    return {"deleted": deleted, "detached": detached}


# =============================================================================
# ROLLING-WINDOW TOP-UP
# =============================================================================

def generate_all_user_instances(
    db: Session,
    user_id: str,
    now: Optional[datetime] = None,
    force: bool = False,
) -> Dict[str, int]:
    """
    Top up every active pattern of a user whose last generation is stale.

    A failing pattern is logged and skipped; the others still run. A
    duplicate (pattern, date) insert means a concurrent run already
    generated those instances, so it is not counted as an error.
    """
    now = now or utcnow()
    stale_before = now - timedelta(minutes=RECURRENCE_REFRESH_MINUTES)

    query = db.query(RecurringPattern).filter(
        RecurringPattern.user_id == user_id,
        RecurringPattern.is_active == True  # noqa: E712
    )
    if not force:
        query = query.filter(
            (RecurringPattern.last_generated.is_(None)) |
            (RecurringPattern.last_generated < stale_before)
        )

    summary = {"patterns": 0, "created": 0, "errors": 0}
    for pattern in query.all():
        try:
            summary["created"] += generate_instances(db, pattern, now=now)
            summary["patterns"] += 1
        except IntegrityError:
            db.rollback()
            logger.info(f"Instances for pattern {pattern.id} already generated by a concurrent run")
        except Exception as e:
            db.rollback()
            summary["errors"] += 1
            logger.error(f"Instance generation failed for pattern {pattern.id}: {e}", exc_info=True)

    return summary


def generate_for_all_users(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """Scheduled job: top up stale patterns for every user who has any."""
    now = now or utcnow()
    user_ids = [
        row[0] for row in db.query(RecurringPattern.user_id).filter(
            RecurringPattern.is_active == True  # noqa: E712
        ).distinct().all()
    ]

    totals = {"users": len(user_ids), "patterns": 0, "created": 0, "errors": 0}
    for user_id in user_ids:
        result = generate_all_user_instances(db, user_id, now=now)
        totals["patterns"] += result["patterns"]
        totals["created"] += result["created"]
        totals["errors"] += result["errors"]

    logger.info(
        f"Scheduled generation: {totals['users']} users, {totals['patterns']} patterns, "
        f"{totals['created']} instances created, {totals['errors']} errors"
    )
    return totals
