"""
Recurring Patterns API Router.
Create, edit and delete recurrence rules; instances are generated server-side.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from orbit.database import get_db
from orbit.dependencies.auth import get_current_user
from orbit.models.models import User
from orbit.schemas.recurrence import PatternCreate, PatternResponse, PatternUpdate
from orbit.services import recurring_patterns
from orbit.services.recurring_patterns import PatternNotFoundError, PatternValidationError

router = APIRouter(prefix="/api/recurring-patterns", tags=["recurring-patterns"])


@router.get("", response_model=List[PatternResponse])
def list_patterns(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the caller's recurring patterns."""
    return recurring_patterns.list_patterns(db, current_user.id)


@router.post("", response_model=PatternResponse, status_code=201)
def create_pattern(
    request: PatternCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a pattern and generate its initial instances."""
    try:
        return recurring_patterns.create_pattern(db, current_user.id, request)
    except PatternValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{pattern_id}", response_model=PatternResponse)
def get_pattern(
    pattern_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return recurring_patterns.get_pattern(db, current_user.id, pattern_id)
    except PatternNotFoundError:
        raise HTTPException(status_code=404, detail="Pattern not found")


@router.patch("/{pattern_id}", response_model=PatternResponse)
def update_pattern(
    pattern_id: str,
    request: PatternUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a pattern; open future instances are regenerated from the new rule."""
    try:
        return recurring_patterns.update_pattern(db, current_user.id, pattern_id, request)
    except PatternNotFoundError:
        raise HTTPException(status_code=404, detail="Pattern not found")
    except PatternValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("")
def delete_pattern(
    pattern_id: Optional[str] = Query(None, alias="id"),
    delete_instances: bool = Query(False, alias="deleteInstances"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Delete a pattern.

    deleteInstances=true removes open future instances; otherwise every
    instance is kept as a standalone item.
    """
    if not pattern_id:
        raise HTTPException(status_code=400, detail="Pattern ID required")

    try:
        result = recurring_patterns.delete_pattern(
            db, current_user.id, pattern_id, delete_instances=delete_instances
        )
    except PatternNotFoundError:
        raise HTTPException(status_code=404, detail="Pattern not found")

    return {"success": True, **result}
