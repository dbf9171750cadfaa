"""
Recurring Pattern Schemas

Request and response models for recurring patterns, plus one template
model per instance kind. Templates are validated when a pattern is
written and again when instances are built from a stored pattern, so a
malformed template never reaches an instance table.

Clients send camelCase; responses are snake_case.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class TemplateValidationError(ValueError):
    """Raised when a pattern's template does not fit its item type."""
    pass


# =============================================================================
# TEMPLATES
# =============================================================================

class ChecklistItem(BaseModel):
    text: str
    done: bool = False


class ItemTemplate(BaseModel):
    """Fields every generated instance carries."""
    title: str = Field(..., max_length=200)
    course_id: Optional[str] = Field(None, alias="courseId")
    notes: str = ""

    class Config:
        populate_by_name = True

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is required")
        return v


class TaskTemplate(ItemTemplate):
    due_time: str = Field("23:59", alias="dueTime", pattern=CLOCK_PATTERN)
    priority: Optional[Literal["low", "medium", "high"]] = None
    checklist: List[ChecklistItem] = Field(default_factory=list)


class DeadlineTemplate(ItemTemplate):
    due_time: str = Field("23:59", alias="dueTime", pattern=CLOCK_PATTERN)
    link: Optional[str] = None


class ExamTemplate(ItemTemplate):
    time: str = Field("09:00", pattern=CLOCK_PATTERN)
    location: Optional[str] = None


class CalendarEventTemplate(ItemTemplate):
    all_day: bool = Field(False, alias="allDay")
    start_time: Optional[str] = Field(None, alias="startTime", pattern=CLOCK_PATTERN)
    end_time: Optional[str] = Field(None, alias="endTime", pattern=CLOCK_PATTERN)
    location: Optional[str] = None
    color: Optional[str] = None

    @model_validator(mode="after")
    def end_after_start(self):
        if not self.all_day and self.start_time and self.end_time and self.end_time < self.start_time:
            raise ValueError("endTime must not be before startTime")
        return self


TEMPLATE_MODELS = {
    "task": TaskTemplate,
    "deadline": DeadlineTemplate,
    "exam": ExamTemplate,
    "calendar_event": CalendarEventTemplate,
}


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    return f"template.{location}: {message}" if location else f"template: {message}"


def parse_template(item_type: str, data: Optional[Dict[str, Any]]) -> ItemTemplate:
    """
    Validate raw template data for an item type.

    Raises:
        TemplateValidationError: unknown item type, missing title, or bad field
    """
    model = TEMPLATE_MODELS.get(item_type)
    if model is None:
        raise TemplateValidationError(f"Unsupported item type: {item_type}")
    if not data:
        raise TemplateValidationError("template.title: title is required")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise TemplateValidationError(_first_error(e))


def dump_template(template: ItemTemplate) -> Dict[str, Any]:
    """Storage form of a template (camelCase, as clients sent it)."""
    return template.model_dump(by_alias=True, mode="json")


# =============================================================================
# PATTERN REQUESTS
# =============================================================================

class PatternFields(BaseModel):
    interval_days: Optional[int] = Field(None, alias="intervalDays", ge=1, le=365)
    days_of_week: Optional[List[int]] = Field(None, alias="daysOfWeek")
    days_of_month: Optional[List[int]] = Field(None, alias="daysOfMonth")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    occurrence_count: Optional[int] = Field(None, alias="occurrenceCount", ge=1, le=1000)
    timezone_offset: Optional[int] = Field(None, alias="timezoneOffset")
    template: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("template", "taskTemplate", "eventTemplate")
    )
    is_active: Optional[bool] = Field(None, alias="isActive")

    class Config:
        populate_by_name = True

    @field_validator("days_of_week")
    @classmethod
    def valid_weekdays(cls, v):
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("daysOfWeek values must be 0 (Sunday) through 6 (Saturday)")
        return v

    @field_validator("days_of_month")
    @classmethod
    def valid_month_days(cls, v):
        if v is not None and any(d < 1 or d > 31 for d in v):
            raise ValueError("daysOfMonth values must be 1 through 31")
        return v


class PatternCreate(PatternFields):
    item_type: Literal["task", "deadline", "exam", "calendar_event"] = Field("task", alias="itemType")
    # Optional here so a missing value is reported as a 400 by the pattern service
    recurrence_type: Optional[str] = Field(None, alias="recurrenceType")


class PatternUpdate(PatternFields):
    id: Optional[str] = None
    recurrence_type: Optional[str] = Field(None, alias="recurrenceType")


class PatternResponse(BaseModel):
    id: str
    item_type: str
    recurrence_type: str
    interval_days: Optional[int] = None
    days_of_week: List[int] = []
    days_of_month: List[int] = []
    start_date: date
    end_date: Optional[date] = None
    occurrence_count: Optional[int] = None
    timezone_offset: int
    template: Dict[str, Any]
    is_active: bool
    last_generated: Optional[datetime] = None
    instance_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("days_of_week", "days_of_month", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []
