import math
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel

TITLE_MAX_LENGTH = 200


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# DONE has no way out; any other status may move to any other.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.TODO: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.DONE}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.TODO, TaskStatus.DONE}),
    TaskStatus.DONE: frozenset(),
}

DELETABLE_STATUSES = frozenset({TaskStatus.TODO, TaskStatus.DONE})


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Staying in the same status is always allowed."""
    return current == target or target in ALLOWED_TRANSITIONS[current]


class Task(SQLModel, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(max_length=TITLE_MAX_LENGTH)
    description: str = Field(default="")
    status: TaskStatus = Field(default=TaskStatus.TODO)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class TaskCreate(SQLModel):
    """Schema for creating a task.

    Fields are loosely typed; the service checks them all at once and reports
    every broken rule in one message.
    """

    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional, nulls keep the stored value"""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None


class TaskRead(BaseModel):
    """Schema for task responses and cached task payloads"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    created_at: datetime
    updated_at: datetime


class TaskStatistics(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    by_status: dict[str, int]
    completion_rate: int


def collect_validation_errors(data: dict, partial: bool = False) -> list[str]:
    """Return every rule the given task fields break.

    ``partial`` is used for updates, where a missing title keeps the stored one.
    """
    errors = []

    title = data.get("title")
    if title is None:
        if not partial:
            errors.append("Title is required")
    elif not title.strip():
        errors.append("Title is required")
    elif len(title) > TITLE_MAX_LENGTH:
        errors.append(f"Title must be at most {TITLE_MAX_LENGTH} characters")

    status = data.get("status")
    if status is not None and status not in TaskStatus._value2member_map_:
        errors.append(
            f"Status must be one of: {', '.join(s.value for s in TaskStatus)}"
        )

    priority = data.get("priority")
    if priority is not None and priority not in TaskPriority._value2member_map_:
        errors.append(
            f"Priority must be one of: {', '.join(p.value for p in TaskPriority)}"
        )

    return errors


def percentage(part: int, whole: int) -> int:
    """Whole-number percentage, halves rounded up, 0 for an empty whole."""
    if whole <= 0:
        return 0
    return math.floor(part / whole * 100 + 0.5)


def build_statistics(counts: dict[str, int]) -> TaskStatistics:
    by_status = {s.value: int(counts.get(s.value, 0)) for s in TaskStatus}
    total = sum(by_status.values())
    return TaskStatistics(
        total=total,
        by_status=by_status,
        completion_rate=percentage(by_status[TaskStatus.DONE.value], total),
    )
