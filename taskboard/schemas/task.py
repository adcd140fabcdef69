"""Task request/response schemas.

Field rules are declared once as annotated types and shared between schemas.
Length bounds apply to the submitted text; the value is then sanitized.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..models.task import TaskPriority, TaskStatus
from ..security.sanitize import (
    sanitize_array,
    sanitize_id,
    sanitize_number,
    sanitize_search_query,
    sanitize_sort_field,
    sanitize_sort_order,
    sanitize_string,
)

SORT_FIELDS = ("createdAt", "updatedAt", "priority", "status", "title")
CREATE_FIELDS = ("title", "description", "priority", "status", "dueDate")
UPDATE_FIELDS = CREATE_FIELDS
BULK_UPDATE_FIELDS = ("priority", "status")
MAX_BULK_IDS = 100


def _clean_title(value: str) -> str:
    cleaned = sanitize_string(value, max_length=255)
    if not cleaned:
        raise ValueError("Title is required")
    return cleaned


def _clean_description(value: str) -> str | None:
    return sanitize_string(value, max_length=1000) or None


def _clean_search(value: str) -> str | None:
    return sanitize_search_query(value) or None


def _as_list(value: Any) -> Any:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, (str, TaskPriority, TaskStatus)):
        return [value]
    return value


def _page_number(value: Any) -> int:
    return int(sanitize_number(value, min_value=1, is_int=True))


def _page_size(value: Any) -> int:
    return int(sanitize_number(value, min_value=1, max_value=100, is_int=True))


def _unique_ids(ids: list[str]) -> list[str]:
    return sanitize_array(ids, sanitize_id, unique=True)


Title = Annotated[str, StringConstraints(min_length=1, max_length=255), AfterValidator(_clean_title)]
Description = Annotated[str, StringConstraints(max_length=1000), AfterValidator(_clean_description)]
TaskId = Annotated[str, AfterValidator(sanitize_id)]
TaskIds = Annotated[
    list[TaskId],
    Field(min_length=1, max_length=MAX_BULK_IDS),
    AfterValidator(_unique_ids),
]


class TaskCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Title
    description: Description | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: datetime | None = Field(default=None, alias="dueDate")


class TaskUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    model_config = ConfigDict(populate_by_name=True)

    title: Title | None = None
    description: Description | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    due_date: datetime | None = Field(default=None, alias="dueDate")

    @field_validator("title", "priority", "status", mode="before")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class TaskIdParams(BaseModel):
    id: TaskId


class TaskQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search: Annotated[str, StringConstraints(max_length=100), AfterValidator(_clean_search)] | None = None
    priority: Annotated[list[TaskPriority] | None, BeforeValidator(_as_list)] = None
    status: Annotated[list[TaskStatus] | None, BeforeValidator(_as_list)] = None
    sort_by: str = Field(default="createdAt", alias="sortBy")
    sort_order: Annotated[Literal["asc", "desc"], BeforeValidator(sanitize_sort_order)] = Field(
        default="desc", alias="sortOrder"
    )
    page: Annotated[int, BeforeValidator(_page_number)] = 1
    limit: Annotated[int, BeforeValidator(_page_size)] = 10

    @field_validator("sort_by", mode="before")
    @classmethod
    def _allowed_sort_field(cls, value: Any) -> str:
        return sanitize_sort_field(value, SORT_FIELDS)


class BulkDelete(BaseModel):
    ids: TaskIds


class BulkUpdateData(BaseModel):
    priority: TaskPriority | None = None
    status: TaskStatus | None = None

    @model_validator(mode="after")
    def _require_a_field(self) -> "BulkUpdateData":
        if self.priority is None and self.status is None:
            raise ValueError("At least one field (priority or status) must be provided")
        return self


class BulkUpdate(BaseModel):
    ids: TaskIds
    data: BulkUpdateData


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, alias_generator=to_camel)

    id: str
    title: str
    description: str | None = None
    priority: TaskPriority
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    due_date: datetime | None = None

    @field_serializer("created_at", "updated_at", "completed_at", "due_date")
    def _as_utc(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
