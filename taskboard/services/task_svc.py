"""Task service."""

from __future__ import annotations

import logging
import math
from datetime import datetime

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.task import Task, TaskPriority, TaskStatus

log = logging.getLogger(__name__)

_PRIORITY_RANK = {p.value: rank for rank, p in enumerate(TaskPriority)}
_STATUS_RANK = {s.value: rank for rank, s in enumerate(TaskStatus)}

SORT_COLUMNS = {
    "createdAt": Task.created_at,
    "updatedAt": Task.updated_at,
    "title": Task.title,
    "priority": case(_PRIORITY_RANK, value=Task.priority, else_=len(_PRIORITY_RANK)),
    "status": case(_STATUS_RANK, value=Task.status, else_=len(_STATUS_RANK)),
}


class TasksNotFound(Exception):
    """Raised when a bulk operation references ids that do not exist."""

    def __init__(self, missing_ids: list[str]):
        self.missing_ids = missing_ids
        super().__init__(f"Tasks not found: {', '.join(missing_ids)}")


def _value(item: object) -> object:
    return item.value if isinstance(item, (TaskPriority, TaskStatus)) else item


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


async def list_tasks(
    db: AsyncSession,
    *,
    search: str | None = None,
    priorities: list[str] | None = None,
    statuses: list[str] | None = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Task], int]:
    """List tasks with filters, sorting and pagination. Returns (tasks, total)."""
    stmt = select(Task)

    if search:
        q = f"%{search}%"
        stmt = stmt.where(
            or_(
                Task.title.ilike(q, escape="\\"),
                Task.description.ilike(q, escape="\\"),
            )
        )
    if priorities:
        stmt = stmt.where(Task.priority.in_([_value(p) for p in priorities]))
    if statuses:
        stmt = stmt.where(Task.status.in_([_value(s) for s in statuses]))

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    column = SORT_COLUMNS.get(sort_by, Task.created_at)
    if sort_order == "asc":
        ordering = [column.asc(), Task.created_at.asc(), Task.id.asc()]
    else:
        ordering = [column.desc(), Task.created_at.desc(), Task.id.desc()]
    stmt = stmt.order_by(*ordering).offset((page - 1) * limit).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def get_task(db: AsyncSession, task_id: str) -> Task | None:
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def create_task(db: AsyncSession, **kwargs) -> Task:
    values = {key: _value(value) for key, value in kwargs.items()}
    if values.get("status") == TaskStatus.COMPLETED.value:
        values["completed_at"] = utcnow()
    task = Task(**values)
    db.add(task)
    await db.commit()
    await db.refresh(task)
    log.info("Created task %s", task.id)
    return task


def _apply_completion(task: Task, new_status: str, now: datetime) -> None:
    """``completed_at`` follows the status: stamped on entering COMPLETED, cleared on leaving."""
    if new_status == TaskStatus.COMPLETED.value:
        if task.status != TaskStatus.COMPLETED.value or task.completed_at is None:
            task.completed_at = now
    else:
        task.completed_at = None


async def update_task(db: AsyncSession, task_id: str, **kwargs) -> Task | None:
    task = await get_task(db, task_id)
    if not task:
        return None
    now = utcnow()
    values = {key: _value(value) for key, value in kwargs.items()}
    if "status" in values:
        _apply_completion(task, values["status"], now)
    for key, value in values.items():
        setattr(task, key, value)
    task.updated_at = now
    await db.commit()
    await db.refresh(task)
    return task


async def delete_task(db: AsyncSession, task_id: str) -> bool:
    task = await get_task(db, task_id)
    if not task:
        return False
    await db.delete(task)
    await db.commit()
    log.info("Deleted task %s", task_id)
    return True


def _missing(requested: list[str], affected: set[str]) -> list[str]:
    return [task_id for task_id in requested if task_id not in affected]


async def bulk_update_tasks(
    db: AsyncSession,
    ids: list[str],
    *,
    priority: TaskPriority | str | None = None,
    status: TaskStatus | str | None = None,
) -> list[Task]:
    """Apply one update to every id, or to none of them.

    The update reports the rows it touched; if any requested id is absent the
    transaction is rolled back and ``TasksNotFound`` lists the missing ids.
    """
    now = utcnow()
    values: dict[str, object] = {"updated_at": now}
    if priority is not None:
        values["priority"] = _value(priority)
    if status is not None:
        values["status"] = _value(status)
        if values["status"] == TaskStatus.COMPLETED.value:
            values["completed_at"] = case(
                (Task.status == TaskStatus.COMPLETED.value, func.coalesce(Task.completed_at, now)),
                else_=now,
            )
        else:
            values["completed_at"] = None

    stmt = (
        update(Task)
        .where(Task.id.in_(ids))
        .values(**values)
        .returning(Task.id)
        .execution_options(synchronize_session=False)
    )
    affected = set((await db.execute(stmt)).scalars().all())
    missing = _missing(ids, affected)
    if missing:
        await db.rollback()
        raise TasksNotFound(missing)
    await db.commit()

    result = await db.execute(
        select(Task)
        .where(Task.id.in_(ids))
        .order_by(Task.created_at.desc(), Task.id.desc())
        .execution_options(populate_existing=True)
    )
    log.info("Bulk updated %d tasks", len(ids))
    return list(result.scalars().all())


async def bulk_delete_tasks(db: AsyncSession, ids: list[str]) -> list[str]:
    """Delete every id, or none of them. Returns the deleted ids in request order."""
    stmt = (
        delete(Task)
        .where(Task.id.in_(ids))
        .returning(Task.id)
        .execution_options(synchronize_session=False)
    )
    affected = set((await db.execute(stmt)).scalars().all())
    missing = _missing(ids, affected)
    if missing:
        await db.rollback()
        raise TasksNotFound(missing)
    await db.commit()
    log.info("Bulk deleted %d tasks", len(ids))
    return list(ids)
