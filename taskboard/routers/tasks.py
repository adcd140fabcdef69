"""Task REST API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..errors import NotFoundError
from ..schemas.task import (
    BULK_UPDATE_FIELDS,
    CREATE_FIELDS,
    UPDATE_FIELDS,
    BulkDelete,
    BulkUpdate,
    TaskCreate,
    TaskIdParams,
    TaskQuery,
    TaskResponse,
    TaskUpdate,
)
from ..security.guard import SecurityGuard, SecurityPolicy, read_json_body, validate_request_body
from ..security.sanitize import sanitize_object
from ..services import task_svc

router = APIRouter(prefix="/tasks", tags=["tasks"])

LIST_POLICY = SecurityPolicy(scope="tasks.list", rate_limit=settings.rate_limit_list)
READ_POLICY = SecurityPolicy(scope="tasks.read", rate_limit=settings.rate_limit_read)
CREATE_POLICY = SecurityPolicy(
    scope="tasks.create",
    rate_limit=settings.rate_limit_create,
    max_request_size=settings.max_request_size,
    enable_csrf=True,
)
UPDATE_POLICY = SecurityPolicy(
    scope="tasks.update",
    rate_limit=settings.rate_limit_update,
    max_request_size=settings.max_request_size,
    enable_csrf=True,
)
DELETE_POLICY = SecurityPolicy(
    scope="tasks.delete",
    rate_limit=settings.rate_limit_delete,
    enable_csrf=True,
)
BULK_UPDATE_POLICY = SecurityPolicy(
    scope="tasks.bulk_update",
    rate_limit=settings.rate_limit_bulk_update,
    max_request_size=settings.max_request_size,
    enable_csrf=True,
)
BULK_DELETE_POLICY = SecurityPolicy(
    scope="tasks.bulk_delete",
    rate_limit=settings.rate_limit_bulk_delete,
    max_request_size=settings.max_request_size,
    enable_csrf=True,
)

_MULTI_VALUE_PARAMS = ("priority", "status")
_SINGLE_VALUE_PARAMS = ("search", "sortBy", "sortOrder", "page", "limit")


def _task_json(task) -> dict:
    return TaskResponse.model_validate(task).to_json()


def _query_params(request: Request) -> dict:
    params: dict[str, object] = {}
    for key in _SINGLE_VALUE_PARAMS:
        if key in request.query_params:
            params[key] = request.query_params[key]
    for key in _MULTI_VALUE_PARAMS:
        values = request.query_params.getlist(key)
        if values:
            params[key] = values
    return params


def _task_id(raw: str) -> str:
    return TaskIdParams.model_validate({"id": raw}).id


async def _json_object(request: Request) -> dict:
    body = await read_json_body(request)
    validate_request_body(body)
    return body


def _not_found(exc: task_svc.TasksNotFound) -> NotFoundError:
    return NotFoundError(str(exc), details={"missingIds": exc.missing_ids})


@router.get("", dependencies=[Depends(SecurityGuard(LIST_POLICY))])
async def list_tasks(request: Request, db: AsyncSession = Depends(get_db)):
    query = TaskQuery.model_validate(_query_params(request))
    tasks, total = await task_svc.list_tasks(
        db,
        search=query.search,
        priorities=query.priority,
        statuses=query.status,
        sort_by=query.sort_by,
        sort_order=query.sort_order,
        page=query.page,
        limit=query.limit,
    )
    return {
        "tasks": [_task_json(t) for t in tasks],
        "pagination": {
            "page": query.page,
            "limit": query.limit,
            "total": total,
            "totalPages": task_svc.total_pages(total, query.limit),
        },
    }


@router.post("", status_code=201, dependencies=[Depends(SecurityGuard(CREATE_POLICY))])
async def create_task(request: Request, db: AsyncSession = Depends(get_db)):
    body = await _json_object(request)
    data = TaskCreate.model_validate(sanitize_object(body, CREATE_FIELDS))
    task = await task_svc.create_task(db, **data.model_dump())
    return _task_json(task)


# Bulk routes are registered before /{task_id} so "bulk" is never read as an id.
@router.patch("/bulk", dependencies=[Depends(SecurityGuard(BULK_UPDATE_POLICY))])
async def bulk_update_tasks(request: Request, db: AsyncSession = Depends(get_db)):
    body = await _json_object(request)
    data = BulkUpdate.model_validate({
        "ids": body.get("ids"),
        "data": sanitize_object(body.get("data"), BULK_UPDATE_FIELDS),
    })
    try:
        tasks = await task_svc.bulk_update_tasks(
            db, data.ids, priority=data.data.priority, status=data.data.status,
        )
    except task_svc.TasksNotFound as exc:
        raise _not_found(exc) from exc
    return [_task_json(t) for t in tasks]


@router.delete("/bulk", dependencies=[Depends(SecurityGuard(BULK_DELETE_POLICY))])
async def bulk_delete_tasks(request: Request, db: AsyncSession = Depends(get_db)):
    body = await _json_object(request)
    data = BulkDelete.model_validate({"ids": body.get("ids")})
    try:
        deleted = await task_svc.bulk_delete_tasks(db, data.ids)
    except task_svc.TasksNotFound as exc:
        raise _not_found(exc) from exc
    return {
        "message": f"{len(deleted)} tasks deleted successfully",
        "deletedIds": deleted,
    }


@router.get("/{task_id}", dependencies=[Depends(SecurityGuard(READ_POLICY))])
async def get_task(task_id: str, db: AsyncSession = Depends(get_db)):
    task = await task_svc.get_task(db, _task_id(task_id))
    if not task:
        raise NotFoundError("Task not found")
    return _task_json(task)


@router.api_route(
    "/{task_id}",
    methods=["PATCH", "PUT"],
    dependencies=[Depends(SecurityGuard(UPDATE_POLICY))],
)
async def update_task(task_id: str, request: Request, db: AsyncSession = Depends(get_db)):
    task_id = _task_id(task_id)
    body = await _json_object(request)
    data = TaskUpdate.model_validate(sanitize_object(body, UPDATE_FIELDS))
    task = await task_svc.update_task(db, task_id, **data.model_dump(exclude_unset=True))
    if not task:
        raise NotFoundError("Task not found")
    return _task_json(task)


@router.delete("/{task_id}", dependencies=[Depends(SecurityGuard(DELETE_POLICY))])
async def delete_task(task_id: str, db: AsyncSession = Depends(get_db)):
    task_id = _task_id(task_id)
    deleted = await task_svc.delete_task(db, task_id)
    if not deleted:
        raise NotFoundError("Task not found")
    return {"message": "Task deleted successfully", "id": task_id}
