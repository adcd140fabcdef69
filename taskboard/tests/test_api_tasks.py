"""Test task API routes."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from taskboard.security.sanitize import ID_RE

MISSING_ID = "c" + "z" * 24


async def _create(client: AsyncClient, **fields) -> dict:
    resp = await client.post("/tasks", json={"title": "Task", **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_create_task(client: AsyncClient):
    resp = await client.post("/tasks", json={"title": "Write report", "priority": "HIGH"})
    assert resp.status_code == 201
    data = resp.json()
    assert ID_RE.match(data["id"])
    assert data["title"] == "Write report"
    assert data["priority"] == "HIGH"
    assert data["status"] == "PENDING"
    assert data["description"] is None
    assert data["completedAt"] is None
    assert data["createdAt"].endswith("+00:00")
    assert resp.headers["X-RateLimit-Limit"] == "30"
    assert resp.headers["X-RateLimit-Remaining"] == "29"


@pytest.mark.asyncio
async def test_create_task_sanitizes_markup(client: AsyncClient):
    data = await _create(client, title="<script>alert(1)</script>Buy <b>milk</b> & eggs")
    assert data["title"] == "Buy milk &amp; eggs"


@pytest.mark.asyncio
async def test_create_task_ignores_unknown_fields(client: AsyncClient):
    data = await _create(client, completedAt="2020-01-01T00:00:00Z", id="c" + "a" * 24)
    assert data["completedAt"] is None
    assert data["id"] != "c" + "a" * 24


@pytest.mark.asyncio
async def test_create_completed_task_sets_completed_at(client: AsyncClient):
    data = await _create(client, status="COMPLETED")
    assert data["completedAt"] is not None


@pytest.mark.asyncio
async def test_create_task_title_too_long(client: AsyncClient):
    resp = await client.post("/tasks", json={"title": "x" * 300})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation Error"
    assert body["message"] == "Invalid request data"
    assert body["details"][0]["field"] == "title"


@pytest.mark.asyncio
async def test_create_task_missing_title(client: AsyncClient):
    resp = await client.post("/tasks", json={"description": "no title"})
    assert resp.status_code == 400
    assert resp.json()["details"][0]["field"] == "title"


@pytest.mark.asyncio
async def test_dangerous_keys_rejected(client: AsyncClient):
    resp = await client.post("/tasks", json={"title": "x", "__proto__": {"isAdmin": True}})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Request contains potentially dangerous keys"

    resp = await client.post("/tasks", json={"title": "x", "meta": [{"constructor": {}}]})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_body_must_be_json_object(client: AsyncClient):
    headers = {"Content-Type": "application/json"}
    resp = await client.post("/tasks", content=b"", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Request body must be a valid JSON object"

    resp = await client.post("/tasks", content=b"{not json", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid JSON in request body"

    resp = await client.post("/tasks", json=["title"])
    assert resp.status_code == 400
    assert resp.json()["message"] == "Request body must be a valid JSON object"


@pytest.mark.asyncio
async def test_content_type_must_be_json(client: AsyncClient):
    resp = await client.post("/tasks", content=b"title=x", headers={"Content-Type": "text/plain"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Content-Type must be application/json"


@pytest.mark.asyncio
async def test_request_too_large(client: AsyncClient):
    resp = await client.post("/tasks", json={"title": "x", "description": "d" * 20_000})
    assert resp.status_code == 413
    body = resp.json()
    assert body["error"] == "Payload Too Large"
    assert body["details"]["maxBytes"] == 10 * 1024


@pytest.mark.asyncio
async def test_create_rate_limited(client: AsyncClient):
    for _ in range(30):
        resp = await client.post("/tasks", json={"title": "spam"})
        assert resp.status_code == 201

    resp = await client.post("/tasks", json={"title": "one too many"})
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) > 0
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.json()["error"] == "Rate Limit Exceeded"

    # Other scopes keep their own budget
    resp = await client.get("/tasks")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_rate_limit_is_per_client(client: AsyncClient):
    for _ in range(10):
        resp = await client.request(
            "DELETE", "/tasks/bulk", json={"ids": [MISSING_ID]}, headers={"X-Forwarded-For": "10.0.0.1"},
        )
        assert resp.status_code == 404
    resp = await client.request(
        "DELETE", "/tasks/bulk", json={"ids": [MISSING_ID]}, headers={"X-Forwarded-For": "10.0.0.1"},
    )
    assert resp.status_code == 429

    resp = await client.request(
        "DELETE", "/tasks/bulk", json={"ids": [MISSING_ID]}, headers={"X-Forwarded-For": "10.0.0.2"},
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_tasks_pagination(client: AsyncClient):
    for i in range(3):
        await _create(client, title=f"Task {i}")

    resp = await client.get("/tasks", params={"limit": 2})
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["tasks"]) == 2
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    resp = await client.get("/tasks", params={"limit": 2, "page": 2})
    assert len(resp.json()["tasks"]) == 1


@pytest.mark.asyncio
async def test_list_tasks_filters(client: AsyncClient):
    await _create(client, title="Buy milk", status="PENDING", priority="LOW")
    await _create(client, title="Buy bread", status="IN_PROGRESS", priority="HIGH")
    await _create(client, title="Call mom", status="COMPLETED", priority="HIGH")

    resp = await client.get("/tasks", params=[("status", "PENDING"), ("status", "IN_PROGRESS")])
    assert {t["title"] for t in resp.json()["tasks"]} == {"Buy milk", "Buy bread"}

    resp = await client.get("/tasks", params={"priority": "HIGH", "search": "buy"})
    assert [t["title"] for t in resp.json()["tasks"]] == ["Buy bread"]

    resp = await client.get("/tasks", params={"sortBy": "title", "sortOrder": "asc"})
    assert [t["title"] for t in resp.json()["tasks"]] == ["Buy bread", "Buy milk", "Call mom"]


@pytest.mark.asyncio
async def test_list_tasks_invalid_query(client: AsyncClient):
    for params in ({"limit": 101}, {"page": 0}, {"sortBy": "password"}, {"status": "DONE"}):
        resp = await client.get("/tasks", params=params)
        assert resp.status_code == 400, params
        assert resp.json()["error"] == "Validation Error"


@pytest.mark.asyncio
async def test_get_task(client: AsyncClient):
    created = await _create(client, title="Find me")
    resp = await client.get(f"/tasks/{created['id']}")
    assert resp.status_code == 200
    assert resp.json() == created


@pytest.mark.asyncio
async def test_get_task_errors(client: AsyncClient):
    resp = await client.get("/tasks/not-a-valid-id")
    assert resp.status_code == 400

    resp = await client.get(f"/tasks/{MISSING_ID}")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "message": "Task not found"}


@pytest.mark.asyncio
async def test_update_task_status_lifecycle(client: AsyncClient):
    created = await _create(client, title="Lifecycle")

    resp = await client.patch(f"/tasks/{created['id']}", json={"status": "COMPLETED"})
    assert resp.status_code == 200
    completed = resp.json()
    assert completed["status"] == "COMPLETED"
    assert completed["completedAt"] is not None
    assert completed["title"] == "Lifecycle"

    resp = await client.put(f"/tasks/{created['id']}", json={"status": "PENDING"})
    assert resp.status_code == 200
    assert resp.json()["completedAt"] is None


@pytest.mark.asyncio
async def test_update_task_clears_description(client: AsyncClient):
    created = await _create(client, description="old")
    resp = await client.patch(f"/tasks/{created['id']}", json={"description": None})
    assert resp.status_code == 200
    assert resp.json()["description"] is None


@pytest.mark.asyncio
async def test_update_task_errors(client: AsyncClient):
    created = await _create(client)

    resp = await client.patch(f"/tasks/{created['id']}", json={"title": None})
    assert resp.status_code == 400

    resp = await client.patch(f"/tasks/{created['id']}", json={"priority": "CRITICAL"})
    assert resp.status_code == 400

    resp = await client.patch(f"/tasks/{MISSING_ID}", json={"title": "x"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_task(client: AsyncClient):
    created = await _create(client)
    resp = await client.delete(f"/tasks/{created['id']}")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Task deleted successfully", "id": created["id"]}

    resp = await client.get(f"/tasks/{created['id']}")
    assert resp.status_code == 404

    resp = await client.delete(f"/tasks/{created['id']}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_bulk_update(client: AsyncClient):
    a = await _create(client, title="A")
    b = await _create(client, title="B")

    resp = await client.patch("/tasks/bulk", json={"ids": [a["id"], b["id"]], "data": {"status": "COMPLETED"}})
    assert resp.status_code == 200
    tasks = resp.json()
    assert {t["id"] for t in tasks} == {a["id"], b["id"]}
    assert all(t["status"] == "COMPLETED" and t["completedAt"] for t in tasks)


@pytest.mark.asyncio
async def test_bulk_update_missing_id_changes_nothing(client: AsyncClient):
    a = await _create(client, title="A")

    resp = await client.patch("/tasks/bulk", json={"ids": [a["id"], MISSING_ID], "data": {"priority": "URGENT"}})
    assert resp.status_code == 404
    assert resp.json()["details"] == {"missingIds": [MISSING_ID]}

    resp = await client.get(f"/tasks/{a['id']}")
    assert resp.json()["priority"] == "MEDIUM"


@pytest.mark.asyncio
async def test_bulk_update_requires_data(client: AsyncClient):
    a = await _create(client)
    resp = await client.patch("/tasks/bulk", json={"ids": [a["id"]], "data": {}})
    assert resp.status_code == 400
    assert resp.json()["details"][0]["message"] == "At least one field (priority or status) must be provided"

    resp = await client.patch("/tasks/bulk", json={"ids": [a["id"]] * 101, "data": {"status": "PENDING"}})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_bulk_delete(client: AsyncClient):
    a = await _create(client, title="A")
    b = await _create(client, title="B")
    await _create(client, title="C")

    resp = await client.request("DELETE", "/tasks/bulk", json={"ids": [a["id"], b["id"]]})
    assert resp.status_code == 200
    assert resp.json() == {"message": "2 tasks deleted successfully", "deletedIds": [a["id"], b["id"]]}

    resp = await client.get("/tasks")
    assert [t["title"] for t in resp.json()["tasks"]] == ["C"]


@pytest.mark.asyncio
async def test_bulk_delete_missing_id_deletes_nothing(client: AsyncClient):
    a = await _create(client)
    resp = await client.request("DELETE", "/tasks/bulk", json={"ids": [a["id"], MISSING_ID]})
    assert resp.status_code == 404

    resp = await client.get(f"/tasks/{a['id']}")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_bulk_path_is_not_a_task_id(client: AsyncClient):
    resp = await client.get("/tasks/bulk")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_payload_too_large_status(client: AsyncClient):
    from taskboard.errors import PayloadTooLargeError

    assert PayloadTooLargeError.status_code == 413
    resp = await client.patch("/tasks/bulk", json={"ids": [MISSING_ID], "data": {"status": "x" * 20_000}})
    assert resp.status_code == 413
