"""Taskboard CLI - serve the API and manage tasks from the terminal."""

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from .client.api import TaskApiClient, TaskApiError
from .client.filters import FilterCriteria

app = typer.Typer(
    name="taskboard",
    help="Taskboard task API and client",
    no_args_is_help=True,
)
console = Console()

DEFAULT_URL = "http://127.0.0.1:8000"

STATUS_STYLES = {
    "PENDING": "yellow",
    "IN_PROGRESS": "cyan",
    "COMPLETED": "green",
    "CANCELLED": "dim",
}


def _output_result(result: Any, json_output: bool = False) -> None:
    """Output result as JSON or formatted."""
    if json_output:
        console.print_json(json.dumps(result, default=str))
    else:
        console.print(result)


def _run(coro):
    try:
        return asyncio.run(coro)
    except TaskApiError as exc:
        console.print(f"[red]Error:[/red] {exc.message}")
        if exc.details:
            console.print(exc.details)
        raise typer.Exit(1)


@app.command("serve")
def serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Launch the task API."""
    import uvicorn

    console.print(f"[bold cyan]Starting Taskboard API at http://{host}:{port}[/bold cyan]")
    uvicorn.run("taskboard.app:app", host=host, port=port, reload=reload)


@app.command("list")
def list_tasks(
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Taskboard API base URL"),
    query: str = typer.Option(None, "--query", "-q", help="Search title and description"),
    status: list[str] = typer.Option(None, "--status", "-s", help="Filter by status (repeatable)"),
    priority: list[str] = typer.Option(None, "--priority", help="Filter by priority (repeatable)"),
    sort_by: str = typer.Option("createdAt", "--sort", help="Sort field"),
    page: int = typer.Option(1, "--page", help="Page number"),
    limit: int = typer.Option(10, "--limit", "-l", help="Tasks per page"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List tasks."""
    try:
        filters = FilterCriteria(
            search=query,
            statuses=status or (),
            priorities=priority or (),
            sort_by=sort_by,
            page=page,
            limit=limit,
        )
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    async def _list():
        async with TaskApiClient(url) as api:
            return await api.list_tasks(filters)

    result = _run(_list())

    if json_output:
        _output_result(result, json_output=True)
        return

    tasks = result.get("tasks", [])
    pagination = result.get("pagination", {})
    table = Table(
        title=f"Tasks ({pagination.get('total', len(tasks))}) "
        f"page {pagination.get('page', page)}/{pagination.get('totalPages', 1)}"
    )
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Priority", style="magenta")
    table.add_column("Status")
    table.add_column("Due", style="dim")

    for t in tasks:
        status_value = t.get("status", "")
        style = STATUS_STYLES.get(status_value, "white")
        table.add_row(
            t.get("id", ""),
            t.get("title", ""),
            t.get("priority", ""),
            f"[{style}]{status_value}[/{style}]",
            (t.get("dueDate") or "-")[:10],
        )

    console.print(table)


@app.command("add")
def add_task(
    title: str = typer.Argument(..., help="Task title"),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Taskboard API base URL"),
    description: str = typer.Option(None, "--description", "-d", help="Task description"),
    priority: str = typer.Option("MEDIUM", "--priority", "-p", help="LOW, MEDIUM, HIGH or URGENT"),
    due: str = typer.Option(None, "--due", help="Due date (ISO 8601)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Create a task."""
    data: dict[str, Any] = {"title": title, "priority": priority.upper()}
    if description:
        data["description"] = description
    if due:
        data["dueDate"] = due

    async def _create():
        async with TaskApiClient(url) as api:
            return await api.create_task(data)

    result = _run(_create())
    if json_output:
        _output_result(result, json_output=True)
    else:
        console.print(f"[green]Created[/green] {result['id']}: {result['title']}")


@app.command("status")
def set_status(
    task_ids: list[str] = typer.Argument(..., help="One or more task IDs"),
    status: str = typer.Option(..., "--to", "-t", help="PENDING, IN_PROGRESS, COMPLETED or CANCELLED"),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Taskboard API base URL"),
):
    """Change the status of one or more tasks."""

    async def _update():
        async with TaskApiClient(url) as api:
            if len(task_ids) == 1:
                return [await api.update_task_status(task_ids[0], status.upper())]
            return await api.bulk_update_tasks(task_ids, {"status": status.upper()})

    for t in _run(_update()):
        console.print(f"[green]Updated[/green] {t['id']} -> {t['status']}")


@app.command("rm")
def delete_tasks(
    task_ids: list[str] = typer.Argument(..., help="One or more task IDs"),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Taskboard API base URL"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete one or more tasks."""
    if not yes and not typer.confirm(f"Delete {len(task_ids)} task(s)?"):
        raise typer.Abort()

    async def _delete():
        async with TaskApiClient(url) as api:
            if len(task_ids) == 1:
                return await api.delete_task(task_ids[0])
            return await api.bulk_delete_tasks(task_ids)

    result = _run(_delete())
    console.print(f"[green]{result['message']}[/green]")


if __name__ == "__main__":
    app()
