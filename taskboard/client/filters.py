"""Filter criteria for task list queries."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from ..models.task import TaskPriority, TaskStatus
from ..security.sanitize import sanitize_number, sanitize_sort_field, sanitize_sort_order

SORT_FIELDS = ("createdAt", "updatedAt", "priority", "status", "title")


def _enum_set(values: Iterable[str] | str | None, enum_cls) -> frozenset:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(enum_cls(v) for v in values)


@dataclass(frozen=True)
class FilterCriteria:
    """Validated list-query state shared by the UI, the API client and the cache.

    Raises ``ValueError`` on construction when a field is out of range, so a
    ``FilterCriteria`` that exists is always sendable as-is.
    """

    search: str | None = None
    statuses: frozenset[TaskStatus] = field(default_factory=frozenset)
    priorities: frozenset[TaskPriority] = field(default_factory=frozenset)
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 10

    def __post_init__(self) -> None:
        search = self.search.strip() if isinstance(self.search, str) else None
        object.__setattr__(self, "search", search or None)
        object.__setattr__(self, "statuses", _enum_set(self.statuses, TaskStatus))
        object.__setattr__(self, "priorities", _enum_set(self.priorities, TaskPriority))
        object.__setattr__(self, "sort_by", sanitize_sort_field(self.sort_by, SORT_FIELDS))
        object.__setattr__(self, "sort_order", sanitize_sort_order(self.sort_order))
        object.__setattr__(self, "page", int(sanitize_number(self.page, min_value=1, is_int=True)))
        object.__setattr__(
            self, "limit", int(sanitize_number(self.limit, min_value=1, max_value=100, is_int=True))
        )

    def with_changes(self, **changes) -> "FilterCriteria":
        """Return a copy with ``changes`` applied; filter changes reset to page 1."""
        if "page" not in changes and set(changes) & {"search", "statuses", "priorities"}:
            changes["page"] = 1
        return replace(self, **changes)

    def to_params(self) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if self.search:
            params.append(("search", self.search))
        for priority in sorted(p.value for p in self.priorities):
            params.append(("priority", priority))
        for status in sorted(s.value for s in self.statuses):
            params.append(("status", status))
        params += [
            ("sortBy", self.sort_by),
            ("sortOrder", self.sort_order),
            ("page", str(self.page)),
            ("limit", str(self.limit)),
        ]
        return params

    def cache_key(self) -> tuple[tuple[str, str], ...]:
        return tuple(self.to_params())

