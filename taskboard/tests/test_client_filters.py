"""Test client-side filter criteria."""

from __future__ import annotations

import pytest

from taskboard.client.filters import FilterCriteria
from taskboard.models.task import TaskPriority, TaskStatus


def test_defaults_to_params():
    assert FilterCriteria().to_params() == [
        ("sortBy", "createdAt"),
        ("sortOrder", "desc"),
        ("page", "1"),
        ("limit", "10"),
    ]


def test_multi_value_filters_are_sorted():
    filters = FilterCriteria(
        search="  report ",
        statuses={"PENDING", TaskStatus.COMPLETED},
        priorities=["URGENT", "HIGH"],
    )
    params = filters.to_params()
    assert params[:5] == [
        ("search", "report"),
        ("priority", "HIGH"),
        ("priority", "URGENT"),
        ("status", "COMPLETED"),
        ("status", "PENDING"),
    ]
    assert filters.statuses == frozenset({TaskStatus.PENDING, TaskStatus.COMPLETED})
    assert filters.priorities == frozenset({TaskPriority.HIGH, TaskPriority.URGENT})


def test_cache_key_ignores_input_order():
    a = FilterCriteria(statuses=["PENDING", "COMPLETED"])
    b = FilterCriteria(statuses=["COMPLETED", "PENDING"])
    assert a == b
    assert a.cache_key() == b.cache_key()
    assert hash(a.cache_key()) == hash(b.cache_key())


def test_with_changes_resets_page_on_filter_change():
    filters = FilterCriteria(page=4)
    assert filters.with_changes(search="x").page == 1
    assert filters.with_changes(statuses={"PENDING"}).page == 1
    assert filters.with_changes(sort_by="title").page == 4
    assert filters.with_changes(search="x", page=2).page == 2


def test_invalid_criteria_rejected():
    for kwargs in ({"limit": 0}, {"limit": 101}, {"page": 0}, {"sort_by": "secret"}, {"statuses": {"DONE"}}):
        with pytest.raises(ValueError):
            FilterCriteria(**kwargs)


def test_blank_search_dropped_and_bad_order_defaulted():
    filters = FilterCriteria(search="   ", sort_order="sideways")
    assert filters.search is None
    assert filters.sort_order == "desc"
