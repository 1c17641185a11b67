"""Sorting and filtering of PBI listings.

Listings are plain dicts as produced by `schemas.pbi_out`. Everything
here is a pure function of (items, sort spec, filter spec): callers get
a new list back and the input is never mutated.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

ASC = "asc"
DESC = "desc"
NO_EPIC = "null"

PRIORITY_ORDER = {"High": 0, "Medium": 1, "Low": 2}

SORTABLE_FIELDS = (
    "title",
    "priority",
    "storyPoint",
    "pic",
    "businessValue",
    "userStory",
    "acceptanceCriteria",
    "notes",
    "epicTitle",
    "backlogTitle",
    "createdAt",
    "updatedAt",
)


@dataclass(frozen=True)
class SortSpec:
    field: str = "createdAt"
    direction: str = DESC

    def __post_init__(self):
        if self.field not in SORTABLE_FIELDS:
            raise ValueError(f"cannot sort by {self.field!r}")
        if self.direction not in (ASC, DESC):
            raise ValueError("sortDirection must be 'asc' or 'desc'")


@dataclass(frozen=True)
class FilterSpec:
    """Optional backlog/epic filters. `epic_id=NO_EPIC` keeps items without an epic."""
    backlog_id: Optional[int] = None
    epic_id: Union[int, str, None] = None


def toggle_sort(current: SortSpec, field: str) -> SortSpec:
    """Clicking the active column flips direction; a new column starts ascending."""
    if current.field == field:
        return SortSpec(field, DESC if current.direction == ASC else ASC)
    return SortSpec(field, ASC)


def _timestamp(value: datetime) -> float:
    # naive values come back from SQLite and are stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare(a: dict, b: dict, sort: SortSpec) -> int:
    """Three-way comparison of two items under `sort`.

    Missing values always go last, whichever the direction.
    """
    sign = 1 if sort.direction == ASC else -1
    av = a.get(sort.field)
    bv = b.get(sort.field)
    if sort.field == "priority":
        av = PRIORITY_ORDER.get(av)
        bv = PRIORITY_ORDER.get(bv)
    if av is None and bv is None:
        return 0
    if av is None:
        return 1
    if bv is None:
        return -1
    if isinstance(av, datetime) and isinstance(bv, datetime):
        return sign * _cmp(_timestamp(av), _timestamp(bv))
    numeric = (int, float)
    if isinstance(av, numeric) and isinstance(bv, numeric) and not isinstance(av, bool) and not isinstance(bv, bool):
        return sign * _cmp(av, bv)
    return sign * _cmp(str(av).casefold(), str(bv).casefold())


def matches(item: dict, filters: FilterSpec) -> bool:
    if filters.backlog_id is not None and item.get("productBacklogListId") != filters.backlog_id:
        return False
    if filters.epic_id == NO_EPIC:
        return item.get("epicId") is None
    if filters.epic_id is not None and item.get("epicId") != filters.epic_id:
        return False
    return True


def arrange(items: Iterable[dict], sort: Optional[SortSpec] = None, filters: Optional[FilterSpec] = None) -> list:
    """Return the filtered items in sort order (stable for ties)."""
    out = [it for it in items if filters is None or matches(it, filters)]
    if sort is not None:
        out.sort(key=functools.cmp_to_key(lambda a, b: compare(a, b, sort)))
    return out
