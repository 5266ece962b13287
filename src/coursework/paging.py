"""
Sorting, offset pagination and cursor pagination over an in-memory result set.
"""

from __future__ import annotations

import base64
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from . import config
from .records import VersionedEntity
from .weeks import parse_instant

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=VersionedEntity)

# public sort key -> (record attribute, comparison kind)
SortKeys = Mapping[str, Tuple[str, str]]

ASSIGNMENT_SORT_KEYS: SortKeys = {
    "dueDate": ("due_date", "date"),
    "createdAt": ("created_at", "date"),
    "title": ("title", "string"),
    "points": ("points", "number"),
    "status": ("status", "string"),
}

SUBMISSION_SORT_KEYS: SortKeys = {
    "submittedAt": ("submitted_at", "date"),
    "grade": ("grade", "number"),
    "status": ("status", "string"),
    "assignmentTitle": ("assignment_title", "string"),
}

GRADE_SORT_KEYS: SortKeys = {
    "grade": ("grade", "number"),
    "gradedAt": ("graded_at", "date"),
    "submittedAt": ("submitted_at", "date"),
    "assignmentTitle": ("assignment_title", "string"),
    "courseName": ("course_name", "string"),
    "instructorName": ("instructor_name", "string"),
}


def _sort_value(value: Any, kind: str) -> Any:
    if kind == "string":
        return str(value).lower() if value is not None else ""
    if kind == "date":
        instant = parse_instant(value)
        return instant.timestamp() if instant is not None else float("-inf")
    if value is None:
        return float("-inf")
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("-inf")


def sort_records(records: Sequence[T], sort_by: str, order: str, sort_keys: SortKeys) -> List[T]:
    """
    Stable sort by a named key. Missing values sort as the minimum, so they
    lead an ascending sort and trail a descending one.
    """
    if sort_by not in sort_keys:
        raise ValueError(f"Unsupported sort key: {sort_by}")
    attr, kind = sort_keys[sort_by]
    return sorted(
        records,
        key=lambda record: _sort_value(getattr(record, attr, None), kind),
        reverse=order == "desc",
    )


class Pagination(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current_page: int
    page_size: int
    total_count: int
    total_pages: int
    start_item: int
    end_item: int
    has_next_page: bool
    has_previous_page: bool
    next_page: Optional[int] = None
    previous_page: Optional[int] = None
    page_numbers: List[int]
    first_page: int = 1
    last_page: int
    can_go_to_first: bool
    can_go_to_last: bool
    showing_items: str
    is_total_exact: bool = True


def clamp_page_size(page_size: int) -> int:
    return max(1, min(config.MAX_PAGE_SIZE, page_size))


def page_numbers(current_page: int, total_pages: int, window: int = config.PAGE_WINDOW) -> List[int]:
    """A window of up to `window` page numbers around the current page."""
    if total_pages <= window:
        return list(range(1, total_pages + 1))
    start = max(1, current_page - window // 2)
    end = min(total_pages, start + window - 1)
    if end - start + 1 < window:
        start = max(1, end - window + 1)
    return list(range(start, end + 1))


def build_pagination(
    page: int,
    page_size: int,
    total_count: int,
    is_total_exact: bool = True,
) -> Pagination:
    size = clamp_page_size(page_size)
    total_pages = max(1, math.ceil(total_count / size))
    current = max(1, min(page, total_pages))
    if total_count > 0:
        start_item = (current - 1) * size + 1
        end_item = min(current * size, total_count)
        showing = f"{start_item}-{end_item} of {total_count}"
    else:
        start_item = end_item = 0
        showing = "0 items"
    has_next = current < total_pages
    has_previous = current > 1
    return Pagination(
        current_page=current,
        page_size=size,
        total_count=total_count,
        total_pages=total_pages,
        start_item=start_item,
        end_item=end_item,
        has_next_page=has_next,
        has_previous_page=has_previous,
        next_page=current + 1 if has_next else None,
        previous_page=current - 1 if has_previous else None,
        page_numbers=page_numbers(current, total_pages),
        last_page=total_pages,
        can_go_to_first=current > 1,
        can_go_to_last=current < total_pages,
        showing_items=showing,
        is_total_exact=is_total_exact,
    )


def paginate_offset(records: Sequence[T], pagination: Pagination) -> List[T]:
    if pagination.total_count == 0:
        return []
    return list(records[pagination.start_item - 1 : pagination.end_item])


# Cursors

AFTER = "after"
BEFORE = "before"


@dataclass(frozen=True)
class Cursor:
    item_id: str
    timestamp: Optional[str] = None
    direction: str = AFTER


def encode_cursor(cursor: Cursor) -> str:
    payload: Dict[str, Any] = {"itemId": cursor.item_id, "timestamp": cursor.timestamp}
    if cursor.direction == BEFORE:
        payload["direction"] = BEFORE
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_cursor(token: Optional[str]) -> Optional[Cursor]:
    """Decode an opaque cursor; anything malformed yields None."""
    if not token:
        return None
    try:
        payload = json.loads(base64.b64decode(token.encode("ascii"), validate=True).decode("utf-8"))
    except (ValueError, TypeError, AttributeError, RecursionError):
        logger.debug("Ignoring malformed cursor")
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("itemId"), str):
        return None
    direction = BEFORE if payload.get("direction") == BEFORE else AFTER
    timestamp = payload.get("timestamp")
    return Cursor(
        item_id=payload["itemId"],
        timestamp=timestamp if isinstance(timestamp, str) else None,
        direction=direction,
    )


@dataclass
class CursorPage:
    items: List[Any]
    start_index: int
    has_next: bool
    has_previous: bool


def paginate_by_cursor(records: Sequence[T], cursor_token: Optional[str], page_size: int) -> CursorPage:
    """
    Slice the page that follows (or, for a backward cursor, precedes) the
    cursor's item. A cursor that fails to decode or names an item not in
    `records` yields the first page.
    """
    size = clamp_page_size(page_size)
    start = 0
    cursor = decode_cursor(cursor_token)
    if cursor is not None:
        position = next((i for i, r in enumerate(records) if r.entity_id == cursor.item_id), None)
        if position is None:
            logger.debug(f"Cursor item {cursor.item_id} not in result set, starting from first page")
        elif cursor.direction == BEFORE:
            start = max(0, position - size)
        else:
            start = position + 1
    items = list(records[start : start + size])
    return CursorPage(
        items=items,
        start_index=start,
        has_next=start + size < len(records),
        has_previous=start > 0,
    )


def build_cursors(page: CursorPage) -> Dict[str, str]:
    if not page.items:
        return {}
    first, last = page.items[0], page.items[-1]
    cursors = {
        "first": encode_cursor(Cursor(first.entity_id, first.cursor_timestamp)),
        "last": encode_cursor(Cursor(last.entity_id, last.cursor_timestamp)),
    }
    if page.has_next:
        cursors["next"] = encode_cursor(Cursor(last.entity_id, last.cursor_timestamp))
    if page.has_previous:
        cursors["previous"] = encode_cursor(Cursor(first.entity_id, first.cursor_timestamp, BEFORE))
    return cursors
