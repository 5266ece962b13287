from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import config
from .planner import QueryPlan
from .store import CourseworkStore

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    truncated: bool = False
    pages: int = 0


def fetch_all(
    store: CourseworkStore,
    plan: QueryPlan,
    max_records: Optional[int] = None,
    early_exit: Optional[bool] = None,
    early_exit_multiplier: Optional[int] = None,
) -> FetchResult:
    """
    Follow continuation tokens until the store is exhausted.

    Stops early (with `truncated=True`) once more than `max_records` items
    have been collected, or, when early exit is enabled and the plan carries
    a page-size hint, once `multiplier * hint` items are in hand. Store
    errors propagate unchanged.
    """
    max_records = config.FETCH_MAX_RECORDS if max_records is None else max_records
    early_exit = config.FETCH_EARLY_EXIT if early_exit is None else early_exit
    multiplier = config.FETCH_EARLY_EXIT_MULTIPLIER if early_exit_multiplier is None else early_exit_multiplier

    result = FetchResult()
    start_key = None
    while True:
        page = store.query(plan, start_key)
        result.pages += 1
        result.items.extend(page.items)
        start_key = page.continuation
        logger.debug(
            f"Fetched page {result.pages} from {plan.table} "
            f"({len(page.items)} items, {len(result.items)} total)"
        )
        if not start_key:
            break
        if len(result.items) > max_records:
            logger.warning(
                f"Stopping fetch from {plan.table} after {len(result.items)} items "
                f"(limit {max_records})"
            )
            result.truncated = True
            break
        if early_exit and plan.page_size_hint and len(result.items) >= plan.page_size_hint * multiplier:
            logger.info(
                f"Early exit from {plan.table} with {len(result.items)} items "
                f"for page size {plan.page_size_hint}"
            )
            result.truncated = True
            break
    return result
