"""Paginator — skip/take arithmetic with defaults and clamps. Pagination is always on.

Invariants:
    - page >= 1 and 1 <= page_size <= max_page_size in every result
    - Non-positive, non-integral or non-numeric inputs fall back to defaults (never raise)
    - page_count(0, n) == 0 with no division

Design Decisions:
    - Booleans rejected explicitly: True is an int in Python but never a page number
    - orderBy only selected here; the service runs it through order_by.validate_order_by
"""

import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PaginationSettings:
    default_page_size: int
    max_page_size: int
    default_order_by: list[dict]


@dataclass(frozen=True)
class PaginationResult:
    skip: int
    take: int
    page: int
    page_size: int
    order_by: list


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value > 0 else None
    if isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            return None
        return number if number > 0 else None
    return None


def compute_pagination(
    page: Any, page_size: Any, order_by: Any, settings: PaginationSettings,
) -> PaginationResult:
    effective_page = _positive_int(page) or 1
    effective_size = _positive_int(page_size) or settings.default_page_size
    effective_size = min(effective_size, settings.max_page_size)
    effective_order = order_by if isinstance(order_by, list) else settings.default_order_by

    return PaginationResult(
        skip=(effective_page - 1) * effective_size,
        take=effective_size,
        page=effective_page,
        page_size=effective_size,
        order_by=effective_order,
    )


def page_count(total: int, page_size: int) -> int:
    if total == 0:
        return 0
    return math.ceil(total / page_size)
