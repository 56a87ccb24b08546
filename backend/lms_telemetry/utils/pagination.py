from __future__ import annotations

from typing import Any, Tuple

from lms_telemetry.schemas.analytics import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def resolve_pagination(
    page: Any,
    limit: Any,
    *,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> Tuple[int, int, int]:
    """Return a sanitized ``(page, limit, offset)`` triple.

    ``page`` is 1-based; anything below 1 or not an integer becomes 1. ``limit``
    falls back to ``default_limit`` when missing or non-positive and is clamped
    to ``max_limit``.
    """

    raw_page = page if isinstance(page, int) and not isinstance(page, bool) else 1
    page = raw_page if raw_page >= 1 else 1

    raw_limit = limit if isinstance(limit, int) and not isinstance(limit, bool) else default_limit
    if raw_limit <= 0:
        raw_limit = default_limit
    limit = min(raw_limit, max_limit)

    return page, limit, (page - 1) * limit
