"""
Small pure helpers shared across apps.
"""

from __future__ import annotations

import math


def calculate_pagination(total: int, page: int, limit: int) -> dict:
    """
    Calculate pagination metadata.

    Args:
        total: Total number of items
        page: Requested page number (1-indexed)
        limit: Items per page

    Returns:
        Dict with page, limit, total, pages, has_next, has_previous

    Example:
        calculate_pagination(total=25, page=2, limit=10)
        # {"page": 2, "limit": 10, "total": 25, "pages": 3,
        #  "has_next": True, "has_previous": True}
    """
    pages = math.ceil(total / limit) if limit > 0 else 0
    page = max(1, page)

    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_previous": page > 1,
    }


def page_bounds(page: int, limit: int) -> tuple[int, int]:
    """Return the (start, end) slice indices for a 1-indexed page."""
    start = (max(1, page) - 1) * limit
    return start, start + limit
