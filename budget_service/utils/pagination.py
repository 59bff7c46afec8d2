"""
Page/limit checks for budget listings.

Pages are 1-based; the returned offset is what the store's OFFSET clause uses.
"""

from __future__ import annotations

from budget_tracker.exceptions import ValidationError

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class PaginationError(ValidationError):
    """Invalid listing window."""


class PageValidationError(PaginationError):
    pass


class LimitValidationError(PaginationError):
    pass


def _is_int(value: object) -> bool:
    # bool is an int subclass but never a valid page size
    return isinstance(value, int) and not isinstance(value, bool)


def validate_page_params(page: int | None = None, limit: int | None = None) -> dict[str, int]:
    """
    Check a listing window and derive its offset.

    Returns:
        {"page": int, "limit": int, "offset": int}

    Raises:
        PageValidationError: page is not an int >= 1
        LimitValidationError: limit is not an int in 1..MAX_LIMIT

    Example:
        >>> validate_page_params(page=3, limit=10)
        {'page': 3, 'limit': 10, 'offset': 20}
    """
    page = DEFAULT_PAGE if page is None else page
    limit = DEFAULT_LIMIT if limit is None else limit

    if not _is_int(page) or page < 1:
        raise PageValidationError(f"page must be an integer >= 1, got {page!r}")
    if not _is_int(limit) or not 1 <= limit <= MAX_LIMIT:
        raise LimitValidationError(
            f"limit must be an integer between 1 and {MAX_LIMIT}, got {limit!r}"
        )

    return {"page": page, "limit": limit, "offset": (page - 1) * limit}
