from pydantic import BaseModel
from typing import Tuple

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    has_more: bool


def page_meta(page: int, limit: int, total: int) -> PageMeta:
    return PageMeta(page=page, limit=limit, total=total, has_more=page * limit < total)


def page_range(page: int, limit: int) -> Tuple[int, int]:
    """Inclusive (start, end) row bounds for a 1-based page, as used by .range()"""
    page = max(page, 1)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    start = (page - 1) * limit
    return start, start + limit - 1
