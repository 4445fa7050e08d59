"""
core/pagination.py -- Page request / page result containers shared by every list query.

Stores accept a PageRequest and return a Page. The API layer maps Page onto
its response envelope; nothing here knows about SQL or HTTP.

Page capping: a request past the last page is clamped to the last page rather
than returning an empty list, so a stale "page 40" link never triggers an
expensive OFFSET scan.
"""

import math
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    search: str = ""

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")


@dataclass(frozen=True)
class PageMeta:
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    meta: PageMeta = field(default_factory=lambda: build_page_meta(PageRequest(), 0))


def build_page_meta(request: PageRequest, total_count: int) -> PageMeta:
    """Compute page metadata for a result set of total_count rows.

    total_pages is at least 1 so an empty result still reports "page 1 of 1".
    """
    total_pages = max(1, math.ceil(total_count / request.page_size))
    page = min(request.page, total_pages)
    return PageMeta(
        page=page,
        page_size=request.page_size,
        total_count=total_count,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )
