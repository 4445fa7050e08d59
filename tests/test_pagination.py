"""Unit tests for core/pagination.py -- page request validation and metadata.

Covers:
- PageRequest rejects page < 1 and page sizes outside 1..MAX_PAGE_SIZE
- build_page_meta() computes total_pages, offset and next/previous flags
- Requests past the last page are clamped to the last page
- An empty result still reports page 1 of 1
"""

import pytest

from core.pagination import MAX_PAGE_SIZE, PageRequest, build_page_meta


class TestPageRequest:
    def test_defaults(self) -> None:
        req = PageRequest()
        assert req.page == 1
        assert req.page_size == 10
        assert req.search == ""

    @pytest.mark.parametrize("page", [0, -3])
    def test_rejects_page_below_one(self, page: int) -> None:
        with pytest.raises(ValueError, match="page must be"):
            PageRequest(page=page)

    @pytest.mark.parametrize("size", [0, MAX_PAGE_SIZE + 1])
    def test_rejects_page_size_out_of_range(self, size: int) -> None:
        with pytest.raises(ValueError, match="page_size"):
            PageRequest(page_size=size)


class TestBuildPageMeta:
    def test_middle_page(self) -> None:
        meta = build_page_meta(PageRequest(page=2, page_size=10), 35)
        assert meta.total_pages == 4
        assert meta.offset == 10
        assert meta.has_next_page is True
        assert meta.has_previous_page is True

    def test_last_page_has_no_next(self) -> None:
        meta = build_page_meta(PageRequest(page=4, page_size=10), 35)
        assert meta.has_next_page is False
        assert meta.has_previous_page is True

    def test_page_past_end_is_clamped(self) -> None:
        """A stale link to page 40 lands on the last real page, not an empty one."""
        meta = build_page_meta(PageRequest(page=40, page_size=10), 35)
        assert meta.page == 4, f"Expected clamp to page 4, got {meta.page}"
        assert meta.offset == 30

    def test_empty_result_is_page_one_of_one(self) -> None:
        meta = build_page_meta(PageRequest(page=3), 0)
        assert meta.page == 1
        assert meta.total_pages == 1
        assert meta.has_next_page is False
        assert meta.has_previous_page is False
