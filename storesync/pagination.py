"""
Page-number windows for table pagination controls.

page_tokens() is a pure function of (current, total); PaginationWindow
bundles it with the counts returned by table endpoints.

Usage:
    window = PaginationWindow.from_response(response.pagination)
    for token in window.tokens:
        render(token)  # int page number or ELLIPSIS
"""
from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Union

from storesync.schemas import PaginationMeta

ELLIPSIS = "..."

PageToken = Union[int, str]

# Totals up to this many pages are listed in full
_FULL_LIST_LIMIT = 7


def page_tokens(current: int, total: int) -> List[PageToken]:
    """
    Page numbers and ellipsis markers for a pagination control.

    Page 1 is always present. Up to seven pages are listed in full. Beyond
    that the window shows pages 1-5 near the start, the last five pages near
    the end, and current-1..current+1 between two ellipses otherwise, with
    the last page always shown.

    Args:
        current: Current page (1-based)
        total: Total number of pages

    Returns:
        List of page numbers and ELLIPSIS
    """
    if total <= 1:
        return [1]

    if total <= _FULL_LIST_LIMIT:
        return list(range(1, total + 1))

    if current <= 4:
        return [1, 2, 3, 4, 5, ELLIPSIS, total]

    if current >= total - 3:
        return [1, ELLIPSIS] + list(range(total - 4, total + 1))

    return [1, ELLIPSIS, current - 1, current, current + 1, ELLIPSIS, total]


@dataclass(frozen=True)
class PaginationWindow:
    """Pagination state for one rendered page of a table."""

    current_page: int
    total_pages: int
    total_items: int = 0
    page_size: int = 0

    @property
    def tokens(self) -> List[PageToken]:
        return page_tokens(self.current_page, self.total_pages)

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def first_item(self) -> int:
        """1-based index of the first row on this page, 0 when empty."""
        if self.total_items == 0 or self.page_size == 0:
            return 0
        return (self.current_page - 1) * self.page_size + 1

    @property
    def last_item(self) -> int:
        if self.first_item == 0:
            return 0
        return min(self.current_page * self.page_size, self.total_items)

    @classmethod
    def from_response(
        cls,
        pagination: Union[PaginationMeta, Mapping[str, Any]],
        page_size: int = 0,
    ) -> "PaginationWindow":
        """
        Build from a table endpoint's pagination block.

        Args:
            pagination: {currentPage, pageSize, totalPages, totalItems}
            page_size: Fallback page size when the block omits it
        """
        if not isinstance(pagination, PaginationMeta):
            pagination = PaginationMeta.model_validate(pagination)

        return cls(
            current_page=pagination.currentPage,
            total_pages=pagination.totalPages,
            total_items=pagination.totalItems,
            page_size=pagination.pageSize or page_size,
        )

    @classmethod
    def for_items(cls, total_items: int, page_size: int, current_page: int = 1) -> "PaginationWindow":
        """Window for a locally paginated list; current_page is clamped to range."""
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        total_pages = max((total_items + page_size - 1) // page_size, 1)
        current_page = min(max(current_page, 1), total_pages)
        return cls(
            current_page=current_page,
            total_pages=total_pages,
            total_items=total_items,
            page_size=page_size,
        )

    def slice(self, items: Sequence[Any]) -> List[Any]:
        """Rows of a locally paginated list that belong to this page."""
        start = (self.current_page - 1) * self.page_size
        return list(items[start:start + self.page_size])
