"""Page arithmetic and the persisted page-size preference for the list view."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final

PAGE_SIZE_CHOICES: Final[tuple[int, ...]] = (5, 10, 15, 20, 25)
DEFAULT_PAGE_SIZE: Final[int] = 10
PAGE_SIZE_COOKIE: Final[str] = "audioPageSize"


def parse_page_size(raw: str | None, default: int = DEFAULT_PAGE_SIZE) -> int:
    """Decode a stored page size, falling back to ``default`` when unusable."""

    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value in PAGE_SIZE_CHOICES else default


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


def page_range(page: int, page_size: int) -> tuple[int, int]:
    """Inclusive ``(from, to)`` offsets of a 1-based page."""

    start = (page - 1) * page_size
    return start, page * page_size - 1


@dataclass(frozen=True)
class PageInfo:
    """Navigation state of one fetched page."""

    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.page_size)

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def first_index(self) -> int:
        """1-based position of the first record shown, 0 when the page is empty."""

        return (self.page - 1) * self.page_size + 1 if self.has_records else 0

    @property
    def last_index(self) -> int:
        return min(self.page * self.page_size, self.total) if self.has_records else 0

    @property
    def has_records(self) -> bool:
        return (self.page - 1) * self.page_size < self.total
