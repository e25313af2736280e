"""
Query option types for LinkStore reads.

- KeyOptions: Look rows up by primary key or by an index value
- PageOptions: 1-indexed pagination
- SearchOptions: Case-insensitive substring search along a dot-path
- SortOptions: Sort by a dot-path
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SortDirection(Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class KeyOptions:
    """Primary-key (or index value) lookup.

    Attributes:
        primary_keys: One key or a list of keys
        index: Index to match the keys against instead of the primary key
    """

    primary_keys: Any
    index: str | None = None

    @property
    def keys(self) -> list[Any]:
        return list(self.primary_keys) if isinstance(self.primary_keys, (list, tuple)) else [self.primary_keys]

    @property
    def single(self) -> bool:
        return not isinstance(self.primary_keys, (list, tuple))


@dataclass(frozen=True)
class PageOptions:
    """Pagination.

    Attributes:
        page: 1-indexed page number
        page_size: Rows per page
        pagination: False returns everything
    """

    page: int = 1
    page_size: int = 20
    pagination: bool = True


@dataclass(frozen=True)
class SearchOptions:
    """Substring search.

    Attributes:
        term: Text to look for, case-insensitive
        index: Dot-path of the searched value
        limit: Cap on results when no pagination is requested
    """

    term: str
    index: str
    limit: int | None = None


@dataclass(frozen=True)
class SortOptions:
    """Sorting by a dot-path."""

    column: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, column: str | None, direction: str | None = None) -> SortOptions | None:
        """Build sort options from loose request values; None without a column."""
        if not column:
            return None
        return cls(column=column, direction=SortDirection((direction or "asc").lower()))
