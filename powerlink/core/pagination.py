"""
PowerLink — List query parameters shared by every collection endpoint.

  page      ≥ 1, default 1
  pageSize  clamped to 1..100, default 10
  q         case-insensitive substring over the resource's searchable columns
  from/to   inclusive range over the resource's date column
  sortBy    whitelisted camelCase field name
  sortDir   "asc" or anything else for descending
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from fastapi import Query

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class ListParams:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    q: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_by: Optional[str] = None
    sort_dir: str = "desc"

    def __post_init__(self) -> None:
        self.page = max(1, self.page)
        self.page_size = min(MAX_PAGE_SIZE, max(1, self.page_size))
        self.q = (self.q or "").strip() or None
        self.sort_dir = "asc" if self.sort_dir == "asc" else "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def list_params(
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
    q: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_dir: str = Query("desc", alias="sortDir"),
) -> ListParams:
    """FastAPI dependency building a ListParams from the query string."""
    return ListParams(
        page=page,
        page_size=page_size,
        q=q,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )
