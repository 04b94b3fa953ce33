"""
Pagination utilities for the admin list endpoints.
"""
import math
from typing import Optional
from fastapi import Query
from pydantic import BaseModel

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class PaginationParams(BaseModel):
    """Page-number pagination as the admin tables present it (1-based)."""
    page: int
    page_size: int

    @classmethod
    def from_query(
        cls,
        page: Optional[int] = Query(1, ge=1, description="Page number (1-based)"),
        page_size: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE, description=f"Items per page (max {MAX_PAGE_SIZE})"),
    ) -> "PaginationParams":
        return cls(page=page or 1, page_size=page_size or DEFAULT_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel):
    """Standard paginated response wrapper."""
    items: list
    total: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool

    @classmethod
    def create(cls, items: list, total: int, page: int, page_size: int) -> "PaginatedResponse":
        """
        Create a paginated response.

        `total_pages` is ceil(total / page_size); an empty result has 0 pages.
        """
        total_pages = math.ceil(total / page_size) if page_size else 0
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_more=page < total_pages,
        )
