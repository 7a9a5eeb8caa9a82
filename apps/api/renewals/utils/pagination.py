"""Pagination utilities for list endpoints."""

from dataclasses import dataclass

from fastapi import Query

from renewals.core.config import settings


# Pagination limits
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = settings.RENEWALS_DEFAULT_PAGE_SIZE
MAX_PER_PAGE = settings.RENEWALS_MAX_PAGE_SIZE


@dataclass
class PaginationParams:
    """Pagination parameters from query string."""
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def get_pagination(
    page: int = Query(DEFAULT_PAGE, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE, description=f"Items per page (max {MAX_PER_PAGE})"),
) -> PaginationParams:
    """
    Pagination dependency.

    Usage:
        @router.get("/items")
        def list_items(pagination: PaginationParams = Depends(get_pagination)):
            ...
    """
    return PaginationParams(page=page, per_page=per_page)


def page_count(total: int, per_page: int) -> int:
    return (total + per_page - 1) // per_page if per_page > 0 else 0
