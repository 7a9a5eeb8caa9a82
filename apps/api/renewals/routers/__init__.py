"""API routers."""

from renewals.routers.renewals import router as renewals_router

__all__ = ["renewals_router"]
