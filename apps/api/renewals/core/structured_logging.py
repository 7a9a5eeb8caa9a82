"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any
from uuid import UUID

from renewals.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or CLI."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )


def build_log_context(
    *,
    agency_id: UUID | str | None = None,
    upload_id: UUID | str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only, never names or contact data)."""
    context: dict[str, Any] = {}
    if agency_id:
        context["agency_id"] = str(agency_id)
    if upload_id:
        context["upload_id"] = str(upload_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
