"""FastAPI dependencies for agency scoping and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from renewals.db.session import SessionLocal


# Agency scope is resolved upstream (auth gateway) and forwarded as a header
AGENCY_HEADER = "X-Agency-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_agency_id(
    x_agency_id: str | None = Header(default=None, alias=AGENCY_HEADER),
) -> UUID:
    """
    Resolve the agency the request is scoped to.

    Raises:
        HTTPException 400: header missing or not a UUID
    """
    if not x_agency_id:
        raise HTTPException(status_code=400, detail=f"Missing {AGENCY_HEADER} header")
    try:
        return UUID(x_agency_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {AGENCY_HEADER} header")
