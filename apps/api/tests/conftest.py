"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema created and dropped per test
- Agency id and record factories
- HTTPX AsyncClient with the agency header
"""
import os
import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

# Must be set before renewals.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"

from renewals.main import app
from renewals.core.deps import AGENCY_HEADER, get_db
from renewals.db.base import Base
from renewals.db.enums import BundledStatus, WorkflowStatus
from renewals.db.models import RenewalRecord
from renewals.db.session import engine, SessionLocal


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    Service code commits, so isolation comes from recreating the tables
    rather than rolling back a savepoint.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def agency_id() -> uuid.UUID:
    return uuid.uuid4()


def make_record(agency_id: uuid.UUID | None = None, **overrides) -> RenewalRecord:
    """Build a transient renewal record with every workflow default filled in."""
    values = {
        "id": uuid.uuid4(),
        "agency_id": agency_id or uuid.uuid4(),
        "policy_number": f"P-{uuid.uuid4().hex[:6]}",
        "renewal_effective_date": date(2024, 3, 5),
        "first_name": "Test",
        "last_name": "Customer",
        "renewal_status": "Pending",
        "premium_change_percent": None,
        "easy_pay": False,
        "multi_line_indicator": BundledStatus.NOT_APPLICABLE.value,
        "current_status": WorkflowStatus.PENDING.value,
        "is_priority": False,
        "dropped_from_report_at": None,
    }
    values.update(overrides)
    if isinstance(values["premium_change_percent"], (int, float)):
        values["premium_change_percent"] = Decimal(str(values["premium_change_percent"]))
    return RenewalRecord(**values)


@pytest.fixture
def record_factory():
    return make_record


def make_row(policy_number: str, effective: str = "2024-03-05", **extra) -> dict:
    """One raw upload row as the report parser emits it (camelCase keys)."""
    row = {
        "policyNumber": policy_number,
        "renewalEffectiveDate": effective,
        "firstName": "Pat",
        "lastName": policy_number,
        "renewalStatus": "Pending",
        "premiumOld": "1,000.00",
        "premiumNew": "1,050.00",
    }
    row.update(extra)
    return row


@pytest.fixture
def row_factory():
    return make_row


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, agency_id: uuid.UUID) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient scoped to the test agency."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={AGENCY_HEADER: str(agency_id)},
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def anonymous_client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient without the agency header."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
