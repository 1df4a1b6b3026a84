"""Shared test fixtures."""
from datetime import date
from decimal import Decimal
from typing import Generator, List, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from tourdesk.models.booking import Operator, Request, Revenue, User  # noqa: F401
from tourdesk.models.sync import SyncLog, SyncQueueItem  # noqa: F401
from tourdesk.sheets.columns import SHEET_WIDTH


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a plain DB session (no write-back hooks) on in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="users")
def users_fixture(test_session: Session) -> dict:
    """One user per role, keyed by role. Session tokens are "<role>-token"."""
    users = {}
    for role, name in (
        ("ADMIN", "Admin"),
        ("SELLER", "Lan"),
        ("OPERATOR", "Minh"),
        ("ACCOUNTANT", "Hoa"),
    ):
        user = User(
            name=name,
            email=f"{role.lower()}@example.com",
            role=role,
            session_token=f"{role.lower()}-token",
        )
        test_session.add(user)
        users[role] = user
    test_session.commit()
    for user in users.values():
        test_session.refresh(user)
    return users


@pytest.fixture(name="seeded_request")
def seeded_request_fixture(test_session: Session, users) -> Request:
    """A persisted, not yet linked Request owned by the seller."""
    request = Request(
        code="RQ-240101-0001",
        booking_code="BK-2401-001",
        customer_name="John Smith",
        contact="john@example.com",
        country="USA",
        source="Website",
        status="BOOKING",
        stage="OUTCOME",
        pax=2,
        tour_days=5,
        start_date=date(2024, 3, 10),
        end_date=date(2024, 3, 15),
        expected_revenue=Decimal("45000000"),
        expected_cost=Decimal("30000000"),
        seller_id=users["SELLER"].id,
    )
    test_session.add(request)
    test_session.commit()
    test_session.refresh(request)
    return request


@pytest.fixture(name="seeded_operator")
def seeded_operator_fixture(test_session: Session, seeded_request, users) -> Operator:
    operator = Operator(
        request_id=seeded_request.id,
        service_date=date(2024, 3, 11),
        service_type="Hotel",
        service_name="Hanoi Old Quarter Hotel",
        supplier="HQ Hotels",
        cost_before_tax=Decimal("2500000"),
        vat=Decimal("250000"),
        total_cost=Decimal("2750000"),
        user_id=users["OPERATOR"].id,
    )
    test_session.add(operator)
    test_session.commit()
    test_session.refresh(operator)
    return operator


def _sheet_row(cells: dict, width: int = SHEET_WIDTH) -> List[str]:
    """Build a raw sheet row from {column index: text}."""
    row = [""] * width
    for index, value in cells.items():
        row[index] = value
    return row


def _sheets_mock(rows: Optional[list] = None, appended_row: int = 57) -> AsyncMock:
    """AsyncMock standing in for SheetsClient."""
    sheets = AsyncMock()
    sheets.list_rows = AsyncMock(return_value=rows or [])
    sheets.append_row = AsyncMock(return_value=appended_row)
    sheets.update_rows = AsyncMock(side_effect=lambda sheet, updates: len(updates))
    return sheets


@pytest.fixture(name="make_row")
def make_row_fixture():
    """Factory: {column index: text} -> full-width raw sheet row."""
    return _sheet_row


@pytest.fixture(name="make_sheets")
def make_sheets_fixture():
    """Factory for SheetsClient mocks with canned rows and append result."""
    return _sheets_mock


@pytest.fixture(name="sheets")
def sheets_fixture() -> AsyncMock:
    return _sheets_mock()
