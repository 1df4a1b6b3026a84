"""Business entities mirrored to the shared spreadsheet: requests, cost lines, revenue lines."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel


class User(SQLModel, table=True):
    """Staff account. `role` drives both authorization and import attribution."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    role: str = Field(default="SELLER", index=True)  # ADMIN, SELLER, OPERATOR, ACCOUNTANT
    session_token: Optional[str] = Field(default=None, unique=True, index=True)

    requests: List["Request"] = Relationship(back_populates="seller")


class Request(SQLModel, table=True):
    """One customer request / booking. `code` is the business key shared with the sheet."""

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    booking_code: Optional[str] = Field(default=None, index=True)
    customer_name: str
    contact: str = ""
    country: str = "Unknown"
    source: str = "Other"
    status: str = "DANG_LL_CHUA_TL"
    stage: str = "LEAD"
    pax: int = 1
    tour_days: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    expected_revenue: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=2)
    expected_cost: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=2)
    notes: Optional[str] = None
    seller_id: Optional[int] = Field(default=None, foreign_key="user.id")

    # Row-index linkage: set by the first successful append or by pull import
    sheet_row_index: Optional[int] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    seller: Optional[User] = Relationship(back_populates="requests")
    operators: List["Operator"] = Relationship(back_populates="request")
    revenues: List["Revenue"] = Relationship(back_populates="request")


class Operator(SQLModel, table=True):
    """One service cost line (hotel, transport, guide...) belonging to a request."""

    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: int = Field(foreign_key="request.id", index=True)
    service_date: date
    service_type: str = "Other"
    service_name: str
    supplier: Optional[str] = None
    cost_before_tax: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    vat: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=2)
    total_cost: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    payment_status: str = "PENDING"
    notes: Optional[str] = None
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")

    # Accounting locks (managed by the lock workflow, read-only here)
    lock_kt: bool = False
    lock_admin: bool = False
    lock_final: bool = False
    is_locked: bool = False  # legacy single lock

    sheet_row_index: Optional[int] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    request: Optional[Request] = Relationship(back_populates="operators")


class Revenue(SQLModel, table=True):
    """One incoming payment line belonging to a request."""

    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: int = Field(foreign_key="request.id", index=True)
    payment_date: date
    payment_type: str = "Deposit"
    foreign_amount: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=2)
    currency: Optional[str] = "VND"
    exchange_rate: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=2)
    amount_vnd: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    payment_source: str = "Bank transfer"
    notes: Optional[str] = None
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")

    lock_kt: bool = False
    lock_admin: bool = False
    lock_final: bool = False
    is_locked: bool = False

    sheet_row_index: Optional[int] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    request: Optional[Request] = Relationship(back_populates="revenues")
