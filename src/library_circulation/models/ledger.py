"""
Ledger entry models for the Library Circulation server.

A ledger entry records one loan or reservation episode of one item by one
borrower. Borrowing and reserving share this shape: both hold the item
exclusively and obey the same due-date rules; ``intent`` only records why the
item is held.

An entry is open until it is released. Overdue is derived from the due date
and the current time and is never stored.
"""

from datetime import date, datetime, time
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from ..clock import to_naive_utc, utcnow
from .item import CatalogItemSummary


class EntryIntent(str, Enum):
    """Why an entry holds its item."""

    BORROW = "borrow"
    RESERVATION = "reservation"


class EntryStatusFilter(str, Enum):
    """Status selector for ledger listings."""

    ACTIVE = "active"
    RETURNED = "returned"
    ALL = "all"


class ItemState(str, Enum):
    """Circulation state of an item, derived from its open entry."""

    AVAILABLE = "available"
    HELD = "held"


class LedgerEntry(BaseModel):
    """
    Represents one loan or reservation episode.

    Invariants enforced on construction:
    - due_date is strictly after created_at
    - returned_at is present exactly when returned is true
    - returned_at is not before created_at
    """

    id: str = Field(
        ...,
        description="Unique identifier for the ledger entry",
        pattern=r"^entry_[a-zA-Z0-9]{6,}$",
        examples=["entry_8c41f0e2a9b3"],
    )

    borrower_email: EmailStr = Field(
        ...,
        description="Email address identifying the borrower",
        examples=["alice@example.com"],
    )

    item_id: str = Field(
        ...,
        description="ID of the held catalog item",
        pattern=r"^item_[a-zA-Z0-9]{6,}$",
    )

    intent: EntryIntent = Field(
        default=EntryIntent.BORROW,
        description="Whether the item was borrowed or reserved",
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        description="When the item was borrowed or reserved (UTC)",
    )

    due_date: datetime = Field(
        ...,
        description="When the item must be returned (UTC)",
    )

    returned: bool = Field(
        default=False,
        description="Whether the entry has been closed",
    )

    returned_at: datetime | None = Field(
        default=None,
        description="When the item was returned (UTC)",
    )

    notes: str | None = Field(
        default=None,
        description="Additional notes about this entry",
        max_length=1000,
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "LedgerEntry":
        """Validate date relationships."""
        if self.due_date <= self.created_at:
            raise ValueError("Due date must be after the creation time")

        if self.returned != (self.returned_at is not None):
            raise ValueError("returned_at must be set exactly when the entry is returned")

        if self.returned_at is not None and self.returned_at < self.created_at:
            raise ValueError("Return time cannot be before the creation time")

        return self

    @property
    def is_open(self) -> bool:
        return not self.returned

    def is_overdue(self, now: datetime | None = None) -> bool:
        """Open and past its due date at ``now`` (defaults to the current time)."""
        if self.returned:
            return False
        now = to_naive_utc(now) if now is not None else utcnow()
        return self.due_date < now

    def days_overdue(self, now: datetime | None = None) -> int:
        """Whole days past the due date; 0 when not overdue."""
        if not self.is_overdue(now):
            return 0
        now = to_naive_utc(now) if now is not None else utcnow()
        return (now - self.due_date).days

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
        validate_default=True,
        json_schema_extra={
            "example": {
                "id": "entry_8c41f0e2a9b3",
                "borrower_email": "alice@example.com",
                "item_id": "item_3f9a1c2b7d4e",
                "intent": "borrow",
                "created_at": "2026-10-19T10:30:00",
                "due_date": "2026-11-02T10:30:00",
                "returned": False,
            }
        },
    )


class LedgerEntryView(LedgerEntry):
    """A ledger entry joined with a summary of its item, as listings return it."""

    item: CatalogItemSummary | None = Field(
        default=None,
        description="Title, author and availability of the held item",
    )

    overdue: bool = Field(
        default=False,
        description="Computed at read time: open and past due",
    )


class EntryFilter(BaseModel):
    """Filter for ledger listings; every field is optional."""

    borrower_email: EmailStr | None = None
    status: EntryStatusFilter = EntryStatusFilter.ALL
    intent: EntryIntent | None = None


class AvailabilityInconsistency(BaseModel):
    """
    An item whose stored flag disagrees with its open entries.

    Reported for repair; the ledger never corrects these on its own.
    """

    item_id: str
    title: str
    available: bool
    open_entry_ids: list[str]
    problem: str


class CirculationStats(BaseModel):
    """Circulation statistics for reporting."""

    total_items: int
    available_items: int
    held_items: int
    total_entries: int
    open_entries: int
    returned_entries: int
    overdue_entries: int
    open_borrows: int
    open_reservations: int


def parse_due_date(value: str | date | datetime | None) -> datetime | None:
    """
    Parse a requested due date into naive UTC.

    Accepts datetimes, dates (midnight UTC) and ISO 8601 strings, with or
    without an offset; a trailing ``Z`` is read as UTC. Returns None when the
    value is missing or cannot be parsed; range checks belong to the caller.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        try:
            return to_naive_utc(value)
        except OverflowError:
            return None

    if isinstance(value, date):
        return datetime.combine(value, time.min)

    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"

    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except (ValueError, OverflowError):
        return None
