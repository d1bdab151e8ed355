"""
SQLAlchemy database schema for the Library Circulation server.

Two tables back the circulation core:

1. ``catalog_items`` - one row per lendable physical copy, carrying the
   authoritative ``available`` flag
2. ``ledger_entries`` - one row per loan or reservation episode, open until
   the copy is returned and kept afterwards as history

The invariants that can be expressed declaratively live here as well, so the
database refuses states the ledger must never produce even if application
code is bypassed:
- due date strictly after creation, return stamp not before creation
- ``returned_at`` present exactly when ``returned`` is true
- at most one open entry per item (partial unique index)
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..clock import utcnow

Base = declarative_base()


class EntryIntentEnum(str, enum.Enum):
    """Database enum for why a ledger entry holds its item."""

    BORROW = "borrow"
    RESERVATION = "reservation"


class CatalogItem(Base):
    """
    Catalog items table - one lendable copy per row.

    Circulation usage:
    - Resource: library://items/list, library://items/{item_id}
    - Tools: borrow_item, reserve_item and return_item flip ``available``
    - Catalog maintenance edits title/author only
    """

    __tablename__ = "catalog_items"

    id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=False, index=True)
    author = Column(String(500), nullable=False)
    available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    entries = relationship("LedgerEntry", back_populates="item")

    __table_args__ = (
        Index("idx_item_availability", "available"),
        CheckConstraint("substr(id, 1, 5) = 'item_'", name="check_item_id_format"),
    )


class LedgerEntry(Base):
    """
    Ledger entries table - loan and reservation episodes.

    Circulation usage:
    - Resource: library://entries/list, library://borrowers/{email}/loans
    - Tools: borrow_item/reserve_item insert rows, return_item closes them
    - Closed rows are never modified again
    """

    __tablename__ = "ledger_entries"

    id = Column(String(50), primary_key=True)
    borrower_email = Column(String(255), nullable=False)
    item_id = Column(String(50), ForeignKey("catalog_items.id"), nullable=False)
    intent = Column(Enum(EntryIntentEnum), nullable=False, default=EntryIntentEnum.BORROW)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False)
    returned = Column(Boolean, nullable=False, default=False)
    returned_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    item = relationship("CatalogItem", back_populates="entries")

    __table_args__ = (
        Index("idx_entry_borrower", "borrower_email"),
        Index("idx_entry_item", "item_id"),
        Index("idx_entry_created_at", "created_at"),
        Index("idx_entry_due_date", "due_date"),
        # Exclusivity: only one open entry may reference an item
        Index(
            "uq_open_entry_per_item",
            "item_id",
            unique=True,
            sqlite_where=text("returned = 0"),
            postgresql_where=text("NOT returned"),
        ),
        CheckConstraint("substr(id, 1, 6) = 'entry_'", name="check_entry_id_format"),
        CheckConstraint("due_date > created_at", name="check_due_after_created"),
        CheckConstraint(
            "(returned AND returned_at IS NOT NULL) OR (NOT returned AND returned_at IS NULL)",
            name="check_returned_at_matches_returned",
        ),
        CheckConstraint(
            "returned_at IS NULL OR returned_at >= created_at",
            name="check_returned_after_created",
        ),
    )
