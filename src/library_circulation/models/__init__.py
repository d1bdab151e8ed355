"""
Library Circulation Models.

Pydantic models for the circulation core:
- CatalogItem: a single lendable copy and its availability flag
- LedgerEntry: one loan or reservation episode
- LedgerEntryView: an entry joined with its item summary for listings
"""

from .item import CatalogItem, CatalogItemSummary
from .ledger import (
    AvailabilityInconsistency,
    CirculationStats,
    EntryFilter,
    EntryIntent,
    EntryStatusFilter,
    ItemState,
    LedgerEntry,
    LedgerEntryView,
    parse_due_date,
)

__all__ = [
    "AvailabilityInconsistency",
    "CatalogItem",
    "CatalogItemSummary",
    "CirculationStats",
    "EntryFilter",
    "EntryIntent",
    "EntryStatusFilter",
    "ItemState",
    "LedgerEntry",
    "LedgerEntryView",
    "parse_due_date",
]
