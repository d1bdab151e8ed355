"""Ledger Resources - Loans, Reservations and Their History

Exposes the circulation ledger via read-only resources. Every listing is
newest first and joins each entry with a summary of its item.

Resources:
- library://entries/list - All entries
- library://entries/active - Open entries (items currently held)
- library://entries/returned - Closed entries
- library://entries/overdue - Open entries past their due date
- library://entries/{entry_id} - One entry
- library://borrowers/{email}/loans - A borrower's open entries
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError
from pydantic import BaseModel, Field

from ..database.errors import InvalidInputError, NotFoundError
from ..database.ledger_repository import CirculationLedger
from ..database.repository import PaginationParams
from ..database.session import session_scope
from ..models.ledger import EntryFilter, EntryStatusFilter, LedgerEntryView

logger = logging.getLogger(__name__)


class EntryListResponse(BaseModel):
    """Response schema with entries and pagination metadata."""

    entries: list[LedgerEntryView] = Field(..., description="Entries in this page")
    total: int = Field(..., description="Total number of matching entries")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Number of entries per page")
    total_pages: int = Field(..., description="Total number of pages")
    has_next: bool = Field(..., description="Whether there's a next page")
    has_previous: bool = Field(..., description="Whether there's a previous page")


class BorrowerLoansResponse(BaseModel):
    """A borrower's currently held items."""

    borrower_email: str
    entries: list[LedgerEntryView]
    overdue_count: int


def _list_entries(status: EntryStatusFilter) -> dict[str, Any]:
    with session_scope() as session:
        result = CirculationLedger(session).list_entries(
            EntryFilter(status=status),
            PaginationParams(page=1, page_size=100),
        )
        return EntryListResponse(
            entries=result.items,
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            total_pages=result.total_pages,
            has_next=result.has_next,
            has_previous=result.has_previous,
        ).model_dump(mode="json")


async def list_entries_handler() -> dict[str, Any]:
    """Returns the full ledger, newest first."""
    try:
        logger.debug("MCP Resource Request - entries/list")
        return _list_entries(EntryStatusFilter.ALL)
    except Exception as e:
        logger.exception("Error in entries/list resource")
        raise ResourceError(f"Failed to retrieve ledger entries: {e!s}") from e


async def list_active_entries_handler() -> dict[str, Any]:
    """Returns open entries, i.e. every item currently out."""
    try:
        logger.debug("MCP Resource Request - entries/active")
        return _list_entries(EntryStatusFilter.ACTIVE)
    except Exception as e:
        logger.exception("Error in entries/active resource")
        raise ResourceError(f"Failed to retrieve active entries: {e!s}") from e


async def list_returned_entries_handler() -> dict[str, Any]:
    try:
        logger.debug("MCP Resource Request - entries/returned")
        return _list_entries(EntryStatusFilter.RETURNED)
    except Exception as e:
        logger.exception("Error in entries/returned resource")
        raise ResourceError(f"Failed to retrieve returned entries: {e!s}") from e


async def list_overdue_entries_handler() -> dict[str, Any]:
    """Returns open entries past due, most overdue first."""
    try:
        logger.debug("MCP Resource Request - entries/overdue")

        with session_scope() as session:
            ledger = CirculationLedger(session)
            now = ledger.clock()
            entries = ledger.list_overdue()
            return {
                "entries": [entry.model_dump(mode="json") for entry in entries],
                "total": len(entries),
                "as_of": now.isoformat(),
            }

    except Exception as e:
        logger.exception("Error in entries/overdue resource")
        raise ResourceError(f"Failed to retrieve overdue entries: {e!s}") from e


async def get_entry_handler(entry_id: str) -> dict[str, Any]:
    """Returns one ledger entry with its item summary."""
    try:
        logger.debug("MCP Resource Request - entries/%s", entry_id)

        with session_scope() as session:
            return CirculationLedger(session).get_entry(entry_id).model_dump(mode="json")

    except NotFoundError as e:
        raise ResourceError(f"Entry not found: {entry_id}") from e
    except Exception as e:
        logger.exception("Error in entries/{entry_id} resource")
        raise ResourceError(f"Failed to retrieve entry: {e!s}") from e


async def get_borrower_loans_handler(email: str) -> dict[str, Any]:
    """Returns what a borrower currently holds ("my active loans")."""
    try:
        logger.debug("MCP Resource Request - borrowers/%s/loans", email)

        with session_scope() as session:
            ledger = CirculationLedger(session)
            entries = ledger.list_open_entries(borrower_email=email)
            return BorrowerLoansResponse(
                borrower_email=email,
                entries=entries,
                overdue_count=sum(1 for entry in entries if entry.overdue),
            ).model_dump(mode="json")

    except (InvalidInputError, ValueError) as e:
        raise ResourceError(f"Invalid borrower email: {email}") from e
    except Exception as e:
        logger.exception("Error in borrowers/{email}/loans resource")
        raise ResourceError(f"Failed to retrieve borrower loans: {e!s}") from e


entry_resources: list[dict[str, Any]] = [
    {
        "uri": "library://entries/list",
        "name": "Circulation Ledger",
        "description": "All loan and reservation entries, newest first.",
        "mime_type": "application/json",
        "handler": list_entries_handler,
    },
    {
        "uri": "library://entries/active",
        "name": "Active Entries",
        "description": "Open loans and reservations; each holds one item.",
        "mime_type": "application/json",
        "handler": list_active_entries_handler,
    },
    {
        "uri": "library://entries/returned",
        "name": "Returned Entries",
        "description": "Closed loans and reservations.",
        "mime_type": "application/json",
        "handler": list_returned_entries_handler,
    },
    {
        "uri": "library://entries/overdue",
        "name": "Overdue Entries",
        "description": "Open entries whose due date has passed, most overdue first.",
        "mime_type": "application/json",
        "handler": list_overdue_entries_handler,
    },
    {
        "uri_template": "library://entries/{entry_id}",
        "name": "Ledger Entry",
        "description": "One loan or reservation entry with its item summary.",
        "mime_type": "application/json",
        "handler": get_entry_handler,
    },
    {
        "uri_template": "library://borrowers/{email}/loans",
        "name": "Borrower Loans",
        "description": "Items a borrower currently holds, newest first.",
        "mime_type": "application/json",
        "handler": get_borrower_loans_handler,
    },
]
