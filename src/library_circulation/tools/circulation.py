"""
Circulation tools for the Library Circulation server.

These tools drive the circulation state machine:
1. borrow_item: open a borrow entry and mark the item held
2. reserve_item: open a reservation entry; same exclusivity and due-date rules
3. return_item: close an entry by its id and make the item available again

The handlers only translate between MCP arguments and the ledger. Every rule
(one holder per item, due date strictly in the future, single release) is
enforced by ``CirculationLedger`` and reported back with its error kind.
"""

import logging
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, EmailStr, Field, ValidationError

from ..config import get_config
from ..database.errors import (
    ConflictError,
    NotFoundError,
    RepositoryException,
    StorageError,
)
from ..database.ledger_repository import CirculationLedger
from ..database.session import get_session
from ..models.ledger import EntryIntent, LedgerEntryView
from .results import error_result, repository_error_result, success_result

logger = logging.getLogger(__name__)


# =============================================================================
# BORROW / RESERVE
# =============================================================================


class AcquireItemInput(BaseModel):
    """
    Input schema for borrow_item and reserve_item.

    The due date is passed through as text and parsed by the ledger, so a
    malformed value gets the same "valid return date" error as any other
    unusable date.
    """

    borrower_email: EmailStr = Field(
        ...,
        description="Email address of the borrower",
        examples=["alice@example.com"],
    )

    item_id: str = Field(
        ...,
        description="ID of the catalog item to hold",
        pattern=r"^item_[a-zA-Z0-9]{6,}$",
        examples=["item_3f9a1c2b7d4e"],
    )

    due_date: str | None = Field(
        default=None,
        description=(
            "Requested return date or time (ISO 8601, UTC unless an offset is given). "
            "Must be in the future. Defaults to the standard loan period."
        ),
        examples=["2026-11-02", "2026-11-02T17:00:00Z"],
    )

    notes: str | None = Field(
        default=None,
        description="Optional notes stored with the entry",
        max_length=1000,
    )


async def _acquire_handler(arguments: dict[str, Any], intent: EntryIntent) -> dict[str, Any]:
    action = "reserve" if intent is EntryIntent.RESERVATION else "borrow"

    try:
        params = AcquireItemInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid %s parameters: %s", action, e)
        return error_result(f"Invalid {action} parameters: {e}")

    try:
        with get_session() as session:
            ledger = CirculationLedger(session)

            due_date = params.due_date
            if due_date is None:
                due_date = ledger.clock() + timedelta(days=get_config().default_loan_days)

            entry = ledger.acquire(
                borrower_email=params.borrower_email,
                item_id=params.item_id,
                due_date=due_date,
                intent=intent,
                notes=params.notes,
            )

    except (NotFoundError, ConflictError) as e:
        logger.info("%s refused: %s", action.capitalize(), e)
        return repository_error_result(e)

    except StorageError as e:
        logger.warning("%s failed on storage, caller may retry: %s", action.capitalize(), e)
        return repository_error_result(e)

    except RepositoryException as e:
        logger.info("%s rejected: %s", action.capitalize(), e)
        return repository_error_result(e)

    except Exception as e:
        logger.exception("Unexpected error in %s_item tool", action)
        return error_result(f"An unexpected error occurred: {e!s}", kind="internal_error")

    title = entry.item.title if entry.item else entry.item_id
    verb = "Reserved" if intent is EntryIntent.RESERVATION else "Borrowed"
    message = (
        f"{verb} '{title}' for {entry.borrower_email}. "
        f"Return by {entry.due_date.strftime('%B %d, %Y %H:%M')} UTC. "
        f"Entry ID: {entry.id}"
    )

    return success_result(message, entry=_entry_data(entry))


async def borrow_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the borrow_item tool.

    Args:
        arguments: Raw arguments from the MCP tools/call request

    Returns:
        The new entry, or an error whose ``data.error.kind`` is one of
        invalid_input, not_found, conflict or storage_error
    """
    return await _acquire_handler(arguments, EntryIntent.BORROW)


async def reserve_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the reserve_item tool; a reservation holds the item like a loan."""
    return await _acquire_handler(arguments, EntryIntent.RESERVATION)


# =============================================================================
# RETURN
# =============================================================================


class ReturnItemInput(BaseModel):
    """Input schema for return_item. The entry id is the only return key."""

    entry_id: str = Field(
        ...,
        description="ID of the open ledger entry to close",
        pattern=r"^entry_[a-zA-Z0-9]{6,}$",
        examples=["entry_8c41f0e2a9b3"],
    )


async def return_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the return_item tool.

    A second return of the same entry fails with ``invalid_state`` and leaves
    the item untouched.
    """
    try:
        params = ReturnItemInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid return parameters: %s", e)
        return error_result(f"Invalid return parameters: {e}")

    try:
        with get_session() as session:
            entry = CirculationLedger(session).release(params.entry_id)

    except (NotFoundError, ConflictError) as e:
        logger.info("Return refused: %s", e)
        return repository_error_result(e)

    except StorageError as e:
        logger.warning("Return failed on storage, caller may retry: %s", e)
        return repository_error_result(e)

    except RepositoryException as e:
        logger.error("Return failed: %s", e)
        return repository_error_result(e)

    except Exception as e:
        logger.exception("Unexpected error in return_item tool")
        return error_result(f"An unexpected error occurred: {e!s}", kind="internal_error")

    title = entry.item.title if entry.item else entry.item_id
    message = f"Returned '{title}' (entry {entry.id}). The item is available again."

    late_by = entry.returned_at - entry.due_date
    if late_by.total_seconds() > 0:
        message += f" Returned {late_by.days} day(s) after the due date."

    return success_result(message, entry=_entry_data(entry))


def _entry_data(entry: LedgerEntryView) -> dict[str, Any]:
    return entry.model_dump(mode="json")


# =============================================================================
# TOOL METADATA
# =============================================================================

borrow_item = {
    "name": "borrow_item",
    "description": (
        "Borrow an available catalog item. Fails if the item is already held by "
        "a loan or reservation, or if the return date is not in the future. "
        "Returns the entry ID needed to return the item."
    ),
    "inputSchema": AcquireItemInput.model_json_schema(),
    "handler": borrow_item_handler,
}

reserve_item = {
    "name": "reserve_item",
    "description": (
        "Reserve an available catalog item until a future date. A reservation "
        "holds the item exclusively, exactly like a loan."
    ),
    "inputSchema": AcquireItemInput.model_json_schema(),
    "handler": reserve_item_handler,
}

return_item = {
    "name": "return_item",
    "description": (
        "Return a borrowed or reserved item by its entry ID. Each entry can be "
        "returned once; the item becomes available again."
    ),
    "inputSchema": ReturnItemInput.model_json_schema(),
    "handler": return_item_handler,
}
