"""Catalog Item Resources - Availability at a Glance

Exposes catalog items and their circulation state via read-only resources.

Resources:
- library://items/list - Catalog ordered by title, with availability
- library://items/{item_id} - One item, its derived state and current holder
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError
from pydantic import BaseModel, Field

from ..database.errors import NotFoundError
from ..database.ledger_repository import CirculationLedger
from ..database.repository import PaginationParams
from ..database.session import session_scope
from ..models.item import CatalogItem
from ..models.ledger import ItemState, LedgerEntryView

logger = logging.getLogger(__name__)


class ItemListResponse(BaseModel):
    """Response schema with items and pagination metadata."""

    items: list[CatalogItem] = Field(..., description="Items in this page")
    total: int = Field(..., description="Total number of catalog items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Number of items per page")
    total_pages: int = Field(..., description="Total number of pages")
    has_next: bool = Field(..., description="Whether there's a next page")
    has_previous: bool = Field(..., description="Whether there's a previous page")


class ItemDetailResponse(BaseModel):
    """One item with its derived circulation state."""

    item: CatalogItem
    state: ItemState
    current_entry: LedgerEntryView | None = Field(
        default=None, description="The open entry holding the item, if any"
    )


async def list_items_handler() -> dict[str, Any]:
    """Returns the first page of the catalog.

    Client requests library://items/list to see which copies can be borrowed.
    """
    try:
        logger.debug("MCP Resource Request - items/list")

        with session_scope() as session:
            ledger = CirculationLedger(session)
            result = ledger.items.list_items(pagination=PaginationParams(page=1, page_size=100))

            response = ItemListResponse(
                items=result.items,
                total=result.total,
                page=result.page,
                page_size=result.page_size,
                total_pages=result.total_pages,
                has_next=result.has_next,
                has_previous=result.has_previous,
            )
            return response.model_dump(mode="json")

    except Exception as e:
        logger.exception("Error in items/list resource")
        raise ResourceError(f"Failed to retrieve catalog: {e!s}") from e


async def get_item_handler(item_id: str) -> dict[str, Any]:
    """Returns one item, whether it is held, and by which entry."""
    try:
        logger.debug("MCP Resource Request - items/%s", item_id)

        with session_scope() as session:
            ledger = CirculationLedger(session)
            item = ledger.get_item(item_id)
            state = ledger.get_item_state(item_id)

            current_entry = ledger.find_open_entry(item_id) if state == ItemState.HELD else None

            return ItemDetailResponse(
                item=item, state=state, current_entry=current_entry
            ).model_dump(mode="json")

    except NotFoundError as e:
        raise ResourceError(f"Item not found: {item_id}") from e
    except Exception as e:
        logger.exception("Error in items/{item_id} resource")
        raise ResourceError(f"Failed to retrieve item details: {e!s}") from e


item_resources: list[dict[str, Any]] = [
    {
        "uri": "library://items/list",
        "name": "Catalog Items",
        "description": "All catalog items ordered by title, with their availability flag.",
        "mime_type": "application/json",
        "handler": list_items_handler,
    },
    {
        "uri_template": "library://items/{item_id}",
        "name": "Catalog Item Details",
        "description": "One catalog item, whether it is held, and the entry holding it.",
        "mime_type": "application/json",
        "handler": get_item_handler,
    },
]
