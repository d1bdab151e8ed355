"""
Catalog maintenance tools for the Library Circulation server.

Staff-facing operations on catalog items:
1. add_catalog_item: add a new, available copy
2. update_catalog_item: edit title and/or author
3. remove_catalog_item: delete a copy that is not held and never circulated

Availability is never editable here; only the circulation tools move it.
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..database.errors import ConflictError, NotFoundError, RepositoryException
from ..database.item_repository import (
    CatalogItemCreateSchema,
    CatalogItemRepository,
    CatalogItemUpdateSchema,
)
from ..database.session import get_session
from .results import error_result, repository_error_result, success_result

logger = logging.getLogger(__name__)


class AddCatalogItemInput(BaseModel):
    """Input schema for add_catalog_item."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=500, examples=["The Left Hand of Darkness"])
    author: str = Field(..., min_length=1, max_length=500, examples=["Ursula K. Le Guin"])


class UpdateCatalogItemInput(BaseModel):
    """Input schema for update_catalog_item; at least one field must change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    item_id: str = Field(..., pattern=r"^item_[a-zA-Z0-9]{6,}$")
    title: str | None = Field(default=None, min_length=1, max_length=500)
    author: str | None = Field(default=None, min_length=1, max_length=500)

    @model_validator(mode="after")
    def validate_has_changes(self) -> "UpdateCatalogItemInput":
        if self.title is None and self.author is None:
            raise ValueError("Provide a new title or author")
        return self


class RemoveCatalogItemInput(BaseModel):
    """Input schema for remove_catalog_item."""

    item_id: str = Field(..., pattern=r"^item_[a-zA-Z0-9]{6,}$")


async def add_catalog_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the add_catalog_item tool."""
    try:
        params = AddCatalogItemInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid catalog item parameters: %s", e)
        return error_result(f"Invalid catalog item parameters: {e}")

    try:
        with get_session() as session:
            item = CatalogItemRepository(session).create(
                CatalogItemCreateSchema(title=params.title, author=params.author)
            )
    except RepositoryException as e:
        logger.warning("Adding catalog item failed: %s", e)
        return repository_error_result(e)
    except Exception as e:
        logger.exception("Unexpected error in add_catalog_item tool")
        return error_result(f"An unexpected error occurred: {e!s}", kind="internal_error")

    return success_result(
        f"Added '{item.title}' by {item.author} to the catalog. Item ID: {item.id}",
        item=item.model_dump(mode="json"),
    )


async def update_catalog_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the update_catalog_item tool."""
    try:
        params = UpdateCatalogItemInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid catalog update parameters: %s", e)
        return error_result(f"Invalid catalog update parameters: {e}")

    changes = params.model_dump(exclude={"item_id"}, exclude_none=True)

    try:
        with get_session() as session:
            item = CatalogItemRepository(session).update(
                params.item_id, CatalogItemUpdateSchema(**changes)
            )
    except NotFoundError as e:
        logger.info("Catalog update failed - item not found: %s", e)
        return repository_error_result(e)
    except RepositoryException as e:
        logger.warning("Catalog update failed: %s", e)
        return repository_error_result(e)
    except Exception as e:
        logger.exception("Unexpected error in update_catalog_item tool")
        return error_result(f"An unexpected error occurred: {e!s}", kind="internal_error")

    return success_result(
        f"Updated {item.id}: '{item.title}' by {item.author}",
        item=item.model_dump(mode="json"),
    )


async def remove_catalog_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the remove_catalog_item tool.

    Held items and items with circulation history are refused with a
    ``conflict`` error.
    """
    try:
        params = RemoveCatalogItemInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid catalog removal parameters: %s", e)
        return error_result(f"Invalid catalog removal parameters: {e}")

    try:
        with get_session() as session:
            CatalogItemRepository(session).delete(params.item_id)
    except (NotFoundError, ConflictError) as e:
        logger.info("Catalog removal refused: %s", e)
        return repository_error_result(e)
    except RepositoryException as e:
        logger.warning("Catalog removal failed: %s", e)
        return repository_error_result(e)
    except Exception as e:
        logger.exception("Unexpected error in remove_catalog_item tool")
        return error_result(f"An unexpected error occurred: {e!s}", kind="internal_error")

    return success_result(f"Removed {params.item_id} from the catalog.", item_id=params.item_id)


add_catalog_item = {
    "name": "add_catalog_item",
    "description": "Add a new lendable copy to the catalog. New items start available.",
    "inputSchema": AddCatalogItemInput.model_json_schema(),
    "handler": add_catalog_item_handler,
}

update_catalog_item = {
    "name": "update_catalog_item",
    "description": "Edit the title and/or author of a catalog item.",
    "inputSchema": UpdateCatalogItemInput.model_json_schema(),
    "handler": update_catalog_item_handler,
}

remove_catalog_item = {
    "name": "remove_catalog_item",
    "description": (
        "Remove a catalog item. Items that are currently held, or that have any "
        "loan or reservation history, cannot be removed."
    ),
    "inputSchema": RemoveCatalogItemInput.model_json_schema(),
    "handler": remove_catalog_item_handler,
}
