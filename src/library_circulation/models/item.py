"""
Catalog item model for the Library Circulation server.

A catalog item is a single lendable physical copy. Title and author are
display metadata only; ``available`` is the flag the circulation ledger
flips when the copy is acquired or released. Exposed through resources like:
- library://items/list
- library://items/{item_id}
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..clock import utcnow


class CatalogItem(BaseModel):
    """
    Represents one lendable copy in the catalog.

    One bibliographic record is one lendable unit; there is no copy count.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the catalog item",
        pattern=r"^item_[a-zA-Z0-9]{6,}$",
        examples=["item_3f9a1c2b7d4e"],
    )

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        max_length=500,
        examples=["The Left Hand of Darkness", "Middlemarch"],
    )

    author: str = Field(
        ...,
        description="Display name of the author",
        min_length=1,
        max_length=500,
        examples=["Ursula K. Le Guin", "George Eliot"],
    )

    available: bool = Field(
        default=True,
        description="Whether the copy can currently be borrowed or reserved",
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        description="When the item was added to the catalog (UTC)",
    )

    updated_at: datetime | None = Field(
        default=None,
        description="When the item was last changed (UTC)",
    )

    @field_validator("title", "author")
    @classmethod
    def strip_text(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    model_config = ConfigDict(
        validate_assignment=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "item_3f9a1c2b7d4e",
                "title": "The Left Hand of Darkness",
                "author": "Ursula K. Le Guin",
                "available": True,
            }
        },
    )


class CatalogItemSummary(BaseModel):
    """The slice of an item joined onto ledger entries in list views."""

    id: str
    title: str
    author: str
    available: bool
