"""
Catalog item repository for the Library Circulation server.

This is the Catalog Item Store. It owns item identity and the authoritative
``available`` flag but performs no circulation rules of its own:

1. **Reads**: ``get`` and listings for resources
2. **Availability**: ``set_availability`` and ``compare_and_set_availability``,
   called only from ledger transitions
3. **Catalog maintenance**: create, edit title/author, delete; delete refuses
   items that are still held

``compare_and_set_availability`` never commits, so the ledger can combine it
with the entry write in one transaction.
"""

import logging
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError

from ..clock import utcnow
from ..models.item import CatalogItem as CatalogItemModel
from ..observability import trace_ledger_operation
from .errors import ConflictError, DuplicateError, NotFoundError
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import CatalogItem as CatalogItemDB
from .schema import LedgerEntry as LedgerEntryDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class CatalogItemCreateSchema(BaseModel):
    """Schema for adding an item to the catalog."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=500)


class CatalogItemUpdateSchema(BaseModel):
    """Schema for editing display metadata; availability is not editable here."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=500)
    author: str | None = Field(default=None, min_length=1, max_length=500)


class CatalogItemRepository(BaseRepository[CatalogItemDB, CatalogItemModel]):
    """
    Repository for catalog items.

    Availability writes are reserved for the circulation ledger; everything
    else here is plain data access.
    """

    @property
    def model_class(self):
        return CatalogItemDB

    @property
    def response_schema(self):
        return CatalogItemModel

    def get(self, item_id: str) -> CatalogItemModel:
        """
        Get an item by ID.

        Raises:
            NotFoundError: If the item does not exist
        """
        item = self.get_by_id(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def list_items(
        self,
        available_only: bool = False,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[CatalogItemModel]:
        """List catalog items ordered by title."""
        query = select(CatalogItemDB)
        if available_only:
            query = query.where(CatalogItemDB.available.is_(True))
        query = query.order_by(CatalogItemDB.title, CatalogItemDB.id)
        return self._paginate_query(query, pagination)

    def set_availability(self, item_id: str, value: bool) -> CatalogItemModel:
        """
        Store the availability flag unconditionally and commit.

        No business validation; callers outside the ledger should not use this.

        Raises:
            NotFoundError: If the item does not exist
        """
        item = self._get_db_object(item_id, for_update=True)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")

        item.available = value
        item.updated_at = utcnow()
        safe_commit(self.session, "set item availability")
        self.session.refresh(item)
        return self._to_response_model(item)

    def compare_and_set_availability(self, item_id: str, expected: bool, new: bool) -> bool:
        """
        Atomically change the flag from ``expected`` to ``new``.

        Issues a single conditional UPDATE inside the caller's transaction and
        does not commit. Returns False when no row matched, meaning the item is
        missing or its flag was not ``expected``.
        """
        statement = (
            update(CatalogItemDB)
            .where(and_(CatalogItemDB.id == item_id, CatalogItemDB.available.is_(expected)))
            .values(available=new, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = safe_query(
            self.session,
            lambda s: s.execute(statement),
            "Failed to update item availability",
        )
        changed = result.rowcount == 1
        if changed:
            cached = self.session.identity_map.get(self.session.identity_key(CatalogItemDB, item_id))
            if cached is not None:
                self.session.expire(cached, ["available", "updated_at"])
        logger.debug(
            "Availability CAS on %s (%s -> %s): %s",
            item_id,
            expected,
            new,
            "applied" if changed else "no match",
        )
        return changed

    def has_open_entry(self, item_id: str) -> bool:
        """True when an unreturned ledger entry references the item."""
        query = select(LedgerEntryDB.id).where(
            and_(LedgerEntryDB.item_id == item_id, LedgerEntryDB.returned.is_(False))
        )
        found = safe_query(
            self.session,
            lambda s: s.execute(query.limit(1)).scalar_one_or_none(),
            "Failed to check for open ledger entries",
        )
        return found is not None

    def create(self, data: CatalogItemCreateSchema) -> CatalogItemModel:
        """Add a new, available item to the catalog."""
        item_id = self._generate_item_id()

        with trace_ledger_operation("catalog.create", item_id=item_id):
            item = CatalogItemDB(
                id=item_id,
                title=data.title.strip(),
                author=data.author.strip(),
                available=True,
            )
            self.session.add(item)
            try:
                self.session.flush()
            except IntegrityError as e:
                self.session.rollback()
                raise DuplicateError(f"Item {item_id} already exists") from e
            safe_commit(self.session, "create catalog item")
            self.session.refresh(item)
            logger.info("Catalog item created: %s (%s)", item.id, item.title)
            return self._to_response_model(item)

    def update(self, item_id: str, data: CatalogItemUpdateSchema) -> CatalogItemModel:
        """
        Edit an item's title and/or author.

        Raises:
            NotFoundError: If the item does not exist
        """
        with trace_ledger_operation("catalog.update", item_id=item_id):
            item = self._get_db_object(item_id, for_update=True)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")

            for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
                setattr(item, field, value.strip())
            item.updated_at = utcnow()

            safe_commit(self.session, "update catalog item")
            self.session.refresh(item)
            return self._to_response_model(item)

    def delete(self, item_id: str) -> None:
        """
        Remove an item from the catalog.

        Items with an open ledger entry are refused. Closed entries are kept as
        history, so an item that has ever circulated cannot be removed either.

        Raises:
            NotFoundError: If the item does not exist
            ConflictError: If the item is held or has circulation history
        """
        with trace_ledger_operation("catalog.delete", item_id=item_id):
            item = self._get_db_object(item_id, for_update=True)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")

            if self.has_open_entry(item_id):
                raise ConflictError(f"Item {item_id} is currently held and cannot be removed")

            history = safe_query(
                self.session,
                lambda s: s.execute(
                    select(LedgerEntryDB.id).where(LedgerEntryDB.item_id == item_id).limit(1)
                ).scalar_one_or_none(),
                "Failed to check item history",
            )
            if history is not None:
                raise ConflictError(
                    f"Item {item_id} has circulation history and cannot be removed"
                )

            self.session.delete(item)
            safe_commit(self.session, "delete catalog item")
            logger.info("Catalog item removed: %s", item_id)

    def _generate_item_id(self) -> str:
        return f"item_{uuid4().hex[:12]}"
