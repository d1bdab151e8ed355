"""
Circulation ledger for the Library Circulation server.

The ledger owns loan and reservation records and runs the circulation state
machine against the catalog item store:

1. **Acquire** (borrow or reserve): AVAILABLE -> HELD, opening an entry
2. **Release** (return): HELD -> AVAILABLE, closing the entry for good
3. **Queries**: open loans per borrower, filtered history, overdue entries,
   availability inconsistencies and statistics

Item state is derived, never stored: an item is HELD exactly when an open
entry references it, and its ``available`` flag must agree.

Mutual exclusion is done at the storage layer. Acquire starts with a
conditional update of the item flag (available true -> false); only the
transaction whose update matched a row may insert the entry, and a partial
unique index on open entries backs this up. Both writes commit together or
roll back together, so the flag and the ledger never disagree after a failed
operation.
"""

import logging
from datetime import datetime
from uuid import uuid4

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..clock import Clock, utcnow
from ..models.item import CatalogItem as CatalogItemModel
from ..models.item import CatalogItemSummary
from ..models.ledger import (
    AvailabilityInconsistency,
    CirculationStats,
    EntryFilter,
    EntryIntent,
    EntryStatusFilter,
    ItemState,
    LedgerEntryView,
    parse_due_date,
)
from ..observability import trace_ledger_operation
from .errors import (
    ConflictError,
    IntegrityViolationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    RepositoryException,
    StorageError,
)
from .item_repository import CatalogItemRepository
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import CatalogItem as CatalogItemDB
from .schema import EntryIntentEnum
from .schema import LedgerEntry as LedgerEntryDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


class CirculationLedger(BaseRepository[LedgerEntryDB, LedgerEntryView]):
    """
    The circulation state machine.

    Every state-changing method is one transaction on the session it was
    given: it either commits both the entry and the item flag, or rolls back
    and raises one of InvalidInputError, NotFoundError, ConflictError
    (InvalidStateError for closed entries) or StorageError.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: Database session owning the transaction
            clock: Returns "now" as naive UTC; defaults to the system clock
        """
        super().__init__(session)
        self.clock = clock or utcnow
        self.items = CatalogItemRepository(session)

    @property
    def model_class(self):
        return LedgerEntryDB

    @property
    def response_schema(self):
        return LedgerEntryView

    def _to_response_model(self, db_obj: LedgerEntryDB) -> LedgerEntryView:
        return self._to_view(db_obj, self.clock())

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def acquire(
        self,
        borrower_email: str | None,
        item_id: str | None,
        due_date,
        intent: EntryIntent = EntryIntent.BORROW,
        notes: str | None = None,
    ) -> LedgerEntryView:
        """
        Open a ledger entry and mark the item held.

        Args:
            borrower_email: Borrower identifier (email address)
            item_id: Catalog item to hold
            due_date: Requested return time (datetime, date or ISO 8601 string)
            intent: Borrow or reservation; both hold the item exclusively
            notes: Optional free text stored with the entry

        Returns:
            The new open entry with its item summary

        Raises:
            InvalidInputError: Missing borrower/item, an unknown intent, or a
                due date that is missing, unparsable, or not strictly in the future
            NotFoundError: The item does not exist
            ConflictError: The item is already held
            StorageError: The database failed; safe to retry
        """
        now = self.clock()
        email = self._validate_borrower(borrower_email)
        if not item_id:
            raise InvalidInputError("Item ID is required.")
        due = self.validate_due_date(due_date, now)
        try:
            intent = EntryIntent(intent)
        except ValueError as e:
            raise InvalidInputError(f"Unknown intent: {intent}") from e

        with trace_ledger_operation(
            "acquire", item_id=item_id, borrower=email, intent=intent.value
        ):
            entry_id = self._generate_entry_id()
            try:
                # Critical section: the conditional update is the first write of
                # the transaction and decides which concurrent caller wins
                if not self.items.compare_and_set_availability(item_id, expected=True, new=False):
                    if not self.items.exists(item_id):
                        raise NotFoundError(f"Item {item_id} not found")
                    raise ConflictError(f"Item {item_id} is already held")

                entry = LedgerEntryDB(
                    id=entry_id,
                    borrower_email=email,
                    item_id=item_id,
                    intent=EntryIntentEnum(intent.value),
                    created_at=now,
                    due_date=due,
                    returned=False,
                    returned_at=None,
                    notes=notes,
                )
                self.session.add(entry)
                self.session.flush()

            except IntegrityError as e:
                self.session.rollback()
                logger.warning(
                    "Item %s was flagged available but already has an open entry", item_id
                )
                raise ConflictError(f"Item {item_id} is already held") from e
            except SQLAlchemyError as e:
                self.session.rollback()
                raise StorageError(f"Acquire failed: {e!s}") from e
            except RepositoryException:
                self.session.rollback()
                raise

            safe_commit(self.session, "acquire item")
            self.session.expire_all()

            logger.info(
                "Item %s %s by %s (entry %s, due %s)",
                item_id,
                "reserved" if intent is EntryIntent.RESERVATION else "borrowed",
                email,
                entry_id,
                due.isoformat(),
            )
            return self.get_entry(entry_id)

    def borrow(self, borrower_email, item_id, due_date, notes=None) -> LedgerEntryView:
        """Acquire with borrow intent."""
        return self.acquire(borrower_email, item_id, due_date, EntryIntent.BORROW, notes)

    def reserve(self, borrower_email, item_id, due_date, notes=None) -> LedgerEntryView:
        """Acquire with reservation intent; same exclusivity and due-date rules."""
        return self.acquire(borrower_email, item_id, due_date, EntryIntent.RESERVATION, notes)

    def release(self, entry_id: str | None) -> LedgerEntryView:
        """
        Close an open entry and make its item available again.

        The entry id is the only return key. A second release of the same
        entry fails; it never touches the item again.

        Raises:
            InvalidInputError: No entry id given
            NotFoundError: The entry does not exist
            InvalidStateError: The entry is already closed
            IntegrityViolationError: The item was not flagged held; nothing changes
            StorageError: The database failed; safe to retry
        """
        if not entry_id:
            raise InvalidInputError("Entry ID is required.")

        now = self.clock()

        with trace_ledger_operation("release", entry_id=entry_id):
            try:
                close_entry = (
                    update(LedgerEntryDB)
                    .where(and_(LedgerEntryDB.id == entry_id, LedgerEntryDB.returned.is_(False)))
                    .values(returned=True, returned_at=now)
                    .execution_options(synchronize_session=False)
                )
                result = safe_query(
                    self.session, lambda s: s.execute(close_entry), "Failed to close entry"
                )

                if result.rowcount != 1:
                    if self._get_entry_db(entry_id) is None:
                        raise NotFoundError(f"Entry {entry_id} not found")
                    raise InvalidStateError(f"Entry {entry_id} is already closed")

                item_id = safe_query(
                    self.session,
                    lambda s: s.execute(
                        select(LedgerEntryDB.item_id).where(LedgerEntryDB.id == entry_id)
                    ).scalar_one(),
                    "Failed to read entry item",
                )

                if not self.items.compare_and_set_availability(item_id, expected=False, new=True):
                    logger.error(
                        "Entry %s was open but item %s was not flagged held", entry_id, item_id
                    )
                    raise IntegrityViolationError(
                        f"Item {item_id} is not flagged held for open entry {entry_id}"
                    )

            except RepositoryException:
                self.session.rollback()
                raise

            safe_commit(self.session, "release item")
            self.session.expire_all()

            logger.info("Entry %s closed, item %s available", entry_id, item_id)
            return self.get_entry(entry_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_item(self, item_id: str) -> CatalogItemModel:
        """Get a catalog item; raises NotFoundError."""
        return self.items.get(item_id)

    def get_item_state(self, item_id: str) -> ItemState:
        """Derive an item's circulation state from its open entry."""
        if not self.items.exists(item_id):
            raise NotFoundError(f"Item {item_id} not found")
        return ItemState.HELD if self.items.has_open_entry(item_id) else ItemState.AVAILABLE

    def get_entry(self, entry_id: str) -> LedgerEntryView:
        """Get one entry with its item summary; raises NotFoundError."""
        entry = self._get_entry_db(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} not found")
        return self._to_view(entry, self.clock())

    def find_open_entry(self, item_id: str) -> LedgerEntryView | None:
        """The entry currently holding ``item_id``, or None when it is available."""
        entry = safe_query(
            self.session,
            lambda s: s.execute(
                select(LedgerEntryDB)
                .where(and_(LedgerEntryDB.item_id == item_id, LedgerEntryDB.returned.is_(False)))
                .options(joinedload(LedgerEntryDB.item))
                .limit(1)
            )
            .unique()
            .scalar_one_or_none(),
            "Failed to find open entry",
        )
        return self._to_view(entry, self.clock()) if entry is not None else None

    def list_entries(
        self,
        entry_filter: EntryFilter | None = None,
        pagination: PaginationParams | None = None,
    ) -> list[LedgerEntryView] | PaginatedResponse[LedgerEntryView]:
        """
        List entries, newest first.

        Args:
            entry_filter: Borrower, status (active/returned/all) and intent filters
            pagination: When given, a PaginatedResponse is returned instead of a list
        """
        entry_filter = entry_filter or EntryFilter()
        query = select(LedgerEntryDB).options(joinedload(LedgerEntryDB.item))

        if entry_filter.borrower_email:
            query = query.where(
                LedgerEntryDB.borrower_email == self._normalize_email(entry_filter.borrower_email)
            )

        if entry_filter.status == EntryStatusFilter.ACTIVE:
            query = query.where(LedgerEntryDB.returned.is_(False))
        elif entry_filter.status == EntryStatusFilter.RETURNED:
            query = query.where(LedgerEntryDB.returned.is_(True))

        if entry_filter.intent is not None:
            query = query.where(
                LedgerEntryDB.intent == EntryIntentEnum(EntryIntent(entry_filter.intent).value)
            )

        query = query.order_by(desc(LedgerEntryDB.created_at), desc(LedgerEntryDB.id))

        now = self.clock()
        if pagination is not None:
            return self._paginate_query(
                query, pagination, convert=lambda entry: self._to_view(entry, now)
            )

        results = safe_query(
            self.session,
            lambda s: s.execute(query).unique().scalars().all(),
            "Failed to list ledger entries",
        )
        return [self._to_view(entry, now) for entry in results]

    def list_open_entries(self, borrower_email: str | None = None) -> list[LedgerEntryView]:
        """Open entries, newest first; "my active loans" when a borrower is given."""
        return self.list_entries(
            EntryFilter(borrower_email=borrower_email, status=EntryStatusFilter.ACTIVE)
        )

    def list_overdue(self, borrower_email: str | None = None) -> list[LedgerEntryView]:
        """Open entries whose due date has passed, most overdue first."""
        now = self.clock()
        query = (
            select(LedgerEntryDB)
            .options(joinedload(LedgerEntryDB.item))
            .where(and_(LedgerEntryDB.returned.is_(False), LedgerEntryDB.due_date < now))
        )
        if borrower_email:
            query = query.where(
                LedgerEntryDB.borrower_email == self._normalize_email(borrower_email)
            )
        query = query.order_by(LedgerEntryDB.due_date, LedgerEntryDB.id)

        results = safe_query(
            self.session,
            lambda s: s.execute(query).unique().scalars().all(),
            "Failed to list overdue entries",
        )
        return [self._to_view(entry, now) for entry in results]

    def find_inconsistencies(self) -> list[AvailabilityInconsistency]:
        """
        Report items whose flag disagrees with their open entries.

        Nothing is repaired here; the report is for an operator to act on.
        """
        open_rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(LedgerEntryDB.item_id, LedgerEntryDB.id).where(
                    LedgerEntryDB.returned.is_(False)
                )
            ).all(),
            "Failed to read open entries",
        )
        open_by_item: dict[str, list[str]] = {}
        for item_id, entry_id in open_rows:
            open_by_item.setdefault(item_id, []).append(entry_id)

        candidates = safe_query(
            self.session,
            lambda s: s.execute(
                select(CatalogItemDB)
                .where(
                    CatalogItemDB.available.is_(False)
                    | CatalogItemDB.id.in_(list(open_by_item))
                )
                .order_by(CatalogItemDB.id)
            )
            .scalars()
            .all(),
            "Failed to read held items",
        )

        problems = []
        for item in candidates:
            open_ids = sorted(open_by_item.get(item.id, []))
            if not item.available and not open_ids:
                problem = "flagged unavailable without an open entry"
            elif item.available and open_ids:
                problem = "flagged available while an open entry holds it"
            elif len(open_ids) > 1:
                problem = "held by more than one open entry"
            else:
                continue

            logger.warning("Availability inconsistency on item %s: %s", item.id, problem)
            problems.append(
                AvailabilityInconsistency(
                    item_id=item.id,
                    title=item.title,
                    available=item.available,
                    open_entry_ids=open_ids,
                    problem=problem,
                )
            )
        return problems

    def get_circulation_stats(self) -> CirculationStats:
        """Counts for dashboards and reporting."""
        now = self.clock()

        def count(model, *conditions) -> int:
            query = select(func.count()).select_from(model)
            if conditions:
                query = query.where(and_(*conditions))
            return (
                safe_query(
                    self.session,
                    lambda s: s.execute(query).scalar(),
                    f"Failed to count {model.__tablename__}",
                )
                or 0
            )

        open_entry = LedgerEntryDB.returned.is_(False)
        total_items = count(CatalogItemDB)
        available_items = count(CatalogItemDB, CatalogItemDB.available.is_(True))
        total_entries = count(LedgerEntryDB)
        open_entries = count(LedgerEntryDB, open_entry)

        return CirculationStats(
            total_items=total_items,
            available_items=available_items,
            held_items=total_items - available_items,
            total_entries=total_entries,
            open_entries=open_entries,
            returned_entries=total_entries - open_entries,
            overdue_entries=count(LedgerEntryDB, open_entry, LedgerEntryDB.due_date < now),
            open_borrows=count(
                LedgerEntryDB, open_entry, LedgerEntryDB.intent == EntryIntentEnum.BORROW
            ),
            open_reservations=count(
                LedgerEntryDB, open_entry, LedgerEntryDB.intent == EntryIntentEnum.RESERVATION
            ),
        )

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def validate_due_date(value, now: datetime) -> datetime:
        """
        Parse and range-check a requested due date.

        Borrow and reservation share this validator. Unparsable input and
        instants at or before ``now`` are rejected the same way.
        """
        parsed = parse_due_date(value)
        if parsed is None:
            raise InvalidInputError("A valid return date is required.")
        if parsed <= now:
            raise InvalidInputError("Return date must be in the future.")
        return parsed

    def _validate_borrower(self, borrower_email: str | None) -> str:
        if not borrower_email or not str(borrower_email).strip():
            raise InvalidInputError("Borrower email is required.")
        try:
            return self._normalize_email(borrower_email)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid borrower email: {borrower_email}") from e

    @staticmethod
    def _normalize_email(value: str) -> str:
        return _email_adapter.validate_python(str(value).strip()).lower()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _get_entry_db(self, entry_id: str) -> LedgerEntryDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(LedgerEntryDB)
                .where(LedgerEntryDB.id == entry_id)
                .options(joinedload(LedgerEntryDB.item))
            )
            .unique()
            .scalar_one_or_none(),
            "Failed to get ledger entry",
        )

    def _generate_entry_id(self) -> str:
        return f"entry_{uuid4().hex[:16]}"

    def _to_view(self, entry: LedgerEntryDB, now) -> LedgerEntryView:
        """Convert an entry row to its list view, computing overdue at ``now``."""
        item = entry.item
        view = LedgerEntryView(
            id=entry.id,
            borrower_email=entry.borrower_email,
            item_id=entry.item_id,
            intent=EntryIntent(entry.intent.value),
            created_at=entry.created_at,
            due_date=entry.due_date,
            returned=entry.returned,
            returned_at=entry.returned_at,
            notes=entry.notes,
            item=CatalogItemSummary(
                id=item.id, title=item.title, author=item.author, available=item.available
            )
            if item is not None
            else None,
        )
        view.overdue = view.is_overdue(now)
        return view
