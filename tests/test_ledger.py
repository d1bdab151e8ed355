"""Tests for the circulation ledger state machine.

Covers the transitions (acquire, release), due-date validation, derived
overdue status, listings and the integrity report.
"""

from datetime import date, datetime, timedelta

import pytest

from library_circulation.database.errors import (
    ConflictError,
    IntegrityViolationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from library_circulation.database.repository import PaginatedResponse, PaginationParams
from library_circulation.models.ledger import (
    EntryFilter,
    EntryIntent,
    EntryStatusFilter,
    ItemState,
)

from .conftest import NOW

ALICE = "alice@example.com"
BOB = "bob@example.com"


def in_days(days: float) -> datetime:
    return NOW + timedelta(days=days)


class TestAcquire:
    def test_borrow_holds_item(self, ledger, item_repo, item):
        entry = ledger.borrow(ALICE, item.id, in_days(14))

        assert entry.item_id == item.id
        assert entry.borrower_email == ALICE
        assert entry.intent == EntryIntent.BORROW
        assert entry.created_at == NOW
        assert entry.due_date == in_days(14)
        assert entry.returned is False
        assert entry.returned_at is None
        assert entry.item.title == item.title
        assert entry.item.available is False

        assert item_repo.get(item.id).available is False
        assert ledger.get_item_state(item.id) == ItemState.HELD

    def test_reserve_holds_item(self, ledger, item):
        entry = ledger.reserve(BOB, item.id, in_days(3), notes="Pick up Friday")

        assert entry.intent == EntryIntent.RESERVATION
        assert entry.notes == "Pick up Friday"
        assert ledger.get_item_state(item.id) == ItemState.HELD

    def test_unknown_intent(self, ledger, item, item_repo, count_entries):
        with pytest.raises(InvalidInputError, match="Unknown intent: loan"):
            ledger.acquire(ALICE, item.id, in_days(14), intent="loan")

        assert item_repo.get(item.id).available is True
        assert count_entries() == 0

    def test_second_borrow_conflicts(self, ledger, item, count_entries):
        ledger.borrow(ALICE, item.id, in_days(14))

        with pytest.raises(ConflictError, match="already held"):
            ledger.borrow(BOB, item.id, in_days(14))

        assert count_entries() == 1

    @pytest.mark.parametrize(
        ("first", "second"),
        [
            (EntryIntent.BORROW, EntryIntent.RESERVATION),
            (EntryIntent.RESERVATION, EntryIntent.BORROW),
            (EntryIntent.RESERVATION, EntryIntent.RESERVATION),
        ],
    )
    def test_reservations_and_loans_exclude_each_other(
        self, ledger, item, count_entries, first, second
    ):
        ledger.acquire(ALICE, item.id, in_days(7), intent=first)

        with pytest.raises(ConflictError):
            ledger.acquire(BOB, item.id, in_days(7), intent=second)

        assert count_entries(returned=False) == 1

    def test_same_borrower_cannot_hold_twice(self, ledger, item):
        ledger.borrow(ALICE, item.id, in_days(14))

        with pytest.raises(ConflictError):
            ledger.borrow(ALICE, item.id, in_days(21))

    def test_unknown_item(self, ledger, count_entries):
        with pytest.raises(NotFoundError):
            ledger.borrow(ALICE, "item_doesnotexist", in_days(14))

        assert count_entries() == 0

    def test_borrower_may_hold_several_items(self, ledger, make_item):
        first = make_item("Kindred", "Octavia E. Butler")
        second = make_item("Solaris", "Stanisław Lem")

        ledger.borrow(ALICE, first.id, in_days(14))
        ledger.borrow(ALICE, second.id, in_days(14))

        assert len(ledger.list_open_entries(ALICE)) == 2

    @pytest.mark.parametrize("borrower", [None, "", "   "])
    def test_missing_borrower(self, ledger, item, borrower):
        with pytest.raises(InvalidInputError, match="Borrower email is required"):
            ledger.borrow(borrower, item.id, in_days(14))

    def test_invalid_borrower_email(self, ledger, item):
        with pytest.raises(InvalidInputError, match="Invalid borrower email"):
            ledger.borrow("not-an-email", item.id, in_days(14))

    def test_borrower_email_is_normalized(self, ledger, item):
        entry = ledger.borrow("  Alice@Example.COM ", item.id, in_days(14))

        assert entry.borrower_email == ALICE
        assert len(ledger.list_open_entries("ALICE@example.com")) == 1

    def test_missing_item_id(self, ledger):
        with pytest.raises(InvalidInputError, match="Item ID is required"):
            ledger.borrow(ALICE, "", in_days(14))


class TestDueDateValidation:
    @pytest.mark.parametrize(
        "due_date",
        [
            None,
            "",
            "   ",
            "next tuesday",
            "2026-13-45",
            42,
            "0001-01-01T00:30:00+01:00",
            "9999-12-31T23:30:00-01:00",
        ],
    )
    def test_unusable_due_date(self, ledger, item, item_repo, count_entries, due_date):
        with pytest.raises(InvalidInputError, match="A valid return date is required."):
            ledger.borrow(ALICE, item.id, due_date)

        assert item_repo.get(item.id).available is True
        assert count_entries() == 0

    @pytest.mark.parametrize(
        "due_date",
        [NOW, NOW - timedelta(seconds=1), NOW - timedelta(days=1), "2026-10-18"],
    )
    def test_due_date_not_in_future(self, ledger, item, item_repo, count_entries, due_date):
        with pytest.raises(InvalidInputError, match="Return date must be in the future."):
            ledger.borrow(ALICE, item.id, due_date)

        assert item_repo.get(item.id).available is True
        assert count_entries() == 0

    def test_reservation_uses_same_rules(self, ledger, item):
        with pytest.raises(InvalidInputError, match="Return date must be in the future."):
            ledger.reserve(ALICE, item.id, in_days(-1))

    def test_date_only_means_midnight_utc(self, ledger, item):
        entry = ledger.borrow(ALICE, item.id, date(2026, 11, 2))

        assert entry.due_date == datetime(2026, 11, 2, 0, 0, 0)

    def test_iso_string_with_offset_is_converted(self, ledger, item):
        entry = ledger.borrow(ALICE, item.id, "2026-10-20T12:00:00+02:00")

        assert entry.due_date == datetime(2026, 10, 20, 10, 0, 0)

    def test_trailing_z_is_utc(self, ledger, item):
        entry = ledger.borrow(ALICE, item.id, "2026-10-20T08:30:00Z")

        assert entry.due_date == datetime(2026, 10, 20, 8, 30, 0)

    def test_one_second_ahead_is_accepted(self, ledger, item):
        entry = ledger.borrow(ALICE, item.id, NOW + timedelta(seconds=1))

        assert entry.due_date > entry.created_at


class TestRelease:
    def test_round_trip(self, ledger, item_repo, item, clock):
        entry = ledger.borrow(ALICE, item.id, in_days(14))
        clock.advance(days=3)

        closed = ledger.release(entry.id)

        assert closed.returned is True
        assert closed.returned_at == in_days(3)
        assert closed.item.available is True
        assert item_repo.get(item.id).available is True
        assert ledger.get_item_state(item.id) == ItemState.AVAILABLE

        again = ledger.borrow(BOB, item.id, in_days(20))
        assert again.borrower_email == BOB

    def test_release_twice_fails(self, ledger, item_repo, item, clock):
        entry = ledger.borrow(ALICE, item.id, in_days(14))
        first = ledger.release(entry.id)
        clock.advance(hours=1)

        with pytest.raises(InvalidStateError):
            ledger.release(entry.id)

        assert ledger.get_entry(entry.id).returned_at == first.returned_at
        assert item_repo.get(item.id).available is True

    def test_stale_release_does_not_free_new_holder(self, ledger, item_repo, item):
        old = ledger.borrow(ALICE, item.id, in_days(14))
        ledger.release(old.id)
        ledger.borrow(BOB, item.id, in_days(14))

        with pytest.raises(InvalidStateError):
            ledger.release(old.id)

        assert item_repo.get(item.id).available is False
        assert ledger.find_open_entry(item.id).borrower_email == BOB

    def test_invalid_state_is_a_conflict(self):
        assert issubclass(InvalidStateError, ConflictError)

    def test_unknown_entry(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.release("entry_doesnotexist")

    def test_missing_entry_id(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.release("")

    def test_release_after_due_date_is_allowed(self, ledger, item, clock):
        entry = ledger.borrow(ALICE, item.id, in_days(1))
        clock.advance(days=10)

        closed = ledger.release(entry.id)

        assert closed.returned_at > closed.due_date
        assert closed.overdue is False

    def test_inconsistent_flag_is_surfaced(self, ledger, item_repo, item):
        entry = ledger.borrow(ALICE, item.id, in_days(14))
        item_repo.set_availability(item.id, True)

        with pytest.raises(IntegrityViolationError):
            ledger.release(entry.id)

        assert ledger.get_entry(entry.id).returned is False


class TestScenarios:
    def test_alice_and_bob(self, ledger, item, clock):
        alice_entry = ledger.borrow(ALICE, item.id, in_days(14))
        clock.advance(hours=1)

        with pytest.raises(ConflictError):
            ledger.borrow(BOB, item.id, in_days(14))

        clock.advance(days=2)
        ledger.release(alice_entry.id)
        clock.advance(minutes=5)
        bob_entry = ledger.borrow(BOB, item.id, clock.now + timedelta(days=14))

        entries = ledger.list_entries()
        assert [e.id for e in entries] == [bob_entry.id, alice_entry.id]
        assert entries[0].returned is False
        assert entries[1].returned is True

    def test_yesterday_is_refused(self, ledger, item, item_repo, count_entries):
        with pytest.raises(InvalidInputError, match="Return date must be in the future."):
            ledger.borrow(ALICE, item.id, (NOW - timedelta(days=1)).date().isoformat())

        assert item_repo.get(item.id).available is True
        assert count_entries() == 0

    def test_failed_insert_rolls_back_flag(self, ledger, item_repo, item, count_entries):
        ledger.borrow(ALICE, item.id, in_days(14))
        item_repo.set_availability(item.id, True)

        with pytest.raises(ConflictError):
            ledger.borrow(BOB, item.id, in_days(14))

        assert count_entries() == 1
        assert item_repo.get(item.id).available is True


class TestOverdue:
    def test_overdue_is_derived_from_clock(self, ledger, item, clock):
        entry = ledger.borrow(ALICE, item.id, in_days(1))
        assert ledger.get_entry(entry.id).overdue is False
        assert ledger.list_overdue() == []

        clock.advance(days=3)

        overdue = ledger.list_overdue()
        assert [e.id for e in overdue] == [entry.id]
        assert overdue[0].overdue is True
        assert overdue[0].days_overdue(clock.now) == 2

    def test_due_instant_itself_is_not_overdue(self, ledger, item, clock):
        entry = ledger.borrow(ALICE, item.id, in_days(1))
        clock.advance(days=1)

        assert ledger.get_entry(entry.id).overdue is False

    def test_returned_entries_are_never_overdue(self, ledger, item, clock):
        entry = ledger.borrow(ALICE, item.id, in_days(1))
        clock.advance(days=5)
        ledger.release(entry.id)

        assert ledger.list_overdue() == []
        assert ledger.get_entry(entry.id).overdue is False

    def test_most_overdue_first(self, ledger, make_item, clock):
        later = make_item("Later", "Someone")
        sooner = make_item("Sooner", "Someone")
        late_entry = ledger.borrow(ALICE, later.id, in_days(2))
        soon_entry = ledger.borrow(BOB, sooner.id, in_days(1))
        clock.advance(days=5)

        assert [e.id for e in ledger.list_overdue()] == [soon_entry.id, late_entry.id]
        assert [e.id for e in ledger.list_overdue(BOB)] == [soon_entry.id]


class TestListings:
    @pytest.fixture
    def history(self, ledger, make_item, clock):
        dune = make_item("Dune", "Frank Herbert")
        emma = make_item("Emma", "Jane Austen")
        ulysses = make_item("Ulysses", "James Joyce")

        first = ledger.borrow(ALICE, dune.id, in_days(14))
        clock.advance(hours=1)
        second = ledger.reserve(BOB, emma.id, clock.now + timedelta(days=2))
        clock.advance(hours=1)
        third = ledger.borrow(ALICE, ulysses.id, clock.now + timedelta(days=14))
        clock.advance(hours=1)
        ledger.release(first.id)
        return first, second, third

    def test_newest_first(self, ledger, history):
        first, second, third = history

        assert [e.id for e in ledger.list_entries()] == [third.id, second.id, first.id]

    def test_filter_by_status(self, ledger, history):
        first, second, third = history

        active = ledger.list_entries(EntryFilter(status=EntryStatusFilter.ACTIVE))
        returned = ledger.list_entries(EntryFilter(status=EntryStatusFilter.RETURNED))

        assert [e.id for e in active] == [third.id, second.id]
        assert [e.id for e in returned] == [first.id]

    def test_filter_by_borrower_and_intent(self, ledger, history):
        first, second, third = history

        alice = ledger.list_entries(EntryFilter(borrower_email=ALICE))
        reservations = ledger.list_entries(EntryFilter(intent=EntryIntent.RESERVATION))

        assert [e.id for e in alice] == [third.id, first.id]
        assert [e.id for e in reservations] == [second.id]

    def test_my_active_loans(self, ledger, history):
        _, _, third = history

        loans = ledger.list_open_entries(ALICE)

        assert [e.id for e in loans] == [third.id]
        assert loans[0].item.title == "Ulysses"

    def test_ties_broken_by_id(self, ledger, make_item):
        entries = [
            ledger.borrow(ALICE, make_item(f"Book {n}", "Author").id, in_days(7)) for n in range(3)
        ]

        listed = ledger.list_entries()

        assert [e.id for e in listed] == sorted((e.id for e in entries), reverse=True)

    def test_pagination(self, ledger, history):
        first, second, third = history

        page = ledger.list_entries(pagination=PaginationParams(page=2, page_size=2))

        assert isinstance(page, PaginatedResponse)
        assert page.total == 3
        assert page.total_pages == 2
        assert page.has_previous is True
        assert page.has_next is False
        assert [e.id for e in page.items] == [first.id]

    def test_invalid_pagination(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.list_entries(pagination=PaginationParams(page=0))

    def test_get_entry_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get_entry("entry_doesnotexist")

    def test_stats(self, ledger, history, clock, make_item):
        make_item("Unread", "Nobody")
        clock.advance(days=3)

        stats = ledger.get_circulation_stats()

        assert stats.total_items == 4
        assert stats.available_items == 2
        assert stats.held_items == 2
        assert stats.total_entries == 3
        assert stats.open_entries == 2
        assert stats.returned_entries == 1
        assert stats.overdue_entries == 1
        assert stats.open_borrows == 1
        assert stats.open_reservations == 1


class TestIntegrityReport:
    def test_consistent_store(self, ledger, make_item):
        held = make_item("Held", "Author")
        make_item("Free", "Author")
        ledger.borrow(ALICE, held.id, in_days(7))

        assert ledger.find_inconsistencies() == []

    def test_unavailable_without_open_entry(self, ledger, item_repo, item):
        item_repo.set_availability(item.id, False)

        [problem] = ledger.find_inconsistencies()

        assert problem.item_id == item.id
        assert problem.available is False
        assert problem.open_entry_ids == []
        assert "without an open entry" in problem.problem

    def test_available_with_open_entry(self, ledger, item_repo, item):
        entry = ledger.borrow(ALICE, item.id, in_days(7))
        item_repo.set_availability(item.id, True)

        [problem] = ledger.find_inconsistencies()

        assert problem.item_id == item.id
        assert problem.available is True
        assert problem.open_entry_ids == [entry.id]

    def test_report_does_not_repair(self, ledger, item_repo, item):
        item_repo.set_availability(item.id, False)

        ledger.find_inconsistencies()

        assert item_repo.get(item.id).available is False
