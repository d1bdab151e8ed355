"""Tests for the catalog, ledger and report resources."""

from datetime import timedelta

import pytest
from fastmcp.exceptions import ResourceError

from library_circulation.clock import utcnow
from library_circulation.database.ledger_repository import CirculationLedger
from library_circulation.resources import all_resources
from library_circulation.resources.circulation import (
    get_circulation_stats_handler,
    get_integrity_report_handler,
)
from library_circulation.resources.entries import (
    get_borrower_loans_handler,
    get_entry_handler,
    list_active_entries_handler,
    list_entries_handler,
    list_overdue_entries_handler,
    list_returned_entries_handler,
)
from library_circulation.resources.items import get_item_handler, list_items_handler


@pytest.fixture
def circulation(db_manager, make_item, test_db_session):
    """Two loans (one returned, one overdue) and one untouched item."""
    kindred = make_item("Kindred", "Octavia E. Butler")
    solaris = make_item("Solaris", "Stanisław Lem")
    make_item("Walden", "Henry David Thoreau")

    now = utcnow()
    past = CirculationLedger(test_db_session, clock=lambda: now - timedelta(days=10))
    overdue = past.borrow("bob@example.com", solaris.id, now - timedelta(days=3))

    returned = CirculationLedger(test_db_session).borrow(
        "alice@example.com", kindred.id, now + timedelta(days=14)
    )
    CirculationLedger(test_db_session).release(returned.id)

    return {"kindred": kindred, "solaris": solaris, "overdue": overdue, "returned": returned}


class TestItemResources:
    @pytest.mark.asyncio
    async def test_list_items(self, circulation):
        result = await list_items_handler()

        assert result["total"] == 3
        assert [i["title"] for i in result["items"]] == ["Kindred", "Solaris", "Walden"]
        assert [i["available"] for i in result["items"]] == [True, False, True]

    @pytest.mark.asyncio
    async def test_held_item_shows_holder(self, circulation):
        result = await get_item_handler(circulation["solaris"].id)

        assert result["state"] == "held"
        assert result["current_entry"]["id"] == circulation["overdue"].id
        assert result["current_entry"]["overdue"] is True

    @pytest.mark.asyncio
    async def test_available_item(self, circulation):
        result = await get_item_handler(circulation["kindred"].id)

        assert result["state"] == "available"
        assert result["current_entry"] is None

    @pytest.mark.asyncio
    async def test_unknown_item(self, db_manager):
        with pytest.raises(ResourceError, match="Item not found"):
            await get_item_handler("item_doesnotexist")


class TestEntryResources:
    @pytest.mark.asyncio
    async def test_list_all_newest_first(self, circulation):
        result = await list_entries_handler()

        assert result["total"] == 2
        assert [e["id"] for e in result["entries"]] == [
            circulation["returned"].id,
            circulation["overdue"].id,
        ]
        assert result["entries"][0]["item"]["title"] == "Kindred"

    @pytest.mark.asyncio
    async def test_active_and_returned(self, circulation):
        active = await list_active_entries_handler()
        returned = await list_returned_entries_handler()

        assert [e["id"] for e in active["entries"]] == [circulation["overdue"].id]
        assert [e["id"] for e in returned["entries"]] == [circulation["returned"].id]

    @pytest.mark.asyncio
    async def test_overdue(self, circulation):
        result = await list_overdue_entries_handler()

        assert result["total"] == 1
        assert result["entries"][0]["borrower_email"] == "bob@example.com"
        assert result["entries"][0]["overdue"] is True

    @pytest.mark.asyncio
    async def test_get_entry(self, circulation):
        result = await get_entry_handler(circulation["returned"].id)

        assert result["returned"] is True
        assert result["item"]["available"] is True

    @pytest.mark.asyncio
    async def test_unknown_entry(self, db_manager):
        with pytest.raises(ResourceError, match="Entry not found"):
            await get_entry_handler("entry_doesnotexist")

    @pytest.mark.asyncio
    async def test_borrower_loans(self, circulation):
        bob = await get_borrower_loans_handler("bob@example.com")
        alice = await get_borrower_loans_handler("alice@example.com")

        assert [e["id"] for e in bob["entries"]] == [circulation["overdue"].id]
        assert bob["overdue_count"] == 1
        assert alice["entries"] == []

    @pytest.mark.asyncio
    async def test_borrower_loans_invalid_email(self, db_manager):
        with pytest.raises(ResourceError, match="Invalid borrower email"):
            await get_borrower_loans_handler("not-an-email")


class TestReportResources:
    @pytest.mark.asyncio
    async def test_stats(self, circulation):
        result = await get_circulation_stats_handler()

        assert result["total_items"] == 3
        assert result["held_items"] == 1
        assert result["open_entries"] == 1
        assert result["returned_entries"] == 1
        assert result["overdue_entries"] == 1
        assert "timestamp" in result

    @pytest.mark.asyncio
    async def test_integrity_consistent(self, circulation):
        result = await get_integrity_report_handler()

        assert result["consistent"] is True
        assert result["inconsistencies"] == []

    @pytest.mark.asyncio
    async def test_integrity_reports_stray_flag(self, circulation, item_repo):
        item_repo.set_availability(circulation["kindred"].id, False)

        result = await get_integrity_report_handler()

        assert result["consistent"] is False
        assert [p["item_id"] for p in result["inconsistencies"]] == [circulation["kindred"].id]


def test_resource_metadata():
    uris = {resource.get("uri") or resource.get("uri_template") for resource in all_resources}

    assert uris == {
        "library://items/list",
        "library://items/{item_id}",
        "library://entries/list",
        "library://entries/active",
        "library://entries/returned",
        "library://entries/overdue",
        "library://entries/{entry_id}",
        "library://borrowers/{email}/loans",
        "library://circulation/integrity",
        "library://circulation/stats",
    }
    for resource in all_resources:
        assert resource["mime_type"] == "application/json"
