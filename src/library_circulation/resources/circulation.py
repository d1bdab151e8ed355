"""Circulation Report Resources - Integrity and Statistics

Resources:
- library://circulation/integrity - Items whose flag disagrees with the ledger
- library://circulation/stats - Counts of items and entries by state
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.ledger_repository import CirculationLedger
from ..database.session import session_scope

logger = logging.getLogger(__name__)


async def get_integrity_report_handler() -> dict[str, Any]:
    """Returns availability inconsistencies for an operator to repair.

    An empty list means every held item has exactly one open entry and every
    available item has none.
    """
    try:
        logger.debug("MCP Resource Request - circulation/integrity")

        with session_scope() as session:
            ledger = CirculationLedger(session)
            problems = ledger.find_inconsistencies()
            return {
                "consistent": not problems,
                "checked_at": ledger.clock().isoformat(),
                "inconsistencies": [problem.model_dump(mode="json") for problem in problems],
            }

    except Exception as e:
        logger.exception("Error in circulation/integrity resource")
        raise ResourceError(f"Failed to check circulation integrity: {e!s}") from e


async def get_circulation_stats_handler() -> dict[str, Any]:
    try:
        logger.debug("MCP Resource Request - circulation/stats")

        with session_scope() as session:
            ledger = CirculationLedger(session)
            stats = ledger.get_circulation_stats()
            return {"timestamp": ledger.clock().isoformat(), **stats.model_dump(mode="json")}

    except Exception as e:
        logger.exception("Error in circulation/stats resource")
        raise ResourceError(f"Failed to retrieve circulation statistics: {e!s}") from e


circulation_resources: list[dict[str, Any]] = [
    {
        "uri": "library://circulation/integrity",
        "name": "Circulation Integrity Report",
        "description": (
            "Items flagged unavailable without an open entry, or flagged available "
            "while an open entry holds them. Reported only, never repaired."
        ),
        "mime_type": "application/json",
        "handler": get_integrity_report_handler,
    },
    {
        "uri": "library://circulation/stats",
        "name": "Circulation Statistics",
        "description": "Totals of items, open and returned entries, overdue entries, borrows and reservations.",
        "mime_type": "application/json",
        "handler": get_circulation_stats_handler,
    },
]
