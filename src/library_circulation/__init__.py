"""
Library Circulation MCP Server Package.

Tracks which physical copies a small library can lend, who holds them, when
they are due and when they come back, and exposes that over MCP.

Key Components:
- models: Pydantic models for items, ledger entries and reports
- database: SQLAlchemy schema, sessions, the item store and the ledger
- config: Configuration management with pydantic-settings
- resources: MCP resources (read-only endpoints)
- tools: MCP tools (borrow, reserve, return, catalog maintenance)
"""

__version__ = "0.1.0"

from . import database

__all__ = [
    "__version__",
    "database",
]
