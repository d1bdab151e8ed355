"""
Database package for the Library Circulation server.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- The error taxonomy shared by every layer (errors.py)
- The catalog item store and the circulation ledger repositories

The circulation invariants live here, not in the MCP handlers:
1. One open ledger entry per item, guarded by a conditional update and a
   partial unique index
2. Item flag and ledger entry are written in one transaction
3. Storage failures are classified separately from state conflicts
"""

from .errors import (
    ConflictError,
    DuplicateError,
    IntegrityViolationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    RepositoryException,
    StorageError,
)
from .item_repository import (
    CatalogItemCreateSchema,
    CatalogItemRepository,
    CatalogItemUpdateSchema,
)
from .ledger_repository import CirculationLedger
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import Base, CatalogItem, EntryIntentEnum, LedgerEntry
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)

__all__ = [
    "Base",
    "BaseRepository",
    "CatalogItem",
    "CatalogItemCreateSchema",
    "CatalogItemRepository",
    "CatalogItemUpdateSchema",
    "CirculationLedger",
    "ConflictError",
    "DatabaseManager",
    "DuplicateError",
    "EntryIntentEnum",
    "IntegrityViolationError",
    "InvalidInputError",
    "InvalidStateError",
    "LedgerEntry",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RepositoryException",
    "StorageError",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
]
