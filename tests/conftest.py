"""Test configuration and fixtures for the Library Circulation server.

1. Isolated databases - every test gets its own SQLite file
2. Configuration overrides - settings point at the temporary database
3. A controllable clock - ledger tests decide what "now" is
4. Async support - tool and resource handlers are coroutines
"""

from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path

import logfire
import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from library_circulation.config import ServerConfig, get_config, reset_config
from library_circulation.database.item_repository import (
    CatalogItemCreateSchema,
    CatalogItemRepository,
)
from library_circulation.database.ledger_repository import CirculationLedger
from library_circulation.database.schema import LedgerEntry as LedgerEntryDB
from library_circulation.database.session import (
    DatabaseManager,
    get_db_manager,
    reset_db_manager,
)
from library_circulation.models.item import CatalogItem

NOW = datetime(2026, 10, 19, 12, 0, 0)


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session", autouse=True)
def local_tracing():
    """Keep Logfire spans in-process for the whole run."""
    logfire.configure(send_to_logfire=False, console=False)


# === Configuration Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "circulation.db"


@pytest.fixture(autouse=True)
def test_config(test_db_path: Path, monkeypatch) -> Generator[ServerConfig, None, None]:
    """Point the global configuration at a per-test database."""
    monkeypatch.setenv("LIBRARY_CIRCULATION_DATABASE_PATH", str(test_db_path))
    monkeypatch.setenv("LIBRARY_CIRCULATION_ENVIRONMENT", "test")
    reset_config()
    reset_db_manager()

    yield get_config()

    reset_db_manager()
    reset_config()


# === Database Fixtures ===


@pytest.fixture
def db_manager(test_config: ServerConfig) -> DatabaseManager:
    """The global database manager, schema created, on the test database file."""
    manager = get_db_manager()
    manager.init_database()
    return manager


@pytest.fixture
def test_db_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def item_repo(test_db_session: Session) -> CatalogItemRepository:
    return CatalogItemRepository(test_db_session)


@pytest.fixture
def ledger(test_db_session: Session, clock: FixedClock) -> CirculationLedger:
    return CirculationLedger(test_db_session, clock=clock)


@pytest.fixture
def make_item(item_repo: CatalogItemRepository):
    """Factory adding catalog items."""

    def _make_item(title: str = "The Dispossessed", author: str = "Ursula K. Le Guin") -> CatalogItem:
        return item_repo.create(CatalogItemCreateSchema(title=title, author=author))

    return _make_item


@pytest.fixture
def item(make_item) -> CatalogItem:
    return make_item()


@pytest.fixture
def count_entries(test_db_session: Session):
    """Count ledger rows straight from the table."""

    def _count(**filters) -> int:
        query = select(func.count()).select_from(LedgerEntryDB)
        for column, value in filters.items():
            query = query.where(getattr(LedgerEntryDB, column) == value)
        return test_db_session.execute(query).scalar()

    return _count
