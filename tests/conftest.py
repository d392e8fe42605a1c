"""Shared pytest fixtures for all tests."""

import sqlite3
import pytest
from pathlib import Path

from config import Config, get_migrations_dir
from services.base import Services
from tests.helpers import run_migrations


@pytest.fixture
def test_db():
    """Create an in-memory SQLite database for testing.

    Yields:
        sqlite3.Connection: Connection to in-memory database.
    """
    conn = sqlite3.connect(":memory:")
    conn.execute("PRAGMA foreign_keys = ON")
    yield conn
    conn.close()


@pytest.fixture
def test_config(tmp_path):
    """Create a test configuration pointing to a temporary database.

    Args:
        tmp_path: pytest tmp_path fixture for temporary directory.

    Returns:
        Config: Test configuration object.
    """
    return Config(
        base_dir=tmp_path / "stockroom",
        db_data_dir=tmp_path / "stockroom" / "db",
        db_filename="test.db",
        log_level="DEBUG",
        log_dir=tmp_path / "stockroom" / "logs",
        max_depth=10,
        path_separator="/",
        search_debounce_ms=0,
    )


@pytest.fixture
def db_manager_with_schema(test_db):
    """Create a DatabaseManager with schema already set up.

    This fixture provides a DatabaseManager that uses an in-memory database
    with all migrations already applied.

    Args:
        test_db: In-memory database connection fixture.

    Returns:
        DatabaseManager: Database manager with schema ready.
    """
    migrations_dir = get_migrations_dir()
    run_migrations(test_db, migrations_dir)

    class TestDatabaseManager:
        """Test database manager that uses in-memory connection."""

        def __init__(self, conn):
            self.conn = conn

        def connect(self):
            """Return a context manager for the test connection."""
            return _TestConnectionContext(self.conn)

        def get_db_path(self):
            """Return a fake path for the test database."""
            return Path(":memory:")

        def get_migrations_dir(self):
            """Get the migrations directory path."""
            return get_migrations_dir()

    class _TestConnectionContext:
        """Context manager for test database connections."""

        def __init__(self, conn):
            self.conn = conn

        def __enter__(self):
            return self.conn

        def __exit__(self, exc_type, exc_val, exc_tb):
            # Don't close the connection - let the fixture handle it
            pass

    return TestDatabaseManager(test_db)


@pytest.fixture
def services(test_config, db_manager_with_schema):
    """Create a Services container with test database.

    Args:
        test_config: Test configuration fixture.
        db_manager_with_schema: Database manager with schema set up.

    Returns:
        Services: Services container for testing.
    """
    return Services(test_config, db_manager=db_manager_with_schema)


@pytest.fixture
def catalog(services):
    """A small automotive catalogue, keyed by path.

    Engine
    Engine/Filters
    Engine/Filters/Oil Filters
    Engine/Pistons
    Brakes
    Brakes/Pads
    """
    hierarchy = services.hierarchy
    engine = hierarchy.create("Engine", "Engine parts")
    filters = hierarchy.create("Filters", "Oil, air and fuel filters", engine.id)
    oil_filters = hierarchy.create("Oil Filters", None, filters.id)
    pistons = hierarchy.create("Pistons", None, engine.id)
    brakes = hierarchy.create("Brakes", "Braking system")
    pads = hierarchy.create("Pads", "Brake pads", brakes.id)
    return {
        c.path: c for c in (engine, filters, oil_filters, pistons, brakes, pads)
    }
