"""Database manager for SQLite connections, transactions and path management."""

import sqlite3
from contextlib import contextmanager
from config import Config, get_migrations_dir


@contextmanager
def write_transaction(conn: sqlite3.Connection):
    """Run a block inside a write-locked transaction.

    ``BEGIN IMMEDIATE`` takes SQLite's reserved lock up front, so two writers
    rewriting overlapping subtrees are serialized instead of interleaving.
    The transaction commits when the block exits normally and rolls back on
    any exception, which is re-raised.

    Args:
        conn: Open connection. Must not already be inside a transaction.

    Yields:
        sqlite3.Connection: The same connection.
    """
    if conn.in_transaction:
        raise RuntimeError("write_transaction cannot be nested in an open transaction")

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


class DatabaseManager:
    """Manages database connections and paths.

    Args:
        config: Application configuration object.
        timeout: Seconds a connection waits for another writer's lock
            before failing with "database is locked".
    """

    def __init__(self, config: Config, timeout: float = 30.0):
        """Initialize the database manager.

        Args:
            config: Config object containing database configuration.
            timeout: Lock wait in seconds for every connection.
        """
        self.config = config
        self.timeout = timeout

    @contextmanager
    def connect(self):
        """Get a database connection with automatic cleanup.

        Foreign keys are enforced on every connection so ``parent_id`` can
        never point at a missing row.

        Yields:
            sqlite3.Connection: Database connection.
        """
        db_path = self.config.db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, timeout=self.timeout)
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def get_db_path(self):
        """Get the current database path.

        Returns:
            Path: Path to the database file.
        """
        return self.config.db_path

    def get_migrations_dir(self):
        """Get the migrations directory path.

        Returns:
            Path: Path to the migrations directory.
        """
        return get_migrations_dir()
