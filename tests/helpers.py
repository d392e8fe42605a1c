"""Helper utilities for tests."""

from pathlib import Path
import sqlite3


def run_migrations(conn: sqlite3.Connection, migrations_dir: Path) -> None:
    """Run all SQL migrations in order.

    Args:
        conn: SQLite connection to run migrations against.
        migrations_dir: Path to directory containing .sql migration files.
    """
    for migration_file in sorted(migrations_dir.glob("*.sql")):
        conn.executescript(migration_file.read_text())
    conn.commit()


def write_raw(conn: sqlite3.Connection, category_id: int, **fields) -> None:
    """Overwrite columns of a category row, bypassing every service check.

    Used to simulate damaged data for integrity and repair tests.
    """
    set_clause = ", ".join(f"{name} = ?" for name in fields)
    conn.execute(
        f"UPDATE categories SET {set_clause} WHERE id = ?",
        (*fields.values(), category_id),
    )
    conn.commit()


def flat(*rows):
    """Build a flat client-side category list from (id, name, parent_id) tuples."""
    return [
        {"id": category_id, "name": name, "parent_id": parent_id}
        for category_id, name, parent_id in rows
    ]
