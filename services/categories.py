"""Category store: row-level CRUD over the categories table.

This service knows nothing about tree invariants; ``HierarchyService`` computes
level and path and decides what may be written. Every method accepts an
optional open connection so several calls can share one transaction. Without
one, the method opens its own connection and commits its writes.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

from models.category import Category

_CATEGORY_SELECT = """
    SELECT c.id, c.name, c.description, c.parent_id, c.level, c.path,
           c.created_at, c.updated_at,
           (SELECT COUNT(*) FROM categories k WHERE k.parent_id = c.id) AS children_count
    FROM categories c
"""

_UPDATABLE_FIELDS = {"name", "description", "parent_id", "level", "path"}


class CategoryService:
    """Service for reading and writing category rows."""

    def __init__(self, db_manager):
        """Initialize the category service.

        Args:
            db_manager: Database manager instance for database operations.
        """
        self.db_manager = db_manager

    @contextmanager
    def _connection(self, conn=None):
        if conn is not None:
            yield conn
        else:
            with self.db_manager.connect() as own_conn:
                yield own_conn

    def _select(
        self,
        where: str = "",
        params: tuple = (),
        order: str = "c.path",
        limit: Optional[int] = None,
        offset: int = 0,
        conn=None,
    ) -> List[Category]:
        query = f"{_CATEGORY_SELECT} {where} ORDER BY {order}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = (*params, limit, offset)
        with self._connection(conn) as c:
            cursor = c.execute(query, params)
            return [self._row_to_category(row) for row in cursor.fetchall()]

    def find_all(self, conn=None) -> List[Category]:
        """Get all categories from the database.

        Returns:
            List of Category objects, ordered by path (parents before children).
        """
        return self._select(conn=conn)

    def find(self, category_id: int, conn=None) -> Optional[Category]:
        """Get a single category by ID.

        Args:
            category_id: The category ID to find.
            conn: Optional open connection.

        Returns:
            Category object if found, None otherwise.
        """
        rows = self._select("WHERE c.id = ?", (category_id,), conn=conn)
        return rows[0] if rows else None

    def find_by_path(self, path: str, conn=None) -> Optional[Category]:
        """Get a single category by its materialized path."""
        rows = self._select("WHERE c.path = ?", (path,), conn=conn)
        return rows[0] if rows else None

    def find_by_name(self, name: str, conn=None) -> List[Category]:
        """Get every category with this exact (case-sensitive) name."""
        return self._select("WHERE c.name = ?", (name,), conn=conn)

    def find_sibling(
        self, parent_id: Optional[int], name: str, conn=None
    ) -> Optional[Category]:
        """Get the child of ``parent_id`` (or the root) named ``name``."""
        if parent_id is None:
            rows = self._select(
                "WHERE c.parent_id IS NULL AND c.name = ?", (name,), conn=conn
            )
        else:
            rows = self._select(
                "WHERE c.parent_id = ? AND c.name = ?", (parent_id, name), conn=conn
            )
        return rows[0] if rows else None

    def find_children(self, parent_id: int, conn=None) -> List[Category]:
        """Get the direct children of a category, ordered by name."""
        return self._select(
            "WHERE c.parent_id = ?", (parent_id,), order="c.name, c.id", conn=conn
        )

    def find_roots(self, conn=None) -> List[Category]:
        """Get all root categories, ordered by name."""
        return self._select("WHERE c.parent_id IS NULL", order="c.name, c.id", conn=conn)

    def find_by_level(self, level: int, conn=None) -> List[Category]:
        """Get all categories at a given depth, ordered by path."""
        return self._select("WHERE c.level = ?", (level,), conn=conn)

    def list(self, limit: int = 50, offset: int = 0, conn=None) -> List[Category]:
        """Get one page of categories ordered by path."""
        return self._select(limit=limit, offset=offset, conn=conn)

    def count(self, conn=None) -> int:
        with self._connection(conn) as c:
            return c.execute("SELECT COUNT(*) FROM categories").fetchone()[0]

    def count_children(self, category_id: int, conn=None) -> int:
        with self._connection(conn) as c:
            return c.execute(
                "SELECT COUNT(*) FROM categories WHERE parent_id = ?", (category_id,)
            ).fetchone()[0]

    def parent_map(self, conn=None) -> Dict[int, Optional[int]]:
        """Map every category id to its parent id."""
        with self._connection(conn) as c:
            cursor = c.execute("SELECT id, parent_id FROM categories")
            return {row[0]: row[1] for row in cursor.fetchall()}

    def child_ids(self, category_id: int, conn=None) -> List[int]:
        with self._connection(conn) as c:
            cursor = c.execute(
                "SELECT id FROM categories WHERE parent_id = ? ORDER BY id",
                (category_id,),
            )
            return [row[0] for row in cursor.fetchall()]

    def insert(
        self,
        name: str,
        description: Optional[str],
        parent_id: Optional[int],
        level: int,
        path: str,
        conn=None,
    ) -> Category:
        """Insert a category row with precomputed level and path.

        Returns:
            The created Category object with id and timestamps populated.

        Raises:
            sqlite3.IntegrityError: If the row violates a constraint (e.g. a
                duplicate path or a missing parent).
        """
        with self._connection(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO categories (name, description, parent_id, level, path)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, description, parent_id, level, path),
            )
            if conn is None:
                c.commit()
            category_id = cursor.lastrowid
            return self.find(category_id, conn=c)

    def update_fields(self, category_id: int, conn=None, **fields) -> bool:
        """Update the given columns of one row and bump ``updated_at``.

        Args:
            category_id: The category ID to update.
            conn: Optional open connection.
            **fields: Column values. Supported: name, description, parent_id,
                level, path.

        Returns:
            True if a row was updated, False if the category does not exist.

        Raises:
            ValueError: If unsupported or no field names are provided.
        """
        if not fields:
            raise ValueError("fields cannot be empty")

        invalid_fields = set(fields) - _UPDATABLE_FIELDS
        if invalid_fields:
            raise ValueError(f"Unsupported field names: {invalid_fields}")

        set_clause = ", ".join(f"{name} = ?" for name in fields)
        with self._connection(conn) as c:
            cursor = c.execute(
                f"""
                UPDATE categories
                SET {set_clause}, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (*fields.values(), category_id),
            )
            if conn is None:
                c.commit()
            return cursor.rowcount > 0

    def delete(self, category_id: int, conn=None) -> bool:
        """Delete a category row by ID.

        Returns:
            True if category was deleted, False if not found.
        """
        with self._connection(conn) as c:
            cursor = c.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            if conn is None:
                c.commit()
            return cursor.rowcount > 0

    def _row_to_category(self, row: tuple) -> Category:
        """Convert a database row to a Category object."""
        return Category(
            id=row[0],
            name=row[1],
            description=row[2],
            parent_id=row[3],
            level=row[4],
            path=row[5],
            created_at=datetime.fromisoformat(row[6]) if row[6] else None,
            updated_at=datetime.fromisoformat(row[7]) if row[7] else None,
            children_count=row[8],
        )
