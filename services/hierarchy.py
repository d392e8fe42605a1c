"""Hierarchy service: the only writer of category tree structure.

All structural invariants are enforced here:

- roots have no parent and level 0; every other node sits one level below
  its parent
- ``path`` is the parent's path, the separator, then the node's own name
- the parent relation is acyclic and no deeper than ``max_depth``
- sibling names are unique
- categories with children cannot be deleted

Writes that touch more than one row (move, rename, repair) run inside a
single ``BEGIN IMMEDIATE`` transaction, so a failure halfway through a
subtree rewrite leaves every row as it was and concurrent writers cannot
interleave on overlapping subtrees.
"""

import sqlite3
from collections import defaultdict, deque
from typing import Dict, List, Optional

from db.manager import write_transaction
from hierarchy.errors import (
    CategoryExistsError,
    CategoryNotFoundError,
    CorruptHierarchyError,
    CycleError,
    DescriptionTooLongError,
    HasChildrenError,
    MaxDepthExceededError,
    NameInvalidError,
    NameRequiredError,
    NameTooLongError,
    ParentNotFoundError,
    SelfParentError,
)
from hierarchy.paths import (
    DEFAULT_SEPARATOR,
    is_ancestor,
    level_of,
    materialize,
    path_of,
)
from hierarchy.search import SearchConfig, SearchIndex, SearchResult
from logger import get_logger
from models.category import Category, CategoryNode

logger = get_logger("hierarchy")

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
DEFAULT_MAX_DEPTH = 10


class HierarchyService:
    """Service for creating, restructuring and querying the category tree."""

    def __init__(
        self,
        db_manager,
        categories,
        max_depth: int = DEFAULT_MAX_DEPTH,
        separator: str = DEFAULT_SEPARATOR,
        search_config: Optional[SearchConfig] = None,
    ):
        """Initialize the hierarchy service.

        Args:
            db_manager: Database manager used to open write transactions.
            categories: CategoryService providing row access.
            max_depth: Deepest level a category may sit at (roots are 0).
            separator: Separator joining names in materialized paths.
            search_config: Default configuration for ``search``.
        """
        self.db_manager = db_manager
        self.categories = categories
        self.max_depth = max_depth
        self.separator = separator
        self.search_config = search_config or SearchConfig()

    # Validation

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise NameRequiredError()
        if len(name) > MAX_NAME_LENGTH:
            raise NameTooLongError(len(name), MAX_NAME_LENGTH)
        if self.separator in name:
            raise NameInvalidError(name, self.separator)
        return name

    def _validate_description(self, description: Optional[str]) -> Optional[str]:
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise DescriptionTooLongError(len(description), MAX_DESCRIPTION_LENGTH)
        return description

    def _require(self, category_id: int, conn=None) -> Category:
        category = self.categories.find(category_id, conn=conn)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    def _require_parent(self, parent_id: Optional[int], conn) -> Optional[Category]:
        if parent_id is None:
            return None
        parent = self.categories.find(parent_id, conn=conn)
        if parent is None:
            raise ParentNotFoundError(parent_id)
        return parent

    def _ensure_unique_sibling(
        self, parent_id: Optional[int], name: str, path: str, conn, exclude_id=None
    ) -> None:
        existing = self.categories.find_sibling(parent_id, name, conn=conn)
        if existing is not None and existing.id != exclude_id:
            raise CategoryExistsError(path, parent_id)

    def _subtree_height(self, category_id: int, conn) -> int:
        """Number of levels below ``category_id`` (0 for a leaf)."""
        height = 0
        frontier = [category_id]
        seen = {category_id}
        while True:
            next_frontier = []
            for node_id in frontier:
                for child_id in self.categories.child_ids(node_id, conn=conn):
                    if child_id in seen:
                        raise CorruptHierarchyError(child_id, [node_id, child_id])
                    seen.add(child_id)
                    next_frontier.append(child_id)
            if not next_frontier:
                return height
            height += 1
            frontier = next_frontier

    # Mutations

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
    ) -> Category:
        """Create a new category.

        Args:
            name: Category name, 1-100 characters, unique among its siblings.
            description: Optional description, up to 500 characters.
            parent_id: Optional parent category ID; None creates a root.

        Returns:
            The created Category with id, level, path and timestamps populated.

        Raises:
            ValidationError: If the name or description is rejected.
            ParentNotFoundError: If ``parent_id`` does not exist.
            MaxDepthExceededError: If the new category would sit too deep.
            CategoryExistsError: If the parent already has a child with this name.
        """
        name = self._validate_name(name)
        description = self._validate_description(description)

        with self.db_manager.connect() as conn, write_transaction(conn):
            parent = self._require_parent(parent_id, conn)
            level = level_of(parent)
            if level > self.max_depth:
                raise MaxDepthExceededError(level, self.max_depth)

            path = path_of(parent, name, self.separator)
            self._ensure_unique_sibling(parent_id, name, path, conn)

            try:
                category = self.categories.insert(
                    name, description, parent_id, level, path, conn=conn
                )
            except sqlite3.IntegrityError as e:
                logger.warning(f"Insert of '{path}' rejected by the database: {e}")
                raise CategoryExistsError(path, parent_id) from e

        logger.info(f"Created category '{category.path}' (ID: {category.id})")
        return category

    def update(
        self, category_id: int, name: str, description: Optional[str] = None
    ) -> Category:
        """Rename a category and/or change its description.

        The parent and level are untouched. A rename rewrites the materialized
        path of the category and every descendant in the same transaction.

        Raises:
            CategoryNotFoundError: If the category does not exist.
            ValidationError: If the name or description is rejected.
            CategoryExistsError: If a sibling already uses the new name.
        """
        name = self._validate_name(name)
        description = self._validate_description(description)

        with self.db_manager.connect() as conn, write_transaction(conn):
            category = self._require(category_id, conn)

            if name == category.name:
                self.categories.update_fields(
                    category_id, conn=conn, description=description
                )
            else:
                parent = self._require_parent(category.parent_id, conn)
                path = path_of(parent, name, self.separator)
                self._ensure_unique_sibling(
                    category.parent_id, name, path, conn, exclude_id=category_id
                )
                self.categories.update_fields(
                    category_id, conn=conn, description=description
                )
                rewritten = self._rewrite_subtree(
                    conn, category_id, category.parent_id, category.level, path, name
                )
                logger.info(
                    f"Renamed '{category.path}' to '{path}', "
                    f"rewrote {rewritten} path(s)"
                )

            updated = self._require(category_id, conn)

        return updated

    def validate_move(
        self, category_id: int, new_parent_id: Optional[int], conn=None
    ) -> Category:
        """Check that ``category_id`` may be moved under ``new_parent_id``.

        Returns:
            The category being moved.

        Raises:
            CategoryNotFoundError: If the category does not exist.
            ParentNotFoundError: If the new parent does not exist.
            SelfParentError: If the category would become its own parent.
            CycleError: If the new parent is a descendant of the category.
            MaxDepthExceededError: If the moved subtree would sit too deep.
            CategoryExistsError: If the new parent already has a child with
                the category's name.
        """
        if conn is None:
            with self.db_manager.connect() as own_conn:
                return self.validate_move(category_id, new_parent_id, conn=own_conn)

        category = self._require(category_id, conn)
        new_parent = self._require_parent(new_parent_id, conn)

        if new_parent_id == category_id:
            raise SelfParentError(category_id)

        if new_parent is not None and is_ancestor(
            category_id,
            new_parent_id,
            self.categories.parent_map(conn=conn),
            max_steps=self.max_depth + 1,
        ):
            raise CycleError(category_id, new_parent_id)

        new_level = level_of(new_parent)
        deepest = new_level + self._subtree_height(category_id, conn)
        if deepest > self.max_depth:
            raise MaxDepthExceededError(deepest, self.max_depth)

        if new_parent_id != category.parent_id:
            self._ensure_unique_sibling(
                new_parent_id,
                category.name,
                path_of(new_parent, category.name, self.separator),
                conn,
                exclude_id=category_id,
            )

        return category

    def move(self, category_id: int, new_parent_id: Optional[int] = None) -> Category:
        """Re-parent a category, carrying its whole subtree along.

        The category's level and path are recomputed from the new parent, then
        every descendant is visited breadth-first and recomputed from its own,
        already updated, parent. The whole rewrite is one transaction.

        Args:
            category_id: Category to move.
            new_parent_id: New parent, or None to make the category a root.

        Returns:
            The moved Category.

        Raises:
            See ``validate_move``.
        """
        with self.db_manager.connect() as conn, write_transaction(conn):
            try:
                category = self.validate_move(category_id, new_parent_id, conn=conn)
            except (CycleError, MaxDepthExceededError, CategoryExistsError) as e:
                logger.warning(f"Rejected move of category {category_id}: {e}")
                raise

            if new_parent_id == category.parent_id:
                return category

            new_parent = self._require_parent(new_parent_id, conn)
            rewritten = self._rewrite_subtree(
                conn,
                category_id,
                new_parent_id,
                level_of(new_parent),
                path_of(new_parent, category.name, self.separator),
                category.name,
            )
            moved = self._require(category_id, conn)

        logger.info(
            f"Moved '{category.path}' to '{moved.path}', rewrote {rewritten} row(s)"
        )
        return moved

    def _rewrite_subtree(
        self,
        conn,
        root_id: int,
        parent_id: Optional[int],
        level: int,
        path: str,
        name: str,
    ) -> int:
        """Write new placement for ``root_id`` and recompute its descendants.

        Returns:
            Number of rows written.
        """
        self.categories.update_fields(
            root_id, conn=conn, name=name, parent_id=parent_id, level=level, path=path
        )
        written = 1
        seen = {root_id}
        queue = deque([(root_id, level, path)])

        while queue:
            node_id, node_level, node_path = queue.popleft()
            for child in self.categories.find_children(node_id, conn=conn):
                if child.id in seen:
                    raise CorruptHierarchyError(child.id, [node_id, child.id])
                seen.add(child.id)

                child_level = node_level + 1
                if child_level > self.max_depth:
                    raise MaxDepthExceededError(child_level, self.max_depth)
                child_path = f"{node_path}{self.separator}{child.name}"

                if (child.level, child.path) != (child_level, child_path):
                    self.categories.update_fields(
                        child.id, conn=conn, level=child_level, path=child_path
                    )
                    written += 1
                queue.append((child.id, child_level, child_path))

        return written

    def delete(self, category_id: int) -> None:
        """Delete a childless category.

        Raises:
            CategoryNotFoundError: If the category does not exist.
            HasChildrenError: If any category has it as parent.
        """
        with self.db_manager.connect() as conn, write_transaction(conn):
            category = self._require(category_id, conn)
            children_count = self.categories.count_children(category_id, conn=conn)
            if children_count:
                logger.warning(
                    f"Refused to delete '{category.path}': {children_count} subcategories"
                )
                raise HasChildrenError(category_id, children_count)
            self.categories.delete(category_id, conn=conn)

        logger.info(f"Deleted category '{category.path}' (ID: {category_id})")

    def rebuild_paths(self) -> int:
        """Re-derive level and path of every category from parent_id chains.

        Idempotent: running it on a consistent tree changes nothing.

        Returns:
            Number of rows whose level or path was corrected.

        Raises:
            CorruptHierarchyError: If the parent_id pointers contain a cycle.
        """
        with self.db_manager.connect() as conn, write_transaction(conn):
            rows = self.categories.find_all(conn=conn)
            derived = materialize(
                {c.id: (c.name, c.parent_id) for c in rows}, self.separator
            )
            stale = [c for c in rows if (c.level, c.path) != derived[c.id]]

            # Park stale paths on unique placeholders first so swapped paths
            # never collide on the unique path index.
            for category in stale:
                self.categories.update_fields(
                    category.id, conn=conn, path=f"\x00{category.id}"
                )
            for category in stale:
                level, path = derived[category.id]
                if level > self.max_depth:
                    logger.warning(
                        f"Category '{path}' sits at level {level}, "
                        f"deeper than the maximum of {self.max_depth}"
                    )
                self.categories.update_fields(category.id, conn=conn, level=level, path=path)

        if stale:
            logger.info(f"Repaired level/path of {len(stale)} category(ies)")
        return len(stale)

    # Queries

    def get(self, category_id: int) -> Category:
        """Get a category by ID, raising if it does not exist."""
        return self._require(category_id)

    def get_path(self, category_id: int) -> List[Category]:
        """Categories from the root down to ``category_id``, following parent_id.

        Raises:
            CategoryNotFoundError: If the category does not exist.
            CorruptHierarchyError: If the chain loops or runs deeper than allowed.
        """
        with self.db_manager.connect() as conn:
            category = self._require(category_id, conn)
            chain = [category]
            seen = {category.id}
            while category.parent_id is not None:
                if category.parent_id in seen or len(chain) > self.max_depth + 1:
                    raise CorruptHierarchyError(category_id, [c.id for c in chain])
                category = self._require(category.parent_id, conn)
                seen.add(category.id)
                chain.append(category)

        chain.reverse()
        return chain

    def get_children(self, category_id: int) -> List[Category]:
        """Direct children of a category, ordered by name.

        Raises:
            CategoryNotFoundError: If the category does not exist.
        """
        with self.db_manager.connect() as conn:
            self._require(category_id, conn)
            return self.categories.find_children(category_id, conn=conn)

    def get_roots(self) -> List[Category]:
        return self.categories.find_roots()

    def get_by_level(self, level: int) -> List[Category]:
        return self.categories.find_by_level(level)

    def list(self, limit: int = 50, offset: int = 0) -> List[Category]:
        """One page of categories ordered by path."""
        if limit < 1:
            raise ValueError("limit must be positive")
        if offset < 0:
            raise ValueError("offset cannot be negative")
        return self.categories.list(limit=limit, offset=offset)

    def count(self) -> int:
        return self.categories.count()

    def get_hierarchy(
        self, root_id: Optional[int] = None, max_depth: Optional[int] = None
    ) -> List[CategoryNode]:
        """Nested category tree.

        Args:
            root_id: Start from this category; None starts from every root.
            max_depth: Levels to include below the starting nodes (0 returns
                the starting nodes without children). Defaults to the
                configured maximum depth.

        Returns:
            List of CategoryNode; a single element when ``root_id`` is given.

        Raises:
            CategoryNotFoundError: If ``root_id`` does not exist.
            ValueError: If ``max_depth`` is negative.
        """
        if max_depth is None:
            max_depth = self.max_depth
        if max_depth < 0:
            raise ValueError("max_depth cannot be negative")

        all_categories = self.categories.find_all()
        by_id: Dict[int, Category] = {c.id: c for c in all_categories}
        children: Dict[Optional[int], List[Category]] = defaultdict(list)
        for category in all_categories:
            children[category.parent_id].append(category)
        for siblings in children.values():
            siblings.sort(key=lambda c: (c.name, c.id))

        if root_id is not None:
            if root_id not in by_id:
                raise CategoryNotFoundError(root_id)
            starts = [by_id[root_id]]
        else:
            starts = children[None]

        def build(category: Category, depth: int) -> CategoryNode:
            if depth >= max_depth:
                return CategoryNode(category)
            return CategoryNode(
                category, [build(child, depth + 1) for child in children[category.id]]
            )

        return [build(category, 0) for category in starts]

    def search(
        self, query: str, config: Optional[SearchConfig] = None
    ) -> List[SearchResult]:
        """Search every category by name, description and path."""
        index = SearchIndex(
            self.categories.find_all(), config or self.search_config, self.separator
        )
        return index.search(query)
