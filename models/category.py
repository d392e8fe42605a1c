"""Category model for the product category hierarchy."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Category:
    """Represents a product category.

    Attributes:
        id: Unique identifier (auto-generated).
        name: Category name, unique among its siblings.
        description: Optional description of what belongs in this category.
        parent_id: Parent category ID, None for root categories.
        level: Depth from the root (roots are level 0).
        path: Materialized ancestor-to-self name chain, e.g. "Engine/Filters".
        created_at: Timestamp when the category was created.
        updated_at: Timestamp of the last rename, description change or move.
        children_count: Number of direct children (derived, not stored).
    """

    id: int
    name: str
    description: Optional[str]
    parent_id: Optional[int] = None
    level: int = 0
    path: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    children_count: int = 0

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict:
        """Convert category to its API representation.

        ``parent_id`` is omitted for root categories.
        """
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }
        if self.parent_id is not None:
            data["parent_id"] = self.parent_id
        data.update(
            {
                "level": self.level,
                "path": self.path,
                "children_count": self.children_count,
                "created_at": self.created_at.isoformat() if self.created_at else None,
                "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            }
        )
        return data


@dataclass(frozen=True)
class CategoryNode:
    """A category together with its materialized children.

    Built per request by the hierarchy service and never persisted.
    """

    category: Category
    children: List["CategoryNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "category": self.category.to_dict(),
            "children": [child.to_dict() for child in self.children],
        }

    def walk(self):
        """Yield this node and every descendant node, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()
