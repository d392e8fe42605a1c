"""Errors raised by the category hierarchy engine.

Every error carries a stable ``code`` and a ``details`` dict so an API layer
can map it to a response without parsing messages.
"""

from typing import Any, Dict, Optional


class HierarchyError(Exception):
    """Base class for all category hierarchy errors."""

    code = "hierarchy_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for the API layer."""
        return {"code": self.code, "message": self.message, "details": self.details}


class CategoryNotFoundError(HierarchyError):
    code = "category_not_found"

    def __init__(self, category_id: int):
        super().__init__(
            f"Category with ID {category_id} not found", category_id=category_id
        )


class ParentNotFoundError(HierarchyError):
    code = "parent_not_found"

    def __init__(self, parent_id: int):
        super().__init__(
            f"Parent category with ID {parent_id} not found", parent_id=parent_id
        )


class CycleError(HierarchyError):
    code = "cycle"

    def __init__(self, category_id: int, new_parent_id: int, message: str = None):
        super().__init__(
            message
            or f"Cannot move category {category_id} under its descendant {new_parent_id}",
            category_id=category_id,
            new_parent_id=new_parent_id,
        )


class SelfParentError(CycleError):
    """A category named as its own parent, the shortest possible cycle."""

    code = "self_parent"

    def __init__(self, category_id: int):
        super().__init__(
            category_id,
            category_id,
            f"Category {category_id} cannot be its own parent",
        )


class MaxDepthExceededError(HierarchyError):
    code = "max_depth_exceeded"

    def __init__(self, level: int, max_depth: int):
        super().__init__(
            f"Category level {level} exceeds the maximum depth of {max_depth}",
            level=level,
            max_depth=max_depth,
        )


class HasChildrenError(HierarchyError):
    code = "has_children"

    def __init__(self, category_id: int, children_count: int):
        super().__init__(
            f"Category {category_id} has {children_count} subcategories and cannot be deleted",
            category_id=category_id,
            children_count=children_count,
        )


class CategoryExistsError(HierarchyError):
    code = "category_exists"

    def __init__(self, path: str, parent_id: Optional[int] = None):
        super().__init__(
            f"Category '{path}' already exists", path=path, parent_id=parent_id
        )


class ValidationError(HierarchyError):
    """Base class for rejected field values."""

    code = "validation_error"


class NameRequiredError(ValidationError):
    code = "name_required"

    def __init__(self):
        super().__init__("Category name cannot be empty", field="name")


class NameTooLongError(ValidationError):
    code = "name_too_long"

    def __init__(self, length: int, max_length: int):
        super().__init__(
            f"Category name is {length} characters, maximum is {max_length}",
            field="name",
            length=length,
            max_length=max_length,
        )


class NameInvalidError(ValidationError):
    code = "name_invalid"

    def __init__(self, name: str, separator: str):
        super().__init__(
            f"Category name '{name}' cannot contain the path separator '{separator}'",
            field="name",
            separator=separator,
        )


class DescriptionTooLongError(ValidationError):
    code = "description_too_long"

    def __init__(self, length: int, max_length: int):
        super().__init__(
            f"Category description is {length} characters, maximum is {max_length}",
            field="description",
            length=length,
            max_length=max_length,
        )


class CorruptHierarchyError(HierarchyError):
    """Stored parent_id pointers loop back on themselves."""

    code = "corrupt_hierarchy"

    def __init__(self, category_id, chain):
        super().__init__(
            f"Parent chain of category {category_id} loops back on itself",
            category_id=category_id,
            chain=list(chain),
        )
