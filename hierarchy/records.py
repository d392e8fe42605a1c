"""Normalized, read-only view of the flat category lists clients work with.

Clients receive categories either as ``Category`` dataclasses or as plain
mappings decoded from an API response. Tree building and search only need a
handful of fields, so both shapes are converted to ``CategoryRecord`` first.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from hierarchy.paths import DEFAULT_SEPARATOR


@dataclass(frozen=True)
class CategoryRecord:
    id: Any
    name: str
    parent_id: Any = None
    level: int = 0
    description: Optional[str] = None
    path: str = ""
    product_count: Optional[int] = None
    # None when the caller did not say whether the node has children
    has_children: Optional[bool] = None


def _get(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def as_record(item: Any) -> CategoryRecord:
    """Convert a Category, CategoryRecord or mapping to a CategoryRecord."""
    if isinstance(item, CategoryRecord):
        return item

    has_children = _get(item, "has_children")
    if has_children is None:
        children_count = _get(item, "children_count")
        if children_count is not None:
            has_children = children_count > 0

    return CategoryRecord(
        id=_get(item, "id"),
        name=_get(item, "name") or "",
        parent_id=_get(item, "parent_id"),
        level=_get(item, "level") or 0,
        description=_get(item, "description"),
        path=_get(item, "path") or "",
        product_count=_get(item, "product_count"),
        has_children=has_children,
    )


def index_records(
    categories: Iterable[Any], separator: str = DEFAULT_SEPARATOR
) -> Dict[Any, CategoryRecord]:
    """Normalize a flat list into an id-keyed dict, preserving input order.

    Later duplicates of an id replace earlier ones. Records without a path or
    level get them derived from the ancestors present in the list; the walk
    stops on a repeated id so cyclic input cannot loop.
    """
    records: Dict[Any, CategoryRecord] = {}
    missing_level = set()
    for item in categories:
        record = as_record(item)
        records[record.id] = record
        if _get(item, "level") is None:
            missing_level.add(record.id)
        else:
            missing_level.discard(record.id)

    for record_id, record in list(records.items()):
        if record.path and record_id not in missing_level:
            continue
        names: List[str] = []
        seen = set()
        current = record
        while current is not None and current.id not in seen:
            seen.add(current.id)
            names.append(current.name)
            current = records.get(current.parent_id)

        derived = {}
        if not record.path:
            derived["path"] = separator.join(reversed(names))
        if record_id in missing_level:
            derived["level"] = len(names) - 1
        records[record_id] = replace(record, **derived)
    return records
