"""Category hierarchy maintenance tools."""

from collections import defaultdict
from typing import Dict, List, Optional

from hierarchy.errors import CorruptHierarchyError
from hierarchy.paths import ancestor_chain, materialize


def _issue(category, problem: str, expected=None, actual=None) -> Dict:
    return {
        "category_id": category.id,
        "path": category.path,
        "problem": problem,
        "expected": expected,
        "actual": actual,
    }


def check_integrity(services) -> Dict:
    """Check every stored category against the hierarchy invariants.

    Nothing is modified. Level and path problems can be fixed with
    ``services.hierarchy.rebuild_paths()``; cycles and orphans need manual
    attention.

    Args:
        services: Services container with category and hierarchy services.

    Returns:
        Dictionary with the number of categories checked, an ``ok`` flag and
        a list of issues. Each issue names the category, the problem
        (``orphan``, ``cycle``, ``level``, ``path``, ``too_deep`` or
        ``duplicate_sibling``) and, where it applies, the expected and actual
        values.

    Example:
        {
            "checked": 42,
            "ok": False,
            "issues": [
                {"category_id": 7, "path": "Engine/Filters", "problem": "level",
                 "expected": 1, "actual": 2},
            ],
        }
    """
    hierarchy = services.hierarchy
    categories = services.categories.find_all()
    by_id = {c.id: c for c in categories}
    issues: List[Dict] = []

    def parent_of(category_id: int) -> Optional[int]:
        parent_id = by_id[category_id].parent_id
        return parent_id if parent_id in by_id else None

    looping = set()
    for category in categories:
        if category.parent_id is not None and category.parent_id not in by_id:
            issues.append(
                _issue(category, "orphan", actual=category.parent_id)
            )
        try:
            ancestor_chain(category.id, parent_of)
        except CorruptHierarchyError as e:
            looping.add(category.id)
            issues.append(_issue(category, "cycle", actual=e.details["chain"]))

    # Nodes whose chain loops are left out so the rest can still be derived
    derived = materialize(
        {c.id: (c.name, c.parent_id) for c in categories if c.id not in looping},
        hierarchy.separator,
    )
    for category_id, (level, path) in derived.items():
        category = by_id[category_id]
        if category.level != level:
            issues.append(_issue(category, "level", expected=level, actual=category.level))
        if category.path != path:
            issues.append(_issue(category, "path", expected=path, actual=category.path))
        if level > hierarchy.max_depth:
            issues.append(
                _issue(category, "too_deep", expected=hierarchy.max_depth, actual=level)
            )

    siblings = defaultdict(list)
    for category in categories:
        siblings[(category.parent_id, category.name)].append(category)
    for group in siblings.values():
        for category in group[1:]:
            issues.append(
                _issue(
                    category,
                    "duplicate_sibling",
                    expected=group[0].id,
                    actual=category.id,
                )
            )

    return {"checked": len(categories), "ok": not issues, "issues": issues}


def export_hierarchy(
    services, root_id: Optional[int] = None, max_depth: Optional[int] = None
) -> Dict:
    """Export the category tree as a JSON-ready dictionary.

    Args:
        services: Services container with the hierarchy service.
        root_id: Export only the subtree rooted here.
        max_depth: Levels to include below the starting nodes.

    Returns:
        Dictionary with the path separator, the number of exported categories
        and the nested ``{category, children}`` nodes.
    """
    nodes = services.hierarchy.get_hierarchy(root_id=root_id, max_depth=max_depth)
    count = sum(1 for node in nodes for _ in node.walk())
    return {
        "separator": services.hierarchy.separator,
        "count": count,
        "categories": [node.to_dict() for node in nodes],
    }
