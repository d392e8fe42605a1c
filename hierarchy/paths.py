"""Level and materialized path computation for category trees.

Everything here is a pure function over data supplied by the caller: a parent
category, a name, or a ``parent_of`` lookup that maps a category id to its
parent id. Lookups may be a mapping (``{id: parent_id}``) or any callable
returning the parent id, or None for roots and unknown ids.
"""

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from hierarchy.errors import CorruptHierarchyError

DEFAULT_SEPARATOR = "/"

ParentLookup = Union[Mapping[int, Optional[int]], Callable[[int], Optional[int]]]


def _resolver(parent_of: ParentLookup) -> Callable[[int], Optional[int]]:
    if callable(parent_of):
        return parent_of
    return parent_of.get


def level_of(parent) -> int:
    """Level of a node placed under ``parent`` (None for a root)."""
    if parent is None:
        return 0
    return parent.level + 1


def path_of(parent, name: str, separator: str = DEFAULT_SEPARATOR) -> str:
    """Materialized path of a node named ``name`` placed under ``parent``."""
    if parent is None:
        return name
    return f"{parent.path}{separator}{name}"


def join_path(names: Iterable[str], separator: str = DEFAULT_SEPARATOR) -> str:
    return separator.join(names)


def split_path(path: str, separator: str = DEFAULT_SEPARATOR) -> List[str]:
    if not path:
        return []
    return path.split(separator)


def is_path_prefix(
    ancestor_path: str, path: str, separator: str = DEFAULT_SEPARATOR
) -> bool:
    """True if ``path`` lies strictly below ``ancestor_path``.

    Compares whole segments, so ``Engine`` is not a prefix of ``Engines/Oil``.
    """
    return path.startswith(ancestor_path + separator)


def rebase_path(
    old_prefix: str, new_prefix: str, path: str, separator: str = DEFAULT_SEPARATOR
) -> str:
    """Replace the ``old_prefix`` of ``path`` with ``new_prefix``.

    Raises:
        ValueError: If ``path`` is neither ``old_prefix`` nor below it.
    """
    if path == old_prefix:
        return new_prefix
    if not is_path_prefix(old_prefix, path, separator):
        raise ValueError(f"'{path}' is not under '{old_prefix}'")
    return new_prefix + path[len(old_prefix):]


def ancestor_chain(
    category_id: int, parent_of: ParentLookup, max_steps: Optional[int] = None
) -> List[int]:
    """Ids from the root down to ``category_id`` (inclusive).

    Args:
        category_id: Node to start from.
        parent_of: Parent lookup.
        max_steps: Optional bound on the number of parent hops.

    Raises:
        CorruptHierarchyError: If the walk revisits a node or exceeds ``max_steps``.
    """
    get_parent = _resolver(parent_of)
    chain = [category_id]
    seen = {category_id}
    current = get_parent(category_id)
    while current is not None:
        if current in seen or (max_steps is not None and len(chain) > max_steps):
            raise CorruptHierarchyError(category_id, list(reversed(chain)))
        chain.append(current)
        seen.add(current)
        current = get_parent(current)
    chain.reverse()
    return chain


def is_ancestor(
    candidate_id: int,
    node_id: int,
    parent_of: ParentLookup,
    max_steps: Optional[int] = None,
) -> bool:
    """True if ``candidate_id`` is a strict ancestor of ``node_id``."""
    if candidate_id == node_id:
        return False
    return candidate_id in ancestor_chain(node_id, parent_of, max_steps)[:-1]


def materialize(
    nodes: Mapping[int, Tuple[str, Optional[int]]],
    separator: str = DEFAULT_SEPARATOR,
) -> Dict[int, Tuple[int, str]]:
    """Derive ``(level, path)`` for every node purely from its parent chain.

    Args:
        nodes: Mapping of id to ``(name, parent_id)``.
        separator: Path separator.

    Returns:
        Mapping of id to ``(level, path)``. Parents missing from ``nodes`` are
        treated as absent, making their children roots.

    Raises:
        CorruptHierarchyError: If any parent chain loops.
    """
    derived: Dict[int, Tuple[int, str]] = {}

    def parent_of(node_id: int) -> Optional[int]:
        parent_id = nodes[node_id][1]
        return parent_id if parent_id in nodes else None

    for node_id in nodes:
        if node_id in derived:
            continue
        for chain_id in ancestor_chain(node_id, parent_of):
            if chain_id in derived:
                continue
            name, _ = nodes[chain_id]
            parent_id = parent_of(chain_id)
            if parent_id is None:
                derived[chain_id] = (0, name)
            else:
                parent_level, parent_path = derived[parent_id]
                derived[chain_id] = (
                    parent_level + 1,
                    f"{parent_path}{separator}{name}",
                )
    return derived
