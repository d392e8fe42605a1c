"""Assemble flat category lists into nested presentation trees.

Clients receive categories as a flat list, possibly only partially loaded
(children of collapsed nodes fetched later). ``build_tree`` nests that list
and annotates every node with the session's UI state. The UI state lives in a
separate ``TreeViewState`` keyed by category id; the category records
themselves are never modified.

The ``max_depth`` bound in ``TreeBuildOptions`` only protects the recursion
against malformed input. It is not cycle prevention: keeping the stored tree
acyclic is the hierarchy service's job.
"""

from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Set

from hierarchy.paths import DEFAULT_SEPARATOR
from hierarchy.records import CategoryRecord, index_records


@dataclass(frozen=True)
class TreeBuildOptions:
    preserve_expanded_state: bool = False
    default_expanded: bool = False
    max_depth: int = 10


@dataclass
class TreeViewState:
    """Per-session UI state, keyed by category id."""

    expanded: Set[Any] = field(default_factory=set)
    loaded: Set[Any] = field(default_factory=set)

    def copy(self) -> "TreeViewState":
        return TreeViewState(expanded=set(self.expanded), loaded=set(self.loaded))


@dataclass
class TreeNode:
    """A category placed in a presentation tree.

    Attributes:
        category: The category record.
        children: Child nodes, sorted by name.
        depth: Distance from the top of this tree (roots are 0).
        is_expanded: Whether the node is open in the UI.
        is_loaded: Whether the node's children are known to the caller.
        matches_search: Set on nodes that matched the active search.
        highlighted_text: Name with the search match marked, when matching.
    """

    category: CategoryRecord
    children: List["TreeNode"] = field(default_factory=list)
    depth: int = 0
    is_expanded: bool = False
    is_loaded: bool = True
    matches_search: bool = False
    highlighted_text: Optional[str] = None

    @property
    def id(self) -> Any:
        return self.category.id

    @property
    def name(self) -> str:
        return self.category.name

    @property
    def is_expandable(self) -> bool:
        """True if the node has children, shown or still to be loaded."""
        return bool(self.children) or not self.is_loaded


@dataclass(frozen=True)
class TreeStats:
    total_nodes: int
    visible_nodes: int
    max_depth: int
    expanded_nodes: int


def build_tree(
    categories: Iterable[Any],
    options: Optional[TreeBuildOptions] = None,
    state: Optional[TreeViewState] = None,
    separator: str = DEFAULT_SEPARATOR,
) -> List[TreeNode]:
    """Nest a flat category list.

    Roots are entries whose parent is null or missing from the list. Children
    are attached recursively and sorted by name. Nodes deeper than
    ``options.max_depth`` are not emitted, and entries reachable only through
    a parent_id cycle never hang off a root, so malformed input cannot make
    the recursion run away.

    Args:
        categories: Flat list of Category objects, records or mappings.
        options: Build options; defaults apply when omitted.
        state: Session UI state supplying expanded and loaded ids.
        separator: Separator used when deriving missing paths.

    Returns:
        Freshly built list of root TreeNodes.
    """
    options = options or TreeBuildOptions()
    records = index_records(categories, separator)

    children_of: Dict[Any, List[CategoryRecord]] = defaultdict(list)
    roots: List[CategoryRecord] = []
    for record in records.values():
        if record.parent_id is not None and record.parent_id in records:
            children_of[record.parent_id].append(record)
        else:
            roots.append(record)

    def sort_key(record: CategoryRecord):
        return (record.name.lower(), record.name, str(record.id))

    def is_expanded(record: CategoryRecord) -> bool:
        if options.preserve_expanded_state and state is not None:
            return record.id in state.expanded
        return options.default_expanded

    def is_loaded(record: CategoryRecord) -> bool:
        if children_of.get(record.id):
            return True
        if state is not None and record.id in state.loaded:
            return True
        return record.has_children is not True

    def build(record: CategoryRecord, depth: int, seen: frozenset) -> TreeNode:
        children = []
        if depth < options.max_depth:
            children = [
                build(child, depth + 1, seen | {child.id})
                for child in sorted(children_of.get(record.id, ()), key=sort_key)
                if child.id not in seen
            ]
        return TreeNode(
            category=record,
            children=children,
            depth=depth,
            is_expanded=is_expanded(record),
            is_loaded=is_loaded(record),
        )

    return [build(root, 0, frozenset({root.id})) for root in sorted(roots, key=sort_key)]


def flatten_tree(nodes: Iterable[TreeNode], include_collapsed: bool = False) -> List[TreeNode]:
    """Pre-order list of nodes; collapsed subtrees are skipped unless asked for."""
    result: List[TreeNode] = []

    def visit(level_nodes: Iterable[TreeNode]) -> None:
        for node in level_nodes:
            result.append(node)
            if node.children and (include_collapsed or node.is_expanded):
                visit(node.children)

    visit(nodes)
    return result


def visible_nodes(nodes: Iterable[TreeNode]) -> List[TreeNode]:
    """Nodes in the order they are rendered, honouring expanded state."""
    return flatten_tree(nodes, include_collapsed=False)


def find_node(nodes: Iterable[TreeNode], category_id: Any) -> Optional[TreeNode]:
    for node in flatten_tree(nodes, include_collapsed=True):
        if node.id == category_id:
            return node
    return None


def node_path(nodes: Iterable[TreeNode], category_id: Any) -> Optional[List[TreeNode]]:
    """Nodes from a root down to ``category_id``, or None if absent."""
    for node in nodes:
        if node.id == category_id:
            return [node]
        below = node_path(node.children, category_id)
        if below is not None:
            return [node] + below
    return None


def filter_tree(
    nodes: Iterable[TreeNode],
    keep_ids: Set[Any],
    matched_ids: Set[Any],
    highlights: Optional[Dict[Any, str]] = None,
) -> List[TreeNode]:
    """Copy of the tree restricted to ``keep_ids`` and their ancestors.

    Kept nodes with kept children are expanded so every match is visible;
    nodes in ``matched_ids`` are flagged and get their highlighted name.
    """
    highlights = highlights or {}
    filtered: List[TreeNode] = []
    for node in nodes:
        children = filter_tree(node.children, keep_ids, matched_ids, highlights)
        if node.id not in keep_ids and not children:
            continue
        is_match = node.id in matched_ids
        filtered.append(
            replace(
                node,
                children=children,
                is_expanded=bool(children),
                matches_search=is_match,
                highlighted_text=highlights.get(node.id) if is_match else None,
            )
        )
    return filtered


def tree_stats(nodes: List[TreeNode]) -> TreeStats:
    every = flatten_tree(nodes, include_collapsed=True)
    return TreeStats(
        total_nodes=len(every),
        visible_nodes=len(visible_nodes(nodes)),
        max_depth=max((node.depth for node in every), default=0),
        expanded_nodes=sum(1 for node in every if node.is_expanded),
    )


def validate_tree(nodes: Iterable[TreeNode]) -> List[str]:
    """Consistency problems in a built tree; an empty list means none.

    Checks for duplicate ids, children whose parent_id disagrees with their
    position, and levels that disagree with the depth below their root.
    """
    errors: List[str] = []
    seen: Set[Any] = set()

    def check(level_nodes: Iterable[TreeNode], parent: Optional[TreeNode]) -> None:
        for node in level_nodes:
            if node.id in seen:
                errors.append(f"Duplicate category ID found: {node.id}")
            seen.add(node.id)

            if parent is not None and node.category.parent_id != parent.id:
                errors.append(
                    f"Category {node.id} has parent_id {node.category.parent_id}, "
                    f"expected {parent.id}"
                )
            if parent is not None and node.category.level != parent.category.level + 1:
                errors.append(
                    f"Category {node.id} has level {node.category.level}, "
                    f"expected {parent.category.level + 1}"
                )
            check(node.children, node)

    check(nodes, None)
    return errors
