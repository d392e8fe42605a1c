"""Category hierarchy engine: path computation, tree building, search and selection."""

from hierarchy.search import SearchConfig, SearchIndex
from hierarchy.selector import SelectorState, TreeSelector
from hierarchy.tree import TreeBuildOptions, build_tree

__all__ = [
    "SearchConfig",
    "SearchIndex",
    "SelectorState",
    "TreeBuildOptions",
    "TreeSelector",
    "build_tree",
]
