"""Interactive category picker state machine.

``TreeSelector`` holds everything a dropdown category picker needs between
user interactions: open/closed state, the expanded and loaded node sets, the
search term and its debounced results, keyboard focus and the current
selection. It renders nothing and performs no I/O. The host wires user
events to its methods and supplies two callbacks:

- ``on_change(value)`` receives the new selection (an id, None, or a list of
  ids in multi-select mode).
- ``on_load_more(parent_id)`` is asked to fetch the children of a node that
  was expanded before they were loaded. The host calls ``update_categories``
  and ``mark_loaded`` once they arrive.

All state belongs to the instance, so any number of selectors can coexist.
"""

import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from hierarchy.errors import CategoryNotFoundError
from hierarchy.paths import DEFAULT_SEPARATOR
from hierarchy.positioning import DEFAULT_MAX_HEIGHT, Placement, Rect, Viewport, compute_placement
from hierarchy.search import DebouncedSearch, SearchConfig, SearchIndex, SearchResult, highlight_match
from hierarchy.tree import (
    TreeBuildOptions,
    TreeNode,
    TreeViewState,
    build_tree,
    filter_tree,
    flatten_tree,
    visible_nodes,
)
from logger import get_logger

logger = get_logger("hierarchy.selector")

BREADCRUMB_SEPARATOR = " > "

SELECT_KEYS = ("Enter", " ", "Space")
OPEN_KEYS = SELECT_KEYS + ("ArrowDown",)


class SelectorState(Enum):
    CLOSED = "closed"
    BROWSING = "browsing"
    SEARCHING = "searching"


class TreeSelector:
    """Selection widget state over a flat category list.

    Args:
        categories: Flat list of Category objects, records or mappings.
        on_change: Called with the new selection whenever it changes.
        on_load_more: Optional lazy loader, called with a parent id.
        selected: Initial selection (an id, or a list of ids if ``multiple``).
        allow_clear: Re-selecting the selected node clears the selection.
        multiple: Keep the dropdown open and select a list of ids.
        expanded_by_default: Start with every parent node expanded.
        search_config: Search tuning; defaults apply when omitted.
        max_depth: Defensive depth bound passed to the tree builder.
        max_height: Dropdown height used for placement.
        disabled: Ignore attempts to open.
        separator: Separator used when deriving missing paths.
        clock: Monotonic time source for search debouncing.
    """

    def __init__(
        self,
        categories: Iterable[Any],
        on_change: Callable[[Any], None],
        on_load_more: Optional[Callable[[Any], None]] = None,
        selected: Any = None,
        allow_clear: bool = True,
        multiple: bool = False,
        expanded_by_default: bool = False,
        search_config: Optional[SearchConfig] = None,
        max_depth: int = 10,
        max_height: float = DEFAULT_MAX_HEIGHT,
        disabled: bool = False,
        separator: str = DEFAULT_SEPARATOR,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_change = on_change
        self.on_load_more = on_load_more
        self.allow_clear = allow_clear
        self.multiple = multiple
        self.expanded_by_default = expanded_by_default
        self.search_config = search_config or SearchConfig()
        self.max_depth = max_depth
        self.max_height = max_height
        self.disabled = disabled
        self.separator = separator

        if multiple:
            self.selected = list(selected or [])
        else:
            self.selected = selected

        self.state = SelectorState.CLOSED
        self.view_state = TreeViewState()
        self.search_term = ""
        self.focused_id: Any = None
        self.placement: Optional[Placement] = None

        # Search-mode expand toggles, discarded when the search ends
        self._search_overrides: Dict[Any, bool] = {}
        self._load_requested = set()
        self._known_ids = set()

        self._search = DebouncedSearch(
            self._run_search, self.search_config.debounce_ms, clock=clock
        )
        self.update_categories(categories)

    # -- data -------------------------------------------------------------

    def update_categories(self, categories: Iterable[Any]) -> None:
        """Replace the flat category list, e.g. after a lazy load."""
        self.categories = list(categories)
        self.index = SearchIndex(self.categories, self.search_config, self.separator)

        if self.expanded_by_default:
            parents = {r.parent_id for r in self.index.records.values()}
            for record in self.index.records.values():
                if record.id in self._known_ids:
                    continue
                if record.id in parents or record.has_children:
                    self.view_state.expanded.add(record.id)
        self._known_ids = set(self.index.records)

        if self.state is SelectorState.SEARCHING:
            self._search.submit(self.search_term)

    def mark_loaded(self, category_id: Any) -> None:
        """Record that the children of ``category_id`` have been fetched."""
        self.view_state.loaded.add(category_id)
        self._load_requested.discard(category_id)

    # -- open / close -----------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.state is not SelectorState.CLOSED

    def open(self) -> bool:
        if self.disabled or self.is_open:
            return False
        self.state = SelectorState.BROWSING
        self._focus_initial()
        logger.debug("Selector opened")
        return True

    def close(self) -> None:
        """Close the dropdown without touching the selection."""
        if not self.is_open:
            return
        self._end_search()
        self.search_term = ""
        self.state = SelectorState.CLOSED
        self.placement = None
        self.focused_id = None

    def toggle_open(self) -> None:
        if self.is_open:
            self.close()
        else:
            self.open()

    def click_outside(self) -> None:
        self.close()

    def blur(self) -> None:
        self.close()

    # -- search -----------------------------------------------------------

    def _run_search(self, query: str) -> List[SearchResult]:
        return self.index.search(query)

    @property
    def search_results(self) -> List[SearchResult]:
        if self.state is not SelectorState.SEARCHING:
            return []
        return self._search.results

    @property
    def showing_results(self) -> bool:
        """True once results for the current search have been delivered."""
        return self.state is SelectorState.SEARCHING and bool(self._search.query)

    def set_search_term(self, term: str) -> None:
        """Update the search box contents.

        Terms shorter than ``min_search_length`` leave the browsing view as
        it is. Reaching the minimum switches to search mode, where the view
        shows only matches and their ancestors. Until the first debounced
        query of a search runs, the browsing tree stays on screen; later
        queries keep the previous results visible until theirs arrive.
        """
        if not self.is_open:
            self.open()
        self.search_term = term or ""

        if not self.index.is_active(self.search_term):
            if self.state is SelectorState.SEARCHING:
                self._end_search()
                self.state = SelectorState.BROWSING
            return

        if self.state is not SelectorState.SEARCHING:
            self.state = SelectorState.SEARCHING
        self._search_overrides = {}
        self._search.submit(self.search_term.strip())

    def poll_search(self) -> bool:
        """Run a debounced query whose quiet period has passed."""
        return self._search.poll()

    def flush_search(self) -> bool:
        return self._search.flush()

    def clear_search(self) -> None:
        """Empty the search box and return to the prior browsing view."""
        self.search_term = ""
        if self.state is SelectorState.SEARCHING:
            self._end_search()
            self.state = SelectorState.BROWSING

    def _end_search(self) -> None:
        self._search.cancel()
        self._search_overrides = {}

    # -- views ------------------------------------------------------------

    def tree(self) -> List[TreeNode]:
        """The full browsing tree with the persisted expanded state."""
        options = TreeBuildOptions(
            preserve_expanded_state=True,
            default_expanded=self.expanded_by_default,
            max_depth=self.max_depth,
        )
        return build_tree(self.categories, options, self.view_state, self.separator)

    def view(self) -> List[TreeNode]:
        """The tree currently shown: browsing tree or filtered search tree."""
        if not self.showing_results:
            return self.tree()

        results = self._search.results
        matched = {result.category.id for result in results}
        keep = set(matched)
        for result in results:
            keep.update(record.id for record in result.path)
        highlights = {
            result.category.id: highlight_match(
                result.category.name, self._search.query, self.search_config.fuzzy_threshold
            )
            for result in results
        }

        filtered = filter_tree(self.tree(), keep, matched, highlights)
        for node in flatten_tree(filtered, include_collapsed=True):
            if node.id in self._search_overrides:
                node.is_expanded = self._search_overrides[node.id]
        return filtered

    def visible(self) -> List[TreeNode]:
        """Rendered node sequence, which is also the keyboard focus order."""
        return visible_nodes(self.view())

    def _find(self, category_id: Any) -> Optional[TreeNode]:
        for node in flatten_tree(self.view(), include_collapsed=True):
            if node.id == category_id:
                return node
        return None

    # -- expansion --------------------------------------------------------

    def _needs_load(self, node: TreeNode) -> bool:
        if self.on_load_more is None or node.children:
            return False
        if node.id in self.view_state.loaded:
            return False
        return node.category.has_children is not False

    def _is_expandable(self, node: TreeNode) -> bool:
        return bool(node.children) or self._needs_load(node)

    def toggle_expand(self, category_id: Any) -> bool:
        """Flip the expanded state of a node. Returns the new state."""
        node = self._find(category_id)
        if node is None:
            raise CategoryNotFoundError(category_id)

        expand = not node.is_expanded
        if self.showing_results:
            self._search_overrides[category_id] = expand
        elif expand:
            self.view_state.expanded.add(category_id)
        else:
            self.view_state.expanded.discard(category_id)

        if expand and self._needs_load(node) and category_id not in self._load_requested:
            self._load_requested.add(category_id)
            logger.debug(f"Requesting children of category {category_id}")
            self.on_load_more(category_id)
        return expand

    def expand(self, category_id: Any) -> None:
        node = self._find(category_id)
        if node is not None and not node.is_expanded and self._is_expandable(node):
            self.toggle_expand(category_id)

    def collapse(self, category_id: Any) -> None:
        node = self._find(category_id)
        if node is not None and node.is_expanded:
            self.toggle_expand(category_id)

    # -- selection --------------------------------------------------------

    def is_selected(self, category_id: Any) -> bool:
        if self.multiple:
            return category_id in self.selected
        return category_id is not None and category_id == self.selected

    def select(self, category_id: Any) -> None:
        """Select a node.

        Selecting the already-selected node clears it when ``allow_clear``
        is set and is a no-op otherwise. Single-select closes the dropdown
        after a selection; multi-select keeps it open.
        """
        if category_id not in self.index.records:
            raise CategoryNotFoundError(category_id)

        if self.multiple:
            if category_id in self.selected:
                if not self.allow_clear:
                    return
                value = [i for i in self.selected if i != category_id]
            else:
                value = self.selected + [category_id]
            self.selected = value
            self.on_change(list(value))
            return

        if category_id == self.selected:
            if not self.allow_clear:
                return
            value = None
        else:
            value = category_id
        self.selected = value
        self.on_change(value)
        self.close()

    def clear_selection(self) -> None:
        if not self.allow_clear:
            return
        if self.multiple:
            if not self.selected:
                return
            self.selected = []
            self.on_change([])
        elif self.selected is not None:
            self.selected = None
            self.on_change(None)

    def display_text(self) -> str:
        """Breadcrumb of the selection, e.g. ``Engine > Filters``."""
        if self.multiple:
            return ", ".join(filter(None, (self._breadcrumb(i) for i in self.selected)))
        if self.selected is None:
            return ""
        return self._breadcrumb(self.selected)

    def _breadcrumb(self, category_id: Any) -> str:
        return BREADCRUMB_SEPARATOR.join(r.name for r in self.index.ancestors(category_id))

    # -- keyboard ---------------------------------------------------------

    def _focus_initial(self) -> None:
        order = [node.id for node in self.visible()]
        if not self.multiple and self.selected in order:
            self.focused_id = self.selected
        else:
            self.focused_id = order[0] if order else None

    def _move_focus(self, key: str) -> None:
        order = [node.id for node in self.visible()]
        if not order:
            self.focused_id = None
            return
        if key == "Home":
            self.focused_id = order[0]
        elif key == "End":
            self.focused_id = order[-1]
        elif self.focused_id not in order:
            self.focused_id = order[0] if key == "ArrowDown" else order[-1]
        else:
            position = order.index(self.focused_id)
            step = 1 if key == "ArrowDown" else -1
            self.focused_id = order[max(0, min(len(order) - 1, position + step))]

    def handle_key(self, key: str) -> bool:
        """Apply a key press. Returns True if the key was handled."""
        if not self.is_open:
            if key in OPEN_KEYS:
                return self.open()
            return False

        if key == "Escape":
            self.close()
            return True

        if key in ("ArrowUp", "ArrowDown", "Home", "End"):
            self._move_focus(key)
            return True

        node = self._find(self.focused_id) if self.focused_id is not None else None
        if node is None:
            return False

        if key in SELECT_KEYS:
            self.select(node.id)
            return True
        if key == "ArrowRight":
            if not node.is_expanded and self._is_expandable(node):
                self.toggle_expand(node.id)
            return True
        if key == "ArrowLeft":
            if node.is_expanded:
                self.toggle_expand(node.id)
            return True
        return False

    # -- positioning ------------------------------------------------------

    def reposition(self, trigger: Rect, viewport: Viewport) -> Optional[Placement]:
        """Recompute the dropdown placement; call on open, scroll and resize."""
        if not self.is_open:
            return None
        self.placement = compute_placement(trigger, viewport, self.max_height)
        return self.placement
