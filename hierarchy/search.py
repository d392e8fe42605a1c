"""Fuzzy category search with scored, path-annotated results.

The same matching contract is used by the server (``HierarchyService.search``)
and by the client-side tree selector. Scoring per field:

- exact (case-insensitive) match scores 1.0
- substring match scores ``0.8 * len(query) / len(text) + 0.2``
- otherwise the query characters are matched in order against the text; the
  ratio ``matched / max(len(query), len(text))`` must reach the fuzzy
  threshold and is then scaled by 0.6

Field scores are weighted (name 1.0, path 0.9, description 0.8) and each
category keeps its best-scoring field.
"""

import html
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from hierarchy.paths import DEFAULT_SEPARATOR
from hierarchy.records import CategoryRecord, index_records
from logger import get_logger

logger = get_logger("hierarchy.search")

SEARCH_FIELDS = ("name", "description", "path")

FIELD_WEIGHTS = {
    "name": 1.0,
    "path": 0.9,
    "description": 0.8,
}

HIGHLIGHT_OPEN = "<mark>"
HIGHLIGHT_CLOSE = "</mark>"


@dataclass(frozen=True)
class SearchConfig:
    """Search tuning shared by server and client."""

    fuzzy_threshold: float = 0.6
    max_results: int = 50
    min_search_length: int = 2
    search_fields: Tuple[str, ...] = SEARCH_FIELDS
    debounce_ms: int = 300

    def __post_init__(self):
        unknown = set(self.search_fields) - set(SEARCH_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported search fields: {sorted(unknown)}")
        if not 0 <= self.fuzzy_threshold <= 1:
            raise ValueError("fuzzy_threshold must be between 0 and 1")

    def merged(self, **overrides) -> "SearchConfig":
        """Copy of this config with the given non-None values replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


@dataclass(frozen=True)
class FuzzyMatch:
    is_match: bool
    score: float


@dataclass
class SearchResult:
    """One matching category.

    Attributes:
        category: The matching category.
        path: Ancestors from the root down to and including the category.
        score: Weighted match score, higher is better.
        match_type: Field that produced the score: name, description or path.
        highlighted: The matched field, HTML-escaped, with the match wrapped
            in ``<mark>`` tags.
    """

    category: CategoryRecord
    path: List[CategoryRecord]
    score: float
    match_type: str
    highlighted: str = ""

    @property
    def ancestors(self) -> List[CategoryRecord]:
        return self.path[:-1]

    def breadcrumb(self, separator: str = " > ") -> str:
        return separator.join(record.name for record in self.path)

    def to_dict(self) -> dict:
        return {
            "category_id": self.category.id,
            "name": self.category.name,
            "path": [record.id for record in self.path],
            "breadcrumb": self.breadcrumb(),
            "score": round(self.score, 4),
            "match_type": self.match_type,
            "highlighted": self.highlighted,
        }


def fuzzy_match(query: str, text: str, threshold: float = 0.6) -> FuzzyMatch:
    """Score how well ``query`` matches ``text``."""
    query_lower = query.lower()
    text_lower = text.lower()

    if not query_lower or not text_lower:
        return FuzzyMatch(False, 0.0)

    if text_lower == query_lower:
        return FuzzyMatch(True, 1.0)

    if query_lower in text_lower:
        ratio = len(query_lower) / len(text_lower)
        return FuzzyMatch(True, 0.8 * ratio + 0.2)

    matched = 0
    for char in text_lower:
        if matched == len(query_lower):
            break
        if char == query_lower[matched]:
            matched += 1

    score = matched / max(len(query_lower), len(text_lower))
    return FuzzyMatch(score >= threshold, score * 0.6)


def highlight_match(text: str, query: str, threshold: float = 0.6) -> str:
    """Wrap the best match of ``query`` inside ``text`` in ``<mark>`` tags.

    An exact substring wins; otherwise the window of ``len(query)`` characters
    with the best fuzzy score is marked. Text is HTML-escaped either way.
    """
    if not text or not query:
        return html.escape(text or "")

    text_lower = text.lower()
    query_lower = query.lower()

    start = text_lower.find(query_lower)
    if start == -1:
        best_score = 0.0
        for i in range(len(text_lower) - len(query_lower) + 1):
            match = fuzzy_match(query_lower, text_lower[i:i + len(query_lower)], threshold)
            if match.is_match and match.score > best_score:
                start, best_score = i, match.score

    if start == -1:
        return html.escape(text)

    end = start + len(query_lower)
    return (
        html.escape(text[:start])
        + HIGHLIGHT_OPEN
        + html.escape(text[start:end])
        + HIGHLIGHT_CLOSE
        + html.escape(text[end:])
    )


class SearchIndex:
    """Searchable view over a flat category list.

    Args:
        categories: Flat list of Category objects, records or mappings.
        config: Search configuration; defaults apply when omitted.
        separator: Separator used when deriving missing paths.
    """

    def __init__(
        self,
        categories: Iterable[Any],
        config: Optional[SearchConfig] = None,
        separator: str = DEFAULT_SEPARATOR,
    ):
        self.config = config or SearchConfig()
        self.separator = separator
        self.records = index_records(categories, separator)

    def __len__(self) -> int:
        return len(self.records)

    def is_active(self, query: str) -> bool:
        """Whether ``query`` is long enough to trigger a search."""
        return len((query or "").strip()) >= self.config.min_search_length

    def ancestors(self, category_id: Any) -> List[CategoryRecord]:
        """Records from the root down to ``category_id``.

        Parents missing from the list end the walk, and the walk stops on a
        repeated id so cyclic input cannot loop.
        """
        chain: List[CategoryRecord] = []
        seen = set()
        current = self.records.get(category_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            current = self.records.get(current.parent_id)
        chain.reverse()
        return chain

    def search(self, query: str) -> List[SearchResult]:
        """Find categories matching ``query``.

        Returns:
            Results sorted by descending score, then shallower level, then
            name; at most ``max_results``. Empty when the query is shorter
            than ``min_search_length``.
        """
        query = (query or "").strip()
        if not self.is_active(query):
            return []

        best: Dict[Any, SearchResult] = {}
        for record in self.records.values():
            result = self._score(record, query)
            if result is not None:
                best[record.id] = result

        results = sorted(
            best.values(),
            key=lambda r: (-r.score, r.category.level, r.category.name, str(r.category.id)),
        )[: self.config.max_results]

        for result in results:
            result.path = self.ancestors(result.category.id)

        logger.debug(f"Search '{query}' matched {len(best)} categories, returning {len(results)}")
        return results

    def _score(self, record: CategoryRecord, query: str) -> Optional[SearchResult]:
        best: Optional[SearchResult] = None
        for field_name in self.config.search_fields:
            text = getattr(record, field_name) or ""
            if not text:
                continue
            match = fuzzy_match(query, text, self.config.fuzzy_threshold)
            if not match.is_match:
                continue
            score = match.score * FIELD_WEIGHTS[field_name]
            if best is None or score > best.score:
                best = SearchResult(
                    category=record,
                    path=[record],
                    score=score,
                    match_type=field_name,
                    highlighted=highlight_match(text, query, self.config.fuzzy_threshold),
                )
        return best

    def suggestions(self, prefix: str, limit: int = 5) -> List[str]:
        """Distinct category names starting with ``prefix`` (case-insensitive)."""
        prefix = (prefix or "").strip().lower()
        if len(prefix) < self.config.min_search_length:
            return []
        names = {r.name for r in self.records.values() if r.name.lower().startswith(prefix)}
        return sorted(names)[:limit]


def search_categories(
    categories: Iterable[Any], query: str, config: Optional[SearchConfig] = None
) -> List[SearchResult]:
    """One-shot search over a flat category list."""
    return SearchIndex(categories, config).search(query)


def filter_results(
    results: Iterable[SearchResult],
    min_level: Optional[int] = None,
    max_level: Optional[int] = None,
    has_products: bool = False,
    parent_id: Any = None,
) -> List[SearchResult]:
    """Narrow search results by level range, product presence or parent."""
    filtered = []
    for result in results:
        category = result.category
        if min_level is not None and category.level < min_level:
            continue
        if max_level is not None and category.level > max_level:
            continue
        if has_products and not category.product_count:
            continue
        if parent_id is not None and category.parent_id != parent_id:
            continue
        filtered.append(result)
    return filtered


def group_by_match_type(results: Iterable[SearchResult]) -> Dict[str, List[SearchResult]]:
    groups: Dict[str, List[SearchResult]] = {name: [] for name in SEARCH_FIELDS}
    for result in results:
        groups[result.match_type].append(result)
    return groups


@dataclass(frozen=True)
class SearchTicket:
    """Identity of one submitted query."""

    sequence: int
    query: str
    issued_at: float


class DebouncedSearch:
    """Debounces queries and drops results that a newer query has superseded.

    Every ``submit`` takes a new, strictly increasing sequence number. Results
    are only accepted by ``deliver`` when their ticket carries the latest
    sequence, so a slow search for an old query can never overwrite the result
    set of a newer one.

    Args:
        run: Callable performing the actual search for a query string.
        debounce_ms: Quiet period before a submitted query runs. Zero or less
            runs every query immediately on submit.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        run: Callable[[str], List[SearchResult]],
        debounce_ms: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.run = run
        self.debounce_ms = debounce_ms
        self.clock = clock
        self.results: List[SearchResult] = []
        self.query = ""
        self._sequence = 0
        self._pending: Optional[SearchTicket] = None

    @property
    def latest_sequence(self) -> int:
        return self._sequence

    @property
    def pending(self) -> Optional[SearchTicket]:
        return self._pending

    def submit(self, query: str) -> SearchTicket:
        """Register a new query, superseding any pending or in-flight one."""
        self._sequence += 1
        ticket = SearchTicket(self._sequence, query, self.clock())
        self._pending = ticket
        if self.debounce_ms <= 0:
            self.flush()
        return ticket

    def cancel(self) -> None:
        """Forget the pending query and invalidate any in-flight result."""
        self._sequence += 1
        self._pending = None
        self.results = []
        self.query = ""

    def take_due(self) -> Optional[SearchTicket]:
        """Pop the pending ticket if its quiet period has elapsed.

        Callers running searches elsewhere (a thread, an event loop) execute
        the ticket's query and hand the outcome back through ``deliver``.
        """
        ticket = self._pending
        if ticket is None:
            return None
        if (self.clock() - ticket.issued_at) * 1000 < self.debounce_ms:
            return None
        self._pending = None
        return ticket

    def poll(self) -> bool:
        """Run the pending query if it is due. Returns True if results changed."""
        ticket = self.take_due()
        if ticket is None:
            return False
        return self.deliver(ticket, self.run(ticket.query))

    def flush(self) -> bool:
        """Run the pending query now, skipping the rest of the quiet period."""
        ticket = self._pending
        if ticket is None:
            return False
        self._pending = None
        return self.deliver(ticket, self.run(ticket.query))

    def deliver(self, ticket: SearchTicket, results: List[SearchResult]) -> bool:
        """Accept ``results`` for ``ticket`` unless a newer query was issued."""
        if ticket.sequence != self._sequence:
            logger.debug(
                f"Discarding stale results for '{ticket.query}' "
                f"(sequence {ticket.sequence}, latest {self._sequence})"
            )
            return False
        self.results = results
        self.query = ticket.query
        return True
