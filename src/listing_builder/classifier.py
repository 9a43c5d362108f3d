"""
Category classifier.

Builds an inverted index (token -> node ordinals) over an uploaded marketplace
taxonomy and scores candidate categories for an item title. The index is the
only state that outlives a pipeline run: it is rebuilt when a new taxonomy is
supplied and reused otherwise.

Scoring per candidate node:
    exact     +10 for every title token present in the node's tokens
    partial   +5 for every (title token, node token) pair where one contains
              the other; exact hits are counted here as well
    coverage  8 x distinct title tokens matching any node token
    depth     3 x number of path segments
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from .tokenizer import tokenize

DEFAULT_CATEGORY_ID = 47155
DEFAULT_CATEGORY_PATH = 'Default'
MIN_SCORE = 5

EXACT_POINTS = 10
PARTIAL_POINTS = 5
COVERAGE_POINTS = 8
DEPTH_POINTS = 3

ID_ALIASES = ('categoryid',)
PATH_ALIASES = ('categorypath',)


@dataclass(frozen=True)
class TaxonomyNode:
    id: object
    path: str
    tokens: tuple
    depth: int
    ordinal: int


@dataclass(frozen=True)
class CategoryMatch:
    category_id: object
    category_path: str
    score: int


@dataclass(frozen=True)
class ClassifierStatus:
    is_initialized: bool
    count: int
    build_seconds: float


DEFAULT_MATCH = CategoryMatch(DEFAULT_CATEGORY_ID, DEFAULT_CATEGORY_PATH, 0)


def _normalize_header(name) -> str:
    return str(name).strip().lower().replace(' ', '').replace('_', '')


def _field(row: dict, aliases: tuple):
    for key, value in row.items():
        if _normalize_header(key) in aliases:
            return value
    return None


def normalize_category_id(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if value != value:
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    return text


class CategoryClassifier:

    def __init__(self):
        self._token_index: dict[str, set[int]] = {}
        self._nodes: list[TaxonomyNode] = []
        self._initialized = False
        self._build_seconds = 0.0

    @property
    def nodes(self) -> list[TaxonomyNode]:
        return list(self._nodes)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def status(self) -> ClassifierStatus:
        return ClassifierStatus(
            is_initialized=self._initialized,
            count=len(self._nodes),
            build_seconds=self._build_seconds,
        )

    def build(self, taxonomy_rows, notify: Optional[Callable[[ClassifierStatus], None]] = None) -> ClassifierStatus:
        """Rebuild the index from taxonomy rows (dicts keyed by header).

        Rows without an id or a path are skipped. An empty taxonomy leaves the
        classifier uninitialised so every title falls back to the default.
        """
        t_start = time.perf_counter()
        self._token_index = {}
        self._nodes = []
        self._initialized = False

        for row in taxonomy_rows or []:
            category_id = normalize_category_id(_field(row, ID_ALIASES))
            raw_path = _field(row, PATH_ALIASES)
            path = '' if raw_path is None or raw_path != raw_path else str(raw_path).strip()
            if category_id is None or not path:
                continue

            ordinal = len(self._nodes)
            tokens = tuple(tokenize(path))
            self._nodes.append(TaxonomyNode(
                id=category_id,
                path=path,
                tokens=tokens,
                depth=len(path.split('>')),
                ordinal=ordinal,
            ))
            for token in tokens:
                self._token_index.setdefault(token, set()).add(ordinal)

        self._initialized = bool(self._nodes)
        self._build_seconds = time.perf_counter() - t_start
        status = self.status()
        if notify is not None:
            notify(status)
        return status

    def match(self, title) -> CategoryMatch:
        if not self._initialized or not self._nodes:
            return DEFAULT_MATCH

        title_tokens = tokenize(title)
        if not title_tokens:
            return DEFAULT_MATCH

        # ordinal -> [exact, partial]
        scores: dict[int, list[int]] = {}
        for title_token in title_tokens:
            for ordinal in self._token_index.get(title_token, ()):
                node = self._nodes[ordinal]
                entry = scores.setdefault(ordinal, [0, 0])
                if title_token in node.tokens:
                    entry[0] += EXACT_POINTS
                for node_token in node.tokens:
                    if title_token in node_token or node_token in title_token:
                        entry[1] += PARTIAL_POINTS

        best_node = None
        best_score = -1
        distinct_title_tokens = list(dict.fromkeys(title_tokens))
        for ordinal in sorted(scores):
            exact, partial = scores[ordinal]
            node = self._nodes[ordinal]
            covered = sum(
                1 for tt in distinct_title_tokens
                if any(ct == tt or tt in ct or ct in tt for ct in node.tokens)
            )
            total = exact + partial + node.depth * DEPTH_POINTS + covered * COVERAGE_POINTS
            if total > best_score:
                best_score = total
                best_node = node

        if best_node is None or best_score < MIN_SCORE:
            return DEFAULT_MATCH
        return CategoryMatch(best_node.id, best_node.path, best_score)
