"""
Entity Matcher

Resolves raw store and item tokens against the reference dictionary.

Item tiers (first hit wins):
1. Exact item number (case-insensitive)      -> exact / number
2. Exact SKU                                  -> exact / sku
3. Item number starts with the token          -> partial / number-prefix
4. Description keywords (off by default)      -> fuzzy / description

Store tiers (first hit wins):
1. Integral numeric token equal to a store id -> exact / id
2. Full name (case-insensitive)               -> exact / name
3. Name contains the token                    -> partial / name-contains
4. Name keyword overlap                       -> fuzzy / name-keywords

All lookups are pure queries over a MatcherIndex. The index is never patched:
call ``reindex`` after any dictionary change.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from .dictionary import Dictionary
from .utils import normalize_token, to_store_id

logger = logging.getLogger(__name__)

# Shorter item tokens are rank letters (A, B, AA) far more often than codes
MIN_ITEM_TOKEN_LENGTH = 3
MIN_KEYWORD_LENGTH = 3


class Confidence(str, Enum):
    """How strongly a token was resolved."""
    EXACT = "exact"
    PARTIAL = "partial"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class MatchResult:
    """
    A resolved token.

    Attributes:
        entity: The DictionaryItem or DictionaryStore
        confidence: Confidence tier
        match_type: Which rule fired
        score: Keyword overlap count for fuzzy matches
    """
    entity: Any
    confidence: Confidence
    match_type: str
    score: Optional[int] = None

    @property
    def is_exact(self):
        return self.confidence is Confidence.EXACT


@dataclass(frozen=True)
class MatcherIndex:
    """Lookup tables derived from one dictionary state."""
    items: tuple = ()
    stores: tuple = ()
    items_by_number: Any = field(default_factory=dict)
    items_by_sku: Any = field(default_factory=dict)
    items_by_word: Any = field(default_factory=dict)
    stores_by_id: Any = field(default_factory=dict)
    stores_by_name: Any = field(default_factory=dict)
    stores_by_word: Any = field(default_factory=dict)
    fuzzy_descriptions: bool = False

    @property
    def store_id_range(self):
        """(lowest, highest) store id, or None without stores."""
        if not self.stores_by_id:
            return None
        return min(self.stores_by_id), max(self.stores_by_id)


def _words(text):
    return [word for word in str(text).upper().split() if word]


def reindex(dictionary: Dictionary, fuzzy_descriptions: bool = False) -> MatcherIndex:
    """Build a fresh MatcherIndex from a dictionary.

    Args:
        dictionary: The reference dictionary
        fuzzy_descriptions: Enable the description keyword tier for items

    Returns:
        MatcherIndex: Read-only lookup tables; first entry wins on collisions
    """
    items_by_number = {}
    items_by_sku = {}
    items_by_word = {}
    for item in dictionary.items:
        items_by_number.setdefault(item.number.upper(), item)
        for sku in item.skus:
            items_by_sku.setdefault(sku.upper(), item)
        for word in _words(item.description):
            if len(word) >= MIN_KEYWORD_LENGTH:
                bucket = items_by_word.setdefault(word, [])
                if item not in bucket:
                    bucket.append(item)

    stores_by_id = {}
    stores_by_name = {}
    stores_by_word = {}
    for store in dictionary.stores:
        stores_by_id.setdefault(store.id, store)
        stores_by_name.setdefault(store.name.upper(), store)
        for word in _words(store.name):
            bucket = stores_by_word.setdefault(word, [])
            if store not in bucket:
                bucket.append(store)

    index = MatcherIndex(
        items=dictionary.items,
        stores=dictionary.stores,
        items_by_number=MappingProxyType(items_by_number),
        items_by_sku=MappingProxyType(items_by_sku),
        items_by_word=MappingProxyType({k: tuple(v) for k, v in items_by_word.items()}),
        stores_by_id=MappingProxyType(stores_by_id),
        stores_by_name=MappingProxyType(stores_by_name),
        stores_by_word=MappingProxyType({k: tuple(v) for k, v in stores_by_word.items()}),
        fuzzy_descriptions=fuzzy_descriptions,
    )
    logger.debug(f"Matcher index built: {len(items_by_number)} item numbers, {len(items_by_sku)} SKUs, "
                 f"{len(stores_by_id)} stores, fuzzy descriptions {'on' if fuzzy_descriptions else 'off'}")
    return index


def _best_keyword_candidate(words, lookup, order):
    """Score candidates by matching words; ties go to the earliest entry in ``order``."""
    scores = {}
    for word in words:
        for candidate in lookup.get(word, ()):
            scores[candidate] = scores.get(candidate, 0) + 1
    if not scores:
        return None, 0
    position = {entity: i for i, entity in enumerate(order)}
    best = min(scores, key=lambda entity: (-scores[entity], position.get(entity, len(position))))
    return best, scores[best]


def match_item(index: MatcherIndex, token) -> Optional[MatchResult]:
    """Resolve an item token, or None."""
    text = normalize_token(token).upper()
    if len(text) < MIN_ITEM_TOKEN_LENGTH:
        return None

    item = index.items_by_number.get(text)
    if item is not None:
        return MatchResult(item, Confidence.EXACT, 'number')

    item = index.items_by_sku.get(text)
    if item is not None:
        return MatchResult(item, Confidence.EXACT, 'sku')

    for item in index.items:
        if item.number.upper().startswith(text):
            return MatchResult(item, Confidence.PARTIAL, 'number-prefix')

    if index.fuzzy_descriptions:
        words = [w for w in _words(text) if len(w) >= MIN_KEYWORD_LENGTH]
        item, score = _best_keyword_candidate(words, index.items_by_word, index.items)
        if item is not None:
            return MatchResult(item, Confidence.FUZZY, 'description', score)

    return None


def match_store(index: MatcherIndex, token) -> Optional[MatchResult]:
    """Resolve a store token, or None."""
    text = normalize_token(token)
    if not text:
        return None

    store_id = to_store_id(text)
    if store_id is not None and store_id in index.stores_by_id:
        return MatchResult(index.stores_by_id[store_id], Confidence.EXACT, 'id')

    upper = text.upper()
    store = index.stores_by_name.get(upper)
    if store is not None:
        return MatchResult(store, Confidence.EXACT, 'name')

    for store in index.stores:
        if upper in store.name.upper():
            return MatchResult(store, Confidence.PARTIAL, 'name-contains')

    store, score = _best_keyword_candidate(_words(upper), index.stores_by_word, index.stores)
    if store is not None:
        return MatchResult(store, Confidence.FUZZY, 'name-keywords', score)

    return None
