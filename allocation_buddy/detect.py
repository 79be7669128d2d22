"""
Column Detector

Works out which input columns hold the store, item and quantity of an
allocation export whose headers cannot be trusted.

Detection order:
1. Dictionary evidence from a sample of (non-header) rows
2. Header synonyms, most specific first
3. Column position

Detection is best-effort and never raises on malformed input.
"""

import re
import logging
from dataclasses import dataclass
from typing import Optional

from .matcher import MatcherIndex, match_item, match_store
from .utils import is_blank, normalize_token, to_number

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10

# Used when the dictionary has no stores to derive an id band from
DEFAULT_STORE_ID_BAND = (100, 199)

STORE_HEADER_PATTERNS = [
    r'store\s*name|shop\s*name',
    r'^loc\s*name$',
    r'location\s*code',
    r'store\s*code',
    r'store|shop|location',
    r'^loc$',
]

ITEM_HEADER_PATTERNS = [
    r'^item$',
    r'item\s*no',
    r'item\s*number',
    r'^product$',
    r'^sku$',
]
ITEM_GENERIC_PATTERN = r'item|description|style|number'
ITEM_GENERIC_EXCLUDE = r'store|loc|location|rank|qty|quantity'

QUANTITY_HEADER_PATTERNS = [
    r'^qty$',
    r'quantity|amount|allocation|units?',
    r'maximum\s*inventory',
    r'max\s*inv',
    r'reorder\s*point',
]
STORE_ID_HEADER_PATTERN = r'store.*id|store.*num|store.*#|loc.*id|loc.*num|location.*code'


@dataclass(frozen=True)
class ColumnMap:
    """
    Detected columns.

    Attributes:
        store: Store column name
        item: Item column name
        quantity: Quantity column name
        method: 'dictionary', 'header', 'positional' or 'none'
    """
    store: Optional[str]
    item: Optional[str]
    quantity: Optional[str]
    method: str = 'dictionary'

    @property
    def is_complete(self):
        return None not in (self.store, self.item, self.quantity)

    def as_tuple(self):
        return self.store, self.item, self.quantity


@dataclass
class ColumnScore:
    name: str
    store_matches: int = 0
    exact_store_matches: int = 0
    item_matches: int = 0
    numeric_values: int = 0
    empty_values: int = 0
    store_id_values: int = 0


def get_columns(rows):
    """Column names in order of first appearance across all rows."""
    columns = []
    seen = set()
    for row in rows:
        try:
            keys = list(row.keys())
        except AttributeError:
            continue
        for key in keys:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def _cell(row, column):
    try:
        return row.get(column)
    except AttributeError:
        return None


def is_header_row(row, columns):
    """True when more than half of the row's values echo their column names."""
    if not columns:
        return False
    header_fields = 0
    for column in columns:
        value = _cell(row, column)
        if is_blank(value):
            continue
        value = normalize_token(value).lower()
        column_name = str(column).strip().lower()
        if value == column_name or column_name in value or value in column_name:
            header_fields += 1
    return header_fields > len(columns) / 2


def filter_header_rows(rows, columns=None):
    """Drop repeated header rows (some exports repeat the header every page).

    Returns:
        list: The surviving rows; the original rows if every row looks like a header
    """
    rows = list(rows)
    if columns is None:
        columns = get_columns(rows)
    clean = [row for row in rows if not is_header_row(row, columns)]
    if rows and not clean:
        logger.warning("All rows appear to be headers, using original data")
        return rows
    if len(clean) != len(rows):
        logger.info(f"Filtered {len(rows) - len(clean)} header rows from data")
    return clean


def store_id_band(index: MatcherIndex):
    return index.store_id_range or DEFAULT_STORE_ID_BAND


def score_columns(rows, columns, index: MatcherIndex, sample_size=SAMPLE_SIZE):
    """Count dictionary and numeric evidence per column over the first rows."""
    low, high = store_id_band(index)
    scores = [ColumnScore(column) for column in columns]
    for row in rows[:sample_size]:
        for score in scores:
            value = _cell(row, score.name)
            if is_blank(value):
                score.empty_values += 1
                continue
            number = to_number(value)
            if number is not None:
                score.numeric_values += 1
                if low <= number <= high:
                    score.store_id_values += 1
                continue
            store_match = match_store(index, value)
            if store_match is not None:
                score.store_matches += 1
                if store_match.is_exact:
                    score.exact_store_matches += 1
            if match_item(index, value) is not None:
                score.item_matches += 1
    return scores


def _looks_like_store_ids(score):
    return score.numeric_values > 0 and score.store_id_values > score.numeric_values / 2


def _best(scores, key, tiebreak=None):
    """Highest-scoring column with a positive score; first column wins remaining ties."""
    rank = (lambda s: (key(s), tiebreak(s))) if tiebreak else (lambda s: (key(s),))
    best = None
    for score in scores:
        if key(score) > 0 and (best is None or rank(score) > rank(best)):
            best = score
    return best.name if best else None


def _detect_from_dictionary(scores):
    # Exact hits break ties; rank letters partially match many store names
    store = _best(scores, lambda s: s.store_matches, lambda s: s.exact_store_matches)
    if store is None:
        store = _best([s for s in scores if _looks_like_store_ids(s)], lambda s: s.store_id_values)
    item = _best(scores, lambda s: s.item_matches)
    remaining = [s for s in scores
                 if s.name not in (store, item) and not _looks_like_store_ids(s)]
    quantity = _best(remaining, lambda s: s.numeric_values)
    return store, item, quantity


def _find_column(columns, pattern, exclude=None, skip=()):
    for column in columns:
        name = str(column)
        if column in skip:
            continue
        if re.search(pattern, name, re.IGNORECASE) and not (exclude and re.search(exclude, name, re.IGNORECASE)):
            return column
    return None


def _positional(columns, position, skip=()):
    if position < len(columns) and columns[position] not in skip:
        return columns[position]
    for column in columns:
        if column not in skip:
            return column
    return columns[-1] if columns else None


def _quantity_from_headers(columns, store, item):
    for pattern in QUANTITY_HEADER_PATTERNS:
        found = _find_column(columns, pattern, skip=(store, item))
        if found is not None:
            return found, 'header'
    for column in columns:
        if column in (store, item):
            continue
        if not re.search(STORE_ID_HEADER_PATTERN, str(column), re.IGNORECASE):
            return column, 'header'
    return _positional(columns, 2, skip=(store, item)), 'positional'


def _detect_from_headers(columns):
    methods = set()

    store = None
    for pattern in STORE_HEADER_PATTERNS:
        store = _find_column(columns, pattern)
        if store is not None:
            break
    if store is None:
        store = _positional(columns, 0)
        methods.add('positional')

    item = None
    for pattern in ITEM_HEADER_PATTERNS:
        item = _find_column(columns, pattern)
        if item is not None:
            break
    if item is None:
        item = _find_column(columns, ITEM_GENERIC_PATTERN, exclude=ITEM_GENERIC_EXCLUDE)
    if item is None:
        item = _positional(columns, 1, skip=(store,))
        methods.add('positional')

    quantity, method = _quantity_from_headers(columns, store, item)
    methods.add(method)
    return store, item, quantity, 'positional' if 'positional' in methods else 'header'


def detect_columns(rows, index: MatcherIndex, columns=None) -> ColumnMap:
    """Infer the store, item and quantity columns.

    Args:
        rows (list): Raw rows, each a mapping of column name to value
        index (MatcherIndex): Dictionary lookup tables
        columns (list, optional): Column order; derived from the rows if omitted

    Returns:
        ColumnMap: The detected triple; method 'none' when there are no columns
    """
    rows = list(rows or [])
    if columns is None:
        columns = get_columns(rows)
    columns = list(columns)
    if not columns:
        logger.warning("No columns to detect")
        return ColumnMap(None, None, None, 'none')

    clean = filter_header_rows(rows, columns)
    scores = score_columns(clean, columns, index)
    for score in scores:
        logger.debug(f"  {score.name}: stores={score.store_matches}, items={score.item_matches}, "
                     f"numeric={score.numeric_values}, empty={score.empty_values}")

    store, item, quantity = _detect_from_dictionary(scores)
    method = 'dictionary'
    logger.info(f"Initial detection: Store={store!r}, Item={item!r}, Quantity={quantity!r}")

    if store is None or item is None or store == item:
        logger.info("Dictionary detection inconclusive, falling back to header-based detection")
        store, item, quantity, method = _detect_from_headers(columns)
    elif quantity is None:
        quantity, method = _quantity_from_headers(columns, store, item)

    result = ColumnMap(store, item, quantity, method)
    logger.info(f"Final column detection ({method}): Store={store!r}, Item={item!r}, Quantity={quantity!r}")
    return result
