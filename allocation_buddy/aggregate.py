"""
Aggregator

Turns raw rows into an AllocationDataset: one AllocationLine per retained row,
grouped two ways.

- by_store: store key -> lines for that store
- by_item:  item key  -> lines for that item

Both views are rebuilt from the same ordered list of lines, so they always
hold the same total quantity.

Keys:
- Matched items are keyed by their canonical item number
- Matched stores are keyed by their dictionary name
- Unmatched tokens are kept as-is and reported as warnings
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

import pandas as pd

from .detect import ColumnMap, detect_columns, filter_header_rows, get_columns
from .matcher import MatcherIndex, match_item, match_store
from .utils import clean_quantity, normalize_token

logger = logging.getLogger(__name__)

UNKNOWN_STORE = 'Unknown Store'
UNKNOWN_ITEM = 'Unknown Item'


class IngestStatus(str, Enum):
    OK = "ok"
    NO_ROWS = "no-rows"
    NO_COLUMNS = "no-columns"


@dataclass(frozen=True)
class AllocationRow:
    """One retained input record, parsed once at the ingestion boundary."""
    row: int
    store_token: str
    item_token: str
    quantity: float
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ItemInfo:
    code: str
    description: str = ''
    skus: tuple = ()
    matched: bool = False
    confidence: str = 'none'
    original_input: str = ''

    @property
    def display_text(self):
        return f"{self.code} - {self.description}" if self.description else self.code

    def to_dict(self):
        return {
            'code': self.code,
            'description': self.description,
            'skus': list(self.skus),
            'matched': self.matched,
            'confidence': self.confidence,
            'original_input': self.original_input,
        }

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data['skus'] = tuple(data.get('skus') or ())
        return cls(**data)


@dataclass(frozen=True)
class StoreInfo:
    name: str
    id: Optional[int] = None
    rank: Optional[str] = None
    matched: bool = False
    confidence: str = 'none'
    original_input: str = ''

    @property
    def display_text(self):
        return f"{self.name} ({self.rank})" if self.rank else self.name

    def to_dict(self):
        return {
            'name': self.name,
            'id': self.id,
            'rank': self.rank,
            'matched': self.matched,
            'confidence': self.confidence,
            'original_input': self.original_input,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


@dataclass(frozen=True)
class AllocationLine:
    """A store's quantity of an item, with the display info both views need."""
    store: str
    item: str
    quantity: float
    store_info: StoreInfo
    item_info: ItemInfo
    raw: dict = field(default_factory=dict)
    redistributed: bool = False

    def to_dict(self):
        return {
            'store': self.store,
            'item': self.item,
            'quantity': self.quantity,
            'store_info': self.store_info.to_dict(),
            'item_info': self.item_info.to_dict(),
            'raw': dict(self.raw),
            'redistributed': self.redistributed,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            store=data['store'],
            item=data['item'],
            quantity=data['quantity'],
            store_info=StoreInfo.from_dict(data['store_info']),
            item_info=ItemInfo.from_dict(data['item_info']),
            raw=dict(data.get('raw') or {}),
            redistributed=bool(data.get('redistributed', False)),
        )


def _store_sort_key(store, info):
    if info is not None and info.id is not None:
        return (0, info.id, store.casefold())
    return (1, 0, store.casefold())


class AllocationDataset:
    """Lines plus the two aggregate views derived from them."""

    def __init__(self, lines=()):
        self.lines = tuple(lines)
        self.by_store = {}
        self.by_item = {}
        for line in self.lines:
            self.by_store.setdefault(line.store, []).append(line)
            self.by_item.setdefault(line.item, []).append(line)

    def __eq__(self, other):
        if not isinstance(other, AllocationDataset):
            return NotImplemented
        return self.lines == other.lines

    def __repr__(self):
        return (f"AllocationDataset(stores={len(self.by_store)}, items={len(self.by_item)}, "
                f"quantity={self.total_quantity()})")

    def __len__(self):
        return len(self.lines)

    def is_empty(self):
        return not self.lines

    def total_quantity(self):
        return sum(line.quantity for line in self.lines)

    def store_total(self, store):
        return sum(line.quantity for line in self.by_store.get(store, ()))

    def item_total(self, item):
        return sum(line.quantity for line in self.by_item.get(item, ()))

    def store_info(self, store):
        lines = self.by_store.get(store)
        return lines[0].store_info if lines else None

    def item_info(self, item):
        lines = self.by_item.get(item)
        return lines[0].item_info if lines else None

    def sorted_stores(self):
        """Store keys in canonical order: by numeric id, then by name for stores without one."""
        return sort_store_keys(self.by_store, self.store_info)

    def filter(self, predicate):
        return AllocationDataset(line for line in self.lines if predicate(line))

    def search(self, term=None, store=None):
        """Lines for one store and/or matching a search term.

        The term is matched case-insensitively against store key, item key,
        item description and SKUs.
        """
        needle = (term or '').strip().lower()

        def keep(line):
            if store is not None and line.store != store:
                return False
            if not needle:
                return True
            haystack = [line.store, line.item, line.item_info.description, *line.item_info.skus]
            return any(needle in str(value).lower() for value in haystack)

        return self.filter(keep)

    def to_dataframe(self):
        """One row per line, in canonical store order."""
        columns = ['Store', 'Store ID', 'Rank', 'Item', 'Description', 'Quantity', 'Redistributed']
        order = {store: position for position, store in enumerate(self.sorted_stores())}
        records = []
        for line in sorted(self.lines, key=lambda l: order[l.store]):
            records.append({
                'Store': line.store,
                'Store ID': line.store_info.id,
                'Rank': line.store_info.rank or '',
                'Item': line.item,
                'Description': line.item_info.description,
                'Quantity': line.quantity,
                'Redistributed': line.redistributed,
            })
        if not records:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(records, columns=columns)

    def to_dict(self):
        return {'lines': [line.to_dict() for line in self.lines]}

    @classmethod
    def from_dict(cls, data):
        return cls(AllocationLine.from_dict(entry) for entry in (data or {}).get('lines', []))


def sort_store_keys(stores, info_for):
    """Sort store keys: ascending numeric id first, then stores without an id by name."""
    return sorted(stores, key=lambda store: _store_sort_key(store, info_for(store)))


@dataclass
class MatchWarning:
    row: int
    type: str
    input: str
    matched: Optional[str] = None
    match_type: Optional[str] = None
    confidence: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self):
        return {key: value for key, value in self.__dict__.items() if value is not None}


@dataclass
class MatchingStats:
    items_matched: int = 0
    items_unmatched: int = 0
    stores_matched: int = 0
    stores_unmatched: int = 0
    rows_skipped: int = 0
    header_rows_filtered: int = 0
    unmatched_items: list = field(default_factory=list)
    unmatched_stores: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def warnings_frame(self):
        columns = ['row', 'type', 'input', 'matched', 'match_type', 'confidence', 'message']
        return pd.DataFrame([w.__dict__ for w in self.warnings], columns=columns)


@dataclass
class IngestResult:
    dataset: AllocationDataset
    stats: MatchingStats
    columns: ColumnMap
    status: IngestStatus = IngestStatus.OK
    rows: list = field(default_factory=list)
    messages: list = field(default_factory=list)

    @property
    def ok(self):
        return self.status is IngestStatus.OK


def parse_rows(rows, columns: ColumnMap):
    """Parse raw rows into AllocationRows.

    Returns:
        tuple: (retained AllocationRows, number of rows dropped for quantity <= 0)
    """
    parsed = []
    skipped = 0
    for position, raw in enumerate(rows, start=1):
        quantity = clean_quantity(raw.get(columns.quantity)) if columns.quantity is not None else 0
        if quantity <= 0:
            skipped += 1
            continue
        store_token = normalize_token(raw.get(columns.store)) if columns.store is not None else ''
        item_token = normalize_token(raw.get(columns.item)) if columns.item is not None else ''
        parsed.append(AllocationRow(
            row=position,
            store_token=store_token or UNKNOWN_STORE,
            item_token=item_token or UNKNOWN_ITEM,
            quantity=quantity,
            raw=dict(raw),
        ))
    return parsed, skipped


def _item_info(item_match, token):
    if item_match is None:
        return ItemInfo(code=token, original_input=token)
    item = item_match.entity
    return ItemInfo(
        code=item.number,
        description=item.description,
        skus=tuple(item.skus),
        matched=True,
        confidence=item_match.confidence.value,
        original_input=token,
    )


def _store_info(store_match, token):
    if store_match is None:
        return StoreInfo(name=token, original_input=token)
    store = store_match.entity
    return StoreInfo(
        name=store.name,
        id=store.id,
        rank=store.rank.value if store.rank else None,
        matched=True,
        confidence=store_match.confidence.value,
        original_input=token,
    )


def aggregate_rows(rows, index: MatcherIndex):
    """Match parsed AllocationRows and build the dataset and statistics."""
    stats = MatchingStats()
    lines = []
    for row in rows:
        item_match = match_item(index, row.item_token)
        store_match = match_store(index, row.store_token)
        item = item_match.entity.number if item_match else row.item_token
        store = store_match.entity.name if store_match else row.store_token

        if item_match:
            stats.items_matched += 1
            if not item_match.is_exact:
                stats.warnings.append(MatchWarning(
                    row=row.row, type='item-fuzzy', input=row.item_token, matched=item,
                    match_type=item_match.match_type, confidence=item_match.confidence.value,
                ))
        else:
            stats.items_unmatched += 1
            if row.item_token not in stats.unmatched_items:
                stats.unmatched_items.append(row.item_token)
            stats.warnings.append(MatchWarning(
                row=row.row, type='item-unmatched', input=row.item_token,
                message='Item not found in dictionary',
            ))

        if store_match:
            stats.stores_matched += 1
            if not store_match.is_exact:
                stats.warnings.append(MatchWarning(
                    row=row.row, type='store-fuzzy', input=row.store_token, matched=store,
                    match_type=store_match.match_type, confidence=store_match.confidence.value,
                ))
        else:
            stats.stores_unmatched += 1
            if row.store_token not in stats.unmatched_stores:
                stats.unmatched_stores.append(row.store_token)
            stats.warnings.append(MatchWarning(
                row=row.row, type='store-unmatched', input=row.store_token,
                message='Store not found in dictionary',
            ))

        lines.append(AllocationLine(
            store=store,
            item=item,
            quantity=row.quantity,
            store_info=_store_info(store_match, row.store_token),
            item_info=_item_info(item_match, row.item_token),
            raw=dict(row.raw),
        ))
    return AllocationDataset(lines), stats


def build_dataset(rows, index: MatcherIndex, columns: ColumnMap = None) -> IngestResult:
    """Detect columns (unless given), match every row and build the dataset.

    Args:
        rows (list): Raw rows, each a mapping of column name to value
        index (MatcherIndex): Dictionary lookup tables
        columns (ColumnMap, optional): Pre-detected columns

    Returns:
        IngestResult: Never raises for structural problems; see ``status``
    """
    rows = [row for row in (rows or []) if hasattr(row, 'get')]
    messages = []
    if not index.items and not index.stores:
        messages.append('Dictionary is empty; every token will be unmatched')
        logger.warning(messages[-1])

    if not rows:
        logger.warning("No data rows to process")
        return IngestResult(AllocationDataset(), MatchingStats(), columns or ColumnMap(None, None, None, 'none'),
                            IngestStatus.NO_ROWS, [], messages + ['No data found'])

    column_names = get_columns(rows)
    if columns is None:
        columns = detect_columns(rows, index, column_names)
    if not columns.is_complete:
        logger.warning("Could not detect required columns (Store, Item, Quantity)")
        return IngestResult(AllocationDataset(), MatchingStats(), columns, IngestStatus.NO_COLUMNS, [],
                            messages + ['Could not detect required columns (Store, Item, Quantity)'])

    clean = filter_header_rows(rows, column_names)
    parsed, skipped = parse_rows(clean, columns)
    dataset, stats = aggregate_rows(parsed, index)
    stats.rows_skipped = skipped
    stats.header_rows_filtered = len(rows) - len(clean)

    logger.info(f"Processing {len(clean)} data rows (filtered {stats.header_rows_filtered} header rows)")
    logger.info(f"  Items: {stats.items_matched} matched, {stats.items_unmatched} unmatched")
    logger.info(f"  Stores: {stats.stores_matched} matched, {stats.stores_unmatched} unmatched")
    logger.info(f"  Skipped rows: {skipped} (zero or no quantity)")
    logger.info(f"  Total warnings: {len(stats.warnings)}")
    if stats.unmatched_items:
        logger.warning(f"Unmatched items: {stats.unmatched_items}")
    if stats.unmatched_stores:
        logger.warning(f"Unmatched stores: {stats.unmatched_stores}")

    return IngestResult(dataset, stats, columns, IngestStatus.OK, parsed, messages)


def with_quantity(line, quantity, redistributed=None):
    """Copy of a line with a new quantity (lines are immutable)."""
    changes = {'quantity': quantity}
    if redistributed is not None:
        changes['redistributed'] = redistributed
    return replace(line, **changes)
