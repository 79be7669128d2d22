"""
Reference Dictionary

Known items and stores that raw allocation tokens are resolved against.

Entries are immutable values. The dictionary itself is changed only through
the add/edit/delete operations below; callers must rebuild the matcher index
(see ``matcher.reindex``) after every change.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class StoreRank(str, Enum):
    """Store rank, best first."""
    AA = "AA"
    A = "A"
    B = "B"
    C = "C"

    @classmethod
    def parse(cls, value) -> Optional["StoreRank"]:
        if value is None or isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        if not text:
            return None
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Invalid store rank: {value!r}. Expected one of: {[r.value for r in cls]}")


@dataclass(frozen=True)
class DictionaryItem:
    """
    A known item.

    Attributes:
        number: Canonical item number (unique)
        description: Human readable description
        skus: Alternate codes (barcodes etc.), in source order
    """
    number: str
    description: str = ""
    skus: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {'number': self.number, 'desc': self.description, 'sku': list(self.skus)}

    @classmethod
    def from_dict(cls, data: dict) -> "DictionaryItem":
        number = str(data.get('number', '')).strip()
        if not number:
            raise ValueError(f"Dictionary item has no number: {data!r}")
        description = data.get('desc', data.get('description', '')) or ''
        skus = data.get('sku', data.get('skus')) or []
        if isinstance(skus, str):
            skus = [skus]
        return cls(number, str(description), tuple(str(s).strip() for s in skus if str(s).strip()))


@dataclass(frozen=True)
class DictionaryStore:
    """
    A known store.

    Attributes:
        id: Numeric store id (unique)
        name: Store name (unique, case-insensitive)
        rank: Optional rank used for weighted redistribution
    """
    id: int
    name: str
    rank: Optional[StoreRank] = None

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'rank': self.rank.value if self.rank else None}

    @classmethod
    def from_dict(cls, data: dict) -> "DictionaryStore":
        try:
            store_id = int(data['id'])
        except (KeyError, TypeError, ValueError):
            raise ValueError(f"Dictionary store has no integer id: {data!r}")
        name = str(data.get('name', '')).strip()
        if not name:
            raise ValueError(f"Dictionary store {store_id} has no name")
        return cls(store_id, name, StoreRank.parse(data.get('rank')))


class Dictionary:
    """Ordered collections of known items and stores.

    Order matters: it is the "first indexed" order the matcher uses to break
    ties.
    """

    def __init__(self, items=(), stores=()):
        self._items = []
        self._stores = []
        for item in items:
            self.add_item(item)
        for store in stores:
            self.add_store(store)

    @classmethod
    def from_dict(cls, data):
        """Build a dictionary from ``{'items': [...], 'stores': [...]}``."""
        data = data or {}
        items = [DictionaryItem.from_dict(entry) for entry in data.get('items', [])]
        stores = [DictionaryStore.from_dict(entry) for entry in data.get('stores', [])]
        dictionary = cls(items, stores)
        logger.info(f"Dictionary loaded: {len(dictionary.items)} items, {len(dictionary.stores)} stores")
        return dictionary

    def to_dict(self):
        return {
            'items': [item.to_dict() for item in self._items],
            'stores': [store.to_dict() for store in self._stores],
        }

    @property
    def items(self):
        return tuple(self._items)

    @property
    def stores(self):
        return tuple(self._stores)

    def is_empty(self):
        return not self._items and not self._stores

    # Items

    def _item_position(self, number):
        key = str(number).strip().upper()
        for position, item in enumerate(self._items):
            if item.number.upper() == key:
                return position
        raise KeyError(f"Unknown item: {number}")

    def get_item(self, number):
        return self._items[self._item_position(number)]

    def add_item(self, item):
        if isinstance(item, dict):
            item = DictionaryItem.from_dict(item)
        if any(existing.number.upper() == item.number.upper() for existing in self._items):
            raise ValueError(f"Duplicate item number: {item.number}")
        self._items.append(item)
        return item

    def edit_item(self, number, **changes):
        """Replace fields of an item; the item keeps its position."""
        position = self._item_position(number)
        if 'skus' in changes:
            changes['skus'] = tuple(changes['skus'] or ())
        updated = replace(self._items[position], **changes)
        for other, existing in enumerate(self._items):
            if other != position and existing.number.upper() == updated.number.upper():
                raise ValueError(f"Duplicate item number: {updated.number}")
        self._items[position] = updated
        return updated

    def delete_item(self, number):
        return self._items.pop(self._item_position(number))

    # Stores

    def _store_position(self, store_id):
        for position, store in enumerate(self._stores):
            if store.id == int(store_id):
                return position
        raise KeyError(f"Unknown store: {store_id}")

    def get_store(self, store_id):
        return self._stores[self._store_position(store_id)]

    def _check_store_unique(self, store, skip=None):
        for position, existing in enumerate(self._stores):
            if position == skip:
                continue
            if existing.id == store.id:
                raise ValueError(f"Duplicate store id: {store.id}")
            if existing.name.upper() == store.name.upper():
                raise ValueError(f"Duplicate store name: {store.name}")

    def add_store(self, store):
        if isinstance(store, dict):
            store = DictionaryStore.from_dict(store)
        self._check_store_unique(store)
        self._stores.append(store)
        return store

    def edit_store(self, store_id, **changes):
        position = self._store_position(store_id)
        if 'rank' in changes:
            changes['rank'] = StoreRank.parse(changes['rank'])
        updated = replace(self._stores[position], **changes)
        self._check_store_unique(updated, skip=position)
        self._stores[position] = updated
        return updated

    def delete_store(self, store_id):
        return self._stores.pop(self._store_position(store_id))
