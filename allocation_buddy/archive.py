"""
Allocation Archives

Saved copies of a session (dataset, exclusions, redistributed items) behind a
small save/list/load/delete contract.

Archive payload:
- timestamp: ISO 8601 save time
- filename: Source file the allocation was loaded from
- archive_name: YYYY-MM-DD_HHMMSS_<basename>.json
- data: dataset, excluded_stores, redistributed_items
- metadata: total_stores, total_items, total_quantity
"""

import copy
import json
import logging
import pathlib
from datetime import datetime, timedelta

from .aggregate import AllocationDataset
from .utils import ensure_directory, get_retention_days

logger = logging.getLogger(__name__)


def generate_archive_name(filename=None, now=None):
    """Archive name for a source file, e.g. 2025-03-17_093015_allocations.json."""
    now = now or datetime.now()
    base = pathlib.Path(filename).stem if filename else 'allocation'
    return f"{now.strftime('%Y-%m-%d_%H%M%S')}_{base}.json"


def build_archive_payload(dataset: AllocationDataset, excluded=(), redistributed=(), filename=None, now=None):
    now = now or datetime.now()
    return {
        'timestamp': now.isoformat(),
        'filename': filename or '',
        'archive_name': generate_archive_name(filename, now),
        'data': {
            'dataset': dataset.to_dict(),
            'excluded_stores': sorted(excluded),
            'redistributed_items': sorted(redistributed),
        },
        'metadata': {
            'total_stores': len(dataset.by_store),
            'total_items': len(dataset.by_item),
            'total_quantity': dataset.total_quantity(),
        },
    }


def read_archive_payload(payload):
    """Unpack a payload into (dataset, excluded set, redistributed set).

    Raises:
        ValueError: If the payload has no data section
    """
    if not payload or 'data' not in payload:
        raise ValueError("Archive payload has no data")
    data = payload['data']
    dataset = AllocationDataset.from_dict(data.get('dataset'))
    return dataset, set(data.get('excluded_stores') or []), set(data.get('redistributed_items') or [])


def _metadata(payload):
    return {
        'archive_name': payload.get('archive_name'),
        'filename': payload.get('filename', ''),
        'timestamp': payload.get('timestamp'),
        **payload.get('metadata', {}),
    }


class ArchiveStore:
    """Save/list/load/delete contract for archive payloads."""

    def save(self, name, payload):
        raise NotImplementedError

    def list(self):
        raise NotImplementedError

    def load(self, name):
        raise NotImplementedError

    def delete(self, name):
        raise NotImplementedError

    def search(self, term):
        """Archives whose name, source file or timestamp contains ``term``."""
        archives = self.list()
        if not term:
            return archives
        term = term.lower()
        return [a for a in archives
                if term in (a.get('filename') or '').lower()
                or term in (a.get('archive_name') or '').lower()
                or term in (a.get('timestamp') or '')]


class InMemoryArchiveStore(ArchiveStore):
    """Archives kept in a dict; payloads are copied in and out."""

    def __init__(self):
        self._archives = {}

    def save(self, name, payload):
        self._archives[name] = copy.deepcopy(payload)
        return True

    def list(self):
        archives = [_metadata(payload) for payload in self._archives.values()]
        return sorted(archives, key=lambda a: a.get('timestamp') or '', reverse=True)

    def load(self, name):
        payload = self._archives.get(name)
        return copy.deepcopy(payload) if payload is not None else None

    def delete(self, name):
        return self._archives.pop(name, None) is not None


class JsonArchiveStore(ArchiveStore):
    """One JSON file per archive in a directory (default: $DATA_DIR/archive)."""

    def __init__(self, directory=None):
        self.directory = pathlib.Path(directory) if directory else ensure_directory('archive')
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, name):
        path = self.directory / pathlib.Path(name).name
        if path.suffix.lower() != '.json':
            path = path.with_name(path.name + '.json')
        return path

    def save(self, name, payload):
        path = self._path(name)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, default=str)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save archive {name}: {str(e)}")
            return False
        logger.info(f"Archive saved: {path}")
        return True

    def list(self):
        archives = []
        for path in sorted(self.directory.glob('*.json')):
            payload = self.load(path.name)
            if payload is not None:
                archives.append(_metadata(payload))
        return sorted(archives, key=lambda a: a.get('timestamp') or '', reverse=True)

    def load(self, name):
        path = self._path(name)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load archive {name}: {str(e)}")
            return None

    def delete(self, name):
        path = self._path(name)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Archive deleted: {path}")
        return True


def cleanup_old_archives(store: ArchiveStore, retention_days=None, now=None):
    """Delete archives older than the retention window.

    Returns:
        int: Number of archives deleted
    """
    if retention_days is None:
        retention_days = get_retention_days()
    cutoff = (now or datetime.now()) - timedelta(days=retention_days)
    deleted = 0
    for archive in store.list():
        try:
            saved = datetime.fromisoformat(archive.get('timestamp') or '')
        except ValueError:
            logger.warning(f"Archive {archive.get('archive_name')} has no valid timestamp, keeping it")
            continue
        if saved < cutoff and store.delete(archive['archive_name']):
            deleted += 1
    logger.info(f"Cleaned up {deleted} old archives")
    return deleted


def compare_datasets(current: AllocationDataset, archived: AllocationDataset):
    """Differences between the current allocation and an archived one.

    Returns:
        dict: Totals for both sides plus new_stores, removed_stores and
        changed_stores (store, current_qty, archived_qty, diff)
    """
    def totals(dataset):
        return {
            'total_stores': len(dataset.by_store),
            'total_items': len(dataset.by_item),
            'total_quantity': dataset.total_quantity(),
        }

    changed = []
    for store in current.by_store:
        if store in archived.by_store:
            current_qty = current.store_total(store)
            archived_qty = archived.store_total(store)
            if current_qty != archived_qty:
                changed.append({
                    'store': store,
                    'current_qty': current_qty,
                    'archived_qty': archived_qty,
                    'diff': current_qty - archived_qty,
                })

    return {
        'current': totals(current),
        'archived': totals(archived),
        'new_stores': [s for s in current.by_store if s not in archived.by_store],
        'removed_stores': [s for s in archived.by_store if s not in current.by_store],
        'changed_stores': changed,
    }
