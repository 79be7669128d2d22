"""
Allocation Session

The single owner of live allocation state. Every user action (load, exclusion
toggle, redistribution, undo/redo, dictionary edit) runs to completion here and
leaves dataset, views and history consistent before returning.
"""

import logging

from .aggregate import AllocationDataset, IngestResult, build_dataset
from .archive import build_archive_payload, read_archive_payload
from .dictionary import Dictionary
from .history import EngineState, HistoryManager
from .matcher import reindex
from .redistribute import (
    EQUAL,
    RANK,
    apply_redistribution,
    partition,
    plan_equal_redistribution,
    plan_rank_redistribution,
)
from .utils import fuzzy_descriptions_enabled, get_history_size

logger = logging.getLogger(__name__)


def _plural(count, word):
    return f"{count} {word}{'s' if count != 1 else ''}"


class AllocationSession:
    """Allocation state plus the operations that change it."""

    def __init__(self, dictionary=None, history_size=None, fuzzy_descriptions=None):
        if isinstance(dictionary, dict):
            dictionary = Dictionary.from_dict(dictionary)
        self.dictionary = dictionary if dictionary is not None else Dictionary()
        self.fuzzy_descriptions = fuzzy_descriptions_enabled() if fuzzy_descriptions is None else fuzzy_descriptions
        self.index = reindex(self.dictionary, self.fuzzy_descriptions)
        self.history = HistoryManager(history_size or get_history_size())
        self.source = None
        self.last_result = None
        self._state = EngineState()
        self._refresh_views()

    # State

    @property
    def dataset(self) -> AllocationDataset:
        return self._state.dataset

    @property
    def excluded(self):
        return self._state.excluded

    @property
    def redistributed(self):
        return self._state.redistributed

    @property
    def state(self):
        return self._state

    def _set_state(self, state):
        self._state = state
        self._refresh_views()

    def _refresh_views(self):
        self.included_view, self.excluded_view = partition(self._state.dataset, self._state.excluded)

    def active_view(self):
        """Included stores while anything is excluded, otherwise the full dataset."""
        return self.included_view if self._state.excluded else self._state.dataset

    def summary(self):
        view = self.active_view()
        return {
            'stores': len(view.by_store),
            'items': len(view.by_item),
            'quantity': view.total_quantity(),
            'excluded_stores': len(self._state.excluded),
            'redistributed_items': len(self._state.redistributed),
        }

    # Loading

    def load_rows(self, rows, source=None, columns=None) -> IngestResult:
        """Replace the dataset with freshly ingested rows and restart history."""
        result = build_dataset(rows, self.index, columns)
        self.source = source
        self.last_result = result
        self._set_state(EngineState(result.dataset))
        self.history.clear()
        self.history.push_state('Initial data load', self._state)
        logger.info(f"Loaded {len(result.dataset)} allocation lines from {source or 'rows'} ({result.status.value})")
        return result

    def clear(self):
        self.source = None
        self.last_result = None
        self._set_state(EngineState())
        self.history.clear()
        logger.info("Session cleared")

    # Exclusions

    def _exclusion_description(self):
        count = len(self._state.excluded)
        return f"Excluded {_plural(count, 'store')}" if count else 'Included all stores'

    def toggle_exclusion(self, store):
        """Exclude an included store or re-include an excluded one.

        Returns:
            bool: True if the store is now excluded

        Raises:
            KeyError: If the store is not in the dataset
        """
        if store not in self._state.dataset.by_store:
            raise KeyError(f"Unknown store: {store}")
        excluded = set(self._state.excluded)
        if store in excluded:
            excluded.remove(store)
        else:
            excluded.add(store)
        self._set_state(EngineState(self._state.dataset, frozenset(excluded), self._state.redistributed))
        self.history.push_state(self._exclusion_description(), self._state)
        return store in excluded

    def set_exclusions(self, stores):
        """Replace the whole exclusion set at once."""
        stores = set(stores)
        unknown = stores - set(self._state.dataset.by_store)
        if unknown:
            raise KeyError(f"Unknown stores: {sorted(unknown)}")
        self._set_state(EngineState(self._state.dataset, frozenset(stores), self._state.redistributed))
        self.history.push_state(self._exclusion_description(), self._state)

    # Redistribution

    def plan_equal_redistribution(self):
        return plan_equal_redistribution(self.included_view, self.excluded_view)

    def plan_rank_redistribution(self):
        return plan_rank_redistribution(self.included_view, self.excluded_view)

    def plan_redistribution(self, method=EQUAL):
        if method == EQUAL:
            return self.plan_equal_redistribution()
        if method == RANK:
            return self.plan_rank_redistribution()
        raise ValueError(f"Unknown redistribution method: {method!r}")

    def apply_redistribution(self, plan):
        """Merge a plan into the dataset, drop excluded stores and clear exclusions."""
        dataset, items = apply_redistribution(self._state.dataset, self._state.excluded, plan)
        self._set_state(EngineState(dataset, frozenset(), frozenset(self._state.redistributed | items)))
        method = 'equal' if plan.method == EQUAL else 'rank-based'
        description = f"Redistributed {_plural(len(plan.items), 'item')} ({method})"
        self.history.push_state(description, self._state)
        return description

    # History

    def undo(self):
        """Returns the undone action's description, or None if nothing to undo."""
        snapshot = self.history.undo(self._state)
        if snapshot is None:
            return None
        self._set_state(snapshot.state)
        return snapshot.description

    def redo(self):
        """Returns the redone action's description, or None if nothing to redo."""
        snapshot = self.history.redo()
        if snapshot is None:
            return None
        self._set_state(snapshot.state)
        return snapshot.description

    # Dictionary

    def _reindex(self):
        self.index = reindex(self.dictionary, self.fuzzy_descriptions)

    def add_item(self, item):
        added = self.dictionary.add_item(item)
        self._reindex()
        return added

    def edit_item(self, number, **changes):
        edited = self.dictionary.edit_item(number, **changes)
        self._reindex()
        return edited

    def delete_item(self, number):
        deleted = self.dictionary.delete_item(number)
        self._reindex()
        return deleted

    def add_store(self, store):
        added = self.dictionary.add_store(store)
        self._reindex()
        return added

    def edit_store(self, store_id, **changes):
        edited = self.dictionary.edit_store(store_id, **changes)
        self._reindex()
        return edited

    def delete_store(self, store_id):
        deleted = self.dictionary.delete_store(store_id)
        self._reindex()
        return deleted

    # Archives

    def archive_payload(self, filename=None, now=None):
        return build_archive_payload(self._state.dataset, self._state.excluded, self._state.redistributed,
                                     filename or self.source, now)

    def restore_archive(self, payload):
        """Replace live state with an archive and restart history from it."""
        dataset, excluded, redistributed = read_archive_payload(payload)
        excluded &= set(dataset.by_store)
        self.source = payload.get('filename') or None
        self._set_state(EngineState(dataset, frozenset(excluded), frozenset(redistributed)))
        self.history.clear()
        self.history.push_state(f"Loaded archive {payload.get('archive_name', '')}".strip(), self._state)
