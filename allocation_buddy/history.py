"""
History Manager

Snapshot-based undo/redo. Every user-visible action pushes a deep copy of the
resulting state; the top of the undo stack is always the live state, so undo
restores the snapshot below it.
"""

import copy
import logging
import time
from collections import deque
from dataclasses import dataclass, field

from .aggregate import AllocationDataset
from .utils import DEFAULT_HISTORY_SIZE

logger = logging.getLogger(__name__)


@dataclass
class EngineState:
    """Everything undo/redo restores."""
    dataset: AllocationDataset = field(default_factory=AllocationDataset)
    excluded: frozenset = frozenset()
    redistributed: frozenset = frozenset()

    def copy(self):
        return EngineState(copy.deepcopy(self.dataset), frozenset(self.excluded), frozenset(self.redistributed))


@dataclass
class HistorySnapshot:
    description: str
    state: EngineState
    timestamp: float = field(default_factory=time.time)


class HistoryManager:
    """Bounded undo/redo stacks; the oldest snapshots are evicted first.

    capacity is the number of actions that can be undone. The undo stack holds
    one extra snapshot for the live state.
    """

    def __init__(self, capacity=DEFAULT_HISTORY_SIZE):
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.undo_stack = deque(maxlen=capacity + 1)
        self.redo_stack = deque(maxlen=capacity)

    def push_state(self, description, state: EngineState):
        """Record the state reached by an action and forget any redo branch."""
        self.undo_stack.append(HistorySnapshot(description, state.copy()))
        self.redo_stack.clear()
        logger.debug(f"History push: {description!r} ({len(self.undo_stack)}/{self.capacity})")

    def can_undo(self):
        return len(self.undo_stack) > 1

    def can_redo(self):
        return bool(self.redo_stack)

    def undo_description(self):
        return self.undo_stack[-1].description if self.can_undo() else None

    def redo_description(self):
        return self.redo_stack[-1].description if self.can_redo() else None

    def undo(self, current: EngineState):
        """Step back one action.

        Args:
            current (EngineState): The live state, saved for redo

        Returns:
            HistorySnapshot or None: A copy of the snapshot to restore, or
            None when there is nothing to undo
        """
        if not self.can_undo():
            logger.debug("Nothing to undo")
            return None
        undone = self.undo_stack.pop()
        self.redo_stack.append(HistorySnapshot(undone.description, current.copy(), undone.timestamp))
        target = self.undo_stack[-1]
        logger.info(f"Undo: {undone.description}")
        return HistorySnapshot(undone.description, target.state.copy(), target.timestamp)

    def redo(self):
        """Re-apply the last undone action; None when there is nothing to redo."""
        if not self.can_redo():
            logger.debug("Nothing to redo")
            return None
        redone = self.redo_stack.pop()
        self.undo_stack.append(redone)
        logger.info(f"Redo: {redone.description}")
        return HistorySnapshot(redone.description, redone.state.copy(), redone.timestamp)

    def clear(self):
        self.undo_stack.clear()
        self.redo_stack.clear()
