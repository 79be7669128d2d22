import pytest

from allocation_buddy.aggregate import AllocationDataset, AllocationLine, ItemInfo, StoreInfo
from allocation_buddy.history import EngineState, HistoryManager
from allocation_buddy.session import AllocationSession


def make_state(quantity, excluded=()):
    line = AllocationLine('S1', 'ITEM-1', quantity, StoreInfo('S1', 1), ItemInfo('ITEM-1'))
    return EngineState(AllocationDataset([line]), frozenset(excluded))


@pytest.mark.dependency()
class TestHistoryManager:
    """Test suite for snapshot undo/redo.

    Verifies undo/redo round trips, the redo branch and capacity limits.
    """

    @pytest.mark.dependency()
    def test_undo_redo_round_trip(self):
        history = HistoryManager(10)
        first, second = make_state(1), make_state(2)
        history.push_state('Initial data load', first)
        history.push_state('Changed quantity', second)

        assert history.can_undo()
        assert history.undo_description() == 'Changed quantity'
        snapshot = history.undo(second)
        assert snapshot.description == 'Changed quantity'
        assert snapshot.state == first

        assert history.can_redo()
        assert history.redo_description() == 'Changed quantity'
        snapshot = history.redo()
        assert snapshot.description == 'Changed quantity'
        assert snapshot.state == second
        assert not history.can_redo()

    def test_initial_state_cannot_be_undone(self):
        history = HistoryManager(10)
        assert history.undo(make_state(1)) is None
        history.push_state('Initial data load', make_state(1))
        assert not history.can_undo()
        assert history.undo(make_state(1)) is None
        assert history.undo_description() is None
        assert history.redo() is None

    @pytest.mark.dependency(depends=["TestHistoryManager::test_undo_redo_round_trip"])
    def test_push_clears_redo(self):
        history = HistoryManager(10)
        history.push_state('Initial data load', make_state(1))
        history.push_state('Excluded 1 store', make_state(1, {'S1'}))
        history.undo(make_state(1, {'S1'}))
        history.push_state('Changed quantity', make_state(3))
        assert not history.can_redo()

    def test_capacity(self):
        """Only the newest snapshots are kept; capacity counts undoable actions."""
        history = HistoryManager(3)
        for quantity in range(1, 6):
            history.push_state(f'State {quantity}', make_state(quantity))
        assert len(history.undo_stack) == 4

        current = make_state(5)
        restored = []
        while history.can_undo():
            snapshot = history.undo(current)
            current = snapshot.state
            restored.append(current.dataset.total_quantity())
        assert restored == [4, 3, 2]

    def test_default_capacity_undoes_fifty_actions(self):
        history = HistoryManager()
        history.push_state('Initial data load', make_state(0))
        for quantity in range(1, 51):
            history.push_state(f'State {quantity}', make_state(quantity))

        current = make_state(50)
        undone = 0
        while history.can_undo():
            current = history.undo(current).state
            undone += 1
        assert undone == 50
        assert current.dataset.total_quantity() == 0

    def test_snapshots_are_copies(self):
        history = HistoryManager(10)
        state = make_state(1)
        history.push_state('Initial data load', state)
        history.push_state('Next', make_state(2))
        snapshot = history.undo(make_state(2))
        assert snapshot.state == state
        assert snapshot.state.dataset is not state.dataset
        assert history.undo_stack[-1].state.dataset is not snapshot.state.dataset

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            HistoryManager(0)
        assert HistoryManager(1).undo_stack.maxlen == 2

    def test_clear(self):
        history = HistoryManager(10)
        history.push_state('Initial data load', make_state(1))
        history.push_state('Next', make_state(2))
        history.clear()
        assert not history.can_undo()
        assert not history.undo_stack


class TestSessionHistory:
    """Test suite for undo/redo through the session."""

    def test_every_action_is_undoable(self, two_store_session):
        session = two_store_session
        loaded = session.state.copy()

        session.toggle_exclusion('WATERLOO 1')
        excluded = session.state.copy()
        session.apply_redistribution(session.plan_equal_redistribution())
        redistributed = session.state.copy()

        assert session.undo() == 'Redistributed 1 item (equal)'
        assert session.state == excluded
        assert session.undo() == 'Excluded 1 store'
        assert session.state == loaded
        assert session.undo() is None

        assert session.redo() == 'Excluded 1 store'
        assert session.redo() == 'Redistributed 1 item (equal)'
        assert session.state == redistributed
        assert session.redo() is None

    def test_views_follow_undo(self, two_store_session):
        session = two_store_session
        session.toggle_exclusion('WATERLOO 1')
        assert session.excluded_view.total_quantity() == 5
        session.undo()
        assert session.excluded_view.is_empty()
        assert session.included_view == session.dataset

    def test_history_size_from_environment(self, monkeypatch, dictionary_data):
        monkeypatch.setenv('ALLOCATION_HISTORY_SIZE', '4')
        assert AllocationSession(dictionary_data).history.capacity == 4

    def test_load_restarts_history(self, loaded_session, allocation_rows):
        loaded_session.toggle_exclusion('WATERLOO 1')
        loaded_session.load_rows(allocation_rows)
        assert not loaded_session.history.can_undo()
        assert loaded_session.excluded == frozenset()
