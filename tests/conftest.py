import pytest

from allocation_buddy.dictionary import Dictionary
from allocation_buddy.matcher import reindex
from allocation_buddy.session import AllocationSession

# Reference dictionary shared by most suites
sample_dictionary_data = {
    'items': [
        {'number': 'GLD-1', 'desc': 'Glide Widget', 'sku': ['410021982504']},
        {'number': 'GLD-10', 'desc': 'Glide Widget Large', 'sku': []},
        {'number': 'BRN-200', 'desc': 'Brown Bear Plush', 'sku': ['0001112223']},
    ],
    'stores': [
        {'id': 101, 'name': 'WATERLOO 1', 'rank': 'A'},
        {'id': 102, 'name': 'WATERLOO 2', 'rank': 'B'},
        {'id': 103, 'name': 'KITCHENER MAIN', 'rank': 'C'},
        {'id': 104, 'name': 'TORONTO EAST', 'rank': 'AA'},
    ]
}

# Allocation export with a partial store, an unmatched item and a zero row
sample_allocation_rows = [
    {'Store': 'WATERLOO 1', 'Item': 'GLD-1', 'Qty': '5'},
    {'Store': 'WATERLOO 2', 'Item': 'GLD-1', 'Qty': '3'},
    {'Store': 'KITCHENER MAIN', 'Item': '410021982504', 'Qty': '2'},  # SKU of GLD-1
    {'Store': 'Toronto', 'Item': 'BRN-200', 'Qty': '4'},              # Partial store name
    {'Store': 'WATERLOO 1', 'Item': 'XYZ-999', 'Qty': '1'},           # Unknown item
    {'Store': 'WATERLOO 2', 'Item': 'BRN-200', 'Qty': '0'},           # Skipped
]


@pytest.fixture
def dictionary_data():
    """Raw dictionary in its JSON shape (fresh copy per test)."""
    return {
        'items': [dict(item) for item in sample_dictionary_data['items']],
        'stores': [dict(store) for store in sample_dictionary_data['stores']],
    }


@pytest.fixture
def dictionary(dictionary_data):
    return Dictionary.from_dict(dictionary_data)


@pytest.fixture
def index(dictionary):
    return reindex(dictionary)


@pytest.fixture
def allocation_rows():
    """Sample allocation export rows (fresh copy per test)."""
    return [dict(row) for row in sample_allocation_rows]


@pytest.fixture
def session(dictionary_data):
    """Session with the sample dictionary, no data loaded."""
    return AllocationSession(dictionary_data, history_size=50, fuzzy_descriptions=False)


@pytest.fixture
def loaded_session(session, allocation_rows):
    """Session with the sample allocation loaded."""
    session.load_rows(allocation_rows, source='allocations.csv')
    return session


@pytest.fixture
def two_store_session():
    """The minimal scenario: two Waterloo stores sharing one item."""
    dictionary = {
        'items': [{'number': 'GLD-1', 'desc': 'Glide Widget', 'sku': ['410021982504']}],
        'stores': [
            {'id': 101, 'name': 'WATERLOO 1', 'rank': 'A'},
            {'id': 102, 'name': 'WATERLOO 2', 'rank': 'B'},
        ]
    }
    session = AllocationSession(dictionary, history_size=50, fuzzy_descriptions=False)
    session.load_rows([
        {'Store': '101', 'Item': 'GLD-1', 'Qty': 5},
        {'Store': '102', 'Item': 'GLD-1', 'Qty': 3},
    ])
    return session
