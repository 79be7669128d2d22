import logging
import os

import numpy as np
import pytest

from allocation_buddy.utils import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_RETENTION_DAYS,
    clean_quantity,
    ensure_directory,
    fuzzy_descriptions_enabled,
    get_history_size,
    get_retention_days,
    is_blank,
    normalize_token,
    setup_logging,
    to_number,
    to_store_id,
)


def create_test_quantity_data():
    """Create standardized test data for quantity cleaning.

    Returns:
        dict: Test data with various quantity formats
    """
    return {
        'integer': '5',
        'integer_float': '5.0',
        'fraction': '2.5',
        'with_commas': '1,234',
        'padded': '  12 ',
        'negative': '-3',
        'zero': '0',
        'text': 'five',
        'empty': '',
        'none': None,
        'nan': np.nan,
        'native_int': 7,
        'native_float': 7.0,
    }


@pytest.mark.dependency()
class TestNumberParsing:
    """Test suite for numeric cell parsing.

    Verifies spreadsheet cells are parsed the same way everywhere.
    """

    @pytest.mark.dependency()
    def test_to_number(self):
        """Test parsing of numeric cells.

        Verifies:
        - Strings, ints and floats parse
        - Thousands separators and whitespace are ignored
        - Blank and non-numeric cells give None
        """
        data = create_test_quantity_data()
        assert to_number(data['integer']) == 5.0
        assert to_number(data['with_commas']) == 1234.0
        assert to_number(data['padded']) == 12.0
        assert to_number(data['native_int']) == 7.0
        assert to_number(data['text']) is None
        assert to_number(data['empty']) is None
        assert to_number(data['none']) is None
        assert to_number(data['nan']) is None

    def test_to_number_rejects_bool_and_inf(self):
        """Booleans and infinities are not quantities."""
        assert to_number(True) is None
        assert to_number('inf') is None
        assert to_number(float('-inf')) is None

    @pytest.mark.dependency(depends=["TestNumberParsing::test_to_number"])
    def test_clean_quantity(self):
        """Test quantity cleaning.

        Verifies:
        - Whole numbers come back as int
        - Fractions are kept
        - Anything unparsable is 0
        """
        data = create_test_quantity_data()
        assert clean_quantity(data['integer']) == 5
        assert isinstance(clean_quantity(data['integer_float']), int)
        assert clean_quantity(data['fraction']) == 2.5
        assert clean_quantity(data['negative']) == -3
        assert clean_quantity(data['zero']) == 0
        assert clean_quantity(data['text']) == 0
        assert clean_quantity(data['none']) == 0
        assert clean_quantity(data['native_float']) == 7

    @pytest.mark.dependency(depends=["TestNumberParsing::test_to_number"])
    def test_to_store_id(self):
        """Integral numbers are store ids, whatever their spelling."""
        assert to_store_id('101') == 101
        assert to_store_id('101.0') == 101
        assert to_store_id(101.0) == 101
        assert to_store_id('101.5') is None
        assert to_store_id('WATERLOO 1') is None


class TestTokens:
    """Test suite for token normalization."""

    def test_is_blank(self):
        assert is_blank(None)
        assert is_blank('   ')
        assert is_blank(np.nan)
        assert not is_blank('0')
        assert not is_blank(0)

    def test_normalize_token(self):
        """Tokens are trimmed strings; Excel floats lose their .0."""
        assert normalize_token('  GLD-1 ') == 'GLD-1'
        assert normalize_token(101.0) == '101'
        assert normalize_token(101) == '101'
        assert normalize_token(None) == ''
        assert normalize_token(np.nan) == ''


class TestEnvironmentConfig:
    """Test suite for environment driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv('ALLOCATION_HISTORY_SIZE', raising=False)
        monkeypatch.delenv('ALLOCATION_ARCHIVE_RETENTION_DAYS', raising=False)
        monkeypatch.delenv('ALLOCATION_FUZZY_DESCRIPTIONS', raising=False)
        assert get_history_size() == DEFAULT_HISTORY_SIZE == 50
        assert get_retention_days() == DEFAULT_RETENTION_DAYS
        assert fuzzy_descriptions_enabled() is False

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv('ALLOCATION_HISTORY_SIZE', '10')
        monkeypatch.setenv('ALLOCATION_ARCHIVE_RETENTION_DAYS', '30')
        monkeypatch.setenv('ALLOCATION_FUZZY_DESCRIPTIONS', 'true')
        assert get_history_size() == 10
        assert get_retention_days() == 30
        assert fuzzy_descriptions_enabled() is True

    def test_invalid_values_fall_back(self, monkeypatch):
        monkeypatch.setenv('ALLOCATION_HISTORY_SIZE', 'lots')
        monkeypatch.setenv('ALLOCATION_ARCHIVE_RETENTION_DAYS', '-5')
        assert get_history_size() == DEFAULT_HISTORY_SIZE
        assert get_retention_days() == DEFAULT_RETENTION_DAYS


@pytest.fixture
def root_logger():
    """Root logger with its handlers set aside for the duration of a test."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    for handler in saved_handlers:
        root.removeHandler(handler)
    yield root
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


def test_setup_logging(tmp_path, monkeypatch, root_logger):
    """Test logging setup.

    Verifies:
    - Log file location comes from LOG_FILE
    - Missing log directories are created
    """
    log_file = tmp_path / "logs" / "allocation.log"
    monkeypatch.setenv('LOG_FILE', str(log_file))
    result = setup_logging(debug=True)
    assert result == str(log_file)
    assert os.path.isdir(tmp_path / "logs")
    assert root_logger.level == logging.DEBUG


def test_setup_logging_defaults(tmp_path, monkeypatch, root_logger):
    """Without LOG_FILE the log goes under DATA_DIR; the level comes from the environment."""
    monkeypatch.delenv('LOG_FILE', raising=False)
    monkeypatch.setenv('DATA_DIR', str(tmp_path))
    monkeypatch.setenv('ALLOCATION_LOG_LEVEL', 'warning')
    result = setup_logging()
    assert result == str(tmp_path / 'logs' / 'allocation.log')
    assert root_logger.level == logging.WARNING

    logging.getLogger('allocation_buddy').warning("Store column undetermined")
    for handler in root_logger.handlers:
        handler.flush()
    assert "WARNING - Store column undetermined" in (tmp_path / 'logs' / 'allocation.log').read_text()


def test_setup_logging_replaces_handlers(tmp_path, monkeypatch, root_logger):
    monkeypatch.setenv('LOG_FILE', str(tmp_path / "first.log"))
    setup_logging()
    monkeypatch.setenv('LOG_FILE', str(tmp_path / "second.log"))
    setup_logging(log_level='error')
    assert len(root_logger.handlers) == 2
    assert root_logger.level == logging.ERROR


def test_ensure_directory(tmp_path, monkeypatch):
    """Test directory creation under DATA_DIR.

    Verifies:
    - Valid directory types are created
    - Invalid types raise ValueError
    """
    monkeypatch.setenv('DATA_DIR', str(tmp_path))
    archive_dir = ensure_directory('archive')
    assert archive_dir == tmp_path / 'archive'
    assert archive_dir.is_dir()

    for dir_type in ['invalid', 'data']:
        with pytest.raises(ValueError):
            ensure_directory(dir_type)
