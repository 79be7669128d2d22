"""
Utility functions for the allocation system.

This module contains helper functions that are used across the system but
are not directly related to matching, aggregation or redistribution.
"""

import os
import re
import math
import pathlib
import logging

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50
DEFAULT_RETENTION_DAYS = 90
DEFAULT_LOG_NAME = 'allocation.log'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DIRECTORY_TYPES = ('archive', 'logs', 'output')


def data_root():
    """Base directory for archives, logs and output ($DATA_DIR or the cwd)."""
    return pathlib.Path(os.getenv('DATA_DIR') or os.getcwd())


def ensure_directory(dir_type):
    """Create and return one of the working directories under data_root().

    Raises:
        ValueError: If dir_type is not one of DIRECTORY_TYPES
    """
    if dir_type not in DIRECTORY_TYPES:
        raise ValueError(f"Invalid directory type: {dir_type}. Expected one of: {list(DIRECTORY_TYPES)}")
    dir_path = data_root() / dir_type
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def setup_logging(debug=False, log_level=None):
    """Send log records to a file and the console.

    The file is LOG_FILE when set, otherwise logs/allocation.log under
    data_root(). The level is DEBUG with debug=True, else log_level, else
    ALLOCATION_LOG_LEVEL, else INFO. A second call replaces the handlers of
    the first.

    Returns:
        str: Path of the log file
    """
    level_name = 'debug' if debug else (log_level or os.getenv('ALLOCATION_LOG_LEVEL') or 'info')
    level = getattr(logging, level_name.upper(), logging.INFO)

    log_file = os.getenv('LOG_FILE') or str(ensure_directory('logs') / DEFAULT_LOG_NAME)
    pathlib.Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file, encoding='utf-8'), logging.StreamHandler()],
        force=True,
    )
    logger.debug(f"Logging to {log_file} at {logging.getLevelName(level)}")
    return log_file


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default
    if parsed <= 0:
        logger.warning(f"Ignoring non-positive {name}={parsed}, using {default}")
        return default
    return parsed


def get_history_size():
    """Undo history capacity from ALLOCATION_HISTORY_SIZE (default 50)."""
    return _env_int('ALLOCATION_HISTORY_SIZE', DEFAULT_HISTORY_SIZE)


def get_retention_days():
    """Archive retention window from ALLOCATION_ARCHIVE_RETENTION_DAYS (default 90)."""
    return _env_int('ALLOCATION_ARCHIVE_RETENTION_DAYS', DEFAULT_RETENTION_DAYS)


def fuzzy_descriptions_enabled():
    """Whether ALLOCATION_FUZZY_DESCRIPTIONS switches on description matching."""
    return os.getenv('ALLOCATION_FUZZY_DESCRIPTIONS', '').strip().lower() in ('1', 'true', 'yes', 'on')


def is_blank(value):
    """True for None, NaN and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_number(value):
    """Parse a spreadsheet cell as a number.

    Args:
        value: Raw cell value (str, int, float or None)

    Returns:
        float or None: The parsed value, or None if the cell is not numeric

    Notes:
        - Handles thousands separators (1,234)
        - Booleans are not numbers
        - NaN and infinities are rejected
    """
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        cleaned = re.sub(r'[,\s]', '', str(value))
        try:
            result = float(cleaned)
        except ValueError:
            return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def clean_quantity(value):
    """Clean and standardize a quantity cell.

    Args:
        value: Raw quantity value

    Returns:
        int or float: Whole quantities come back as int, fractional as float,
        and anything unparsable as 0 so the row is dropped downstream.
    """
    number = to_number(value)
    if number is None:
        return 0
    if number.is_integer():
        return int(number)
    return number


def to_store_id(value):
    """Return the integer store id a token spells, or None.

    "101" and "101.0" (Excel exports numbers as floats) both give 101.
    """
    number = to_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def normalize_token(value):
    """Stringify and trim a raw token; blanks become ''."""
    if is_blank(value):
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
