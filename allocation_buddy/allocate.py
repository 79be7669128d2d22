"""
Allocation File Processing

Reads allocation exports, runs them through an AllocationSession and writes
the results back out.

Supported input:
- CSV (utf-8, utf-8-sig or cp1252)
- Excel (.xlsx, first sheet)

Every cell is read as a string; empty cells become ''. Column meaning is
never taken from the file's headers directly, the detector works it out.

Output:
- All allocations (CSV with every field quoted, or XLSX)
- Excluded allocations
- A text summary report
- Clipboard text per store (Item<TAB>Quantity lines)
- A JSON archive of the finished session (old archives are pruned first)
"""

import os
import csv
import json
import pathlib
import logging
import argparse

import pandas as pd

from .archive import JsonArchiveStore, cleanup_old_archives
from .redistribute import EQUAL, RANK
from .session import AllocationSession
from .utils import setup_logging

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ['.csv', '.xlsx']
MAX_FILE_SIZE = 50 * 1024 * 1024


def read_allocation_file(file_path):
    """Read an allocation export into a DataFrame of strings.

    Args:
        file_path (str or Path): Path to a CSV or XLSX file

    Returns:
        pd.DataFrame: Raw cells, all as str, blanks as ''

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the path is a directory, the format is unsupported,
            or the file cannot be read
    """
    file_path = str(file_path)
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    if os.path.isdir(file_path):
        raise ValueError("Path is a directory")

    _, ext = os.path.splitext(file_path)
    if ext.lower() not in SUPPORTED_EXTENSIONS:
        raise ValueError("Invalid file type. Please select a CSV or Excel file")

    size = os.path.getsize(file_path)
    if size == 0:
        raise ValueError("No data found in file: File is empty")
    if size > MAX_FILE_SIZE:
        raise ValueError("File size exceeds 50MB limit")

    logger.debug(f"Reading file: {file_path}")
    if ext.lower() == '.xlsx':
        try:
            df = pd.read_excel(file_path, dtype=str, engine='openpyxl')
        except Exception as e:
            raise ValueError(f"Failed to read file {file_path}: {str(e)}")
    else:
        df = None
        for encoding in ['utf-8', 'utf-8-sig', 'cp1252']:
            try:
                df = pd.read_csv(
                    file_path,
                    header=0,
                    dtype=str,
                    skipinitialspace=True,
                    keep_default_na=False,
                    encoding=encoding
                )
                logger.debug(f"Successfully read file with encoding: {encoding}")
                break
            except UnicodeDecodeError:
                continue
            except pd.errors.EmptyDataError:
                raise ValueError("No data found in file")
        if df is None:
            raise ValueError("Could not read CSV file with any supported encoding")

    df.columns = [str(col).strip() for col in df.columns]
    df = df.fillna('')
    logger.info(f"Read {len(df)} rows with columns {df.columns.tolist()}")
    return df


def read_allocation_rows(file_path):
    """Read an allocation export as a list of row dicts."""
    return read_allocation_file(file_path).to_dict(orient='records')


def load_dictionary(file_path):
    """Load a ``{"items": [...], "stores": [...]}`` JSON dictionary file."""
    file_path = pathlib.Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Dictionary not found: {file_path}")
    with open(file_path, 'r', encoding='utf-8') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid dictionary file {file_path}: {str(e)}")


def _resolve_output(output_path, default_name):
    output_path = pathlib.Path(output_path)
    if output_path.is_dir() or not output_path.suffix:
        output_path = output_path / default_name
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def _write_frame(df, output_path, sheet_name):
    if output_path.suffix.lower() == '.xlsx':
        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False)
    else:
        df.to_csv(output_path, index=False, quoting=csv.QUOTE_NONNUMERIC)


def save_allocation_results(dataset, output_path):
    """Save all allocation lines to CSV or XLSX.

    Args:
        dataset (AllocationDataset): Allocation to export
        output_path (str or Path): File path, or a directory for allocations.csv

    Returns:
        pathlib.Path: The file written
    """
    output_path = _resolve_output(output_path, 'allocations.csv')
    _write_frame(dataset.to_dataframe(), output_path, 'Allocations')
    logger.info(f"Saved {len(dataset)} allocation lines to {output_path}")
    return output_path


def export_excluded(excluded_view, output_path):
    """Save the excluded stores' lines (Store, Item, Description, Quantity).

    Raises:
        ValueError: If no stores are excluded
    """
    if excluded_view.is_empty():
        raise ValueError("No excluded stores to export")
    output_path = _resolve_output(output_path, 'excluded_stores.csv')
    df = excluded_view.to_dataframe()[['Store', 'Item', 'Description', 'Quantity']]
    _write_frame(df, output_path, 'Excluded')
    logger.info(f"Saved {len(df)} excluded lines to {output_path}")
    return output_path


def format_store_clipboard(dataset, store, include_descriptions=False, separator='\t'):
    """Lines of ``item<sep>quantity`` for one store, ready to paste into an ERP.

    Raises:
        KeyError: If the store has no items
    """
    lines = dataset.by_store.get(store)
    if not lines:
        raise KeyError(f"No items found for store: {store}")
    rows = []
    for line in lines:
        fields = [line.item_info.code, str(line.quantity)]
        if include_descriptions:
            fields.insert(1, line.item_info.description)
        rows.append(separator.join(fields))
    return '\n'.join(rows) + '\n'


def format_report_summary(session):
    """Format a summary of the session's allocation and matching results.

    Args:
        session (AllocationSession): Session to summarize

    Returns:
        str: Formatted summary text
    """
    summary = session.summary()
    lines = [
        f"Total Stores: {summary['stores']}",
        f"Total Items: {summary['items']}",
        f"Total Quantity: {summary['quantity']}",
        f"Excluded Stores: {summary['excluded_stores']}",
        f"Redistributed Items: {summary['redistributed_items']}",
    ]
    result = session.last_result
    if result is not None:
        stats = result.stats
        lines.extend([
            f"Items Matched: {stats.items_matched}",
            f"Items Unmatched: {stats.items_unmatched}",
            f"Stores Matched: {stats.stores_matched}",
            f"Stores Unmatched: {stats.stores_unmatched}",
            f"Rows Skipped: {stats.rows_skipped}",
            f"Warnings: {len(stats.warnings)}",
        ])
        if stats.unmatched_items:
            lines.append(f"\nUnmatched items: {', '.join(stats.unmatched_items)}")
        if stats.unmatched_stores:
            lines.append(f"\nUnmatched stores: {', '.join(stats.unmatched_stores)}")
    return "\n".join(lines)


def generate_allocation_report(session, output_path):
    """Write the summary report to a text file."""
    output_path = _resolve_output(output_path, 'allocation_report.txt')
    logger.debug(f"Writing allocation report to {output_path}")
    with open(output_path, 'w') as f:
        f.write(format_report_summary(session))
    return output_path


def main(argv=None):
    """Main execution function."""
    parser = argparse.ArgumentParser(description='Reconcile store allocation exports')
    parser.add_argument('--input', type=str, required=True,
                        help='Allocation export (CSV or XLSX)')
    parser.add_argument('--dictionary', type=str,
                        help='Item/store dictionary JSON file')
    parser.add_argument('--exclude', action='append', default=[],
                        help='Store to exclude (repeatable)')
    parser.add_argument('--method', choices=[EQUAL, RANK], default=EQUAL,
                        help='Redistribution method for excluded stores')
    parser.add_argument('--output', type=str, default='output',
                        help='Output directory')
    parser.add_argument('--archive-dir', type=str,
                        help='Archive directory (default: $DATA_DIR/archive)')
    parser.add_argument('--no-archive', action='store_true',
                        help='Do not archive the session or clean up old archives')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug)
    logger.info("Starting allocation process")

    try:
        archive_store = None
        if not args.no_archive:
            archive_store = JsonArchiveStore(args.archive_dir)
            cleanup_old_archives(archive_store)

        dictionary = load_dictionary(args.dictionary) if args.dictionary else None
        session = AllocationSession(dictionary)
        result = session.load_rows(read_allocation_rows(args.input), source=os.path.basename(args.input))
        if not result.ok:
            raise ValueError('; '.join(result.messages) or f"Ingest failed: {result.status.value}")

        output_dir = pathlib.Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)

        if args.exclude:
            session.set_exclusions(args.exclude)
            export_excluded(session.excluded_view, output_dir)
            plan = session.plan_redistribution(args.method)
            logger.info(session.apply_redistribution(plan))

        save_allocation_results(session.dataset, output_dir)
        generate_allocation_report(session, output_dir)
        if archive_store is not None:
            payload = session.archive_payload()
            if not archive_store.save(payload['archive_name'], payload):
                logger.warning(f"Could not archive {payload['archive_name']}")
        print(format_report_summary(session))

    except Exception as e:
        logger.error(f"Error during allocation: {str(e)}")
        raise


if __name__ == '__main__':
    main()
