"""
Allocation Buddy - A tool for reconciling store allocation exports.

This package provides functionality to:
- Detect the store, item and quantity columns of messy spreadsheet exports
- Match store and item tokens against a reference dictionary
- Build by-store and by-item views of the allocation
- Exclude stores and redistribute their quantities (equal or rank-weighted)
- Undo and redo every change
- Archive, compare and export allocations

Match confidence tiers:
- exact: item number, SKU, store id or store name
- partial: item number prefix, store name contains the token
- fuzzy: keyword overlap (store names; item descriptions when enabled)
"""

from .dictionary import Dictionary, DictionaryItem, DictionaryStore, StoreRank
from .matcher import Confidence, MatchResult, MatcherIndex, reindex, match_item, match_store
from .detect import ColumnMap, detect_columns, filter_header_rows
from .aggregate import (
    AllocationDataset,
    AllocationLine,
    AllocationRow,
    IngestResult,
    IngestStatus,
    MatchingStats,
    build_dataset,
)
from .redistribute import (
    RedistributionError,
    RedistributionPlan,
    partition,
    plan_equal_redistribution,
    plan_rank_redistribution,
    apply_redistribution,
)
from .history import EngineState, HistoryManager, HistorySnapshot
from .session import AllocationSession

__all__ = [
    'Dictionary',
    'DictionaryItem',
    'DictionaryStore',
    'StoreRank',
    'Confidence',
    'MatchResult',
    'MatcherIndex',
    'reindex',
    'match_item',
    'match_store',
    'ColumnMap',
    'detect_columns',
    'filter_header_rows',
    'AllocationDataset',
    'AllocationLine',
    'AllocationRow',
    'IngestResult',
    'IngestStatus',
    'MatchingStats',
    'build_dataset',
    'RedistributionError',
    'RedistributionPlan',
    'partition',
    'plan_equal_redistribution',
    'plan_rank_redistribution',
    'apply_redistribution',
    'EngineState',
    'HistoryManager',
    'HistorySnapshot',
    'AllocationSession',
]
