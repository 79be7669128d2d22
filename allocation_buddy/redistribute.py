"""
Exclusion and Redistribution Engine

Splits a dataset into included and excluded stores and moves the excluded
quantities back onto the included stores.

Methods:
- equal: every included store gets floor(T / N); the first T mod N stores in
  canonical store order get one extra unit
- rank:  every included store gets floor(T * weight / total_weight); the
  rounding remainder goes one unit at a time to the highest weights first,
  canonical store order breaking ties

Canonical store order is ascending numeric store id, then stores without an
id by name. Every plan assigns exactly the excluded total of each item.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .aggregate import AllocationDataset, AllocationLine, ItemInfo, StoreInfo, with_quantity

logger = logging.getLogger(__name__)

EQUAL = 'equal'
RANK = 'rank'

RANK_WEIGHTS = {'AA': 4, 'A': 3, 'B': 2, 'C': 1}
DEFAULT_RANK = 'C'


class RedistributionError(ValueError):
    """Redistribution was requested when it cannot be computed."""


@dataclass
class ItemPlan:
    """
    How one item's excluded quantity is spread.

    Attributes:
        total_quantity: Quantity removed from excluded stores
        allocations_by_store: Store key -> quantity to add (zero shares omitted)
        per_store_share: Equal method only, floor(T / N)
        remainder: Units left after the floor shares
    """
    total_quantity: float
    allocations_by_store: dict = field(default_factory=dict)
    per_store_share: Optional[int] = None
    remainder: int = 0

    @property
    def allocated(self):
        return sum(self.allocations_by_store.values())


@dataclass
class RedistributionPlan:
    method: str
    items: dict = field(default_factory=dict)
    store_order: list = field(default_factory=list)

    @property
    def total_quantity(self):
        return sum(plan.total_quantity for plan in self.items.values())

    def store_totals(self):
        """Quantity each store receives across all items."""
        totals = {}
        for plan in self.items.values():
            for store, quantity in plan.allocations_by_store.items():
                totals[store] = totals.get(store, 0) + quantity
        return totals


def partition(dataset: AllocationDataset, excluded):
    """Split a dataset by store into (included_view, excluded_view).

    Both views are rebuilt from the dataset's lines.
    """
    excluded = set(excluded)
    included_view = AllocationDataset(line for line in dataset.lines if line.store not in excluded)
    excluded_view = AllocationDataset(line for line in dataset.lines if line.store in excluded)
    return included_view, excluded_view


def _check_preconditions(included_view, excluded_view):
    if excluded_view.is_empty():
        raise RedistributionError("No excluded stores to redistribute")
    if included_view.is_empty():
        raise RedistributionError("No included stores available for redistribution")


def _split_total(total):
    """Whole units and the fractional residue of an excluded total."""
    units = int(np.floor(total))
    return units, total - units


def _build_allocations(order, shares, remainder_order, remainder, residue):
    allocations = dict(zip(order, (int(share) for share in shares)))
    for store in remainder_order[:remainder]:
        allocations[store] += 1
    if residue:
        allocations[remainder_order[0]] += residue
    return {store: quantity for store, quantity in allocations.items() if quantity}


def plan_equal_redistribution(included_view: AllocationDataset, excluded_view: AllocationDataset):
    """Plan an equal split of every excluded item over the included stores.

    Raises:
        RedistributionError: If nothing is excluded or nothing is included
    """
    _check_preconditions(included_view, excluded_view)
    order = included_view.sorted_stores()
    count = len(order)

    plan = RedistributionPlan(EQUAL, store_order=order)
    for item in excluded_view.by_item:
        total = excluded_view.item_total(item)
        units, residue = _split_total(total)
        per_store, remainder = divmod(units, count)
        shares = np.full(count, per_store, dtype=np.int64)
        plan.items[item] = ItemPlan(
            total_quantity=total,
            allocations_by_store=_build_allocations(order, shares, order, remainder, residue),
            per_store_share=per_store,
            remainder=remainder,
        )
    logger.info(f"Equal redistribution planned: {len(plan.items)} items over {count} stores")
    return plan


def store_weight(info: Optional[StoreInfo]):
    rank = (info.rank if info is not None else None) or DEFAULT_RANK
    return RANK_WEIGHTS.get(rank, RANK_WEIGHTS[DEFAULT_RANK])


def plan_rank_redistribution(included_view: AllocationDataset, excluded_view: AllocationDataset):
    """Plan a rank-weighted split of every excluded item over the included stores.

    Raises:
        RedistributionError: If nothing is excluded or nothing is included
    """
    _check_preconditions(included_view, excluded_view)
    order = included_view.sorted_stores()
    weights = np.array([store_weight(included_view.store_info(store)) for store in order], dtype=np.int64)
    total_weight = int(weights.sum())
    # Stable sort keeps canonical order among equal weights
    by_weight = [order[i] for i in np.argsort(-weights, kind='stable')]

    plan = RedistributionPlan(RANK, store_order=order)
    for item in excluded_view.by_item:
        total = excluded_view.item_total(item)
        units, residue = _split_total(total)
        shares = (units * weights) // total_weight
        remainder = units - int(shares.sum())
        plan.items[item] = ItemPlan(
            total_quantity=total,
            allocations_by_store=_build_allocations(order, shares, by_weight, remainder, residue),
            remainder=remainder,
        )
    logger.info(f"Rank redistribution planned: {len(plan.items)} items over {len(order)} stores "
                f"(total weight {total_weight})")
    return plan


def _check_plan_matches(plan, excluded_view):
    """A plan is only valid for the exclusion set it was computed from."""
    planned = set(plan.items)
    excluded_items = set(excluded_view.by_item)
    if planned != excluded_items:
        raise RedistributionError(
            f"Plan covers items {sorted(planned)} but excluded stores hold {sorted(excluded_items)}; "
            f"recompute the plan")
    for item, item_plan in plan.items.items():
        excluded_total = excluded_view.item_total(item)
        if item_plan.total_quantity != excluded_total:
            raise RedistributionError(
                f"Plan for {item!r} moves {item_plan.total_quantity} units but {excluded_total} are excluded; "
                f"recompute the plan")


def apply_redistribution(dataset: AllocationDataset, excluded, plan: RedistributionPlan):
    """Drop the excluded stores and merge the plan into the dataset.

    Args:
        dataset (AllocationDataset): The full live dataset
        excluded (set): Excluded store keys
        plan (RedistributionPlan): Plan computed for this dataset and exclusion set

    Returns:
        tuple: (new AllocationDataset, set of redistributed item keys)

    Raises:
        RedistributionError: If the plan targets an excluded or unknown store, or
            was computed for a different exclusion set
    """
    excluded = set(excluded)
    included_view, excluded_view = partition(dataset, excluded)
    _check_preconditions(included_view, excluded_view)
    _check_plan_matches(plan, excluded_view)

    lines = list(included_view.lines)
    position = {(line.store, line.item): i for i, line in enumerate(lines)}

    for item, item_plan in plan.items.items():
        item_info = excluded_view.item_info(item) or included_view.item_info(item) or ItemInfo(code=item)
        for store, quantity in item_plan.allocations_by_store.items():
            if store not in included_view.by_store:
                raise RedistributionError(f"Plan allocates to store {store!r} which is not included")
            key = (store, item)
            if key in position:
                existing = lines[position[key]]
                lines[position[key]] = with_quantity(existing, existing.quantity + quantity, redistributed=True)
            else:
                position[key] = len(lines)
                lines.append(AllocationLine(
                    store=store,
                    item=item,
                    quantity=quantity,
                    store_info=included_view.store_info(store),
                    item_info=item_info,
                    raw={'redistributed': True},
                    redistributed=True,
                ))

    result = AllocationDataset(lines)
    logger.info(f"Redistribution applied ({plan.method}): {len(plan.items)} items, "
                f"{plan.total_quantity} units from {len(excluded)} excluded stores")
    return result, set(plan.items)
