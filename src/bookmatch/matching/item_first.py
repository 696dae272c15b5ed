#!/usr/bin/env python3
"""
Item-First Allocation

Documents with line items are settled item by item: each candidate
transaction either pays one open item directly or a small bundle of items
that nets to its amount (typically an item plus a discount or credit line).
A document collects all transactions that hit its items into a single
one_to_many decision, final when the items cover the open amount and
partial otherwise.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any

from ..core.config import MatchingConfig
from ..core.models import Doc, DocLineItem, MatchDecision, MatchRelationType, MatchState, Tx
from ..core.money import Money, sum_money
from ..core.tolerance import amount_compatible, covers_amount
from .signals import booking_in_window, group_id_for, tx_direction_ok, vendor_ok_if_known

logger = logging.getLogger(__name__)

ITEM_FIRST_LINE_ITEM_MATCH = "ITEM_FIRST_LINE_ITEM_MATCH"
ITEM_FIRST_BUNDLE_MATCH = "ITEM_FIRST_BUNDLE_MATCH"
ITEM_FIRST_FINAL_COVERAGE = "ITEM_FIRST_FINAL_COVERAGE"
PARTIAL_PAYMENT_SUM = "PARTIAL_PAYMENT_SUM"

# Bundles are searched among the first N open items only
ITEM_BUNDLE_MAX_CANDIDATES = 20
ITEM_BUNDLE_SIZES = (2, 3)


@dataclass
class OpenItem:
    key: str
    id: str | None
    line_index: int | None
    description: str | None
    open_amount: Money
    signed_amount: Money


@dataclass
class ItemAllocation:
    """One transaction and the open items it pays."""

    tx: Tx
    amount: Money
    items: list[OpenItem]
    via_bundle: bool


@dataclass
class ItemFirstResult:
    decisions: list[MatchDecision] = field(default_factory=list)
    remaining_docs: list[Doc] = field(default_factory=list)
    remaining_txs: list[Tx] = field(default_factory=list)


def run_item_first_phase(docs: list[Doc], txs: list[Tx], cfg: MatchingConfig) -> ItemFirstResult:
    """
    Allocate transactions to open line items, document by document.

    A transaction is consumed by the first document it is allocated to.
    Documents without open items pass through untouched.
    """
    decisions: list[MatchDecision] = []
    consumed_tx_ids: set[str] = set()
    handled_doc_ids: set[str] = set()

    for doc in docs:
        open_items = to_open_items(doc.items)
        if not open_items:
            continue

        candidates = [
            tx for tx in txs if tx.id not in consumed_tx_ids and is_tx_candidate_for_doc(doc, tx, cfg)
        ]
        if not candidates:
            continue
        candidates.sort(key=lambda tx: _tx_sort_key(tx, doc))

        allocations = allocate_txs_to_items(doc, open_items, candidates, cfg)
        if not allocations:
            continue

        consumed_tx_ids.update(allocation.tx.id for allocation in allocations)
        handled_doc_ids.add(doc.id)
        decisions.append(build_item_first_decision(doc, allocations, cfg))

    logger.debug("Item-first: %d decisions, %d txs consumed", len(decisions), len(consumed_tx_ids))
    return ItemFirstResult(
        decisions=decisions,
        remaining_docs=[doc for doc in docs if doc.id not in handled_doc_ids],
        remaining_txs=[tx for tx in txs if tx.id not in consumed_tx_ids],
    )


def to_open_items(items: list[DocLineItem]) -> list[OpenItem]:
    """
    Line items that still have something open.

    The open amount is the item's open_amount when set, else its absolute
    amount. An explicit open amount of zero closes the item.
    """
    out = []
    for index, item in enumerate(items):
        if item.open_amount is not None:
            open_amount = item.open_amount.abs()
        elif item.amount_abs is not None:
            open_amount = item.amount_abs.abs()
        else:
            continue
        if open_amount.cents <= 0:
            continue

        line_index = item.line_index if item.line_index is not None else index
        out.append(
            OpenItem(
                key=f"id:{item.id}" if item.id else f"line:{line_index}",
                id=item.id,
                line_index=line_index,
                description=item.description,
                open_amount=open_amount,
                signed_amount=item.amount_signed if item.amount_signed is not None else open_amount,
            )
        )
    return out


def is_tx_candidate_for_doc(doc: Doc, tx: Tx, cfg: MatchingConfig) -> bool:
    if doc.tenant_key != tx.tenant_key:
        return False
    if not tx.supports_currency(doc.currency):
        return False
    if not tx_direction_ok(doc, tx):
        return False
    if not booking_in_window(doc, tx, cfg):
        return False
    return vendor_ok_if_known(doc, tx)


def allocate_txs_to_items(
    doc: Doc, open_items: list[OpenItem], txs: list[Tx], cfg: MatchingConfig
) -> list[ItemAllocation]:
    taken: set[str] = set()
    allocations = []

    for tx in txs:
        remaining = [item for item in open_items if item.key not in taken]
        if not remaining:
            break

        amount = tx.amount_for_currency(doc.currency)
        if amount is None:
            continue

        direct = find_best_direct_item(amount, remaining, cfg)
        if direct is not None:
            taken.add(direct.key)
            allocations.append(ItemAllocation(tx, amount, [direct], via_bundle=False))
            continue

        bundle = find_best_bundle(amount, remaining, cfg)
        if bundle is None:
            continue
        taken.update(item.key for item in bundle)
        allocations.append(ItemAllocation(tx, amount, bundle, via_bundle=True))

    return allocations


def find_best_direct_item(amount: Money, items: list[OpenItem], cfg: MatchingConfig) -> OpenItem | None:
    """Single open item compatible with the amount, smallest difference first."""
    target = amount.abs()
    best: OpenItem | None = None
    best_diff = 0
    for item in items:
        if not amount_compatible(item.open_amount, target, cfg):
            continue
        diff = abs(item.open_amount.cents - target.cents)
        if best is None or diff < best_diff:
            best, best_diff = item, diff
    return best


def find_best_bundle(amount: Money, items: list[OpenItem], cfg: MatchingConfig) -> list[OpenItem] | None:
    """
    Pair or triple of open items whose signed sum pays the amount.

    A bundle must contain at least one negative item; plain positive
    combinations are left to the collective payment matchers.
    """
    target = amount.abs()
    source = items[:ITEM_BUNDLE_MAX_CANDIDATES]
    best: list[OpenItem] | None = None
    best_diff = 0

    for size in ITEM_BUNDLE_SIZES:
        for combo in combinations(source, size):
            if not any(item.signed_amount.is_negative() for item in combo):
                continue
            total = sum_money([item.signed_amount for item in combo]).abs()
            if not amount_compatible(total, target, cfg):
                continue
            diff = abs(total.cents - target.cents)
            if best is None or diff < best_diff:
                best, best_diff = list(combo), diff

    return best


def resolve_target_amount(doc: Doc) -> Money:
    """Open amount when positive, else the absolute document amount."""
    if doc.open_amount is not None and doc.open_amount.abs().cents > 0:
        return doc.open_amount.abs()
    return doc.amount.abs()


def build_item_first_decision(doc: Doc, allocations: list[ItemAllocation], cfg: MatchingConfig) -> MatchDecision:
    tx_ids = [allocation.tx.id for allocation in allocations]
    matched_sum = sum_money([allocation.amount for allocation in allocations])
    target = resolve_target_amount(doc)
    covered = covers_amount(matched_sum, target, cfg)
    open_after = Money.zero() if covered else Money.from_cents(max(0, target.cents - matched_sum.cents))

    item_refs = _unique_item_refs([item for allocation in allocations for item in allocation.items])
    via_bundle = any(allocation.via_bundle for allocation in allocations)

    inputs: dict[str, Any] = {
        "tenant_id": doc.tenant_key,
        "target_amount": target.to_amount_str(),
        "matched_item_sum": matched_sum.to_amount_str(),
        "matched_item_ids": [ref["id"] or f"line:{ref['line_index']}" for ref in item_refs],
        "matched_item_refs": item_refs,
        "matched_via_bundle": via_bundle,
        "matched_item_links": [
            {
                "tx_id": allocation.tx.id,
                "item_ids": [item.id or f"line:{item.line_index}" for item in allocation.items],
                "via_bundle": allocation.via_bundle,
            }
            for allocation in allocations
        ],
        "open_amount_before": target.to_amount_str(),
        "open_amount_after": open_after.to_amount_str(),
    }

    return MatchDecision(
        state=MatchState.FINAL if covered else MatchState.PARTIAL,
        relation_type=MatchRelationType.ONE_TO_MANY,
        tx_ids=tx_ids,
        doc_ids=[doc.id],
        confidence=0.97 if covered else 0.9,
        reason_codes=[
            ITEM_FIRST_BUNDLE_MATCH if via_bundle else ITEM_FIRST_LINE_ITEM_MATCH,
            ITEM_FIRST_FINAL_COVERAGE if covered else PARTIAL_PAYMENT_SUM,
        ],
        inputs=inputs,
        match_group_id=group_id_for(tx_ids, [doc.id]),
        open_amount_after=open_after,
    )


def _unique_item_refs(items: list[OpenItem]) -> list[dict[str, Any]]:
    refs = []
    seen: set[str] = set()
    for item in items:
        if item.key in seen:
            continue
        seen.add(item.key)
        refs.append({"id": item.id, "line_index": item.line_index})
    return refs


def _tx_sort_key(tx: Tx, doc: Doc) -> tuple:
    amount = tx.amount_for_currency(doc.currency)
    return (
        tx.date.to_iso_string() if tx.date else "9999-12-31",
        amount.cents if amount is not None else 0,
        tx.id,
    )
