#!/usr/bin/env python3
"""
Match Scoring and Subset Search

Soft score for one_to_one hypotheses and the bounded subset-sum search used
for collective payments. The search only looks at 2- and 3-way
combinations among the first SUBSET_SEARCH_MAX_CANDIDATES items, so its
cost stays fixed regardless of pool size.
"""

from collections.abc import Callable
from dataclasses import dataclass
from itertools import combinations
from typing import Any

from ..core.config import MatchingConfig
from ..core.models import Tx
from ..core.money import Money, sum_money
from ..core.tolerance import amount_compatible
from .candidates import DocCandidate

SUBSET_SEARCH_MAX_CANDIDATES = 20
SUBSET_SIZES = (2, 3)

# Score weights
AMOUNT_WEIGHT = 0.5
DATE_WEIGHT = 0.2
VENDOR_WEIGHT = 0.2
IDENTIFIER_WEIGHT = 0.1
PARTIAL_KEYWORD_DAMPING = 0.7


@dataclass
class SubsetSolution:
    items: list[Any]
    total: Money
    diff_cents: int


def score_one_to_one(candidate: DocCandidate, tx: Tx, cfg: MatchingConfig) -> float:
    """
    Blend amount, date, vendor and identifier evidence into [0, 1].

    Without an identifier signal the score tops out at 0.9; partial payment
    wording damps the whole score.
    """
    features = candidate.features
    score = 0.0
    if features.amount_ok:
        score += AMOUNT_WEIGHT
    if features.days_delta is not None and features.days_delta <= cfg.date_window_days:
        score += DATE_WEIGHT
    if candidate.doc.vendor_norm and tx.vendor_norm and candidate.doc.vendor_norm == tx.vendor_norm:
        score += VENDOR_WEIGHT
    if features.has_identifier:
        score += IDENTIFIER_WEIGHT
    if features.partial_keywords:
        score *= PARTIAL_KEYWORD_DAMPING
    return max(0.0, min(1.0, score))


def find_subset_solutions(
    items: list[Any],
    amount_of: Callable[[Any], Money],
    target: Money,
    cfg: MatchingConfig,
) -> list[SubsetSolution]:
    """
    All 2..3-item combinations whose total is compatible with the target.

    Solutions are ordered by difference to the target, then by size, then
    by input position, so the first one is the canonical best fit.
    """
    source = items[:SUBSET_SEARCH_MAX_CANDIDATES]
    target = target.abs()
    found: list[tuple[int, int, tuple[int, ...], SubsetSolution]] = []

    for size in SUBSET_SIZES:
        for positions in combinations(range(len(source)), size):
            combo = [source[i] for i in positions]
            total = sum_money([amount_of(item) for item in combo])
            if not amount_compatible(total, target, cfg):
                continue
            diff = abs(total.cents - target.cents)
            found.append((diff, size, positions, SubsetSolution(combo, total, diff)))

    found.sort(key=lambda entry: entry[:3])
    return [entry[3] for entry in found]


def subset_sum_docs_to_amount(
    candidates: list[DocCandidate], target: Money, cfg: MatchingConfig
) -> list[DocCandidate] | None:
    """Minimal-difference document combination paying the target, or None."""
    solutions = find_subset_solutions(candidates, lambda c: c.doc.amount.abs(), target, cfg)
    return solutions[0].items if solutions else None


def subset_sum_txs_to_amount(
    txs: list[Tx], target: Money, cfg: MatchingConfig, currency: str | None = None
) -> list[Tx] | None:
    """Minimal-difference transaction combination summing to the target, or None."""
    usable = [tx for tx in txs if currency is None or tx.supports_currency(currency)]
    solutions = find_subset_solutions(
        usable,
        lambda tx: tx.amount_for_currency(currency) if currency else tx.amount,
        target,
        cfg,
    )
    return solutions[0].items if solutions else None
