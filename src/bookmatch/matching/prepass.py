#!/usr/bin/env python3
"""
Hard Identifier Prepass

Links transactions and documents that share an unambiguous hard key before
any scoring happens. A pair qualifies only when currency, amount and
direction agree and one of these keys holds (in priority order):

- INVOICE_NO: the invoice number appears in the transaction reference and
  the booking date lies in the document's window
- AMOUNT_DATE_VENDOR: date in window, strong vendor overlap, and the
  document carries no invoice number
- IBAN_AMOUNT: canonical IBANs equal
- E2E_AMOUNT: canonical end-to-end ids equal

Only pairs that are unique on both sides survive; everything else is left
for the later stages.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..core.config import MatchingConfig
from ..core.models import Doc, MatchDecision, MatchRelationType, MatchState, Tx
from .signals import (
    anchored_date_ok,
    e2e_equal,
    group_id_for,
    has_partial_or_batch_hints,
    iban_equal,
    invoice_no_in_tx,
    tx_amount_compatible,
    tx_direction_ok,
    vendor_match_strong,
)

logger = logging.getLogger(__name__)

HARD_IBAN = "HARD_IBAN_AMOUNT"
HARD_INVOICE_NO = "HARD_INVOICE_NO"
HARD_AMOUNT_DATE_VENDOR = "HARD_AMOUNT_DATE_VENDOR"
HARD_E2E = "HARD_E2E_AMOUNT"


class HardKeyType(Enum):
    INVOICE_NO = "INVOICE_NO"
    AMOUNT_DATE_VENDOR = "AMOUNT_DATE_VENDOR"
    IBAN_AMOUNT = "IBAN_AMOUNT"
    E2E_AMOUNT = "E2E_AMOUNT"


_KEY_REASON = {
    HardKeyType.IBAN_AMOUNT: HARD_IBAN,
    HardKeyType.INVOICE_NO: HARD_INVOICE_NO,
    HardKeyType.AMOUNT_DATE_VENDOR: HARD_AMOUNT_DATE_VENDOR,
    HardKeyType.E2E_AMOUNT: HARD_E2E,
}


@dataclass
class HardCandidate:
    tx: Tx
    doc: Doc
    key: HardKeyType


@dataclass
class PrepassResult:
    """Final hard matches plus the documents and transactions still in play."""

    final: list[MatchDecision] = field(default_factory=list)
    remaining_docs: list[Doc] = field(default_factory=list)
    remaining_txs: list[Tx] = field(default_factory=list)


def prepass_hard_matches(docs: list[Doc], txs: list[Tx], cfg: MatchingConfig) -> PrepassResult:
    """
    Run the hard-key prepass over one matching pool.

    Args:
        docs: Documents of the pool
        txs: Transactions of the pool
        cfg: Matching configuration

    Returns:
        PrepassResult with one final one_to_one decision per unique pair
    """
    matchable_docs = [doc for doc in docs if doc.link_state.is_matchable]
    matchable_txs = [tx for tx in txs if tx.link_state.is_matchable]

    candidates: list[HardCandidate] = []
    for tx in matchable_txs:
        tx_candidates = find_hard_candidates(tx, matchable_docs, cfg)
        if len(tx_candidates) == 1:
            candidates.append(tx_candidates[0])
        elif len(tx_candidates) > 1:
            logger.debug("Tx %s has %d hard candidates, leaving it to later stages", tx.id, len(tx_candidates))

    if cfg.prepass.require_uniqueness:
        pairs = filter_unique_pairs(candidates)
    else:
        pairs = candidates

    final = [build_hard_decision(c.tx, c.doc, c.key, cfg) for c in pairs]
    matched_doc_ids = {decision.doc_ids[0] for decision in final}
    matched_tx_ids = {decision.tx_ids[0] for decision in final}

    logger.debug("Prepass: %d hard matches from %d txs", len(final), len(matchable_txs))
    return PrepassResult(
        final=final,
        remaining_docs=[doc for doc in docs if doc.id not in matched_doc_ids],
        remaining_txs=[tx for tx in txs if tx.id not in matched_tx_ids],
    )


def hard_key_type(doc: Doc, tx: Tx, cfg: MatchingConfig) -> HardKeyType | None:
    """
    Highest priority hard key for the pair, or None.

    An invoice number quoted in the booking text holds in either payment
    direction; every other key also needs the direction to fit the
    document sign.
    """
    tx_amount = tx.amount_for_currency(doc.currency)
    if tx_amount is None:
        return None

    if not tx_amount_compatible(doc, tx, cfg):
        if iban_equal(doc, tx) or e2e_equal(doc, tx) or invoice_no_in_tx(doc, tx):
            logger.debug(
                "Rejected identifier match doc=%s tx=%s: amount %s vs %s not compatible",
                doc.id,
                tx.id,
                doc.amount.abs(),
                tx_amount,
            )
        return None

    direction_ok = tx_direction_ok(doc, tx)
    date_ok = anchored_date_ok(doc, tx, cfg)
    invoice_ok = invoice_no_in_tx(doc, tx)
    vendor_ok = vendor_match_strong(doc, tx)

    if cfg.prepass.debug_hard_checks:
        logger.debug(
            "Hard check doc=%s tx=%s invoice_no=%s ref=%s direction_ok=%s date_ok=%s invoice_no_ok=%s vendor_ok=%s",
            doc.id,
            tx.id,
            doc.invoice_no,
            tx.reference,
            direction_ok,
            date_ok,
            invoice_ok,
            vendor_ok,
        )

    if invoice_ok and date_ok:
        return HardKeyType.INVOICE_NO
    if not direction_ok:
        return None
    if date_ok and vendor_ok and not doc.invoice_no:
        return HardKeyType.AMOUNT_DATE_VENDOR
    if iban_equal(doc, tx):
        return HardKeyType.IBAN_AMOUNT
    if e2e_equal(doc, tx):
        return HardKeyType.E2E_AMOUNT
    return None


def blocks_prepass(tx: Tx, doc: Doc, cfg: MatchingConfig) -> bool:
    """Partial or batch payment wording keeps a pair out of the prepass."""
    if not cfg.prepass.block_on_partial_keywords:
        return False
    return has_partial_or_batch_hints(tx, doc, cfg)


def find_hard_candidates(tx: Tx, docs: list[Doc], cfg: MatchingConfig) -> list[HardCandidate]:
    """Documents with a hard key for the transaction; a repeated doc id drops out entirely."""
    unique: dict[str, HardCandidate] = {}
    repeated: set[str] = set()
    for doc in docs:
        key = hard_key_type(doc, tx, cfg)
        if key is None or blocks_prepass(tx, doc, cfg):
            continue
        if doc.id in unique or doc.id in repeated:
            unique.pop(doc.id, None)
            repeated.add(doc.id)
            continue
        unique[doc.id] = HardCandidate(tx, doc, key)
    return list(unique.values())


def filter_unique_pairs(candidates: list[HardCandidate]) -> list[HardCandidate]:
    """Drop pairs whose transaction, then whose document, occurs more than once."""
    by_tx: dict[str, HardCandidate] = {}
    tx_collisions: set[str] = set()
    for candidate in candidates:
        if candidate.tx.id in by_tx:
            tx_collisions.add(candidate.tx.id)
        else:
            by_tx[candidate.tx.id] = candidate
    for tx_id in tx_collisions:
        del by_tx[tx_id]

    by_doc: dict[str, HardCandidate] = {}
    doc_collisions: set[str] = set()
    for candidate in by_tx.values():
        if candidate.doc.id in by_doc:
            doc_collisions.add(candidate.doc.id)
        else:
            by_doc[candidate.doc.id] = candidate
    for doc_id in doc_collisions:
        del by_doc[doc_id]

    return list(by_doc.values())


def hard_reason_codes(doc: Doc, tx: Tx, key: HardKeyType, cfg: MatchingConfig) -> list[str]:
    """Every hard signal that held, ordered IBAN, invoice no, date-vendor, e2e."""
    date_ok = anchored_date_ok(doc, tx, cfg)
    reasons = []
    if iban_equal(doc, tx):
        reasons.append(HARD_IBAN)
    if invoice_no_in_tx(doc, tx) and date_ok:
        reasons.append(HARD_INVOICE_NO)
    if date_ok and vendor_match_strong(doc, tx) and not doc.invoice_no:
        reasons.append(HARD_AMOUNT_DATE_VENDOR)
    if e2e_equal(doc, tx):
        reasons.append(HARD_E2E)
    return reasons or [_KEY_REASON[key]]


def build_hard_decision(tx: Tx, doc: Doc, key: HardKeyType, cfg: MatchingConfig) -> MatchDecision:
    tx_amount = tx.amount_for_currency(doc.currency) or tx.amount
    inputs: dict[str, Any] = {
        "tenant_id": tx.tenant_key,
        "key": key.value,
        "doc_id": doc.id,
        "tx_id": tx.id,
        "doc_amount": doc.amount.to_amount_str(),
        "tx_amount": tx_amount.to_amount_str(),
        "currency": doc.currency,
    }
    if doc.iban and tx.iban:
        inputs["iban"] = doc.iban
    if doc.invoice_no:
        inputs["invoice_no"] = doc.invoice_no
    if doc.e2e_id and tx.e2e_id:
        inputs["e2e_id"] = doc.e2e_id

    return MatchDecision(
        state=MatchState.FINAL,
        relation_type=MatchRelationType.ONE_TO_ONE,
        tx_ids=[tx.id],
        doc_ids=[doc.id],
        confidence=1.0,
        reason_codes=hard_reason_codes(doc, tx, key, cfg),
        inputs=inputs,
        match_group_id=group_id_for([tx.id], [doc.id]),
    )
