#!/usr/bin/env python3
"""
Relation Matchers

Turn relation hypotheses into MatchDecisions. Each matcher returns a list
that is empty when the hypothesis does not hold.

State rules:
- one_to_one: hard identifier -> final, else suggested above the score threshold
- many_to_one: unique subset sum -> final, several -> ambiguous
- one_to_many: covered -> final, underpaid -> partial, overpaid -> ambiguous
- many_to_many: suggested at best, never binding
"""

import logging
from typing import Any

from ..core.config import MatchingConfig
from ..core.models import Doc, MatchDecision, MatchRelationType, MatchState, Tx
from ..core.money import Money, sum_money
from ..core.normalize import contains_phrase
from ..core.tolerance import amount_compatible
from .candidates import DocCandidate
from .prepass import HARD_E2E, HARD_IBAN, HARD_INVOICE_NO
from .relations import ManyToManyRelation, ManyToOneRelation, OneToManyRelation, OneToOneRelation
from .scorer import find_subset_solutions, score_one_to_one, subset_sum_txs_to_amount
from .signals import anchored_date_ok, group_id_for, has_batch_keyword, tx_direction_ok

logger = logging.getLogger(__name__)

SOFT_AMOUNT_DATE = "SOFT_AMOUNT_DATE"
SCORE_ONLY = "SCORE_ONLY"
SUBSET_SUM_EXACT = "SUBSET_SUM_EXACT"
AMBIGUOUS_MULTIPLE_SOLUTIONS = "AMBIGUOUS_MULTIPLE_SOLUTIONS"
PARTIAL_PAYMENT_SUM = "PARTIAL_PAYMENT_SUM"
MANY_TO_MANY_EXACT = "MANY_TO_MANY_EXACT"
CLUSTER_NN_WIZARD = "CLUSTER_NN_WIZARD"

_HARD_REASONS = {"IBAN": HARD_IBAN, "INVOICE_NO": HARD_INVOICE_NO, "E2E": HARD_E2E}


def match_one_to_one(rel: OneToOneRelation, cfg: MatchingConfig) -> list[MatchDecision]:
    tx, candidate = rel.tx, rel.candidate
    doc = candidate.doc
    hard = hard_key(candidate, tx, cfg)

    if hard and not candidate.features.partial_keywords:
        return [
            _decision(
                MatchState.FINAL,
                MatchRelationType.ONE_TO_ONE,
                [tx.id],
                [doc.id],
                1.0,
                [_HARD_REASONS[hard]],
                _one_to_one_inputs(candidate, tx, hard),
            )
        ]

    score = score_one_to_one(candidate, tx, cfg)
    if score < cfg.scoring.min_suggest_score:
        return []

    date_ok = anchored_date_ok(doc, tx, cfg)
    return [
        _decision(
            MatchState.SUGGESTED,
            MatchRelationType.ONE_TO_ONE,
            [tx.id],
            [doc.id],
            score,
            [SOFT_AMOUNT_DATE if candidate.features.amount_ok and date_ok else SCORE_ONLY],
            _one_to_one_inputs(candidate, tx, hard),
        )
    ]


def hard_key(candidate: DocCandidate, tx: Tx, cfg: MatchingConfig) -> str | None:
    """
    Hard identifier backing a one_to_one hypothesis.

    IBAN and end-to-end id need amount and direction. The invoice number
    needs amount and the booking date inside the window, in either direction.
    """
    doc = candidate.doc
    if not candidate.features.amount_ok:
        return None
    direction_ok = tx_direction_ok(doc, tx)
    if direction_ok and candidate.features.iban_equal:
        return "IBAN"
    if direction_ok and candidate.features.e2e_equal:
        return "E2E"
    date_ok = anchored_date_ok(doc, tx, cfg)
    if cfg.prepass.debug_hard_checks:
        logger.debug(
            "Hard check doc=%s tx=%s invoice_no=%s ref=%s date_ok=%s invoice_no_ok=%s",
            doc.id,
            tx.id,
            doc.invoice_no,
            tx.reference,
            date_ok,
            candidate.features.invoice_no_equal,
        )
    if candidate.features.invoice_no_equal and date_ok:
        return "INVOICE_NO"
    return None


def match_many_to_one(rel: ManyToOneRelation, cfg: MatchingConfig) -> list[MatchDecision]:
    """One transaction paying several documents at once."""
    tx = rel.tx
    if len(rel.candidates) < 2:
        return []

    if len(rel.candidates) > cfg.subset_sum.max_candidates:
        return [
            _decision(
                MatchState.AMBIGUOUS,
                MatchRelationType.MANY_TO_ONE,
                [tx.id],
                [],
                0.5,
                [AMBIGUOUS_MULTIPLE_SOLUTIONS],
                {"tenant_id": tx.tenant_key, "reason": "too_many_candidates", "count": len(rel.candidates)},
                with_group=False,
            )
        ]

    currency = rel.candidates[0].doc.currency
    candidates = [c for c in rel.candidates if c.doc.currency == currency]
    target = tx.amount_for_currency(currency)
    if target is None:
        return []

    solutions = find_subset_solutions(candidates, lambda c: c.doc.amount.abs(), target, cfg)
    if not solutions:
        return []

    if len(solutions) > cfg.subset_sum.max_solutions:
        return [
            _decision(
                MatchState.AMBIGUOUS,
                MatchRelationType.MANY_TO_ONE,
                [tx.id],
                [],
                0.5,
                [AMBIGUOUS_MULTIPLE_SOLUTIONS],
                {
                    "tenant_id": tx.tenant_key,
                    "solutions": [[c.doc.id for c in solution.items] for solution in solutions],
                    "candidate_count": len(candidates),
                },
                with_group=False,
            )
        ]

    subset = solutions[0].items
    partial_hint = any(c.features.partial_keywords for c in subset)
    inputs = {
        "tenant_id": tx.tenant_key,
        "count": len(subset),
        "sum": solutions[0].total.to_amount_str(),
        "tx_amount": target.to_amount_str(),
    }
    return [
        _decision(
            MatchState.SUGGESTED if partial_hint else MatchState.FINAL,
            MatchRelationType.MANY_TO_ONE,
            [tx.id],
            [c.doc.id for c in subset],
            0.8 if partial_hint else 1.0,
            [SUBSET_SUM_EXACT],
            inputs,
        )
    ]


def match_one_to_many(rel: OneToManyRelation, cfg: MatchingConfig) -> list[MatchDecision]:
    """One document settled by several transactions."""
    doc = rel.doc
    txs = [tx for tx in rel.txs if tx.supports_currency(doc.currency)]
    if not txs:
        return []

    total = sum_money([tx.amount_for_currency(doc.currency) for tx in txs])
    doc_amount = doc.amount.abs()
    tx_ids = [tx.id for tx in txs]
    inputs: dict[str, Any] = {"tenant_id": doc.tenant_key, "sum": total.to_amount_str(), "tx_count": len(txs)}

    if amount_compatible(total, doc_amount, cfg):
        batch_hint = any(has_batch_keyword(tx, cfg) for tx in txs)
        return [
            _decision(
                MatchState.SUGGESTED if batch_hint else MatchState.FINAL,
                MatchRelationType.ONE_TO_MANY,
                tx_ids,
                [doc.id],
                0.7 if batch_hint else 1.0,
                [PARTIAL_PAYMENT_SUM],
                inputs,
            )
        ]

    if total < doc_amount:
        open_after = doc_amount - total
        inputs["open_amount_after"] = open_after.to_amount_str()
        return [
            _decision(
                MatchState.PARTIAL,
                MatchRelationType.ONE_TO_MANY,
                tx_ids,
                [doc.id],
                0.9,
                [PARTIAL_PAYMENT_SUM],
                inputs,
                open_amount_after=open_after,
            )
        ]

    # Overpaid in total: a smaller subset of the transactions may still fit
    subset = subset_sum_txs_to_amount(txs, doc_amount, cfg, doc.currency)
    subset_ids = [tx.id for tx in subset] if subset is not None else []
    if rel.txs[0].id in subset_ids:
        return [
            _decision(
                MatchState.SUGGESTED,
                MatchRelationType.ONE_TO_MANY,
                subset_ids,
                [doc.id],
                0.6,
                [PARTIAL_PAYMENT_SUM, SUBSET_SUM_EXACT],
                {**inputs, "tx_count": len(subset), "pool_tx_ids": tx_ids},
            )
        ]

    return [
        _decision(
            MatchState.AMBIGUOUS,
            MatchRelationType.ONE_TO_MANY,
            tx_ids,
            [doc.id],
            0.5,
            [AMBIGUOUS_MULTIPLE_SOLUTIONS],
            inputs,
        )
    ]


def match_many_to_many(rel: ManyToManyRelation, cfg: MatchingConfig) -> list[MatchDecision]:
    """Interleaved clusters are handed to the user, never linked automatically."""
    tx_ids = [tx.id for tx in rel.txs]
    doc_ids = [doc.id for doc in rel.docs]
    sum_docs = sum_money([doc.amount.abs() for doc in rel.docs])
    sum_txs = sum_money([tx.amount for tx in rel.txs])
    amount_ok = amount_compatible(sum_docs, sum_txs, cfg)
    tenant = rel.txs[0].tenant_key if rel.txs else (rel.docs[0].tenant_key if rel.docs else None)

    vendor_ok = shared_vendor_norm(rel.docs, rel.txs)
    if amount_ok and vendor_ok and not has_partial_payment_keywords(rel.docs, rel.txs, cfg):
        return [
            _decision(
                MatchState.SUGGESTED,
                MatchRelationType.MANY_TO_MANY,
                tx_ids,
                doc_ids,
                0.9,
                [MANY_TO_MANY_EXACT],
                {
                    "tenant_id": tenant,
                    "sum_docs": sum_docs.to_amount_str(),
                    "sum_txs": sum_txs.to_amount_str(),
                    "count_docs": len(doc_ids),
                    "count_txs": len(tx_ids),
                },
            )
        ]

    return [
        _decision(
            MatchState.AMBIGUOUS,
            MatchRelationType.MANY_TO_MANY,
            tx_ids,
            doc_ids,
            0.4,
            [CLUSTER_NN_WIZARD],
            {
                "tenant_id": tenant,
                "hypothesis": dict(rel.hypothesis),
                "size_txs": len(tx_ids),
                "size_docs": len(doc_ids),
            },
        )
    ]


def shared_vendor_norm(docs: list[Doc], txs: list[Tx]) -> bool:
    """All known vendor names in the cluster are identical."""
    values = [doc.vendor_norm for doc in docs if doc.vendor_norm] + [tx.vendor_norm for tx in txs if tx.vendor_norm]
    return bool(values) and all(value == values[0] for value in values)


def has_partial_payment_keywords(docs: list[Doc], txs: list[Tx], cfg: MatchingConfig) -> bool:
    parts = [part for doc in docs for part in (doc.text_norm, doc.vendor_norm) if part]
    parts += [part for tx in txs for part in (tx.text_norm, tx.reference, tx.vendor_norm) if part]
    return contains_phrase(" ".join(parts), cfg.keywords.partial_payment)


def _one_to_one_inputs(candidate: DocCandidate, tx: Tx, hard: str | None) -> dict[str, Any]:
    doc = candidate.doc
    inputs: dict[str, Any] = {
        "tenant_id": tx.tenant_key,
        "doc_amount": doc.amount.to_amount_str(),
        "tx_amount": candidate.tx_amount.to_amount_str(),
        "currency": doc.currency,
        "amount_delta": candidate.features.amount_delta.to_amount_str(),
        "days_delta": candidate.features.days_delta,
    }
    if hard:
        inputs["hard_key"] = hard
    if candidate.features.via_amount_candidate:
        inputs["via_amount_candidate"] = True
    return inputs


def _decision(
    state: MatchState,
    relation_type: MatchRelationType,
    tx_ids: list[str],
    doc_ids: list[str],
    confidence: float,
    reason_codes: list[str],
    inputs: dict[str, Any],
    open_amount_after: Money | None = None,
    with_group: bool = True,
) -> MatchDecision:
    return MatchDecision(
        state=state,
        relation_type=relation_type,
        tx_ids=tx_ids,
        doc_ids=doc_ids,
        confidence=confidence,
        reason_codes=reason_codes,
        inputs=inputs,
        match_group_id=group_id_for(tx_ids, doc_ids) if with_group else None,
        open_amount_after=open_amount_after,
    )
