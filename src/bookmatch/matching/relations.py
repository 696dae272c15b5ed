#!/usr/bin/env python3
"""
Relation Detection

Turns the candidate documents of one transaction into match hypotheses of
every cardinality:

- one_to_one: the transaction and a single plausible document
- many_to_one: the transaction settles several documents of one vendor
- one_to_many: a document settled by this and related transactions
- many_to_many: interleaved clusters, never binding
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..core.config import MatchingConfig
from ..core.models import Doc, Tx
from ..core.money import sum_money
from ..core.normalize import canon_id, ids_equal
from ..core.tolerance import amount_compatible, calc_window
from .candidates import DocCandidate
from .signals import tx_direction_ok

logger = logging.getLogger(__name__)

CLUSTER_MAX_SIZE = 20
RELATED_TX_LIMIT = 10


@dataclass
class OneToOneRelation:
    tx: Tx
    candidate: DocCandidate


@dataclass
class ManyToOneRelation:
    tx: Tx
    candidates: list[DocCandidate]


@dataclass
class OneToManyRelation:
    doc: Doc
    txs: list[Tx]


@dataclass
class ManyToManyRelation:
    txs: list[Tx]
    docs: list[Doc]
    hypothesis: dict[str, Any] = field(default_factory=dict)


@dataclass
class RelationSet:
    one_to_one: list[OneToOneRelation] = field(default_factory=list)
    many_to_one: list[ManyToOneRelation] = field(default_factory=list)
    one_to_many: list[OneToManyRelation] = field(default_factory=list)
    many_to_many: list[ManyToManyRelation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.one_to_one) + len(self.many_to_one) + len(self.one_to_many) + len(self.many_to_many)

    def limited(self, max_per_kind: int | None) -> "RelationSet":
        """Copy keeping at most max_per_kind relations of each cardinality."""
        if not max_per_kind or max_per_kind <= 0:
            return self
        return RelationSet(
            one_to_one=self.one_to_one[:max_per_kind],
            many_to_one=self.many_to_one[:max_per_kind],
            one_to_many=self.one_to_many[:max_per_kind],
            many_to_many=self.many_to_many[:max_per_kind],
        )


def detect_relations_for_tx(
    tx: Tx,
    candidates: list[DocCandidate],
    tx_pool: list[Tx],
    cfg: MatchingConfig,
) -> RelationSet:
    """
    Build all relation hypotheses around one transaction.

    Args:
        tx: Transaction the candidates were built for
        candidates: Output of candidates_for_tx
        tx_pool: All transactions still in play (used for 1:N and N:N)
        cfg: Matching configuration
    """
    filtered = [c for c in candidates if c.doc.tenant_key == tx.tenant_key]
    # Invoice number pairs against the document sign only qualify one to one
    collective = [c for c in filtered if tx_direction_ok(c.doc, tx)]
    many_to_one_candidates = filter_many_to_one_candidates(collective, tx)
    relations = RelationSet()

    for candidate in filtered:
        if is_one_to_one_plausible(candidate, cfg):
            relations.one_to_one.append(OneToOneRelation(tx, candidate))

    if 2 <= len(many_to_one_candidates) <= cfg.subset_sum.max_candidates:
        relations.many_to_one.append(ManyToOneRelation(tx, many_to_one_candidates))

    for seed in collective:
        if not is_potential_partial_flow(seed, cfg):
            continue
        combined = _unique_by_id([tx, *find_related_txs(seed.doc, tx, tx_pool, cfg)])
        if len(combined) >= 2:
            relations.one_to_many.append(OneToManyRelation(seed.doc, combined))

    exact = build_exact_many_to_many(tx, collective, tx_pool, cfg)
    if exact is not None:
        relations.many_to_many.append(exact)

    cluster_needed = (
        len(many_to_one_candidates) > cfg.subset_sum.max_candidates
        or (relations.many_to_one and relations.one_to_many)
        or len(relations.one_to_one) > 1
    )
    if cluster_needed and collective:
        cluster_docs = _unique_by_id([c.doc for c in collective])[:CLUSTER_MAX_SIZE]
        key = group_key_for_cluster(tx, cluster_docs[0])
        cluster_txs = [
            other for other in tx_pool if group_key_for_cluster(other, cluster_docs[0]) == key
        ][:CLUSTER_MAX_SIZE]
        relations.many_to_many.append(
            ManyToManyRelation(
                txs=_unique_by_id([tx, *cluster_txs]),
                docs=cluster_docs,
                hypothesis={"key": key, "size_docs": len(cluster_docs), "size_txs": len(cluster_txs) + 1},
            )
        )

    logger.debug(
        "Tx %s relations: 1:1=%d N:1=%d 1:N=%d N:N=%d",
        tx.id,
        len(relations.one_to_one),
        len(relations.many_to_one),
        len(relations.one_to_many),
        len(relations.many_to_many),
    )
    return relations


def filter_many_to_one_candidates(candidates: list[DocCandidate], tx: Tx) -> list[DocCandidate]:
    """Same-vendor candidates; when any carries the invoice number, only those."""
    filtered = candidates
    if tx.vendor_norm:
        filtered = [c for c in filtered if c.doc.vendor_norm and c.doc.vendor_norm == tx.vendor_norm]
    if any(c.features.invoice_no_equal for c in filtered):
        filtered = [c for c in filtered if c.features.invoice_no_equal]
    return filtered


def is_one_to_one_plausible(candidate: DocCandidate, cfg: MatchingConfig) -> bool:
    features = candidate.features
    if not features.amount_ok:
        return False
    if features.has_identifier:
        return True
    return features.days_delta is not None and features.days_delta <= cfg.date_window_days


def is_potential_partial_flow(candidate: DocCandidate, cfg: MatchingConfig) -> bool:
    """Partial wording, an identifier with a differing amount, or an underpayment."""
    features = candidate.features
    if features.partial_keywords:
        return True
    doc_amount = candidate.doc.amount.abs()
    if features.has_identifier and not amount_compatible(doc_amount, candidate.tx_amount, cfg):
        return True
    return candidate.tx_amount < doc_amount


def find_related_txs(
    doc: Doc, seed_tx: Tx, txs: list[Tx], cfg: MatchingConfig, limit: int = RELATED_TX_LIMIT
) -> list[Tx]:
    """Other pool transactions that could pay the same document, without contradicting identifiers."""
    window = calc_window(doc, cfg)
    related: list[Tx] = []
    for tx in txs:
        if tx.id == seed_tx.id or tx.tenant_key != doc.tenant_key:
            continue
        if tx.currency != doc.currency or not window.contains(tx.date):
            continue
        if doc.iban and tx.iban and not ids_equal(doc.iban, tx.iban):
            continue
        if doc.vendor_norm and tx.vendor_norm and doc.vendor_norm != tx.vendor_norm:
            continue
        if doc.e2e_id and tx.e2e_id and not ids_equal(doc.e2e_id, tx.e2e_id):
            continue
        related.append(tx)
        if len(related) >= limit:
            break
    return related


def build_exact_many_to_many(
    tx: Tx,
    candidates: list[DocCandidate],
    tx_pool: list[Tx],
    cfg: MatchingConfig,
) -> ManyToManyRelation | None:
    """Same-vendor documents and window transactions whose totals agree."""
    if len(candidates) < 2:
        return None
    if tx.vendor_norm:
        candidates = [c for c in candidates if c.doc.vendor_norm == tx.vendor_norm]
    if len(candidates) < 2:
        return None

    docs = [c.doc for c in candidates]
    windows = [calc_window(doc, cfg) for doc in docs]
    txs = []
    for other in tx_pool:
        if other.id == tx.id:
            txs.append(other)
            continue
        if other.tenant_key != tx.tenant_key or other.currency != tx.currency:
            continue
        if tx.vendor_norm and other.vendor_norm and other.vendor_norm != tx.vendor_norm:
            continue
        if other.date is None or not any(window.contains(other.date) for window in windows):
            continue
        txs.append(other)
    if len(txs) < 2:
        return None

    sum_docs = sum_money([doc.amount.abs() for doc in docs])
    sum_txs = sum_money([other.amount for other in txs])
    if not amount_compatible(sum_docs, sum_txs, cfg):
        return None

    return ManyToManyRelation(
        txs=_unique_by_id(txs),
        docs=_unique_by_id(docs),
        hypothesis={"key": "many_to_many_exact_sum", "size_docs": len(docs), "size_txs": len(txs)},
    )


def group_key_for_cluster(tx: Tx, doc: Doc | None = None) -> str:
    """tenant|currency|vendor|iban key shared by members of one wizard cluster."""
    vendor = tx.vendor_norm or (doc.vendor_norm if doc else None) or ""
    iban = tx.iban or (doc.iban if doc else None) or ""
    return "|".join([tx.tenant_key, tx.currency or "", vendor.lower(), canon_id(iban)])


def _unique_by_id(items: list) -> list:
    seen: set[str] = set()
    out = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out
