#!/usr/bin/env python3
"""
Link State Partitioning

Splits a batch into the pool that goes through matching (tenants with both
matchable documents and matchable transactions) and the pools that only get
lifecycle classification.
"""

import logging
from dataclasses import dataclass, field

from ..core.models import Doc, Tx

logger = logging.getLogger(__name__)


@dataclass
class PartitionMeta:
    """Counters describing one partitioning pass."""

    total_docs: int = 0
    total_txs: int = 0
    matchable_docs: int = 0
    matchable_txs: int = 0
    skipped_docs: int = 0
    skipped_txs: int = 0
    tenants: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class Partitions:
    """
    Matching pools.

    doc_tx_docs / doc_tx_txs: tenants with both sides matchable
    doc_only: matchable documents of tenants without matchable transactions
    tx_only: matchable transactions of tenants without matchable documents
    """

    doc_tx_docs: list[Doc] = field(default_factory=list)
    doc_tx_txs: list[Tx] = field(default_factory=list)
    doc_only: list[Doc] = field(default_factory=list)
    tx_only: list[Tx] = field(default_factory=list)
    meta: PartitionMeta = field(default_factory=PartitionMeta)


def partition_by_link_state(docs: list[Doc], txs: list[Tx]) -> Partitions:
    """
    Partition documents and transactions per tenant by link state.

    Only unlinked and suggested records are matchable. Linked and partial
    records are skipped here; the pipeline still sees them as history and
    subscription context. Input order is preserved inside each pool.
    """
    docs_by_tenant: dict[str, list[Doc]] = {}
    txs_by_tenant: dict[str, list[Tx]] = {}
    tenant_order: list[str] = []

    def register(tenant: str) -> None:
        if tenant not in docs_by_tenant:
            docs_by_tenant[tenant] = []
            txs_by_tenant[tenant] = []
            tenant_order.append(tenant)

    meta = PartitionMeta(total_docs=len(docs), total_txs=len(txs))

    for doc in docs:
        if not doc.link_state.is_matchable:
            meta.skipped_docs += 1
            continue
        register(doc.tenant_key)
        docs_by_tenant[doc.tenant_key].append(doc)

    for tx in txs:
        if not tx.link_state.is_matchable:
            meta.skipped_txs += 1
            continue
        register(tx.tenant_key)
        txs_by_tenant[tx.tenant_key].append(tx)

    result = Partitions(meta=meta)
    for tenant in tenant_order:
        tenant_docs = docs_by_tenant[tenant]
        tenant_txs = txs_by_tenant[tenant]
        if tenant_docs and tenant_txs:
            result.doc_tx_docs.extend(tenant_docs)
            result.doc_tx_txs.extend(tenant_txs)
        elif tenant_docs:
            result.doc_only.extend(tenant_docs)
        else:
            result.tx_only.extend(tenant_txs)

    meta.matchable_docs = len(result.doc_tx_docs) + len(result.doc_only)
    meta.matchable_txs = len(result.doc_tx_txs) + len(result.tx_only)
    meta.tenants = len(tenant_order)

    logger.debug(
        "Partitioned %d docs / %d txs: doc_tx=%d/%d doc_only=%d tx_only=%d",
        len(docs),
        len(txs),
        len(result.doc_tx_docs),
        len(result.doc_tx_txs),
        len(result.doc_only),
        len(result.tx_only),
    )
    return result
