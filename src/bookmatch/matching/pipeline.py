#!/usr/bin/env python3
"""
Matching Pipeline

Orchestrates one bounded matching run:

1. tenant filter and input caps
2. partition by link state
3. lifecycle classification of doc-only / tx-only pools
4. hard identifier prepass
5. item-first line item allocation
6. candidate building, relation detection and matching
7. conflict resolution
8. persistence through the MatchRepository

The run is synchronous; the repository is the only I/O.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..core.config import MatchingConfig
from ..core.dates import FinancialDate
from ..core.models import Doc, LinkState, MatchDecision, Tx, normalize_tenant_id
from ..lifecycle.doc_lifecycle import evaluate_doc_lifecycle
from ..lifecycle.models import DocLifecycleResult, TxLifecycleKind, TxLifecycleResult
from ..lifecycle.tx_lifecycle import evaluate_tx_lifecycle
from .candidates import candidates_for_tx
from .item_first import run_item_first_phase
from .matchers import match_many_to_many, match_many_to_one, match_one_to_many, match_one_to_one
from .partition import partition_by_link_state
from .prepass import prepass_hard_matches
from .relations import detect_relations_for_tx
from .repository import MatchRepository
from .resolver import resolve_conflicts

logger = logging.getLogger(__name__)

# Upper bound of history transactions loaded per lifecycle evaluation
HISTORY_LIMIT = 200


class EventType(Enum):
    """What triggered the run."""

    TX_CREATED = "tx_created"
    DOC_CREATED = "doc_created"
    NIGHTLY = "nightly"


@dataclass
class PipelineInput:
    docs: list[Doc]
    txs: list[Tx]
    now: FinancialDate | None = None


@dataclass
class PipelineOptions:
    """
    Per-run options.

    cfg_override is merged into the base configuration with
    MatchingConfig.with_overrides; limits of None or <= 0 mean unlimited.
    """

    now: FinancialDate | None = None
    cfg_override: dict[str, Any] | None = None
    tenant_filter: str | None = None
    max_tx: int | None = None
    max_docs: int | None = None
    max_relations_per_tx: int | None = None
    event_type: EventType = EventType.NIGHTLY
    debug: bool = False


@dataclass
class PipelineDebug:
    """Stage counters of one run."""

    partitions: dict[str, Any] = field(default_factory=dict)
    prepass: dict[str, int] = field(default_factory=dict)
    item_first: dict[str, int] = field(default_factory=dict)
    generated: dict[str, int] = field(default_factory=dict)
    resolved: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "partitions": self.partitions,
            "prepass": self.prepass,
            "item_first": self.item_first,
            "generated": self.generated,
            "resolved": self.resolved,
        }


@dataclass
class PipelineResult:
    decisions: list[MatchDecision] = field(default_factory=list)
    doc_lifecycle: list[DocLifecycleResult] = field(default_factory=list)
    tx_lifecycle: list[TxLifecycleResult] = field(default_factory=list)
    prepass_final_count: int = 0
    debug: PipelineDebug | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decisions": [d.to_dict() for d in self.decisions],
            "doc_lifecycle": [r.to_dict() for r in self.doc_lifecycle],
            "tx_lifecycle": [r.to_dict() for r in self.tx_lifecycle],
            "prepass_final_count": self.prepass_final_count,
            "debug": self.debug.to_dict() if self.debug else None,
        }


def run_pipeline(
    pipeline_input: PipelineInput,
    repo: MatchRepository,
    options: PipelineOptions | None = None,
    cfg: MatchingConfig | None = None,
) -> PipelineResult:
    """
    Run the full matching pipeline over one batch.

    Args:
        pipeline_input: Documents and transactions of the batch
        repo: Repository receiving the results and serving history
        options: Run options (filter, limits, event type, overrides)
        cfg: Base matching configuration (default: built-in defaults)

    Returns:
        PipelineResult with resolved decisions and lifecycle classifications

    Raises:
        RepositoryError: Propagated unchanged from the repository
    """
    options = options or PipelineOptions()
    cfg = (cfg or MatchingConfig()).with_overrides(options.cfg_override)
    now = options.now or pipeline_input.now or FinancialDate.today()

    docs = _apply_limit(_apply_tenant_filter(pipeline_input.docs, options.tenant_filter), options.max_docs)
    txs = _apply_limit(_apply_tenant_filter(pipeline_input.txs, options.tenant_filter), options.max_tx)
    doc_by_id = {doc.id: doc for doc in docs}
    tx_by_id = {tx.id: tx for tx in txs}

    parts = partition_by_link_state(docs, txs)
    doc_lifecycle = [evaluate_doc_lifecycle(doc, now, cfg) for doc in parts.doc_only]

    load_history = options.event_type == EventType.TX_CREATED and cfg.enable_subscription_history
    tx_lifecycle = []
    for tx in parts.tx_only:
        history = _load_tx_history(tx, repo, cfg, now) if load_history else None
        tx_lifecycle.append(evaluate_tx_lifecycle(tx, cfg, history))
    subscription_tx_ids = {r.tx_id for r in tx_lifecycle if r.kind == TxLifecycleKind.SUBSCRIPTION}

    prepass = prepass_hard_matches(parts.doc_tx_docs, parts.doc_tx_txs, cfg)
    item_first = run_item_first_phase(prepass.remaining_docs, prepass.remaining_txs, cfg)
    decisions: list[MatchDecision] = [*prepass.final, *item_first.decisions]

    relation_docs = item_first.remaining_docs
    relation_txs = _dedupe_by_id([*item_first.remaining_txs, *parts.tx_only])
    relation_txs = [
        replace(tx, is_recurring_hint=True) if tx.id in subscription_tx_ids and not tx.is_recurring_hint else tx
        for tx in relation_txs
    ]

    relations_count = 0
    for tx in relation_txs:
        include_linked = tx.id in subscription_tx_ids
        docs_for_tx = relation_docs
        if include_linked:
            docs_for_tx = _dedupe_by_id([*relation_docs, *_linked_docs_for_tenant(docs, tx.tenant_key)])

        candidates = candidates_for_tx(tx, docs_for_tx, cfg, include_linked=include_linked)
        relations = detect_relations_for_tx(tx, candidates, relation_txs, cfg)
        relations_count += relations.total
        relations = relations.limited(options.max_relations_per_tx)

        for rel in relations.one_to_one:
            decisions.extend(match_one_to_one(rel, cfg))
        for rel in relations.many_to_one:
            decisions.extend(match_many_to_one(rel, cfg))
        for rel in relations.one_to_many:
            decisions.extend(match_one_to_many(rel, cfg))
        for rel in relations.many_to_many:
            decisions.extend(match_many_to_many(rel, cfg))

    enriched = [inject_tenant_id(decision, doc_by_id, tx_by_id) for decision in decisions]
    resolved = resolve_conflicts(enriched)

    repo.apply_matches(resolved.final)
    repo.save_suggestions(resolved.suggestions)
    repo.audit(resolved.all)

    logger.info(
        "Matching run: %d docs, %d txs -> %d final, %d suggestions, %d doc / %d tx lifecycle results",
        len(docs),
        len(txs),
        len(resolved.final),
        len(resolved.suggestions),
        len(doc_lifecycle),
        len(tx_lifecycle),
    )

    result = PipelineResult(
        decisions=resolved.all,
        doc_lifecycle=doc_lifecycle,
        tx_lifecycle=tx_lifecycle,
        prepass_final_count=len(prepass.final),
    )
    if options.debug:
        result.debug = PipelineDebug(
            partitions={
                "doc_tx": {"docs": len(parts.doc_tx_docs), "txs": len(parts.doc_tx_txs)},
                "doc_only": len(parts.doc_only),
                "tx_only": len(parts.tx_only),
                "meta": parts.meta.to_dict(),
            },
            prepass={
                "final": len(prepass.final),
                "remaining_docs": len(prepass.remaining_docs),
                "remaining_txs": len(prepass.remaining_txs),
            },
            item_first={
                "decisions": len(item_first.decisions),
                "remaining_docs": len(relation_docs),
                "remaining_txs": len(relation_txs),
            },
            generated={"relations": relations_count, "decisions": len(decisions)},
            resolved={"final": len(resolved.final), "suggestions": len(resolved.suggestions)},
        )
    return result


def inject_tenant_id(decision: MatchDecision, doc_by_id: dict[str, Doc], tx_by_id: dict[str, Tx]) -> MatchDecision:
    """Backfill inputs.tenant_id from the first transaction, else the first document."""
    if decision.inputs.get("tenant_id"):
        return decision
    tenant = None
    if decision.tx_ids and decision.tx_ids[0] in tx_by_id:
        tenant = tx_by_id[decision.tx_ids[0]].tenant_id
    if not tenant and decision.doc_ids and decision.doc_ids[0] in doc_by_id:
        tenant = doc_by_id[decision.doc_ids[0]].tenant_id
    return replace(decision, inputs={**decision.inputs, "tenant_id": normalize_tenant_id(tenant)})


def generate_match_summary(result: PipelineResult) -> dict[str, Any]:
    """Counts of decisions by state and relation, and of lifecycle results by kind."""
    return {
        "total_decisions": len(result.decisions),
        "prepass_final": result.prepass_final_count,
        "by_state": dict(Counter(d.state.value for d in result.decisions)),
        "by_relation": dict(Counter(d.relation_type.value for d in result.decisions)),
        "doc_lifecycle": dict(Counter(r.kind.value for r in result.doc_lifecycle)),
        "tx_lifecycle": dict(Counter(r.kind.value for r in result.tx_lifecycle)),
        "linked_tx_ids": sorted({tx_id for d in result.decisions if d.state.is_binding for tx_id in d.tx_ids}),
        "linked_doc_ids": sorted({doc_id for d in result.decisions if d.state.is_binding for doc_id in d.doc_ids}),
    }


def _load_tx_history(tx: Tx, repo: MatchRepository, cfg: MatchingConfig, now: FinancialDate) -> list[Tx]:
    return repo.load_tx_history(
        tx.tenant_key,
        lookback_days=cfg.subscription_detection.lookback_days,
        limit=HISTORY_LIMIT,
        vendor_key=tx.vendor_key,
        until=now,
    )


def _apply_tenant_filter(items: list, tenant_filter: str | None) -> list:
    if not tenant_filter:
        return list(items)
    key = normalize_tenant_id(tenant_filter)
    return [item for item in items if item.tenant_key == key]


def _apply_limit(items: list, limit: int | None) -> list:
    if not limit or limit <= 0:
        return items
    return items[:limit]


def _linked_docs_for_tenant(docs: list[Doc], tenant_key: str) -> list[Doc]:
    return [doc for doc in docs if doc.tenant_key == tenant_key and doc.link_state == LinkState.LINKED]


def _dedupe_by_id(items: list) -> list:
    seen: set[str] = set()
    out = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out
