#!/usr/bin/env python3
"""
Persistence Projection

Pure translation of resolved MatchDecisions into repository operations.
Nothing here touches storage: the same decision always projects to the
same operations, and every operation is an upsert keyed by stable ids, so
applying a run twice leaves storage unchanged.

Operation kinds:
- upsert_edge: one per (transaction, document) pair of a match group
- upsert_group: the match group itself
- update_doc / update_tx: link state (and open amount) of binding matches
- update_invoice_line_item: line items settled by item-first matches
"""

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..core.models import LinkState, MatchDecision, MatchedBy, MatchRelationType, MatchState, normalize_tenant_id
from ..core.money import Money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EdgeOp:
    kind: ClassVar[str] = "upsert_edge"

    tenant_id: str
    doc_id: str
    tx_id: str
    link_state: LinkState
    relation_type: MatchRelationType
    match_group_id: str
    match_state: MatchState
    confidence: float
    reason_codes: tuple[str, ...]
    inputs: dict[str, Any] = field(hash=False)
    matched_by: MatchedBy = MatchedBy.SYSTEM
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "doc_id": self.doc_id,
            "tx_id": self.tx_id,
            "link_state": self.link_state.value,
            "relation_type": self.relation_type.value,
            "match_group_id": self.match_group_id,
            "match_state": self.match_state.value,
            "confidence": self.confidence,
            "reason_codes": list(self.reason_codes),
            "inputs": self.inputs,
            "matched_by": self.matched_by.value,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class GroupOp:
    kind: ClassVar[str] = "upsert_group"

    tenant_id: str
    match_group_id: str
    relation_type: MatchRelationType
    match_state: MatchState
    confidence: float
    reason_codes: tuple[str, ...]
    inputs: dict[str, Any] = field(hash=False)
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "match_group_id": self.match_group_id,
            "relation_type": self.relation_type.value,
            "match_state": self.match_state.value,
            "confidence": self.confidence,
            "reason_codes": list(self.reason_codes),
            "inputs": self.inputs,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class UpdateDocOp:
    kind: ClassVar[str] = "update_doc"

    tenant_id: str
    doc_id: str
    link_state: LinkState
    open_amount: Money | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "doc_id": self.doc_id,
            "link_state": self.link_state.value,
            "open_amount": self.open_amount.to_amount_str() if self.open_amount is not None else None,
        }


@dataclass(frozen=True)
class UpdateTxOp:
    kind: ClassVar[str] = "update_tx"

    tenant_id: str
    tx_id: str
    link_state: LinkState

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "tx_id": self.tx_id,
            "link_state": self.link_state.value,
        }


@dataclass(frozen=True)
class UpdateLineItemOp:
    kind: ClassVar[str] = "update_invoice_line_item"

    tenant_id: str
    invoice_id: str
    line_item_id: str | None
    line_index: int | None
    link_state: LinkState
    open_amount: Money
    match_group_id: str | None

    @property
    def item_key(self) -> str:
        return f"id:{self.line_item_id}" if self.line_item_id else f"line:{self.line_index}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "invoice_id": self.invoice_id,
            "line_item_id": self.line_item_id,
            "line_index": self.line_index,
            "link_state": self.link_state.value,
            "open_amount": self.open_amount.to_amount_str(),
            "match_group_id": self.match_group_id,
        }


ApplyOp = EdgeOp | GroupOp | UpdateDocOp | UpdateTxOp | UpdateLineItemOp


@dataclass
class AuditRecord:
    tenant_id: str
    event_time: str | None
    decision_key: str
    state: MatchState
    relation_type: MatchRelationType
    tx_ids: list[str]
    doc_ids: list[str]
    match_group_id: str | None
    confidence: float
    reason_codes: list[str]
    inputs: dict[str, Any]
    matched_by: MatchedBy

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "event_time": self.event_time,
            "decision_key": self.decision_key,
            "state": self.state.value,
            "relation_type": self.relation_type.value,
            "tx_ids": list(self.tx_ids),
            "doc_ids": list(self.doc_ids),
            "match_group_id": self.match_group_id,
            "confidence": self.confidence,
            "reason_codes": list(self.reason_codes),
            "inputs": self.inputs,
            "matched_by": self.matched_by.value,
        }


@dataclass(frozen=True)
class EdgeDocRef:
    tenant_id: str
    match_group_id: str
    doc_id: str


@dataclass(frozen=True)
class EdgeTxRef:
    tenant_id: str
    match_group_id: str
    tx_id: str


def assert_decision_persistable(decision: MatchDecision) -> str | None:
    """Reason the decision must not be persisted, or None when it is fine."""
    if decision.state.is_binding and (not decision.tx_ids or not decision.doc_ids):
        return "missing_ids_for_final"
    if decision.state.is_binding and decision.relation_type == MatchRelationType.MANY_TO_MANY:
        return "invalid_final_many_to_many"
    return None


def inferred_link_state(decision: MatchDecision) -> LinkState:
    if decision.state == MatchState.FINAL:
        return LinkState.LINKED
    if decision.state == MatchState.PARTIAL:
        return LinkState.PARTIAL
    return LinkState.SUGGESTED


def to_apply_ops(decision: MatchDecision, created_at: str | None = None) -> list[ApplyOp]:
    """
    Project one decision into repository operations.

    Args:
        decision: Resolved decision
        created_at: Timestamp stamped on edge and group rows; None keeps
            the projection fully deterministic

    Returns:
        Operations in application order; empty for non-persistable decisions
    """
    failure = assert_decision_persistable(decision)
    if failure:
        logger.warning("Decision not persisted (%s): tx=%s doc=%s", failure, decision.tx_ids, decision.doc_ids)
        return []

    tx_ids = sorted(set(decision.tx_ids))
    doc_ids = sorted(set(decision.doc_ids))
    tenant_id = decision.tenant_id
    group_id = decision.match_group_id
    link_state = inferred_link_state(decision)
    reason_codes = tuple(decision.reason_codes)
    inputs = dict(decision.inputs or {})

    ops: list[ApplyOp] = []
    group_op = (
        GroupOp(
            tenant_id=tenant_id,
            match_group_id=group_id,
            relation_type=decision.relation_type,
            match_state=decision.state,
            confidence=decision.confidence,
            reason_codes=reason_codes,
            inputs=inputs,
            created_at=created_at,
        )
        if group_id
        else None
    )

    if decision.relation_type == MatchRelationType.MANY_TO_MANY:
        return [group_op] if group_op else []

    if group_id:
        for tx_id in tx_ids:
            for doc_id in doc_ids:
                ops.append(
                    EdgeOp(
                        tenant_id=tenant_id,
                        doc_id=doc_id,
                        tx_id=tx_id,
                        link_state=link_state,
                        relation_type=decision.relation_type,
                        match_group_id=group_id,
                        match_state=decision.state,
                        confidence=decision.confidence,
                        reason_codes=reason_codes,
                        inputs=inputs,
                        matched_by=decision.matched_by,
                        created_at=created_at,
                    )
                )
        ops.append(group_op)

    if not decision.state.is_binding:
        return ops

    for doc_id in doc_ids:
        if decision.state == MatchState.FINAL:
            open_amount = Money.zero()
        else:
            open_amount = decision.open_amount_after
        ops.append(UpdateDocOp(tenant_id, doc_id, link_state, open_amount))
    for tx_id in tx_ids:
        ops.append(UpdateTxOp(tenant_id, tx_id, link_state))

    item_refs = extract_matched_item_refs(inputs.get("matched_item_refs"), inputs.get("matched_item_ids"))
    if len(doc_ids) == 1:
        for ref in item_refs:
            ops.append(
                UpdateLineItemOp(
                    tenant_id=tenant_id,
                    invoice_id=doc_ids[0],
                    line_item_id=ref["id"],
                    line_index=ref["line_index"],
                    link_state=LinkState.LINKED,
                    open_amount=Money.zero(),
                    match_group_id=group_id,
                )
            )

    return ops


def to_audit_record(decision: MatchDecision, event_time: str | None = None) -> AuditRecord:
    """Audit trail entry; produced for every decision, persisted or not."""
    return AuditRecord(
        tenant_id=normalize_tenant_id(decision.inputs.get("tenant_id")),
        event_time=event_time,
        decision_key=audit_decision_key(decision),
        state=decision.state,
        relation_type=decision.relation_type,
        tx_ids=sorted(set(decision.tx_ids)),
        doc_ids=sorted(set(decision.doc_ids)),
        match_group_id=decision.match_group_id,
        confidence=decision.confidence,
        reason_codes=list(decision.reason_codes),
        inputs=dict(decision.inputs or {}),
        matched_by=decision.matched_by,
    )


def audit_decision_key(decision: MatchDecision) -> str:
    tx_ids = ",".join(sorted(set(decision.tx_ids)))
    doc_ids = ",".join(sorted(set(decision.doc_ids)))
    group = decision.match_group_id or ""
    return f"{decision.state.value}|{decision.relation_type.value}|tx:{tx_ids}|doc:{doc_ids}|grp:{group}"


def project_unique_edge_refs(ops: list[ApplyOp]) -> tuple[list[EdgeDocRef], list[EdgeTxRef]]:
    """Distinct (group, doc) and (group, tx) references of all edge operations."""
    doc_refs: dict[tuple[str, str], EdgeDocRef] = {}
    tx_refs: dict[tuple[str, str], EdgeTxRef] = {}
    for op in ops:
        if not isinstance(op, EdgeOp):
            continue
        doc_refs.setdefault((op.match_group_id, op.doc_id), EdgeDocRef(op.tenant_id, op.match_group_id, op.doc_id))
        tx_refs.setdefault((op.match_group_id, op.tx_id), EdgeTxRef(op.tenant_id, op.match_group_id, op.tx_id))
    return list(doc_refs.values()), list(tx_refs.values())


def extract_matched_item_refs(refs_value: Any, ids_value: Any) -> list[dict[str, Any]]:
    """
    Line item references from decision inputs.

    Prefers structured matched_item_refs; falls back to matched_item_ids,
    where "line:N" denotes an item without id.
    """
    out: list[dict[str, Any]] = []
    seen: set[str] = set()

    def push(item_id: str | None, line_index: int | None) -> None:
        key = f"id:{item_id}" if item_id else f"line:{line_index}"
        if key in seen:
            return
        seen.add(key)
        out.append({"id": item_id, "line_index": line_index})

    if isinstance(refs_value, list):
        for entry in refs_value:
            if not isinstance(entry, dict):
                continue
            raw_id = entry.get("id")
            item_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else None
            raw_index = entry.get("line_index")
            line_index = raw_index if isinstance(raw_index, int) and not isinstance(raw_index, bool) else None
            if item_id is None and line_index is None:
                continue
            push(item_id, line_index)
        return out

    if isinstance(ids_value, list):
        for value in ids_value:
            if not isinstance(value, str) or not value.strip():
                continue
            text = value.strip()
            if text.startswith("line:"):
                suffix = text[len("line:"):]
                push(None, int(suffix) if suffix.lstrip("-").isdigit() else None)
            else:
                push(text, None)
    return out
