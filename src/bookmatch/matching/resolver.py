#!/usr/bin/env python3
"""
Decision Conflict Resolution

Collapses the decisions of all pipeline stages into a consistent set: every
transaction and document is bound by at most one final or partial decision.
Binding decisions are accepted greedily in priority order:

1. state (final before partial)
2. hard identifier evidence
3. relation (1:1, 1:N, N:1, N:N)
4. confidence, descending
5. fewer entities
6. canonical decision key

Losers are demoted to ambiguous suggestions. The outcome does not depend on
the order in which decisions arrive.
"""

import logging
from dataclasses import dataclass, field, replace
from functools import cmp_to_key

from ..core.json_utils import format_json
from ..core.models import MatchDecision, MatchRelationType, MatchState

logger = logging.getLogger(__name__)

CONFLICT_DEMOTED = "CONFLICT_DEMOTED"
INVALID_FINAL_MISSING_IDS = "INVALID_FINAL_MISSING_IDS"
INVALID_FINAL_MANY_TO_MANY = "INVALID_FINAL_MANY_TO_MANY"

DEMOTED_MAX_CONFIDENCE = 0.6

_STATE_RANK = {
    MatchState.FINAL: 0,
    MatchState.PARTIAL: 1,
    MatchState.SUGGESTED: 2,
    MatchState.AMBIGUOUS: 3,
}

_RELATION_RANK = {
    MatchRelationType.ONE_TO_ONE: 0,
    MatchRelationType.ONE_TO_MANY: 1,
    MatchRelationType.MANY_TO_ONE: 2,
    MatchRelationType.MANY_TO_MANY: 3,
}


@dataclass
class ResolvedDecisions:
    """Accepted binding decisions, the suggestion list, and both combined."""

    final: list[MatchDecision] = field(default_factory=list)
    suggestions: list[MatchDecision] = field(default_factory=list)
    all: list[MatchDecision] = field(default_factory=list)


def resolve_conflicts(decisions: list[MatchDecision]) -> ResolvedDecisions:
    normalized = sorted((normalize_decision(d) for d in decisions), key=cmp_to_key(compare_by_priority))
    deduped = _dedupe(normalized)

    binding = [d for d in deduped if d.state.is_binding]
    suggestions = [d for d in deduped if not d.state.is_binding]

    accepted: list[MatchDecision] = []
    demoted: list[MatchDecision] = []
    used_tx: set[str] = set()
    used_doc: set[str] = set()

    for decision in binding:
        if any(tx_id in used_tx for tx_id in decision.tx_ids) or any(
            doc_id in used_doc for doc_id in decision.doc_ids
        ):
            demoted.append(demote_decision(decision, CONFLICT_DEMOTED))
            continue
        accepted.append(decision)
        used_tx.update(decision.tx_ids)
        used_doc.update(decision.doc_ids)

    accepted_ids = {(tuple(d.tx_ids), tuple(d.doc_ids)) for d in accepted}
    pool = [d for d in suggestions + demoted if (tuple(d.tx_ids), tuple(d.doc_ids)) not in accepted_ids]
    pool.sort(key=cmp_to_key(compare_by_priority))

    if demoted:
        logger.debug("Resolver demoted %d conflicting decisions", len(demoted))
    return ResolvedDecisions(final=accepted, suggestions=pool, all=accepted + pool)


def normalize_decision(decision: MatchDecision) -> MatchDecision:
    """
    Canonical form of a decision.

    Ids are deduplicated and sorted, confidence clamped to [0, 1], reason
    codes deduplicated in order. Binding decisions that cannot be persisted
    are demoted to ambiguous.
    """
    state = decision.state
    reason_codes = _unique_stable(decision.reason_codes)
    tx_ids = sorted(set(decision.tx_ids))
    doc_ids = sorted(set(decision.doc_ids))

    if state.is_binding and (not tx_ids or not doc_ids):
        state = MatchState.AMBIGUOUS
        reason_codes = _unique_stable([*reason_codes, INVALID_FINAL_MISSING_IDS])
    if state.is_binding and decision.relation_type == MatchRelationType.MANY_TO_MANY:
        state = MatchState.AMBIGUOUS
        reason_codes = _unique_stable([*reason_codes, INVALID_FINAL_MANY_TO_MANY])

    return replace(
        decision,
        state=state,
        tx_ids=tx_ids,
        doc_ids=doc_ids,
        confidence=_clamp01(decision.confidence),
        reason_codes=reason_codes,
        inputs=dict(decision.inputs or {}),
    )


def decision_key(decision: MatchDecision) -> str:
    return (
        f"{decision.state.value}|{decision.relation_type.value}"
        f"|tx:{','.join(decision.tx_ids)}|doc:{','.join(decision.doc_ids)}"
    )


def has_overlap(a: MatchDecision, b: MatchDecision) -> bool:
    """True when the decisions share a transaction or a document."""
    return bool(set(a.tx_ids) & set(b.tx_ids)) or bool(set(a.doc_ids) & set(b.doc_ids))


def compare_by_priority(a: MatchDecision, b: MatchDecision) -> int:
    """
    Comparator: negative when a should be accepted before b.

    Ties on the decision key fall back to group id, reason codes and
    inputs, so the survivor of a duplicate key is independent of input order.
    """
    for left, right in (
        (_STATE_RANK[a.state], _STATE_RANK[b.state]),
        (0 if a.is_hard else 1, 0 if b.is_hard else 1),
        (_RELATION_RANK[a.relation_type], _RELATION_RANK[b.relation_type]),
        (-a.confidence, -b.confidence),
        (len(a.tx_ids) + len(a.doc_ids), len(b.tx_ids) + len(b.doc_ids)),
        (decision_key(a), decision_key(b)),
        (a.match_group_id or "", b.match_group_id or ""),
        (",".join(a.reason_codes), ",".join(b.reason_codes)),
        (format_json(a.inputs, sort_keys=True), format_json(b.inputs, sort_keys=True)),
    ):
        if left != right:
            return -1 if left < right else 1
    return 0


def demote_decision(decision: MatchDecision, reason: str) -> MatchDecision:
    return replace(
        decision,
        state=MatchState.AMBIGUOUS,
        confidence=min(decision.confidence, DEMOTED_MAX_CONFIDENCE),
        reason_codes=_unique_stable([*decision.reason_codes, reason]),
    )


def _dedupe(decisions: list[MatchDecision]) -> list[MatchDecision]:
    seen: set[str] = set()
    out = []
    for decision in decisions:
        key = decision_key(decision)
        if key in seen:
            continue
        seen.add(key)
        out.append(decision)
    return out


def _unique_stable(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _clamp01(value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:
        return 0.0
    return max(0.0, min(1.0, number))
