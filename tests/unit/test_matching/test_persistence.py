#!/usr/bin/env python3
"""Tests for projecting decisions into repository operations."""

import logging

import pytest

from bookmatch.core.models import LinkState, MatchRelationType, MatchState
from bookmatch.core.money import Money
from bookmatch.matching.persistence import (
    EdgeOp,
    GroupOp,
    UpdateDocOp,
    UpdateLineItemOp,
    assert_decision_persistable,
    extract_matched_item_refs,
    project_unique_edge_refs,
    to_apply_ops,
    to_audit_record,
)
from bookmatch.matching.signals import group_id_for
from tests.fixtures.synthetic_data import TENANT, make_decision


def kinds(ops):
    return [op.kind for op in ops]


@pytest.mark.unit
@pytest.mark.persistence
class TestToApplyOps:
    """Test the operation projection."""

    def test_final_one_to_one(self):
        decision = make_decision(["tx-1"], ["doc-1"], match_group_id=group_id_for(["tx-1"], ["doc-1"]))

        ops = to_apply_ops(decision)

        assert kinds(ops) == ["upsert_edge", "upsert_group", "update_doc", "update_tx"]
        edge = ops[0]
        assert isinstance(edge, EdgeOp)
        assert edge.tenant_id == TENANT
        assert edge.link_state == LinkState.LINKED
        assert ops[2].open_amount == Money.zero()

    def test_projection_is_deterministic(self):
        decision = make_decision(["tx-2", "tx-1"], ["doc-1"], match_group_id="grp_1")
        assert to_apply_ops(decision) == to_apply_ops(decision)

    def test_edges_cover_every_pair(self):
        decision = make_decision(
            ["tx-1", "tx-2"],
            ["doc-1"],
            state=MatchState.PARTIAL,
            relation_type=MatchRelationType.ONE_TO_MANY,
            match_group_id="grp_1",
            open_amount_after=Money.from_cents(800),
        )

        ops = to_apply_ops(decision)

        edges = [op for op in ops if isinstance(op, EdgeOp)]
        assert [(e.tx_id, e.doc_id) for e in edges] == [("tx-1", "doc-1"), ("tx-2", "doc-1")]
        assert all(e.link_state == LinkState.PARTIAL for e in edges)
        doc_update = next(op for op in ops if isinstance(op, UpdateDocOp))
        assert doc_update.open_amount == Money.from_cents(800)

    def test_many_to_many_only_writes_group(self):
        decision = make_decision(
            ["tx-1", "tx-2"],
            ["doc-1", "doc-2"],
            state=MatchState.SUGGESTED,
            relation_type=MatchRelationType.MANY_TO_MANY,
            match_group_id="grp_nn",
        )

        ops = to_apply_ops(decision)

        assert len(ops) == 1
        assert isinstance(ops[0], GroupOp)

    def test_suggestion_writes_edges_without_state_updates(self):
        decision = make_decision(["tx-1"], ["doc-1"], state=MatchState.SUGGESTED, match_group_id="grp_s")
        ops = to_apply_ops(decision)
        assert kinds(ops) == ["upsert_edge", "upsert_group"]
        assert ops[0].link_state == LinkState.SUGGESTED

    def test_ambiguous_without_group_writes_nothing(self):
        decision = make_decision(["tx-1"], [], state=MatchState.AMBIGUOUS)
        assert to_apply_ops(decision) == []

    def test_line_items_for_single_document(self):
        decision = make_decision(
            ["tx-1"],
            ["doc-1"],
            relation_type=MatchRelationType.ONE_TO_MANY,
            match_group_id="grp_items",
            inputs={"tenant_id": TENANT, "matched_item_ids": ["i1", "line:2"]},
        )

        items = [op for op in to_apply_ops(decision) if isinstance(op, UpdateLineItemOp)]

        assert [(op.line_item_id, op.line_index) for op in items] == [("i1", None), (None, 2)]
        assert items[1].item_key == "line:2"
        assert all(op.open_amount == Money.zero() for op in items)

    def test_non_persistable_final_is_skipped_with_warning(self, caplog):
        decision = make_decision(["tx-1"], [])
        with caplog.at_level(logging.WARNING, logger="bookmatch.matching.persistence"):
            assert to_apply_ops(decision) == []
        assert "missing_ids_for_final" in caplog.text

    def test_created_at_is_stamped(self):
        ops = to_apply_ops(make_decision(["tx-1"], ["doc-1"], match_group_id="grp_1"), created_at="2024-03-20")
        assert ops[0].to_dict()["created_at"] == "2024-03-20"


@pytest.mark.unit
@pytest.mark.persistence
class TestProjectionHelpers:
    """Test persistability checks, item refs and audit records."""

    def test_assert_decision_persistable(self):
        assert assert_decision_persistable(make_decision(["tx-1"], ["doc-1"])) is None
        assert assert_decision_persistable(
            make_decision(["tx-1"], ["doc-1"], relation_type=MatchRelationType.MANY_TO_MANY)
        ) == "invalid_final_many_to_many"
        assert assert_decision_persistable(make_decision([], [], state=MatchState.AMBIGUOUS)) is None

    def test_structured_refs_win(self):
        refs = extract_matched_item_refs(
            [{"id": " i1 "}, {"line_index": 3}, {"id": "i1"}, {"line_index": True}, "junk"],
            ["ignored"],
        )
        assert refs == [{"id": "i1", "line_index": None}, {"id": None, "line_index": 3}]

    def test_id_list_fallback(self):
        refs = extract_matched_item_refs(None, ["a", "line:4", "", 7, "a"])
        assert refs == [{"id": "a", "line_index": None}, {"id": None, "line_index": 4}]

    def test_unique_edge_refs(self):
        decision = make_decision(["tx-1", "tx-2"], ["doc-1"], match_group_id="grp_1")
        doc_refs, tx_refs = project_unique_edge_refs(to_apply_ops(decision) * 2)
        assert len(doc_refs) == 1
        assert len(tx_refs) == 2

    def test_audit_record_for_unpersisted_decision(self):
        record = to_audit_record(make_decision(["tx-1"], [], state=MatchState.AMBIGUOUS), "2024-03-20T00:00:00")
        data = record.to_dict()
        assert data["decision_key"] == "ambiguous|one_to_one|tx:tx-1|doc:|grp:"
        assert data["tenant_id"] == TENANT
        assert data["event_time"] == "2024-03-20T00:00:00"
