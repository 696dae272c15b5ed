#!/usr/bin/env python3
"""
Integration tests for the matching pipeline.

Runs whole batches through run_pipeline against an in-memory repository
and checks decisions, lifecycle results and the persisted tables.
"""

import copy

import pytest

from bookmatch.core.models import Doc, LinkState, MatchDecision, MatchRelationType, MatchState, Tx
from bookmatch.lifecycle.models import DocLifecycleKind, TxLifecycleKind
from bookmatch.matching.pipeline import (
    EventType,
    PipelineInput,
    PipelineOptions,
    generate_match_summary,
    inject_tenant_id,
    run_pipeline,
)
from bookmatch.matching.persistence import UpdateDocOp, to_apply_ops
from bookmatch.matching.repository import InMemoryMatchRepository
from tests.fixtures.synthetic_data import (
    SYNTHETIC_IBANS,
    TENANT,
    generate_synthetic_batch,
    make_doc,
    make_tx,
)


def parse_batch(batch):
    return [Doc.from_dict(d) for d in batch["docs"]], [Tx.from_dict(t) for t in batch["txs"]]


def mixed_batch():
    """Item bundle for tenant-a, a lone invoice for tenant-b, a card payment for tenant-c."""
    docs = [
        make_doc(
            "bundle-doc",
            amount="17.00",
            items=[
                {"id": "i1", "amount": "29.00"},
                {"id": "i2", "amount": "-20.00"},
                {"id": "i3", "amount": "8.00"},
            ],
        ),
        make_doc("lonely-doc", tenant_id="tenant-b"),
    ]
    txs = [
        make_tx("bundle-tx", amount="9.00"),
        make_tx(
            "card-tx",
            tenant_id="tenant-c",
            amount="12.50",
            counterparty_name="Baeckerei Sonnenschein",
            reference="Kartenzahlung",
        ),
    ]
    return docs, txs


class HistoryRecordingRepository(InMemoryMatchRepository):
    def __init__(self):
        super().__init__()
        self.history_calls = []

    def load_tx_history(self, tenant_id, lookback_days, limit, vendor_key=None, until=None):
        self.history_calls.append({"tenant_id": tenant_id, "vendor_key": vendor_key, "until": until, "limit": limit})
        return super().load_tx_history(tenant_id, lookback_days, limit, vendor_key=vendor_key, until=until)


@pytest.mark.integration
@pytest.mark.matching
class TestRunPipeline:
    """Test complete matching runs."""

    def test_invoice_number_batch_is_linked_in_prepass(self, repo, now):
        docs, txs = parse_batch(generate_synthetic_batch(num_pairs=5))

        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))

        assert result.prepass_final_count == 5
        assert len(result.decisions) == 5
        assert all(d.state == MatchState.FINAL for d in result.decisions)
        assert all(d.reason_codes == ["HARD_INVOICE_NO"] for d in result.decisions)
        assert sorted((d.tx_ids[0], d.doc_ids[0]) for d in result.decisions) == [
            (f"tx-{i:03d}", f"doc-{i:03d}") for i in range(5)
        ]
        assert result.doc_lifecycle == []
        assert result.tx_lifecycle == []
        assert all(record["link_state"] == "linked" for record in repo.tables["docs"].values())
        assert len(repo.audit_log) == 5

    def test_mixed_batch(self, repo, now):
        docs, txs = mixed_batch()

        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))

        assert len(result.decisions) == 1
        partial = result.decisions[0]
        assert partial.state == MatchState.PARTIAL
        assert partial.reason_codes == ["ITEM_FIRST_BUNDLE_MATCH", "PARTIAL_PAYMENT_SUM"]
        assert partial.tenant_id == TENANT

        assert [(r.doc_id, r.kind) for r in result.doc_lifecycle] == [("lonely-doc", DocLifecycleKind.AWAITING_TX)]
        assert [(r.tx_id, r.kind) for r in result.tx_lifecycle] == [("card-tx", TxLifecycleKind.NEEDS_EIGENBELEG)]

        stored = repo.tables["docs"][f"{TENANT}|bundle-doc"]
        assert stored["link_state"] == "partial"
        assert stored["open_amount"] == "8.00"

    def test_rerun_is_idempotent(self, repo, now):
        batch = generate_synthetic_batch(num_pairs=3)

        docs, txs = repo.store_records(*parse_batch(batch))
        first = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))
        snapshot = copy.deepcopy(repo.tables)

        docs, txs = repo.store_records(*parse_batch(batch))
        second = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))

        assert len(first.decisions) == 3
        assert second.decisions == []
        assert all(doc.link_state == LinkState.LINKED for doc in docs)
        assert repo.tables == snapshot

    def test_identical_candidates_are_never_auto_linked(self, repo, now):
        docs = [make_doc()]
        txs = [make_tx("tx-1"), make_tx("tx-2", booking_date="2024-03-11")]

        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))

        assert result.decisions
        assert all(d.state == MatchState.SUGGESTED for d in result.decisions)
        assert repo.tables["docs"] == {}
        assert len(repo.tables["suggestions"]) == len(result.decisions)

    def test_tenant_filter(self, repo, now):
        docs, txs = mixed_batch()

        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now, tenant_filter="tenant-b"))

        assert result.decisions == []
        assert [r.doc_id for r in result.doc_lifecycle] == ["lonely-doc"]
        assert result.tx_lifecycle == []

    @pytest.mark.parametrize("options", [{"max_tx": 2}, {"max_docs": 2}])
    def test_input_caps(self, repo, now, options):
        docs, txs = parse_batch(generate_synthetic_batch(num_pairs=5))

        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now, **options))

        assert len(result.decisions) == 2

    def test_cfg_override_widens_tolerance(self, repo, now):
        docs = [make_doc(iban=SYNTHETIC_IBANS[0])]
        txs = [make_tx(amount="103.00", iban=SYNTHETIC_IBANS[0], counterparty_name="Kranich Logistik AG")]

        strict = run_pipeline(PipelineInput(docs, txs), InMemoryMatchRepository(), PipelineOptions(now=now))
        relaxed = run_pipeline(
            PipelineInput(docs, txs),
            InMemoryMatchRepository(),
            PipelineOptions(now=now, cfg_override={"amount_tolerance_cents": 500}),
        )

        assert strict.decisions == []
        assert [d.reason_codes for d in relaxed.decisions] == [["HARD_IBAN_AMOUNT"]]

    def test_debug_counters(self, repo, now):
        docs, txs = parse_batch(generate_synthetic_batch(num_pairs=4))

        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now, debug=True))

        assert result.debug.prepass == {"final": 4, "remaining_docs": 0, "remaining_txs": 0}
        assert result.debug.resolved == {"final": 4, "suggestions": 0}
        assert result.debug.partitions["doc_tx"] == {"docs": 4, "txs": 4}
        assert result.to_dict()["debug"]["generated"]["decisions"] == 4

    def test_no_debug_by_default(self, repo, now):
        docs, txs = parse_batch(generate_synthetic_batch(num_pairs=1))
        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))
        assert result.debug is None
        assert result.to_dict()["debug"] is None


@pytest.mark.integration
@pytest.mark.lifecycle
class TestSubscriptionHistory:
    """Test history loading for transaction-triggered runs."""

    def streaming_tx(self, tx_id, booking_date):
        return make_tx(
            tx_id,
            tenant_id="tenant-c",
            amount="12.99",
            booking_date=booking_date,
            counterparty_name="Streamflix",
            reference="Kundennummer 55102",
            iban=SYNTHETIC_IBANS[2],
        )

    def test_tx_created_event_loads_history(self, now):
        repo = HistoryRecordingRepository()
        repo.store_records([], [self.streaming_tx("tx-jan", "2024-01-05"), self.streaming_tx("tx-feb", "2024-02-05")])
        tx = self.streaming_tx("tx-mar", "2024-03-05")

        result = run_pipeline(
            PipelineInput([], [tx]), repo, PipelineOptions(now=now, event_type=EventType.TX_CREATED)
        )

        assert [r.kind for r in result.tx_lifecycle] == [TxLifecycleKind.SUBSCRIPTION]
        assert repo.history_calls == [
            {"tenant_id": "tenant-c", "vendor_key": "streamflix", "until": now, "limit": 200}
        ]

    def test_nightly_run_skips_history(self, now):
        repo = HistoryRecordingRepository()
        repo.store_records([], [self.streaming_tx("tx-jan", "2024-01-05"), self.streaming_tx("tx-feb", "2024-02-05")])
        tx = self.streaming_tx("tx-mar", "2024-03-05")

        result = run_pipeline(PipelineInput([], [tx]), repo, PipelineOptions(now=now))

        assert [r.kind for r in result.tx_lifecycle] == [TxLifecycleKind.MISSING_DOC]
        assert repo.history_calls == []

    def test_subscription_suggests_linked_document_without_relinking(self, now):
        repo = HistoryRecordingRepository()
        linked_doc = make_doc(
            "doc-streamflix",
            tenant_id="tenant-c",
            amount="12.99",
            vendor_name="Streamflix",
            invoice_date="2024-03-01",
            due_date="2024-03-15",
            link_state="linked",
        )
        repo.store_records(
            [linked_doc], [self.streaming_tx("tx-jan", "2024-01-05"), self.streaming_tx("tx-feb", "2024-02-05")]
        )
        tx = self.streaming_tx("tx-mar", "2024-03-05")

        result = run_pipeline(
            PipelineInput([linked_doc], [tx]), repo, PipelineOptions(now=now, event_type=EventType.TX_CREATED)
        )

        assert [r.kind for r in result.tx_lifecycle] == [TxLifecycleKind.SUBSCRIPTION]
        assert [(d.state, d.tx_ids, d.doc_ids) for d in result.decisions] == [
            (MatchState.SUGGESTED, ["tx-mar"], ["doc-streamflix"])
        ]
        assert not any(isinstance(op, UpdateDocOp) for d in result.decisions for op in to_apply_ops(d))
        assert repo.tables["docs"]["tenant-c|doc-streamflix"]["link_state"] == "linked"
        assert result.doc_lifecycle == []


@pytest.mark.integration
@pytest.mark.matching
class TestPipelineHelpers:
    """Test tenant backfill and run summaries."""

    def test_inject_tenant_id_from_transaction(self):
        decision = MatchDecision(
            state=MatchState.FINAL,
            relation_type=MatchRelationType.ONE_TO_ONE,
            tx_ids=["tx-1"],
            doc_ids=["doc-1"],
            confidence=1.0,
            reason_codes=["SUBSET_SUM_EXACT"],
            inputs={},
        )

        enriched = inject_tenant_id(decision, {}, {"tx-1": make_tx(tenant_id="tenant-z")})

        assert enriched.inputs["tenant_id"] == "tenant-z"
        assert decision.inputs == {}

    def test_inject_tenant_id_falls_back_to_document(self):
        decision = MatchDecision(
            state=MatchState.SUGGESTED,
            relation_type=MatchRelationType.ONE_TO_ONE,
            tx_ids=["unknown"],
            doc_ids=["doc-1"],
            confidence=0.7,
            reason_codes=["SCORE_ONLY"],
            inputs={},
        )

        enriched = inject_tenant_id(decision, {"doc-1": make_doc(tenant_id="tenant-y")}, {})

        assert enriched.tenant_id == "tenant-y"

    def test_generate_match_summary(self, repo, now):
        docs, txs = mixed_batch()
        result = run_pipeline(PipelineInput(docs, txs), repo, PipelineOptions(now=now))

        summary = generate_match_summary(result)

        assert summary["total_decisions"] == 1
        assert summary["by_state"] == {"partial": 1}
        assert summary["by_relation"] == {"one_to_many": 1}
        assert summary["doc_lifecycle"] == {"awaiting_tx": 1}
        assert summary["tx_lifecycle"] == {"needs_eigenbeleg": 1}
        assert summary["linked_tx_ids"] == ["bundle-tx"]
        assert summary["linked_doc_ids"] == ["bundle-doc"]
