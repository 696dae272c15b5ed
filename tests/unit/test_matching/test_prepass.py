#!/usr/bin/env python3
"""Tests for the hard identifier prepass."""

import pytest

from bookmatch.core.models import MatchRelationType, MatchState
from bookmatch.matching.prepass import HardKeyType, hard_key_type, prepass_hard_matches
from bookmatch.matching.signals import group_id_for
from tests.fixtures.synthetic_data import SYNTHETIC_IBANS, make_doc, make_tx

OTHER_VENDOR = "Kranich Logistik AG"


@pytest.mark.unit
@pytest.mark.matching
class TestHardKeyType:
    """Test hard key detection for single pairs."""

    def test_iban_with_unrelated_vendor(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        tx = make_tx(iban=SYNTHETIC_IBANS[0], counterparty_name=OTHER_VENDOR)
        assert hard_key_type(doc, tx, cfg) == HardKeyType.IBAN_AMOUNT

    def test_invoice_no_beats_iban(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0], invoice_no="RE-2024-0815")
        tx = make_tx(iban=SYNTHETIC_IBANS[0], reference="Rechnung RE-2024-0815")
        assert hard_key_type(doc, tx, cfg) == HardKeyType.INVOICE_NO

    def test_amount_date_vendor_needs_doc_without_invoice_no(self, cfg):
        assert hard_key_type(make_doc(), make_tx(), cfg) == HardKeyType.AMOUNT_DATE_VENDOR
        assert hard_key_type(make_doc(invoice_no="RE-2024-0815"), make_tx(), cfg) is None

    def test_amount_mismatch_rejects_identifier(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        tx = make_tx(amount="90.00", iban=SYNTHETIC_IBANS[0])
        assert hard_key_type(doc, tx, cfg) is None

    def test_direction_mismatch(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        tx = make_tx(direction="in", iban=SYNTHETIC_IBANS[0])
        assert hard_key_type(doc, tx, cfg) is None

    def test_invoice_no_holds_against_payment_direction(self, cfg):
        doc = make_doc(invoice_no="RE-2024-0815")
        refund = make_tx(direction="in", reference="Rechnung RE-2024-0815")
        assert hard_key_type(doc, refund, cfg) == HardKeyType.INVOICE_NO

    def test_invoice_no_against_direction_still_needs_date(self, cfg):
        doc = make_doc(invoice_no="RE-2024-0815")
        refund = make_tx(direction="in", reference="Rechnung RE-2024-0815", booking_date="2024-09-01")
        assert hard_key_type(doc, refund, cfg) is None

    def test_currency_mismatch(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        tx = make_tx(currency="USD", iban=SYNTHETIC_IBANS[0])
        assert hard_key_type(doc, tx, cfg) is None


@pytest.mark.unit
@pytest.mark.matching
class TestPrepassHardMatches:
    """Test the prepass over whole pools."""

    def test_iban_pair_becomes_final(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        tx = make_tx(iban="de02120300000000202051", counterparty_name=OTHER_VENDOR)

        result = prepass_hard_matches([doc], [tx], cfg)

        assert len(result.final) == 1
        decision = result.final[0]
        assert decision.state == MatchState.FINAL
        assert decision.relation_type == MatchRelationType.ONE_TO_ONE
        assert decision.confidence == 1.0
        assert decision.reason_codes == ["HARD_IBAN_AMOUNT"]
        assert decision.match_group_id == group_id_for(["tx-1"], ["doc-1"])
        assert decision.inputs["key"] == "IBAN_AMOUNT"
        assert decision.inputs["tenant_id"] == "tenant-a"
        assert result.remaining_docs == []
        assert result.remaining_txs == []

    def test_invoice_no_pair(self, cfg):
        doc = make_doc(invoice_no="RE-2024-0815")
        tx = make_tx(reference="Rechnung RE-2024-0815")

        result = prepass_hard_matches([doc], [tx], cfg)

        assert [d.reason_codes for d in result.final] == [["HARD_INVOICE_NO"]]
        assert result.final[0].inputs["invoice_no"] == "RE-2024-0815"

    def test_refund_quoting_invoice_no_becomes_final(self, cfg):
        doc = make_doc(invoice_no="RE-2024-0815")
        refund = make_tx(direction="in", reference="Rechnung RE-2024-0815")

        result = prepass_hard_matches([doc], [refund], cfg)

        assert len(result.final) == 1
        assert result.final[0].state == MatchState.FINAL
        assert result.final[0].reason_codes == ["HARD_INVOICE_NO"]
        assert result.final[0].inputs["key"] == "INVOICE_NO"

    def test_partial_wording_blocks_pair(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        tx = make_tx(iban=SYNTHETIC_IBANS[0], reference="Teilzahlung", counterparty_name=OTHER_VENDOR)

        result = prepass_hard_matches([doc], [tx], cfg)

        assert result.final == []
        assert [d.id for d in result.remaining_docs] == ["doc-1"]
        assert [t.id for t in result.remaining_txs] == ["tx-1"]

    def test_two_candidate_docs_leave_tx_unmatched(self, cfg):
        docs = [make_doc("doc-1", iban=SYNTHETIC_IBANS[0]), make_doc("doc-2", iban=SYNTHETIC_IBANS[0])]
        tx = make_tx(iban=SYNTHETIC_IBANS[0], counterparty_name=OTHER_VENDOR)

        result = prepass_hard_matches(docs, [tx], cfg)

        assert result.final == []
        assert len(result.remaining_docs) == 2

    def test_doc_claimed_by_two_txs_is_dropped(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0])
        txs = [
            make_tx("tx-1", iban=SYNTHETIC_IBANS[0], counterparty_name=OTHER_VENDOR),
            make_tx("tx-2", iban=SYNTHETIC_IBANS[0], counterparty_name=OTHER_VENDOR),
        ]

        result = prepass_hard_matches([doc], txs, cfg)

        assert result.final == []
        assert len(result.remaining_txs) == 2

    def test_linked_records_are_ignored(self, cfg):
        doc = make_doc(iban=SYNTHETIC_IBANS[0], link_state="linked")
        tx = make_tx(iban=SYNTHETIC_IBANS[0])
        assert prepass_hard_matches([doc], [tx], cfg).final == []

    def test_independent_pairs(self, cfg):
        docs = [make_doc("doc-1", iban=SYNTHETIC_IBANS[0]), make_doc("doc-2", iban=SYNTHETIC_IBANS[1])]
        txs = [
            make_tx("tx-2", iban=SYNTHETIC_IBANS[1], counterparty_name=OTHER_VENDOR),
            make_tx("tx-1", iban=SYNTHETIC_IBANS[0], counterparty_name=OTHER_VENDOR),
        ]

        result = prepass_hard_matches(docs, txs, cfg)

        pairs = sorted((d.tx_ids[0], d.doc_ids[0]) for d in result.final)
        assert pairs == [("tx-1", "doc-1"), ("tx-2", "doc-2")]
