#!/usr/bin/env python3
"""Tests for Doc, Tx and MatchDecision payload parsing."""

import pytest

from bookmatch.core.errors import InvalidRecordError
from bookmatch.core.models import (
    UNKNOWN_TENANT,
    Direction,
    Doc,
    DocType,
    LinkState,
    MatchDecision,
    MatchRelationType,
    MatchState,
    Tx,
    normalize_tenant_id,
)
from bookmatch.core.money import Money


@pytest.mark.unit
class TestTxFromDict:
    """Test transaction payload parsing."""

    def test_signed_amount_sets_direction(self):
        tx = Tx.from_dict({"id": "t1", "amount": "-45.99", "currency": "eur"})

        assert tx.direction == Direction.OUT
        assert tx.amount == Money.from_cents(4599)
        assert tx.currency == "EUR"

    def test_explicit_direction_wins_over_sign(self):
        tx = Tx.from_dict({"id": "t1", "amount": "-10", "direction": "IN", "currency": "EUR"})
        assert tx.direction == Direction.IN
        assert tx.amount.to_cents() == 1000

    def test_camel_case_aliases_and_derived_fields(self):
        tx = Tx.from_dict(
            {
                "id": "t1",
                "tenantId": "acme",
                "amount": 12,
                "currency": "EUR",
                "bookingDate": "2024-03-10T08:00:00Z",
                "counterpartyName": "Müller GmbH",
                "purpose": "Rechnung 4711",
                "e2eId": "E2E-1",
            }
        )

        assert tx.tenant_id == "acme"
        assert tx.date.to_iso_string() == "2024-03-10"
        assert tx.vendor_norm == "muller"
        assert tx.vendor_key == "muller"
        assert tx.reference == "Rechnung 4711"
        assert tx.text_norm == "muller gmbh rechnung 4711"
        assert tx.e2e_id == "E2E-1"

    def test_value_date_is_date_fallback(self):
        tx = Tx.from_dict({"id": "t1", "amount": 1, "currency": "EUR", "value_date": "2024-01-02"})
        assert tx.date.to_iso_string() == "2024-01-02"

    @pytest.mark.parametrize(
        "payload",
        [
            {"amount": "1.00"},
            {"id": "t1"},
            {"id": "t1", "amount": "zehn"},
            {"id": "t1", "amount": "1", "direction": "sideways"},
        ],
        ids=["missing_id", "missing_amount", "bad_amount", "bad_direction"],
    )
    def test_malformed_payload_raises(self, payload):
        with pytest.raises(InvalidRecordError):
            Tx.from_dict(payload)

    def test_foreign_amount_used_for_its_currency(self):
        tx = Tx.from_dict(
            {
                "id": "t1",
                "amount": "-92.10",
                "currency": "EUR",
                "foreign_amount": "100.00",
                "foreign_currency": "usd",
            }
        )

        assert tx.amount_for_currency("EUR") == Money.from_cents(9210)
        assert tx.amount_for_currency("USD") == Money.from_cents(10000)
        assert tx.amount_for_currency("CHF") is None
        assert not tx.supports_currency(None)


@pytest.mark.unit
class TestDocFromDict:
    """Test document payload parsing."""

    def test_defaults_and_normalization(self):
        doc = Doc.from_dict(
            {
                "id": "d1",
                "tenant_id": " ",
                "totalAmount": "119,00",
                "currency": "EUR",
                "documentDate": "2024-03-01",
                "vendorName": "Bergmann Buerobedarf KG",
                "docType": "INVOICE",
                "items": [{"amount": "100.00"}, {"id": "i2", "amount": "-19.00"}],
            }
        )

        assert doc.tenant_id == UNKNOWN_TENANT
        assert doc.amount.to_cents() == 11900
        assert doc.invoice_date.to_iso_string() == "2024-03-01"
        assert doc.vendor_norm == "bergmann buerobedarf"
        assert doc.doc_type == DocType.INVOICE
        assert doc.link_state == LinkState.UNLINKED
        assert doc.items[0].line_index == 0
        assert doc.items[1].amount_abs == Money.from_cents(1900)
        assert doc.items[1].key == "id:i2"

    def test_expected_direction_follows_sign(self):
        assert Doc.from_dict({"id": "d1", "amount": "10"}).expected_direction == Direction.OUT
        assert Doc.from_dict({"id": "d2", "amount": "-10"}).expected_direction == Direction.IN

    def test_unknown_enum_values_fall_back(self):
        doc = Doc.from_dict({"id": "d1", "amount": "1", "doc_type": "memo", "link_state": "weird"})
        assert doc.doc_type == DocType.UNKNOWN
        assert doc.link_state == LinkState.UNLINKED

    def test_round_trip_keeps_fields(self):
        doc = Doc.from_dict(
            {"id": "d1", "amount": "5.00", "currency": "EUR", "open_amount": "2.50", "iban": "DE02 1203"}
        )
        again = Doc.from_dict(doc.to_dict())

        assert again == doc

    def test_missing_id_raises(self):
        with pytest.raises(InvalidRecordError, match="missing id"):
            Doc.from_dict({"amount": "1"})


@pytest.mark.unit
class TestMatchDecision:
    """Test MatchDecision helpers."""

    def test_is_hard_and_tenant(self):
        decision = MatchDecision(
            state=MatchState.FINAL,
            relation_type=MatchRelationType.ONE_TO_ONE,
            tx_ids=["t1"],
            doc_ids=["d1"],
            confidence=1.0,
            reason_codes=["HARD_IBAN_AMOUNT"],
        )

        assert decision.is_hard
        assert decision.tenant_id == UNKNOWN_TENANT
        assert MatchState.PARTIAL.is_binding
        assert not MatchState.SUGGESTED.is_binding

    def test_dict_round_trip(self):
        decision = MatchDecision(
            state=MatchState.PARTIAL,
            relation_type=MatchRelationType.ONE_TO_MANY,
            tx_ids=["t1", "t2"],
            doc_ids=["d1"],
            confidence=0.9,
            reason_codes=["PARTIAL_PAYMENT_SUM"],
            inputs={"tenant_id": "acme"},
            match_group_id="grp_1",
            open_amount_after=Money.from_cents(800),
        )

        assert MatchDecision.from_dict(decision.to_dict()) == decision

    @pytest.mark.parametrize("value,expected", [(None, UNKNOWN_TENANT), ("", UNKNOWN_TENANT), (" a ", "a")])
    def test_normalize_tenant_id(self, value, expected):
        assert normalize_tenant_id(value) == expected
