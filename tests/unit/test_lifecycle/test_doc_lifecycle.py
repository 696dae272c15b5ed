#!/usr/bin/env python3
"""Tests for unmatched document classification."""

import pytest

from bookmatch.core.dates import FinancialDate
from bookmatch.lifecycle.doc_lifecycle import evaluate_doc_lifecycle, expects_payment, has_required_fields
from bookmatch.lifecycle.models import DocLifecycleKind, NextAction, Severity
from tests.fixtures.synthetic_data import make_doc


@pytest.mark.unit
@pytest.mark.lifecycle
class TestEvaluateDocLifecycle:
    """Test the document rule order."""

    def test_duplicate_wins(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(duplicate_key="sha:abc", invoice_date=None), now, cfg)
        assert result.kind == DocLifecycleKind.DUPLICATE
        assert result.explanation_codes == ["DUPLICATE"]

    def test_missing_invoice_date_is_an_error(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(invoice_date=None), now, cfg)
        assert result.kind == DocLifecycleKind.ERROR
        assert result.next_action == NextAction.REUPLOAD_REQUEST
        assert result.severity == Severity.ACTION

    def test_extraction_flag_is_an_error(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(has_required_fields=False), now, cfg)
        assert result.kind == DocLifecycleKind.ERROR

    def test_due_date_not_yet_overdue(self, now, cfg):
        # Due 2024-03-15, grace until 2024-03-22
        result = evaluate_doc_lifecycle(make_doc(), now, cfg)

        assert result.kind == DocLifecycleKind.AWAITING_TX
        assert result.explanation_codes == ["HAS_DUE_DATE", "NOT_OVERDUE"]
        assert result.rematch_hint.anchor_date == FinancialDate.from_string("2024-03-15")
        assert result.rematch_hint.window_before_days == 30
        assert result.rematch_hint.window_after_days == 90

    def test_invoice_without_due_date(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(due_date=None), now, cfg)

        assert result.kind == DocLifecycleKind.AWAITING_TX
        assert result.explanation_codes == ["EXPECTS_PAYMENT", "NO_DUE_DATE"]
        assert result.rematch_hint.to_dict() == {
            "anchor_date": "2024-03-01",
            "window_before_days": 7,
            "window_after_days": 45,
        }

    def test_overdue(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(invoice_date="2024-02-15", due_date="2024-03-01"), now, cfg)

        assert result.kind == DocLifecycleKind.OVERDUE
        assert result.severity == Severity.WARNING
        assert result.next_action == NextAction.INBOX_TASK

    def test_overdue_boundary_is_exclusive(self, cfg):
        doc = make_doc(due_date="2024-03-13")
        assert evaluate_doc_lifecycle(doc, FinancialDate.from_string("2024-03-20"), cfg).kind == (
            DocLifecycleKind.AWAITING_TX
        )
        assert evaluate_doc_lifecycle(doc, FinancialDate.from_string("2024-03-21"), cfg).kind == (
            DocLifecycleKind.OVERDUE
        )

    @pytest.mark.parametrize(
        "overrides",
        [
            {"doc_type": "receipt", "due_date": None},
            {"payment_hint": "card", "due_date": None},
            {"payment_hint": "cash", "due_date": None},
        ],
    )
    def test_eigenbeleg_candidates(self, now, cfg, overrides):
        result = evaluate_doc_lifecycle(make_doc(**overrides), now, cfg)

        assert result.kind == DocLifecycleKind.EIGENBELEG
        assert result.next_action == NextAction.START_EIGENBELEG_FLOW

    def test_private(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(doc_type=None, due_date=None, private_hint=True), now, cfg)
        assert result.kind == DocLifecycleKind.PRIVATE
        assert result.next_action == NextAction.ASK_USER

    def test_split_required(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(doc_type=None, due_date=None, split_hint=True), now, cfg)
        assert result.kind == DocLifecycleKind.SPLIT_REQUIRED
        assert result.next_action == NextAction.START_SPLIT_UI

    def test_fallback(self, now, cfg):
        result = evaluate_doc_lifecycle(make_doc(doc_type=None, due_date=None), now, cfg)

        assert result.kind == DocLifecycleKind.AWAITING_TX
        assert result.explanation_codes == ["FALLBACK_AWAITING"]
        assert result.to_dict()["kind"] == "awaiting_tx"


@pytest.mark.unit
@pytest.mark.lifecycle
class TestDocPredicates:
    """Test helper predicates."""

    def test_expects_payment(self):
        assert expects_payment(make_doc())
        assert expects_payment(make_doc(doc_type=None, payment_hint="transfer"))
        assert not expects_payment(make_doc(payment_hint="ec"))
        assert not expects_payment(make_doc(doc_type=None))

    def test_required_fields(self, cfg):
        assert has_required_fields(make_doc(), cfg)
        assert not has_required_fields(make_doc(amount="0.00"), cfg)
        assert not has_required_fields(make_doc(currency=None), cfg)
