#!/usr/bin/env python3
"""
Document Lifecycle Evaluation

Classifies a document that has no transaction counterpart in this run.
Rules are checked in a fixed order and the first hit wins:

duplicate -> extraction error -> awaiting payment -> overdue
-> eigenbeleg -> private -> split required -> awaiting (fallback)
"""

import logging

from ..core.config import MatchingConfig
from ..core.dates import FinancialDate
from ..core.models import Doc, DocType, PaymentHint
from ..core.tolerance import is_overdue
from .models import DocLifecycleKind, DocLifecycleResult, NextAction, RematchHint, Severity

logger = logging.getLogger(__name__)

_NON_TRANSFER_HINTS = (PaymentHint.CASH, PaymentHint.EC, PaymentHint.CARD)


def evaluate_doc_lifecycle(doc: Doc, now: FinancialDate, cfg: MatchingConfig) -> DocLifecycleResult:
    """
    Classify an unmatched document.

    Args:
        doc: Document without a matching transaction
        now: Evaluation date (run date)
        cfg: Matching configuration

    Returns:
        DocLifecycleResult with severity, next action and explanation codes
    """
    if is_duplicate_doc(doc):
        return DocLifecycleResult(doc.id, DocLifecycleKind.DUPLICATE, Severity.INFO, NextAction.NONE, ["DUPLICATE"])

    if not has_required_fields(doc, cfg):
        return DocLifecycleResult(
            doc.id, DocLifecycleKind.ERROR, Severity.ACTION, NextAction.REUPLOAD_REQUEST, ["MISSING_FIELDS"]
        )

    if is_open(doc):
        if doc.due_date is not None and not is_overdue(doc, now, cfg):
            return DocLifecycleResult(
                doc.id,
                DocLifecycleKind.AWAITING_TX,
                Severity.INFO,
                NextAction.NONE,
                ["HAS_DUE_DATE", "NOT_OVERDUE"],
                _due_rematch_hint(doc, cfg),
            )
        if doc.due_date is None and expects_payment(doc):
            return DocLifecycleResult(
                doc.id,
                DocLifecycleKind.AWAITING_TX,
                Severity.INFO,
                NextAction.NONE,
                ["EXPECTS_PAYMENT", "NO_DUE_DATE"],
                _invoice_rematch_hint(doc, cfg),
            )

    if is_overdue(doc, now, cfg):
        return DocLifecycleResult(
            doc.id,
            DocLifecycleKind.OVERDUE,
            Severity.WARNING,
            NextAction.INBOX_TASK,
            ["HAS_DUE_DATE", "OVERDUE"],
            _due_rematch_hint(doc, cfg),
        )

    if is_eigenbeleg_candidate(doc):
        return DocLifecycleResult(
            doc.id,
            DocLifecycleKind.EIGENBELEG,
            Severity.ACTION,
            NextAction.START_EIGENBELEG_FLOW,
            ["EIGENBELEG_CANDIDATE"],
        )

    if doc.private_hint:
        return DocLifecycleResult(
            doc.id, DocLifecycleKind.PRIVATE, Severity.INFO, NextAction.ASK_USER, ["PRIVATE_HINT"]
        )

    if doc.split_hint:
        return DocLifecycleResult(
            doc.id, DocLifecycleKind.SPLIT_REQUIRED, Severity.ACTION, NextAction.START_SPLIT_UI, ["SPLIT_HINT"]
        )

    logger.debug("Document %s fell through to awaiting_tx", doc.id)
    return DocLifecycleResult(
        doc.id,
        DocLifecycleKind.AWAITING_TX,
        Severity.INFO,
        NextAction.NONE,
        ["FALLBACK_AWAITING"],
        _invoice_rematch_hint(doc, cfg),
    )


def is_duplicate_doc(doc: Doc) -> bool:
    return bool(doc.duplicate_key)


def has_required_fields(doc: Doc, cfg: MatchingConfig) -> bool:
    """Extraction flag first, then the configured minimum field set."""
    if doc.has_required_fields is False:
        return False

    rules = cfg.min_required_fields
    if rules.require_amount and doc.amount.cents == 0:
        return False
    if rules.require_currency and not doc.currency:
        return False
    if rules.require_invoice_date and doc.invoice_date is None:
        return False
    return True


def is_open(doc: Doc) -> bool:
    return doc.open_amount is None or doc.open_amount.cents > 0


def expects_payment(doc: Doc) -> bool:
    """Invoices and transfer-paid documents wait for a bank transaction."""
    if doc.doc_type == DocType.RECEIPT or doc.payment_hint in _NON_TRANSFER_HINTS:
        return False
    return doc.doc_type == DocType.INVOICE or doc.payment_hint == PaymentHint.TRANSFER


def is_eigenbeleg_candidate(doc: Doc) -> bool:
    """Receipts and card/cash paid documents rarely have a bank counterpart."""
    return doc.doc_type == DocType.RECEIPT or doc.payment_hint in _NON_TRANSFER_HINTS


def _due_rematch_hint(doc: Doc, cfg: MatchingConfig) -> RematchHint | None:
    if doc.due_date is None:
        return None
    return RematchHint(doc.due_date, cfg.window_before_due_days, cfg.window_after_due_days)


def _invoice_rematch_hint(doc: Doc, cfg: MatchingConfig) -> RematchHint | None:
    if doc.invoice_date is None:
        return None
    return RematchHint(doc.invoice_date, cfg.window_before_invoice_days, cfg.window_after_invoice_days)
