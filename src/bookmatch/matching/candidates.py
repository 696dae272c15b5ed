#!/usr/bin/env python3
"""
Document Candidates for a Transaction

Filters the document pool down to plausible counterparts of one transaction
and attaches the feature vector the relation detector and matchers work on.
"""

from dataclasses import dataclass

from ..core.config import MatchingConfig
from ..core.models import Doc, LinkState, Tx
from ..core.money import Money
from ..core.normalize import contains_phrase
from ..core.tolerance import amount_compatible, days_between
from .signals import booking_in_window, e2e_equal, iban_equal, invoice_no_in_tx, tx_direction_ok, vendor_ok_if_known


@dataclass
class AmountMatch:
    matched_amount: Money
    via_amount_candidate: bool


@dataclass
class FeatureVector:
    """Pairwise evidence between one document and one transaction."""

    amount_delta: Money
    days_delta: int | None
    iban_equal: bool = False
    invoice_no_equal: bool = False
    e2e_equal: bool = False
    partial_keywords: bool = False
    amount_ok: bool = False
    via_amount_candidate: bool = False

    @property
    def has_identifier(self) -> bool:
        return self.iban_equal or self.invoice_no_equal or self.e2e_equal

    def to_dict(self) -> dict:
        return {
            "amount_delta": self.amount_delta.to_amount_str(),
            "days_delta": self.days_delta,
            "iban_equal": self.iban_equal,
            "invoice_no_equal": self.invoice_no_equal,
            "e2e_equal": self.e2e_equal,
            "partial_keywords": self.partial_keywords,
            "amount_ok": self.amount_ok,
            "via_amount_candidate": self.via_amount_candidate,
        }


@dataclass
class DocCandidate:
    doc: Doc
    tx_amount: Money
    features: FeatureVector


def doc_amount_candidates(doc: Doc) -> list[Money]:
    """Distinct positive amounts a payment for the document may carry: open amount, amount, extracted alternatives."""
    out: list[Money] = []
    values = [doc.open_amount, doc.amount, *doc.amount_candidates]
    for value in values:
        if value is None:
            continue
        amount = value.abs()
        if amount.cents <= 0 or amount in out:
            continue
        out.append(amount)
    return out


def resolve_doc_amount_match(doc: Doc, target: Money | None, cfg: MatchingConfig) -> AmountMatch | None:
    """First document amount candidate compatible with the target amount."""
    if target is None:
        return None
    target = target.abs()
    base = doc.amount.abs()
    for candidate in doc_amount_candidates(doc):
        if amount_compatible(candidate, target, cfg):
            return AmountMatch(candidate, via_amount_candidate=candidate != base)
    return None


def candidates_for_tx(
    tx: Tx,
    docs: list[Doc],
    cfg: MatchingConfig,
    include_linked: bool = False,
) -> list[DocCandidate]:
    """
    Plausible documents for a transaction, in pool order.

    Args:
        tx: Transaction to find documents for
        docs: Document pool
        cfg: Matching configuration
        include_linked: Also accept already linked documents (subscriptions)
    """
    out = []
    for doc in docs:
        if doc.tenant_key != tx.tenant_key:
            continue
        if not (doc.link_state.is_matchable or (include_linked and doc.link_state == LinkState.LINKED)):
            continue
        tx_amount = tx.amount_for_currency(doc.currency)
        if tx_amount is None:
            continue
        if tx.date is not None and not booking_in_window(doc, tx, cfg):
            continue
        if not vendor_ok_if_known(doc, tx):
            continue
        if not tx_direction_ok(doc, tx) and not invoice_no_in_tx(doc, tx):
            continue
        out.append(DocCandidate(doc, tx_amount, build_feature_vector(doc, tx, tx_amount, cfg)))
    return out


def build_feature_vector(doc: Doc, tx: Tx, tx_amount: Money, cfg: MatchingConfig) -> FeatureVector:
    match = resolve_doc_amount_match(doc, tx_amount, cfg)
    reference_amount = match.matched_amount if match else doc.amount.abs()

    anchor = doc.invoice_date or doc.due_date
    days_delta = days_between(tx.date, anchor) if anchor is not None and tx.date is not None else None

    return FeatureVector(
        amount_delta=(reference_amount - tx_amount).abs(),
        days_delta=days_delta,
        iban_equal=iban_equal(doc, tx),
        invoice_no_equal=invoice_no_in_tx(doc, tx),
        e2e_equal=e2e_equal(doc, tx),
        partial_keywords=has_partial_keywords(doc, tx, cfg),
        amount_ok=match is not None,
        via_amount_candidate=bool(match and match.via_amount_candidate),
    )


def has_partial_keywords(doc: Doc, tx: Tx, cfg: MatchingConfig) -> bool:
    haystack = " ".join(part for part in (tx.text_norm, tx.reference, doc.text_norm) if part)
    return contains_phrase(haystack, cfg.keywords.partial_payment) or contains_phrase(
        haystack, cfg.keywords.batch_payment
    )
