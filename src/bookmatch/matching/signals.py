#!/usr/bin/env python3
"""
Pairwise Match Signals

Small predicates over a (document, transaction) pair shared by the prepass,
item-first allocation, candidate building and the matchers, plus the
deterministic group id used to tie persisted edges together.
"""

from ..core.config import MatchingConfig
from ..core.models import Doc, Tx
from ..core.normalize import contains_phrase, ids_equal, match_invoice_no_in_text, tokenize, vendor_compatible
from ..core.tolerance import amount_compatible, calc_window, direction_compatible, has_anchor_date

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a hash over the UTF-16 code units of a string."""
    hash_value = _FNV_OFFSET
    encoded = value.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        hash_value ^= encoded[i] | (encoded[i + 1] << 8)
        hash_value = (hash_value * _FNV_PRIME) & 0xFFFFFFFF
    return hash_value


def group_id_for(tx_ids: list[str], doc_ids: list[str]) -> str:
    """
    Canonical match group id for a set of transactions and documents.

    Depends only on the sorted ids, so repeated runs that reach the same
    grouping produce the same id.
    """
    seed = f"{','.join(sorted(set(tx_ids)))}|{','.join(sorted(set(doc_ids)))}"
    return f"grp_{fnv1a_32(seed):x}"


def iban_equal(doc: Doc, tx: Tx) -> bool:
    return ids_equal(doc.iban, tx.iban)


def e2e_equal(doc: Doc, tx: Tx) -> bool:
    return ids_equal(doc.e2e_id, tx.e2e_id)


def invoice_no_in_tx(doc: Doc, tx: Tx) -> bool:
    """Document invoice number appears in the transaction reference (or its text)."""
    if not doc.invoice_no:
        return False
    return match_invoice_no_in_text(doc.invoice_no, tx.reference or tx.text_norm or "")


def booking_in_window(doc: Doc, tx: Tx, cfg: MatchingConfig) -> bool:
    """Booking date lies inside the document's expected payment window."""
    return calc_window(doc, cfg).contains(tx.date)


def anchored_date_ok(doc: Doc, tx: Tx, cfg: MatchingConfig) -> bool:
    """Like booking_in_window, but documents without any date never qualify."""
    return has_anchor_date(doc) and booking_in_window(doc, tx, cfg)


def tx_amount_compatible(doc: Doc, tx: Tx, cfg: MatchingConfig) -> bool:
    """Transaction amount in the document's currency is within tolerance of |doc amount|."""
    return amount_compatible(doc.amount.abs(), tx.amount_for_currency(doc.currency), cfg)


def tx_direction_ok(doc: Doc, tx: Tx) -> bool:
    return direction_compatible(doc, tx.direction)


def vendor_match_strong(doc: Doc, tx: Tx) -> bool:
    """
    Vendor evidence strong enough for a hard match.

    Two shared tokens, or one shared token plus substring containment when
    either side has at most two tokens.
    """
    doc_party = doc.party_norm_for(tx.direction) or ""
    tx_party = tx.vendor_norm or ""
    doc_tokens = tokenize(doc_party)
    tx_tokens = tokenize(tx_party)
    if not doc_tokens or not tx_tokens:
        return False

    doc_set = set(doc_tokens)
    overlap = sum(1 for token in tx_tokens if token in doc_set)
    if overlap >= 2:
        return True
    if overlap >= 1 and (len(doc_tokens) <= 2 or len(tx_tokens) <= 2):
        return doc_party in tx_party or tx_party in doc_party
    return False


def vendor_ok_if_known(doc: Doc, tx: Tx) -> bool:
    """Vendor compatible, or at least one side has no known party."""
    doc_party = doc.party_norm_for(tx.direction)
    if not doc_party or not tx.vendor_norm:
        return True
    return vendor_compatible(doc_party, tx.vendor_norm)


def has_partial_or_batch_hints(tx: Tx, doc: Doc | None, cfg: MatchingConfig) -> bool:
    """Partial or collective payment wording in transaction or document text."""
    parts = [tx.text_norm, tx.reference, tx.vendor_norm]
    if doc is not None:
        parts.extend([doc.text_norm, doc.vendor_norm, doc.buyer_norm])
    haystack = " ".join(part for part in parts if part)
    if not haystack:
        return False
    return contains_phrase(haystack, cfg.keywords.partial_payment) or contains_phrase(
        haystack, cfg.keywords.batch_payment
    )


def has_batch_keyword(tx: Tx, cfg: MatchingConfig) -> bool:
    haystack = " ".join(part for part in (tx.text_norm, tx.reference, tx.vendor_norm) if part)
    return contains_phrase(haystack, cfg.keywords.batch_payment)
