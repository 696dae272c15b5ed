#!/usr/bin/env python3
"""
Core Data Models for Bookmatch

Bank transactions (Tx), accounting documents (Doc) with their line items,
and the MatchDecision produced by the matching pipeline.

Payload parsing accepts both snake_case and camelCase keys, since rows
arrive from the database, from extraction results and from hand-written
JSON batches. Derived normalized fields (vendor_norm, text_norm, ...) are
filled in once at construction so that matching code never re-normalizes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .currency import canonical_currency
from .dates import FinancialDate
from .errors import InvalidRecordError
from .money import Money
from .normalize import normalize_text, normalize_vendor

UNKNOWN_TENANT = "__unknown__"


class LinkState(Enum):
    """Persisted matching status of a transaction, document or line item."""

    UNLINKED = "unlinked"
    SUGGESTED = "suggested"
    PARTIAL = "partial"
    LINKED = "linked"

    @property
    def is_matchable(self) -> bool:
        return _MATCHABLE_LINK_STATES[self]


_MATCHABLE_LINK_STATES = {
    LinkState.UNLINKED: True,
    LinkState.SUGGESTED: True,
    LinkState.PARTIAL: False,
    LinkState.LINKED: False,
}


class Direction(Enum):
    """Money flow as seen from the tenant's bank account."""

    IN = "in"
    OUT = "out"


class DocType(Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"
    CREDIT_NOTE = "credit_note"
    UNKNOWN = "unknown"


class PaymentHint(Enum):
    CASH = "cash"
    EC = "ec"
    CARD = "card"
    TRANSFER = "transfer"
    UNKNOWN = "unknown"


class MatchState(Enum):
    """Outcome state of a match decision."""

    FINAL = "final"
    PARTIAL = "partial"
    SUGGESTED = "suggested"
    AMBIGUOUS = "ambiguous"

    @property
    def is_binding(self) -> bool:
        """Final and partial decisions change persisted link states."""
        return self in (MatchState.FINAL, MatchState.PARTIAL)


class MatchRelationType(Enum):
    """
    Cardinality of a match.

    ONE_TO_MANY is one document settled by several transactions,
    MANY_TO_ONE is one transaction settling several documents.
    """

    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    MANY_TO_MANY = "many_to_many"


class MatchedBy(Enum):
    SYSTEM = "system"
    USER = "user"


def normalize_tenant_id(value: str | None) -> str:
    """Blank tenant ids collapse into one shared unknown tenant."""
    if not value:
        return UNKNOWN_TENANT
    trimmed = str(value).strip()
    return trimmed or UNKNOWN_TENANT


def _pick(data: dict[str, Any], *keys: str) -> Any:
    """First present, non-None value among alias keys."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _parse_money(kind: str, record_id: str | None, value: Any) -> Money | None:
    if value is None or value == "":
        return None
    if isinstance(value, Money):
        return value
    try:
        return Money.from_amount(value)
    except ValueError as e:
        raise InvalidRecordError(kind, record_id, str(e)) from e


def _parse_enum(enum_cls: Any, value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _date_str(value: FinancialDate | None) -> str | None:
    return value.to_iso_string() if value else None


def _money_str(value: Money | None) -> str | None:
    return value.to_amount_str() if value is not None else None


@dataclass
class DocLineItem:
    """
    One line of an invoice.

    amount_signed carries the sign of the line (negative for discounts
    and credit lines); open_amount is the absolute amount still uncovered.
    """

    id: str | None = None
    line_index: int | None = None
    description: str | None = None
    amount_signed: Money | None = None
    amount_abs: Money | None = None
    currency: str | None = None
    link_state: LinkState = LinkState.UNLINKED
    open_amount: Money | None = None

    @property
    def key(self) -> str:
        """Stable per-document key: the item id, else its line index."""
        if self.id:
            return f"id:{self.id}"
        return f"line:{self.line_index}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "line_index": self.line_index,
            "description": self.description,
            "amount_signed": _money_str(self.amount_signed),
            "amount_abs": _money_str(self.amount_abs),
            "currency": self.currency,
            "link_state": self.link_state.value,
            "open_amount": _money_str(self.open_amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int | None = None) -> "DocLineItem":
        item_id = _optional_str(data.get("id"))
        line_index = _pick(data, "line_index", "lineIndex")
        amount_signed = _parse_money("line item", item_id, _pick(data, "amount_signed", "amountSigned", "amount"))
        amount_abs = _parse_money("line item", item_id, _pick(data, "amount_abs", "amountAbs"))
        if amount_abs is None and amount_signed is not None:
            amount_abs = amount_signed.abs()
        return cls(
            id=item_id,
            line_index=int(line_index) if line_index is not None else index,
            description=_optional_str(data.get("description")),
            amount_signed=amount_signed,
            amount_abs=amount_abs,
            currency=canonical_currency(data.get("currency")),
            link_state=_parse_enum(LinkState, _pick(data, "link_state", "linkState"), LinkState.UNLINKED),
            open_amount=_parse_money("line item", item_id, _pick(data, "open_amount", "openAmount")),
        )


@dataclass
class Doc:
    """
    Accounting document (invoice, receipt, credit note).

    The amount is signed: a positive amount expects an outgoing payment,
    a negative amount (credit note, outgoing invoice) an incoming one.
    open_amount None means the document is fully open.
    """

    id: str
    tenant_id: str
    amount: Money
    currency: str | None
    link_state: LinkState = LinkState.UNLINKED

    invoice_date: FinancialDate | None = None
    due_date: FinancialDate | None = None
    doc_type: DocType = DocType.UNKNOWN
    payment_hint: PaymentHint = PaymentHint.UNKNOWN

    # Extraction flags
    has_required_fields: bool | None = None
    private_hint: bool = False
    split_hint: bool = False
    duplicate_key: str | None = None

    # Identifiers
    iban: str | None = None
    invoice_no: str | None = None
    e2e_id: str | None = None

    # Parties and text
    vendor_raw: str | None = None
    vendor_norm: str | None = None
    buyer_raw: str | None = None
    buyer_norm: str | None = None
    text_raw: str | None = None
    text_norm: str | None = None

    amount_candidates: list[Money] = field(default_factory=list)
    items: list[DocLineItem] = field(default_factory=list)
    open_amount: Money | None = None

    @property
    def tenant_key(self) -> str:
        return normalize_tenant_id(self.tenant_id)

    @property
    def expected_direction(self) -> Direction:
        """Positive documents are paid out, negative ones are paid in."""
        return Direction.IN if self.amount.is_negative() else Direction.OUT

    def party_norm_for(self, direction: Direction) -> str | None:
        """
        Normalized counterparty as seen by a transaction of the given direction.

        Incoming money comes from the buyer, outgoing money goes to the vendor;
        the other party is the fallback.
        """
        if direction == Direction.IN:
            return self.buyer_norm or self.vendor_norm or None
        return self.vendor_norm or self.buyer_norm or None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "amount": self.amount.to_amount_str(),
            "currency": self.currency,
            "link_state": self.link_state.value,
            "invoice_date": _date_str(self.invoice_date),
            "due_date": _date_str(self.due_date),
            "doc_type": self.doc_type.value,
            "payment_hint": self.payment_hint.value,
            "has_required_fields": self.has_required_fields,
            "private_hint": self.private_hint,
            "split_hint": self.split_hint,
            "duplicate_key": self.duplicate_key,
            "iban": self.iban,
            "invoice_no": self.invoice_no,
            "e2e_id": self.e2e_id,
            "vendor_raw": self.vendor_raw,
            "vendor_norm": self.vendor_norm,
            "buyer_raw": self.buyer_raw,
            "buyer_norm": self.buyer_norm,
            "text_raw": self.text_raw,
            "text_norm": self.text_norm,
            "amount_candidates": [m.to_amount_str() for m in self.amount_candidates],
            "items": [item.to_dict() for item in self.items],
            "open_amount": _money_str(self.open_amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Doc":
        """
        Create a Doc from a database row or extraction payload.

        Raises:
            InvalidRecordError: If the id is missing or an amount is malformed
        """
        doc_id = _optional_str(data.get("id"))
        if not doc_id:
            raise InvalidRecordError("document", None, "missing id")

        amount = _parse_money("document", doc_id, _pick(data, "amount", "total_amount", "totalAmount"))
        vendor_raw = _optional_str(_pick(data, "vendor_raw", "vendorRaw", "vendor_name", "vendorName"))
        buyer_raw = _optional_str(_pick(data, "buyer_raw", "buyerRaw", "buyer_name", "buyerName"))
        text_raw = _optional_str(_pick(data, "text_raw", "textRaw"))

        items = [
            DocLineItem.from_dict(item, index=i) for i, item in enumerate(_pick(data, "items", "line_items") or [])
        ]

        candidates = [
            _parse_money("document", doc_id, value)
            for value in _pick(data, "amount_candidates", "amountCandidates") or []
        ]

        required = _pick(data, "has_required_fields", "hasRequiredFields")

        return cls(
            id=doc_id,
            tenant_id=normalize_tenant_id(_pick(data, "tenant_id", "tenantId")),
            amount=amount if amount is not None else Money.zero(),
            currency=canonical_currency(data.get("currency")),
            link_state=_parse_enum(LinkState, _pick(data, "link_state", "linkState"), LinkState.UNLINKED),
            invoice_date=FinancialDate.from_iso(
                _pick(data, "invoice_date", "invoiceDate", "document_date", "documentDate")
            ),
            due_date=FinancialDate.from_iso(_pick(data, "due_date", "dueDate")),
            doc_type=_parse_enum(DocType, _pick(data, "doc_type", "docType"), DocType.UNKNOWN),
            payment_hint=_parse_enum(PaymentHint, _pick(data, "payment_hint", "paymentHint"), PaymentHint.UNKNOWN),
            has_required_fields=bool(required) if required is not None else None,
            private_hint=bool(_pick(data, "private_hint", "privateHint")),
            split_hint=bool(_pick(data, "split_hint", "splitHint")),
            duplicate_key=_optional_str(_pick(data, "duplicate_key", "duplicateKey", "hash")),
            iban=_optional_str(data.get("iban")),
            invoice_no=_optional_str(_pick(data, "invoice_no", "invoiceNo", "invoice_number")),
            e2e_id=_optional_str(_pick(data, "e2e_id", "e2eId")),
            vendor_raw=vendor_raw,
            vendor_norm=_optional_str(_pick(data, "vendor_norm", "vendorNorm")) or normalize_vendor(vendor_raw) or None,
            buyer_raw=buyer_raw,
            buyer_norm=_optional_str(_pick(data, "buyer_norm", "buyerNorm")) or normalize_vendor(buyer_raw) or None,
            text_raw=text_raw,
            text_norm=_optional_str(_pick(data, "text_norm", "textNorm")) or normalize_text(text_raw) or None,
            amount_candidates=[c for c in candidates if c is not None],
            items=items,
            open_amount=_parse_money("document", doc_id, _pick(data, "open_amount", "openAmount")),
        )


@dataclass
class Tx:
    """
    Bank transaction.

    The amount is unsigned; direction says whether money came in or went
    out. A foreign amount/currency pair (card payments abroad) is accepted
    as a second amount when comparing against documents in that currency.
    """

    id: str
    tenant_id: str
    amount: Money
    direction: Direction
    currency: str | None
    booking_date: FinancialDate | None = None
    value_date: FinancialDate | None = None
    link_state: LinkState = LinkState.UNLINKED

    iban: str | None = None
    reference: str | None = None
    e2e_id: str | None = None
    counterparty_name: str | None = None
    vendor_key: str | None = None
    vendor_norm: str | None = None
    text_raw: str | None = None
    text_norm: str | None = None

    foreign_amount: Money | None = None
    foreign_currency: str | None = None

    private_hint: bool = False
    is_recurring_hint: bool = False

    @property
    def tenant_key(self) -> str:
        return normalize_tenant_id(self.tenant_id)

    @property
    def date(self) -> FinancialDate | None:
        """Booking date, falling back to value date."""
        return self.booking_date or self.value_date

    def amount_for_currency(self, currency: str | None) -> Money | None:
        """
        Unsigned amount of this transaction in the given currency.

        Returns None when neither the account currency nor the foreign
        currency matches.
        """
        key = canonical_currency(currency)
        if not key:
            return None
        if self.currency == key and self.amount.cents != 0:
            return self.amount.abs()
        if self.foreign_currency == key and self.foreign_amount is not None and self.foreign_amount.cents != 0:
            return self.foreign_amount.abs()
        return None

    def supports_currency(self, currency: str | None) -> bool:
        return self.amount_for_currency(currency) is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "amount": self.amount.to_amount_str(),
            "direction": self.direction.value,
            "currency": self.currency,
            "booking_date": _date_str(self.booking_date),
            "value_date": _date_str(self.value_date),
            "link_state": self.link_state.value,
            "iban": self.iban,
            "reference": self.reference,
            "e2e_id": self.e2e_id,
            "counterparty_name": self.counterparty_name,
            "vendor_key": self.vendor_key,
            "vendor_norm": self.vendor_norm,
            "text_raw": self.text_raw,
            "text_norm": self.text_norm,
            "foreign_amount": _money_str(self.foreign_amount),
            "foreign_currency": self.foreign_currency,
            "private_hint": self.private_hint,
            "is_recurring_hint": self.is_recurring_hint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tx":
        """
        Create a Tx from a bank row or JSON payload.

        When no direction is given the amount is read as signed: negative
        amounts are outgoing payments.

        Raises:
            InvalidRecordError: If the id or amount is missing or malformed
        """
        tx_id = _optional_str(data.get("id"))
        if not tx_id:
            raise InvalidRecordError("transaction", None, "missing id")

        raw_amount = _parse_money("transaction", tx_id, data.get("amount"))
        if raw_amount is None:
            raise InvalidRecordError("transaction", tx_id, "missing amount")

        direction_value = data.get("direction")
        if direction_value is None:
            direction = Direction.OUT if raw_amount.is_negative() else Direction.IN
        else:
            direction = _parse_enum(Direction, direction_value, None)
            if direction is None:
                raise InvalidRecordError("transaction", tx_id, f"unknown direction {direction_value!r}")

        reference = _optional_str(_pick(data, "reference", "ref", "purpose"))
        counterparty = _optional_str(
            _pick(data, "counterparty_name", "counterpartyName", "vendor_raw", "vendorRaw")
        )
        vendor_norm = _optional_str(data.get("vendor_norm")) or normalize_vendor(counterparty) or None
        text_raw = _optional_str(_pick(data, "text_raw", "textRaw")) or (
            " ".join(part for part in (counterparty, reference) if part) or None
        )

        return cls(
            id=tx_id,
            tenant_id=normalize_tenant_id(_pick(data, "tenant_id", "tenantId")),
            amount=raw_amount.abs(),
            direction=direction,
            currency=canonical_currency(data.get("currency")),
            booking_date=FinancialDate.from_iso(_pick(data, "booking_date", "bookingDate")),
            value_date=FinancialDate.from_iso(_pick(data, "value_date", "valueDate")),
            link_state=_parse_enum(LinkState, _pick(data, "link_state", "linkState"), LinkState.UNLINKED),
            iban=_optional_str(_pick(data, "iban", "counterparty_iban", "counterpartyIban")),
            reference=reference,
            e2e_id=_optional_str(_pick(data, "e2e_id", "e2eId", "end_to_end_id")),
            counterparty_name=counterparty,
            vendor_key=_optional_str(_pick(data, "vendor_key", "vendorKey")) or vendor_norm,
            vendor_norm=vendor_norm,
            text_raw=text_raw,
            text_norm=_optional_str(_pick(data, "text_norm", "textNorm")) or normalize_text(text_raw) or None,
            foreign_amount=_parse_money("transaction", tx_id, _pick(data, "foreign_amount", "foreignAmount")),
            foreign_currency=canonical_currency(_pick(data, "foreign_currency", "foreignCurrency")),
            private_hint=bool(_pick(data, "private_hint", "privateHint")),
            is_recurring_hint=bool(_pick(data, "is_recurring_hint", "isRecurringHint")),
        )


@dataclass
class MatchDecision:
    """
    Result of matching transaction(s) to document(s).

    inputs holds the structured evidence behind the decision and always
    carries tenant_id once the pipeline has backfilled it.
    """

    state: MatchState
    relation_type: MatchRelationType
    tx_ids: list[str]
    doc_ids: list[str]
    confidence: float
    reason_codes: list[str]
    inputs: dict[str, Any] = field(default_factory=dict)
    matched_by: MatchedBy = MatchedBy.SYSTEM
    match_group_id: str | None = None
    open_amount_after: Money | None = None

    @property
    def tenant_id(self) -> str:
        return normalize_tenant_id(self.inputs.get("tenant_id"))

    @property
    def is_hard(self) -> bool:
        """Decisions backed by a strong identifier carry a HARD_* reason code."""
        return any(code.startswith("HARD_") for code in self.reason_codes)

    def to_dict(self) -> dict[str, Any]:
        """Convert decision to dict for JSON serialization."""
        return {
            "state": self.state.value,
            "relation_type": self.relation_type.value,
            "tx_ids": list(self.tx_ids),
            "doc_ids": list(self.doc_ids),
            "confidence": self.confidence,
            "reason_codes": list(self.reason_codes),
            "inputs": self.inputs,
            "matched_by": self.matched_by.value,
            "match_group_id": self.match_group_id,
            "open_amount_after": _money_str(self.open_amount_after),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MatchDecision":
        open_after = data.get("open_amount_after")
        return cls(
            state=MatchState(data["state"]),
            relation_type=MatchRelationType(data["relation_type"]),
            tx_ids=list(data.get("tx_ids") or []),
            doc_ids=list(data.get("doc_ids") or []),
            confidence=float(data.get("confidence", 0.0)),
            reason_codes=list(data.get("reason_codes") or []),
            inputs=dict(data.get("inputs") or {}),
            matched_by=MatchedBy(data.get("matched_by", "system")),
            match_group_id=data.get("match_group_id"),
            open_amount_after=Money.from_amount(open_after) if open_after is not None else None,
        )
