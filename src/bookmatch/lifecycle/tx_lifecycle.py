#!/usr/bin/env python3
"""
Transaction Lifecycle Evaluation

Classifies a bank transaction that has no document counterpart. Rules are
checked in priority order and the first hit wins:

technical -> private -> fee -> subscription -> prepayment
-> needs eigenbeleg -> missing document (fallback)

Subscriptions are recognized from keywords or an upstream recurring hint,
and, when history detection is enabled, from earlier transactions of the
same vendor: enough occurrences, stable amount, and a weekly, monthly or
yearly rhythm.
"""

import logging
from dataclasses import dataclass, field

from ..core.config import MatchingConfig
from ..core.dates import FinancialDate
from ..core.models import Tx
from ..core.normalize import contains_word_prefix, normalize_text
from .models import (
    Cadence,
    NextAction,
    RematchHint,
    RuleSuggestion,
    RuleType,
    Severity,
    TxLifecycleKind,
    TxLifecycleResult,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_KEYWORDS = (
    "abo",
    "subscription",
    "mitglied",
    "membership",
    "monthly",
    "jahrlich",
    "annual",
    "renew",
)

EIGENBELEG_KEYWORDS = (
    "pos",
    "karte",
    "kartenzahlung",
    "kreditkarte",
    "credit card",
    "debit card",
    "ec",
    "girocard",
    "barabhebung",
    "cash withdrawal",
    "atm",
)

YEARLY_KEYWORDS = ("annual", "jahrlich", "yearly")
MONTHLY_KEYWORDS = ("monthly", "monat")

# Nominal day gaps between occurrences per cadence, checked in this order
CADENCE_DAYS = (
    (Cadence.MONTHLY, 30),
    (Cadence.YEARLY, 365),
    (Cadence.WEEKLY, 7),
)


@dataclass
class RuleCheck:
    """Outcome of a single lifecycle rule."""

    match: bool
    codes: list[str] = field(default_factory=list)
    cadence: Cadence | None = None


def evaluate_tx_lifecycle(
    tx: Tx,
    cfg: MatchingConfig,
    history: list[Tx] | None = None,
) -> TxLifecycleResult:
    """
    Classify an unmatched transaction.

    Args:
        tx: Transaction without a matching document
        cfg: Matching configuration
        history: Earlier transactions of the same tenant and vendor, if loaded

    Returns:
        TxLifecycleResult with severity, next action and explanation codes
    """
    haystack = build_haystack(tx)

    technical = check_technical(haystack, cfg)
    if technical.match:
        return TxLifecycleResult(tx.id, TxLifecycleKind.TECHNICAL, Severity.INFO, NextAction.NONE, technical.codes)

    if tx.private_hint:
        return TxLifecycleResult(
            tx.id,
            TxLifecycleKind.PRIVATE,
            Severity.INFO,
            NextAction.ASK_USER,
            ["PRIVATE_HINT"],
            rule_suggestion=_vendor_rule(tx, RuleType.VENDOR_RULE),
        )

    fee = check_fee(tx, haystack, cfg)
    if fee.match:
        return TxLifecycleResult(
            tx.id,
            TxLifecycleKind.FEE,
            Severity.INFO,
            NextAction.NONE,
            fee.codes,
            rule_suggestion=_vendor_rule(tx, RuleType.FEE_RULE),
        )

    subscription = check_subscription(tx, haystack, cfg, history)
    if subscription.match:
        return TxLifecycleResult(
            tx.id,
            TxLifecycleKind.SUBSCRIPTION,
            Severity.INFO,
            NextAction.NONE,
            subscription.codes,
            rule_suggestion=RuleSuggestion(
                RuleType.SUBSCRIPTION_RULE,
                tx.vendor_key or tx.counterparty_name or "unknown",
                subscription.cadence,
            ),
        )

    if contains_word_prefix(haystack, cfg.prepayment_keywords):
        return TxLifecycleResult(
            tx.id,
            TxLifecycleKind.PREPAYMENT,
            Severity.INFO,
            NextAction.NONE,
            ["PREPAYMENT_KEYWORD_MATCH"],
            build_tx_rematch_hint(tx, cfg),
        )

    eigenbeleg = check_needs_eigenbeleg(tx, haystack, cfg)
    if eigenbeleg.match:
        return TxLifecycleResult(
            tx.id,
            TxLifecycleKind.NEEDS_EIGENBELEG,
            Severity.ACTION,
            NextAction.START_EIGENBELEG_FLOW,
            eigenbeleg.codes,
            build_tx_rematch_hint(tx, cfg),
        )

    return TxLifecycleResult(
        tx.id,
        TxLifecycleKind.MISSING_DOC,
        Severity.ACTION,
        NextAction.INBOX_TASK,
        ["FALLBACK_MISSING_DOC"],
        build_tx_rematch_hint(tx, cfg),
    )


def build_haystack(tx: Tx) -> str:
    """Normalized counterparty, reference and free text of a transaction."""
    parts = [tx.counterparty_name, tx.reference, tx.text_raw, tx.vendor_norm]
    return normalize_text(" ".join(part for part in parts if part))


def check_technical(haystack: str, cfg: MatchingConfig) -> RuleCheck:
    if contains_word_prefix(haystack, cfg.technical_keywords):
        return RuleCheck(True, ["TECHNICAL_KEYWORD_MATCH"])
    return RuleCheck(False)


def check_fee(tx: Tx, haystack: str, cfg: MatchingConfig) -> RuleCheck:
    """Allow-listed vendor, or a fee keyword on a small amount."""
    vendor_match = bool(tx.vendor_key) and tx.vendor_key in cfg.fee_vendor_keys
    keyword_match = contains_word_prefix(haystack, cfg.fee_keywords)
    amount_small = tx.amount.cents <= cfg.fee_amount_threshold_cents

    if not (vendor_match or (keyword_match and amount_small)):
        return RuleCheck(False)

    codes = []
    if vendor_match:
        codes.append("FEE_VENDOR_MATCH")
    if keyword_match:
        codes.append("FEE_KEYWORD_MATCH")
    if amount_small:
        codes.append("FEE_AMOUNT_SMALL")
    return RuleCheck(True, codes)


def check_subscription(
    tx: Tx,
    haystack: str,
    cfg: MatchingConfig,
    history: list[Tx] | None,
) -> RuleCheck:
    """Keyword or recurring hint first, then history-based detection."""
    keyword_match = contains_word_prefix(haystack, SUBSCRIPTION_KEYWORDS)
    if tx.is_recurring_hint or keyword_match:
        return RuleCheck(
            True,
            ["SUBSCRIPTION_RECURRING_HINT" if tx.is_recurring_hint else "SUBSCRIPTION_KEYWORD_MATCH"],
            _cadence_from_keywords(haystack) if keyword_match else None,
        )

    if not cfg.enable_subscription_history or not history:
        return RuleCheck(False)

    return detect_subscription_from_history(tx, history, cfg)


def detect_subscription_from_history(tx: Tx, history: list[Tx], cfg: MatchingConfig) -> RuleCheck:
    """
    Recognize a recurring payment from earlier transactions.

    Occurrences are the transaction itself plus history entries of the same
    vendor key inside the lookback window. The largest deviation from the
    mean amount must stay within the variance limit, and the mean gap
    between consecutive occurrences must match a known cadence.
    """
    settings = cfg.subscription_detection
    current_date = tx.date
    if current_date is None:
        return RuleCheck(False)

    cutoff = current_date.add_days(-settings.lookback_days)
    occurrences: list[Tx] = []
    seen: set[str] = set()
    for item in [tx, *history]:
        if item.id in seen:
            continue
        item_date = item.date
        if item_date is None or item_date < cutoff:
            continue
        if tx.vendor_key and item.vendor_key != tx.vendor_key:
            continue
        seen.add(item.id)
        occurrences.append(item)

    if len(occurrences) < settings.min_occurrences:
        return RuleCheck(False)

    amounts = [item.amount.cents for item in occurrences]
    mean = sum(amounts) / len(amounts)
    if mean > 0:
        max_delta_pct = max(abs(value - mean) / mean * 100 for value in amounts)
        if max_delta_pct > settings.max_amount_variance_pct:
            logger.debug("Tx %s: amount variance %.2f%% too high for subscription", tx.id, max_delta_pct)
            return RuleCheck(False)

    cadence = detect_cadence([item.date for item in occurrences if item.date], settings.max_day_variance)
    if cadence is None:
        return RuleCheck(False)

    return RuleCheck(
        True,
        [
            "SUBSCRIPTION_MIN_OCCURRENCES",
            "SUBSCRIPTION_AMOUNT_VARIANCE",
            f"SUBSCRIPTION_CADENCE_{cadence.value.upper()}",
        ],
        cadence,
    )


def detect_cadence(dates: list[FinancialDate], max_day_variance: int) -> Cadence | None:
    """Match the mean day gap between sorted dates against known cadences."""
    if len(dates) < 3:
        return None
    ordered = sorted(dates)
    gaps = [earlier.days_until(later) for earlier, later in zip(ordered, ordered[1:])]
    average = sum(gaps) / len(gaps)

    for cadence, nominal_days in CADENCE_DAYS:
        if abs(average - nominal_days) <= max_day_variance:
            return cadence
    return None


def check_needs_eigenbeleg(tx: Tx, haystack: str, cfg: MatchingConfig) -> RuleCheck:
    """Card/cash keywords, or a small payment without a known counterparty or IBAN."""
    keyword_match = contains_word_prefix(haystack, EIGENBELEG_KEYWORDS)
    amount_small = tx.amount.cents <= cfg.eigenbeleg_amount_threshold_cents
    missing_counterparty = not tx.counterparty_name and not tx.iban

    if not (keyword_match or (amount_small and (missing_counterparty or not tx.iban))):
        return RuleCheck(False)

    codes = ["EIGENBELEG_HEURISTIC"]
    if keyword_match:
        codes.append("EIGENBELEG_KEYWORD_MATCH")
    if amount_small:
        codes.append("EIGENBELEG_AMOUNT_SMALL")
    if missing_counterparty:
        codes.append("EIGENBELEG_UNKNOWN_COUNTERPARTY")
    return RuleCheck(True, codes)


def build_tx_rematch_hint(tx: Tx, cfg: MatchingConfig) -> RematchHint | None:
    if tx.date is None:
        return None
    return RematchHint(tx.date, cfg.tx_window_before_days, cfg.tx_window_after_days)


def _cadence_from_keywords(haystack: str) -> Cadence | None:
    if contains_word_prefix(haystack, YEARLY_KEYWORDS):
        return Cadence.YEARLY
    if contains_word_prefix(haystack, MONTHLY_KEYWORDS):
        return Cadence.MONTHLY
    return None


def _vendor_rule(tx: Tx, rule_type: RuleType) -> RuleSuggestion | None:
    if not tx.vendor_key:
        return None
    return RuleSuggestion(rule_type, tx.vendor_key)
