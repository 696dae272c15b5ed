#!/usr/bin/env python3
"""
Lifecycle Result Models

Classification results for documents and transactions that the matching
pipeline left unmatched, with the follow-up action for the inbox.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..core.dates import FinancialDate


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    ACTION = "action"


class NextAction(Enum):
    NONE = "none"
    INBOX_TASK = "inbox_task"
    ASK_USER = "ask_user"
    START_SPLIT_UI = "start_split_ui"
    START_EIGENBELEG_FLOW = "start_eigenbeleg_flow"
    REUPLOAD_REQUEST = "reupload_request"


class DocLifecycleKind(Enum):
    DUPLICATE = "doc_duplicate"
    ERROR = "doc_error"
    AWAITING_TX = "awaiting_tx"
    OVERDUE = "overdue"
    EIGENBELEG = "eigenbeleg"
    PRIVATE = "private"
    SPLIT_REQUIRED = "split_required"


class TxLifecycleKind(Enum):
    TECHNICAL = "technical_tx"
    PRIVATE = "private_tx"
    FEE = "fee_tx"
    SUBSCRIPTION = "subscription_tx"
    PREPAYMENT = "prepayment_tx"
    NEEDS_EIGENBELEG = "needs_eigenbeleg"
    MISSING_DOC = "missing_doc"


class Cadence(Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RuleType(Enum):
    SUBSCRIPTION_RULE = "subscription_rule"
    FEE_RULE = "fee_rule"
    VENDOR_RULE = "vendor_rule"


@dataclass(frozen=True)
class RematchHint:
    """Anchor date and day window for a targeted future re-scan."""

    anchor_date: FinancialDate
    window_before_days: int
    window_after_days: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor_date": self.anchor_date.to_iso_string(),
            "window_before_days": self.window_before_days,
            "window_after_days": self.window_after_days,
        }


@dataclass(frozen=True)
class RuleSuggestion:
    """Automation rule the user could accept for this kind of transaction."""

    type: RuleType
    key: str
    cadence: Cadence | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "key": self.key,
            "cadence": self.cadence.value if self.cadence else None,
        }


@dataclass
class DocLifecycleResult:
    doc_id: str
    kind: DocLifecycleKind
    severity: Severity
    next_action: NextAction
    explanation_codes: list[str] = field(default_factory=list)
    rematch_hint: RematchHint | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "doc_id": self.doc_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "next_action": self.next_action.value,
            "explanation_codes": list(self.explanation_codes),
            "rematch_hint": self.rematch_hint.to_dict() if self.rematch_hint else None,
        }


@dataclass
class TxLifecycleResult:
    tx_id: str
    kind: TxLifecycleKind
    severity: Severity
    next_action: NextAction
    explanation_codes: list[str] = field(default_factory=list)
    rematch_hint: RematchHint | None = None
    rule_suggestion: RuleSuggestion | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "next_action": self.next_action.value,
            "explanation_codes": list(self.explanation_codes),
            "rematch_hint": self.rematch_hint.to_dict() if self.rematch_hint else None,
            "rule_suggestion": self.rule_suggestion.to_dict() if self.rule_suggestion else None,
        }
