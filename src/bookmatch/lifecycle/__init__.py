"""
Lifecycle Package

Classification of documents and transactions that have no counterpart in the
current batch: what they are, how urgent they are, and what to do next.
"""

from .doc_lifecycle import evaluate_doc_lifecycle
from .models import (
    Cadence,
    DocLifecycleKind,
    DocLifecycleResult,
    NextAction,
    RematchHint,
    RuleSuggestion,
    Severity,
    TxLifecycleKind,
    TxLifecycleResult,
)
from .tx_lifecycle import evaluate_tx_lifecycle

__all__ = [
    "Cadence",
    "DocLifecycleKind",
    "DocLifecycleResult",
    "NextAction",
    "RematchHint",
    "RuleSuggestion",
    "Severity",
    "TxLifecycleKind",
    "TxLifecycleResult",
    "evaluate_doc_lifecycle",
    "evaluate_tx_lifecycle",
]
