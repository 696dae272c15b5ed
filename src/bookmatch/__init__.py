"""
bookmatch - Bank Transaction to Document Reconciliation

Matches bank transactions against invoices and receipts for multi-tenant
bookkeeping, and classifies whatever stays unmatched.

Key Features:
- Hard identifier prepass (IBAN, invoice number, end-to-end id)
- Line item allocation with bundle search
- One-to-one, collective and instalment matching with tolerant amounts
- Deterministic conflict resolution across all stages
- Lifecycle classification of unmatched documents and transactions
- Idempotent persistence through a repository boundary

Domain Packages:
- core: Money, dates, normalization, tolerance, data models, configuration
- matching: Pipeline stages, resolver, persistence projection, repositories
- lifecycle: Unmatched document and transaction classification
- cli: Command-line interface

Example Usage:
    from bookmatch import InMemoryMatchRepository, PipelineInput, run_pipeline

    result = run_pipeline(PipelineInput(docs=docs, txs=txs), InMemoryMatchRepository())
"""

__version__ = "0.1.0"
__author__ = "Bookmatch Developers"

from .core.config import Environment, MatchingConfig, get_config
from .core.models import Doc, MatchDecision, Tx
from .core.money import Money
from .matching.pipeline import PipelineInput, PipelineOptions, PipelineResult, run_pipeline
from .matching.repository import InMemoryMatchRepository, JsonFileMatchRepository, MatchRepository

__all__ = [
    # Core models
    "Doc",
    "Tx",
    "MatchDecision",
    "Money",

    # Configuration
    "get_config",
    "Environment",
    "MatchingConfig",

    # Pipeline
    "run_pipeline",
    "PipelineInput",
    "PipelineOptions",
    "PipelineResult",

    # Repositories
    "MatchRepository",
    "InMemoryMatchRepository",
    "JsonFileMatchRepository",
]
