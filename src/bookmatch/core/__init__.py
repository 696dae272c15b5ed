"""
Core Utilities Package

Shared primitives used by every matching stage.

This package provides:
- Integer minor-unit Money and an ISO FinancialDate wrapper
- Text, vendor and identifier normalization
- Amount tolerance, direction and date window checks
- Document, transaction and decision models
- Configuration management for environment-specific settings
"""

from .config import (
    Config,
    Environment,
    MatchingConfig,
    get_config,
    get_data_dir,
    is_test,
    reload_config,
)
from .currency import canonical_currency, cents_to_amount_str, format_cents, parse_amount_to_cents
from .dates import FinancialDate
from .errors import BookmatchError, InvalidRecordError, RepositoryError
from .models import (
    Direction,
    Doc,
    DocLineItem,
    DocType,
    LinkState,
    MatchDecision,
    MatchedBy,
    MatchRelationType,
    MatchState,
    PaymentHint,
    Tx,
    normalize_tenant_id,
)
from .money import Money, sum_money
from .tolerance import amount_compatible, calc_window, direction_compatible

__all__ = [
    "BookmatchError",
    # Configuration
    "Config",
    "Direction",
    # Data models
    "Doc",
    "DocLineItem",
    "DocType",
    "Environment",
    "FinancialDate",
    "InvalidRecordError",
    "LinkState",
    "MatchDecision",
    "MatchRelationType",
    "MatchState",
    "MatchedBy",
    "MatchingConfig",
    "Money",
    "PaymentHint",
    "RepositoryError",
    "Tx",
    # Tolerance
    "amount_compatible",
    "calc_window",
    "canonical_currency",
    "cents_to_amount_str",
    "direction_compatible",
    "format_cents",
    "get_config",
    "get_data_dir",
    "is_test",
    "normalize_tenant_id",
    # Currency utilities
    "parse_amount_to_cents",
    "reload_config",
    "sum_money",
]
