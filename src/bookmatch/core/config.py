#!/usr/bin/env python3
"""
Configuration Management for Bookmatch

Handles environment-based configuration with secure defaults and validation.
Matching tunables live in a nested MatchingConfig so that a single run can
apply partial overrides without touching the process-wide configuration.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Environment(Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


@dataclass(frozen=True)
class SubscriptionDetectionConfig:
    """History-based recurring payment detection."""

    min_occurrences: int = 3
    max_amount_variance_pct: float = 3.0
    max_day_variance: int = 5
    lookback_days: int = 365


@dataclass(frozen=True)
class RequiredFieldsConfig:
    """Fields a document must carry before it can be matched."""

    require_amount: bool = True
    require_currency: bool = True
    require_invoice_date: bool = True


@dataclass(frozen=True)
class PrepassConfig:
    """Hard identifier prepass behaviour."""

    require_uniqueness: bool = True
    block_on_partial_keywords: bool = True
    # Logs every hard-key check at DEBUG level
    debug_hard_checks: bool = False


@dataclass(frozen=True)
class ScoringConfig:
    """Soft scoring thresholds."""

    min_suggest_score: float = 0.65


@dataclass(frozen=True)
class SubsetSumConfig:
    """Bounds for collective payment (one tx, several docs) search."""

    max_candidates: int = 12
    max_solutions: int = 1


@dataclass(frozen=True)
class KeywordConfig:
    """Keywords that mark partial or collective payments."""

    partial_payment: tuple[str, ...] = ("teilzahlung", "rate", "anzahlung", "partial")
    batch_payment: tuple[str, ...] = ("sammel", "collective", "mehrere rechnungen", "batch")


@dataclass(frozen=True)
class MatchingConfig:
    """
    Tunables of the matching pipeline.

    Amount tolerances are integer based: an absolute tolerance in cents and
    a relative tolerance in basis points (10 bps = 0.1%) of the larger
    amount. Day windows are calendar days.
    """

    amount_tolerance_cents: int = 2
    amount_tolerance_bps: int = 10

    date_window_days: int = 30
    due_date_extend_days: int = 14
    grace_days: int = 7

    # Rematch hint windows
    window_before_due_days: int = 30
    window_after_due_days: int = 90
    window_before_invoice_days: int = 7
    window_after_invoice_days: int = 45
    tx_window_before_days: int = 60
    tx_window_after_days: int = 120

    fee_keywords: tuple[str, ...] = (
        "gebuehr",
        "gebuhr",
        "entgelt",
        "fee",
        "commission",
        "charge",
        "kontofuehrung",
        "kontofuhrung",
    )
    technical_keywords: tuple[str, ...] = (
        "verification",
        "verifizierung",
        "preauth",
        "auth",
        "test",
        "penny",
        "microdeposit",
    )
    prepayment_keywords: tuple[str, ...] = ("vorkasse", "anzahlung", "deposit", "advance", "abschlag")
    fee_vendor_keys: tuple[str, ...] = ()
    fee_amount_threshold_cents: int = 1000
    eigenbeleg_amount_threshold_cents: int = 5000

    enable_subscription_history: bool = True
    subscription_detection: SubscriptionDetectionConfig = field(default_factory=SubscriptionDetectionConfig)
    min_required_fields: RequiredFieldsConfig = field(default_factory=RequiredFieldsConfig)
    prepass: PrepassConfig = field(default_factory=PrepassConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    subset_sum: SubsetSumConfig = field(default_factory=SubsetSumConfig)
    keywords: KeywordConfig = field(default_factory=KeywordConfig)

    def with_overrides(self, overrides: dict[str, Any] | None) -> "MatchingConfig":
        """
        Return a copy with partial overrides applied.

        Nested sections are merged key by key, so
        ``{"subset_sum": {"max_candidates": 5}}`` keeps ``max_solutions``.

        Raises:
            ValueError: If an override names an unknown setting
        """
        if not overrides:
            return self
        return _merge_dataclass(self, overrides)

    def validate(self) -> list:
        """Validate tunables and return list of errors."""
        errors = []

        if self.amount_tolerance_cents < 0:
            errors.append("amount_tolerance_cents must be non-negative")
        if self.amount_tolerance_bps < 0:
            errors.append("amount_tolerance_bps must be non-negative")
        for name in (
            "date_window_days",
            "due_date_extend_days",
            "grace_days",
            "window_before_due_days",
            "window_after_due_days",
            "window_before_invoice_days",
            "window_after_invoice_days",
            "tx_window_before_days",
            "tx_window_after_days",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be non-negative")
        if not 0.0 <= self.scoring.min_suggest_score <= 1.0:
            errors.append("scoring.min_suggest_score must be between 0 and 1")
        if self.subset_sum.max_candidates < 2:
            errors.append("subset_sum.max_candidates must be at least 2")
        if self.subset_sum.max_solutions < 1:
            errors.append("subset_sum.max_solutions must be at least 1")
        if self.subscription_detection.min_occurrences < 2:
            errors.append("subscription_detection.min_occurrences must be at least 2")

        return errors


def _merge_dataclass(instance: Any, overrides: dict[str, Any]) -> Any:
    known = {f.name for f in fields(instance)}
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"Unknown setting for {type(instance).__name__}: {key}")
        current = getattr(instance, key)
        if is_dataclass(current) and isinstance(value, dict):
            changes[key] = _merge_dataclass(current, value)
        elif isinstance(current, tuple) and isinstance(value, (list, tuple)):
            changes[key] = tuple(value)
        else:
            changes[key] = value
    return replace(instance, **changes)


@dataclass
class Config:
    """
    Main configuration class for the bookmatch application.

    Loads configuration from environment variables with secure defaults
    and validation for each environment type.
    """

    environment: Environment

    # Core directories
    data_dir: Path
    output_dir: Path

    matching: MatchingConfig

    # Application settings
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "Config":
        """Create configuration from environment variables."""
        env = Environment(os.getenv("BOOKMATCH_ENV", "development"))

        # Base directories
        if env == Environment.TEST:
            default_test_dir = Path(tempfile.gettempdir()) / "test_bookmatch"
            base_dir = Path(os.getenv("BOOKMATCH_DATA_DIR", str(default_test_dir)))
        else:
            base_dir = Path(os.getenv("BOOKMATCH_DATA_DIR", "./data")).expanduser().resolve()

        data_dir = base_dir
        output_dir = data_dir / "runs"

        # Ensure directories exist
        for directory in [data_dir, output_dir]:
            directory.mkdir(parents=True, exist_ok=True)

        defaults = MatchingConfig()
        matching = replace(
            defaults,
            amount_tolerance_cents=int(
                os.getenv("MATCH_AMOUNT_TOLERANCE_CENTS", str(defaults.amount_tolerance_cents))
            ),
            amount_tolerance_bps=int(os.getenv("MATCH_AMOUNT_TOLERANCE_BPS", str(defaults.amount_tolerance_bps))),
            date_window_days=int(os.getenv("MATCH_DATE_WINDOW_DAYS", str(defaults.date_window_days))),
            grace_days=int(os.getenv("MATCH_GRACE_DAYS", str(defaults.grace_days))),
            fee_vendor_keys=tuple(_parse_list(os.getenv("MATCH_FEE_VENDOR_KEYS", ""))),
            enable_subscription_history=_parse_bool(os.getenv("MATCH_ENABLE_SUBSCRIPTION_HISTORY", "true")),
            prepass=replace(
                defaults.prepass,
                debug_hard_checks=os.getenv("MATCH_DEBUG_HARD", "0").lower() in ("1", "true"),
            ),
        )

        return cls(
            environment=env,
            data_dir=data_dir,
            output_dir=output_dir,
            matching=matching,
            debug=_parse_bool(os.getenv("DEBUG", "false")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> list:
        """Validate configuration and return list of errors."""
        errors = []

        # Check required directories
        for name, path in [
            ("data_dir", self.data_dir),
            ("output_dir", self.output_dir),
        ]:
            if not path.exists():
                errors.append(f"{name} does not exist: {path}")

        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown LOG_LEVEL: {self.log_level}")

        errors.extend(self.matching.validate())
        return errors

    def setup_logging(self) -> None:
        """Configure logging based on configuration."""
        level = getattr(logging, self.log_level, logging.INFO)

        # Configure format based on environment
        if self.environment == Environment.DEVELOPMENT:
            format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            format_str = "%(asctime)s - %(levelname)s - %(message)s"

        logging.basicConfig(level=level, format=format_str, datefmt="%Y-%m-%d %H:%M:%S")

        # Per-pair hard checks are very chatty
        if self.environment == Environment.PRODUCTION and not self.matching.prepass.debug_hard_checks:
            logging.getLogger("bookmatch.matching.prepass").setLevel(logging.INFO)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a JSON-friendly dictionary."""
        return {
            "environment": self.environment.value,
            "data_dir": str(self.data_dir),
            "output_dir": str(self.output_dir),
            "debug": self.debug,
            "log_level": self.log_level,
            "matching": _dataclass_to_dict(self.matching),
        }


def _dataclass_to_dict(instance: Any) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for f in fields(instance):
        value = getattr(instance, f.name)
        if is_dataclass(value):
            result[f.name] = _dataclass_to_dict(value)
        elif isinstance(value, tuple):
            result[f.name] = list(value)
        else:
            result[f.name] = value
    return result


def _parse_list(value: str, delimiter: str = ",") -> list:
    """Parse comma-separated string into list, handling empty values."""
    if not value:
        return []
    return [item.strip() for item in value.split(delimiter) if item.strip()]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_environment()

        # Validate configuration
        errors = _config.validate()
        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        # Setup logging
        _config.setup_logging()

    return _config


def reload_config() -> Config:
    """Reload configuration from environment (useful for testing)."""
    global _config
    _config = None
    return get_config()


def get_data_dir() -> Path:
    """Get the data directory path."""
    return get_config().data_dir


def is_test() -> bool:
    """Check if running in test environment."""
    return get_config().environment == Environment.TEST
