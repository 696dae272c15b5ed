"""
Matching Package

Pipeline stages that turn documents and transactions into resolved match
decisions, plus the persistence projection and repository implementations.
"""

from .persistence import to_apply_ops, to_audit_record
from .pipeline import (
    EventType,
    PipelineInput,
    PipelineOptions,
    PipelineResult,
    generate_match_summary,
    run_pipeline,
)
from .repository import InMemoryMatchRepository, JsonFileMatchRepository, MatchRepository
from .resolver import ResolvedDecisions, resolve_conflicts

__all__ = [
    "EventType",
    "InMemoryMatchRepository",
    "JsonFileMatchRepository",
    "MatchRepository",
    "PipelineInput",
    "PipelineOptions",
    "PipelineResult",
    "ResolvedDecisions",
    "generate_match_summary",
    "resolve_conflicts",
    "run_pipeline",
    "to_apply_ops",
    "to_audit_record",
]
