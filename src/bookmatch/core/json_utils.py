#!/usr/bin/env python3
"""
JSON Utilities Module

Centralized JSON reading and writing for run inputs, results and the
file-backed match repository. Output is always pretty-printed UTF-8 so
stored tables stay diffable.
"""

import json
import os
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .dates import FinancialDate
from .money import Money


def json_default(value: Any) -> Any:
    """
    Serialize domain primitives that json does not know about.

    Money becomes a major-unit string, FinancialDate an ISO date, enums
    their value and dataclasses their field dict.
    """
    if isinstance(value, Money):
        return value.to_amount_str()
    if isinstance(value, FinancialDate):
        return value.to_iso_string()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_json(filepath: str | Path, data: Any, sort_keys: bool = False) -> None:
    """
    Write data to a JSON file with standard pretty-printing.

    The file is written to a sibling temp file first and then moved into
    place, so readers never observe a half-written table.

    Args:
        filepath: Path to the JSON file
        data: Data to write to the file
        sort_keys: If True, sort dictionary keys (default: False)
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = filepath.with_name(f".{filepath.name}.tmp")

    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=sort_keys, default=json_default)
    os.replace(tmp_path, filepath)


def read_json(filepath: str | Path, default: Any = None) -> Any:
    """
    Read data from a JSON file.

    Args:
        filepath: Path to the JSON file
        default: Returned when the file does not exist (None means raise)

    Returns:
        The parsed JSON data
    """
    filepath = Path(filepath)
    if default is not None and not filepath.exists():
        return default
    with open(filepath, encoding="utf-8") as f:
        return json.load(f)


def format_json(data: Any, sort_keys: bool = False) -> str:
    """Format data as a pretty-printed JSON string."""
    return json.dumps(data, indent=2, ensure_ascii=False, sort_keys=sort_keys, default=json_default)
