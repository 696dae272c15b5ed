#!/usr/bin/env python3
"""
E2E Test Helper Utilities

Helper functions for end-to-end tests to reduce boilerplate and improve consistency.
"""

import os
import subprocess
import sys
from pathlib import Path


def get_test_environment(data_dir: Path) -> dict[str, str]:
    """
    Get environment dictionary for E2E subprocess tests.

    Creates a copy of the current environment with BOOKMATCH_DATA_DIR
    pointing at the given test data directory and BOOKMATCH_ENV set to test.

    Args:
        data_dir: Path to temporary test data directory

    Returns:
        Environment dictionary for subprocess.run(env=...)
    """
    return {**os.environ, "BOOKMATCH_DATA_DIR": str(data_dir), "BOOKMATCH_ENV": "test"}


def run_bookmatch(args: list[str], data_dir: Path) -> subprocess.CompletedProcess:
    """
    Run the bookmatch CLI in a subprocess with the current interpreter.

    Example:
        result = run_bookmatch(["run", str(batch_file), "--dry-run"], tmpdir)
        assert result.returncode == 0
    """
    return subprocess.run(
        [sys.executable, "-m", "bookmatch.cli.main", *args],
        env=get_test_environment(data_dir),
        capture_output=True,
        text=True,
        timeout=120,
    )
