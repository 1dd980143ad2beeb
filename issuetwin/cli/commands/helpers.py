"""Shared helper functions for CLI commands."""

import json
import re
from typing import Any, List, Union

from issuetwin.types import ApplyResult, ItemOutcome, PullResult


def validate_input(value: str, field_name: str, max_length: int = 10000) -> str:
    """Validate and sanitize CLI inputs."""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")

    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")

    # Remove null bytes and control characters except newlines and tabs
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", value)


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer.strip().lower() in ("y", "yes")


def print_outcomes(outcomes: List[ItemOutcome]) -> None:
    """One line per item: failures with their error, warnings indented."""
    for outcome in outcomes:
        if not outcome.ok:
            print(f"  ✗ {outcome.label}: {outcome.error}")
        for warning in outcome.warnings:
            print(f"  ⚠ {warning}")


def report(result: Union[PullResult, ApplyResult], done: str) -> bool:
    """Print the aggregate line; True when no item failed outright."""
    failures = len(result.failures)
    warnings = len(result.warnings)
    line = f"{'✓' if result.success else '✗'} {done}"
    if failures:
        line += f", {failures} failed"
    if warnings:
        line += f", {warnings} warning(s)"
    print(line)
    return result.success
