"""Shared text helpers used across the automation core."""

import json
import math
import re
from datetime import date, datetime
from typing import Any

_WHITESPACE = re.compile(r"\s+")
_NUMERIC_TOKEN = re.compile(r"^\d+\.?\d*$")


def normalize_utterance(value: str) -> str:
    """Lowercase and trim an utterance for matching.

    Examples:
        >>> normalize_utterance("  Calculate My BMI ")
        'calculate my bmi'
    """
    return value.lower().strip()


def tokenize(value: str) -> list[str]:
    """Split on whitespace and drop purely numeric tokens.

    Examples:
        >>> tokenize("convert 100 usd")
        ['convert', 'usd']
    """
    return [t for t in _WHITESPACE.split(value) if t and not _NUMERIC_TOKEN.match(t)]


def format_result(result: Any) -> str:
    """Render an execution result as user-facing text."""
    if result is None:
        return "Done."
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, float) and math.isnan(result):
        return "NaN"
    if isinstance(result, (int, float)):
        return str(result)
    if isinstance(result, (datetime, date)):
        return result.isoformat()
    try:
        return json.dumps(result, indent=2, default=str)
    except (TypeError, ValueError):
        return str(result)
