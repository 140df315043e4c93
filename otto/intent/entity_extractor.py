"""
Type-directed parameter extraction, coercion, and validation.

Each parameter is extracted independently according to its declared
type. Numbers are only auto-extracted when the request has exactly one
numeric parameter; with several, the dialogue falls back to collecting
one value per turn so "75 180" is never assigned to the wrong field.
"""

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

from otto.schemas.script_schema import ParameterSpec, ParameterType

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"\d+(\.\d+)?")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
_US_DATE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")
_QUOTED = re.compile(r"[\"']([^\"']+)[\"']")
_CURRENCY = re.compile(r"\b[A-Z]{3}\b")

TRUE_WORDS = ("yes", "true", "yep")
FALSE_WORDS = ("no", "false", "nope")

# Formats tried when the whole utterance is parsed as a date
WHOLE_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)


def _contains_word(text: str, words: Iterable[str]) -> bool:
    return any(re.search(rf"\b{re.escape(w)}\b", text) for w in words)


def parse_date(text: str) -> Optional[datetime]:
    """Parse a full date string, or return None."""
    text = text.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in WHOLE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def extract_number(utterance: str) -> Optional[float]:
    match = _NUMBER.search(utterance)
    return float(match.group(0)) if match else None


def extract_boolean(utterance: str) -> Optional[bool]:
    lower = utterance.lower()
    if _contains_word(lower, TRUE_WORDS):
        return True
    if _contains_word(lower, FALSE_WORDS):
        return False
    return None


def extract_date(utterance: str) -> Optional[datetime]:
    match = _ISO_DATE.search(utterance)
    if match:
        try:
            return datetime.strptime(match.group(0), "%Y-%m-%d")
        except ValueError:
            pass
    match = _US_DATE.search(utterance)
    if match:
        try:
            return datetime.strptime(match.group(0), "%m/%d/%Y")
        except ValueError:
            pass
    return parse_date(utterance)


def extract_string(utterance: str, param_name: str) -> Optional[str]:
    quoted = _QUOTED.search(utterance)
    if quoted:
        return quoted.group(1)
    if "currency" in param_name.lower():
        currency = _CURRENCY.search(utterance)
        if currency:
            return currency.group(0)
    return None


def coerce_value(value: Any, value_type: ParameterType) -> tuple[bool, Any]:
    """
    Strictly coerce a collected value to its declared type.

    Unlike the sandbox's lenient coercion, this refuses values that
    cannot be represented, so the dialogue can re-prompt.

    Returns:
        (success, coerced value)
    """
    if value_type == ParameterType.NUMBER:
        if isinstance(value, bool):
            return False, value
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            try:
                number = float(str(value).strip())
            except ValueError:
                return False, value
        if math.isnan(number) or math.isinf(number):
            return False, value
        return True, number

    if value_type == ParameterType.BOOLEAN:
        if isinstance(value, bool):
            return True, value
        resolved = extract_boolean(str(value))
        return (resolved is not None), resolved

    if value_type == ParameterType.DATE:
        if isinstance(value, datetime):
            return True, value
        if isinstance(value, date):
            return True, datetime(value.year, value.month, value.day)
        parsed = extract_date(str(value))
        return (parsed is not None), parsed

    text = str(value).strip()
    return bool(text), text


class EntityExtractor:
    """Stateless extractor; safe to share across concurrent turns."""

    def extract(self, utterance: str, parameters: list[ParameterSpec]) -> dict[str, Any]:
        """Extract whatever parameter values the utterance supplies."""
        entities: dict[str, Any] = {}

        numeric = [p for p in parameters if p.value_type == ParameterType.NUMBER]
        if len(numeric) == 1:
            number = extract_number(utterance)
            if number is not None:
                entities[numeric[0].name] = number
        elif len(numeric) > 1:
            logger.debug(
                "Skipping numeric auto-extraction for %d numeric parameters", len(numeric)
            )

        for param in parameters:
            if param.value_type == ParameterType.NUMBER or param.name in entities:
                continue
            value = self._extract_parameter(utterance, param)
            if value is not None:
                entities[param.name] = value

        return entities

    def _extract_parameter(self, utterance: str, param: ParameterSpec) -> Any:
        if param.value_type == ParameterType.BOOLEAN:
            return extract_boolean(utterance)
        if param.value_type == ParameterType.DATE:
            return extract_date(utterance)
        if param.value_type == ParameterType.STRING:
            return extract_string(utterance, param.name)
        return None

    def missing_required(
        self, parameters: list[ParameterSpec], collected: dict[str, Any]
    ) -> list[ParameterSpec]:
        """Required parameters not yet collected, in declaration order."""
        return [p for p in parameters if p.required and p.name not in collected]

    def validate(
        self, parameters: list[ParameterSpec], values: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """
        Check presence and runtime type of every parameter value.

        Returns:
            (valid, errors) with one error string per offending field.
        """
        errors: list[str] = []
        for param in parameters:
            if param.name not in values:
                if param.required:
                    errors.append(f"Missing required parameter: {param.name}")
                continue

            value = values[param.name]
            if value is None:
                if param.required:
                    errors.append(f"Missing required parameter: {param.name}")
                continue

            if not self._type_matches(value, param.value_type):
                errors.append(
                    f"Parameter {param.name} should be {param.value_type.value}, "
                    f"got {type(value).__name__}"
                )
        return (not errors), errors

    @staticmethod
    def _type_matches(value: Any, value_type: ParameterType) -> bool:
        if value_type == ParameterType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if value_type == ParameterType.BOOLEAN:
            return isinstance(value, bool)
        if value_type == ParameterType.STRING:
            return isinstance(value, str)
        if isinstance(value, date):
            return True
        return isinstance(value, str) and extract_date(value) is not None
