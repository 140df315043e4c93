"""Tests for type-directed entity extraction, coercion and validation."""

import math
from datetime import date, datetime

import pytest

from otto.intent.entity_extractor import coerce_value, extract_date, parse_date
from otto.schemas.script_schema import ParameterSpec, ParameterType


def param(name, value_type, required=True):
    return ParameterSpec(name=name, value_type=value_type, required=required)


class TestNumberExtraction:
    def test_single_numeric_parameter(self, extractor):
        params = [param("amount", ParameterType.NUMBER)]
        assert extractor.extract("tip on 42.50 please", params) == {"amount": 42.5}

    def test_two_numeric_parameters_not_guessed(self, extractor):
        params = [param("weight", ParameterType.NUMBER), param("height", ParameterType.NUMBER)]
        assert extractor.extract("75 180", params) == {}

    def test_no_number_present(self, extractor):
        params = [param("amount", ParameterType.NUMBER)]
        assert extractor.extract("some dollars", params) == {}


class TestBooleanExtraction:
    @pytest.mark.parametrize("text", ["yes please", "true", "yep"])
    def test_affirmative(self, extractor, text):
        params = [param("confirm", ParameterType.BOOLEAN)]
        assert extractor.extract(text, params) == {"confirm": True}

    @pytest.mark.parametrize("text", ["no thanks", "FALSE", "nope"])
    def test_negative(self, extractor, text):
        params = [param("confirm", ParameterType.BOOLEAN)]
        assert extractor.extract(text, params) == {"confirm": False}

    def test_words_inside_other_words_ignored(self, extractor):
        params = [param("confirm", ParameterType.BOOLEAN)]
        assert extractor.extract("I know nothing", params) == {}


class TestDateExtraction:
    def test_iso_date(self, extractor):
        params = [param("when", ParameterType.DATE)]
        assert extractor.extract("book it on 2025-03-15", params) == {
            "when": datetime(2025, 3, 15)
        }

    def test_us_date(self):
        assert extract_date("due 3/15/2025") == datetime(2025, 3, 15)

    def test_whole_utterance_parse(self):
        assert extract_date("March 15, 2025") == datetime(2025, 3, 15)

    def test_invalid_calendar_date(self):
        assert extract_date("2025-13-45") is None

    def test_parse_date_empty(self):
        assert parse_date("   ") is None


class TestStringExtraction:
    def test_quoted_text(self, extractor):
        params = [param("title", ParameterType.STRING)]
        assert extractor.extract('name it "Road trip"', params) == {"title": "Road trip"}

    def test_currency_code(self, extractor):
        params = [param("amount", ParameterType.NUMBER), param("currency", ParameterType.STRING)]
        assert extractor.extract("convert 100 USD", params) == {
            "amount": 100.0, "currency": "USD",
        }

    def test_uppercase_word_ignored_for_other_names(self, extractor):
        params = [param("title", ParameterType.STRING)]
        assert extractor.extract("convert 100 USD", params) == {}


class TestMissingRequired:
    def test_declaration_order_and_optional_skipped(self, extractor):
        params = [
            param("a", ParameterType.NUMBER),
            param("b", ParameterType.STRING, required=False),
            param("c", ParameterType.DATE),
        ]
        missing = extractor.missing_required(params, {"a": 1.0})
        assert [p.name for p in missing] == ["c"]

    def test_nothing_missing(self, extractor):
        params = [param("a", ParameterType.NUMBER)]
        assert extractor.missing_required(params, {"a": 1.0}) == []


class TestValidate:
    def test_valid(self, extractor):
        params = [param("a", ParameterType.NUMBER), param("d", ParameterType.DATE)]
        assert extractor.validate(params, {"a": 1.0, "d": date(2025, 1, 1)}) == (True, [])

    def test_one_error_per_field(self, extractor):
        params = [
            param("a", ParameterType.NUMBER),
            param("b", ParameterType.BOOLEAN),
            param("c", ParameterType.STRING),
            param("d", ParameterType.STRING, required=False),
        ]
        valid, errors = extractor.validate(params, {"a": "seven", "b": True})
        assert not valid
        assert errors == [
            "Parameter a should be number, got str",
            "Missing required parameter: c",
        ]

    def test_bool_is_not_a_number(self, extractor):
        valid, errors = extractor.validate([param("a", ParameterType.NUMBER)], {"a": True})
        assert not valid
        assert errors == ["Parameter a should be number, got bool"]


class TestStrictCoercion:
    def test_numeric_text(self):
        assert coerce_value(" 75 ", ParameterType.NUMBER) == (True, 75.0)

    def test_non_numeric_text(self):
        ok, _ = coerce_value("seventy", ParameterType.NUMBER)
        assert not ok

    @pytest.mark.parametrize("value", [True, "nan", math.inf])
    def test_unrepresentable_numbers(self, value):
        ok, _ = coerce_value(value, ParameterType.NUMBER)
        assert not ok

    def test_boolean_words(self):
        assert coerce_value("yes", ParameterType.BOOLEAN) == (True, True)
        assert coerce_value("maybe", ParameterType.BOOLEAN)[0] is False

    def test_date_text(self):
        assert coerce_value("2025-03-15", ParameterType.DATE) == (True, datetime(2025, 3, 15))

    def test_date_object_promoted(self):
        assert coerce_value(date(2025, 3, 15), ParameterType.DATE) == (
            True, datetime(2025, 3, 15),
        )

    def test_string_trimmed(self):
        assert coerce_value("  Paris ", ParameterType.STRING) == (True, "Paris")

    def test_blank_string_rejected(self):
        assert coerce_value("   ", ParameterType.STRING)[0] is False
