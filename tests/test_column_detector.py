"""Tests for the header / number-column / name-column heuristics."""

import pytest

from mobile_cleaner.models.cells import to_record
from mobile_cleaner.services.column_detector import (
    AlphabeticHeaderDetector,
    ColumnDetector,
    KeywordNameDetector,
    ValidCountColumnSelector,
    normalize_header,
)


@pytest.fixture
def rows():
    return [
        to_record(["Contact list", None, None]),
        to_record(["Customer Name", "Mobile No.", "City"]),
        to_record(["Ravi", "9818202888", "Delhi"]),
        to_record(["Asha", "+91 98765-01234", "Pune"]),
        to_record(["Kiran", 7012345678, "Agra"]),
        to_record(["Meena", "12345", "Goa"]),
    ]


class TestNormalizeHeader:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize_header("  Customer_Name: ") == "customer name"


class TestAlphabeticHeaderDetector:
    def test_first_text_row(self, rows):
        assert AlphabeticHeaderDetector().detect(rows) == 0

    def test_skips_rows_holding_numbers(self):
        rows = [to_record(["Ravi", "9818202888"]), to_record(["Name", "Mobile"])]
        assert AlphabeticHeaderDetector().detect(rows) == 1

    def test_skips_blank_rows(self):
        rows = [to_record([None, None]), to_record(["Name", "Mobile"])]
        assert AlphabeticHeaderDetector().detect(rows) == 1

    def test_no_header(self):
        rows = [to_record([1, 2]), to_record([3, 4])]
        assert AlphabeticHeaderDetector().detect(rows) is None


class TestValidCountColumnSelector:
    def test_selects_column_with_enough_valid_numbers(self, rows):
        assert ValidCountColumnSelector(min_valid=3).select(rows, 1) == [1]

    def test_threshold_not_met(self, rows):
        assert ValidCountColumnSelector(min_valid=4).select(rows, 1) == []

    def test_scan_window(self, rows):
        assert ValidCountColumnSelector(min_valid=2, scan_rows=1).select(rows, 1) == []


class TestKeywordNameDetector:
    def test_matches_keyword_header(self, rows):
        headers = ["Customer Name", "Mobile No.", "City"]
        assert KeywordNameDetector().detect(headers, rows, 1, exclude=[1]) == 0

    def test_excluded_keyword_is_not_a_name(self):
        headers = ["Company Name", "Mobile"]
        rows = [to_record(headers), to_record([123, "9818202888"])]
        assert KeywordNameDetector().detect(headers, rows, 0, exclude=[1]) is None

    def test_partial_keyword_is_not_a_name(self):
        headers = ["Contact", "Mobile"]
        rows = [to_record(headers), to_record([9818202888, 9876501234])]
        assert KeywordNameDetector().detect(headers, rows, 0) is None

    def test_falls_back_to_text_column(self):
        headers = ["Col A", "Col B"]
        rows = [to_record(headers), to_record(["9818202888", "Ravi"]), to_record(["9876501234", "Asha"])]
        assert KeywordNameDetector().detect(headers, rows, 0, exclude=[0]) == 1


class TestColumnDetector:
    def test_default_strategies_are_swappable(self, rows):
        detector = ColumnDetector.default()
        detector.header_strategy = AlphabeticHeaderDetector(scan_rows=0)
        assert detector.header_strategy.detect(rows) is None
        assert detector.number_strategy.select(rows, 1) == [1]
