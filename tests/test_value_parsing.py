"""
tests/test_value_parsing.py

Coverage:
- timestamp parsing across ISO, day-first and unix layouts
- coordinate parsing (comma decimals, directional suffixes, DMS)
- address normalization used as the geocoding cache key
- coordinate pair validation statuses
"""

from __future__ import annotations

import unittest
from datetime import datetime, timezone

from app.domain.geocoding import ValidationStatus, normalize_address, validate_coordinates
from app.domain.value_parsing import parse_coordinate, parse_timestamp


class TestParseTimestamp(unittest.TestCase):
    def test_iso_date_is_midnight_utc(self) -> None:
        self.assertEqual(parse_timestamp("2026-10-01"), datetime(2026, 10, 1, tzinfo=timezone.utc))

    def test_iso_datetime_with_offset_is_converted_to_utc(self) -> None:
        self.assertEqual(
            parse_timestamp("2026-10-01T12:00:00+02:00"),
            datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(
            parse_timestamp("2026-10-01 08:30Z"),
            datetime(2026, 10, 1, 8, 30, tzinfo=timezone.utc),
        )

    def test_day_first_layouts(self) -> None:
        self.assertEqual(parse_timestamp("01.10.2026"), datetime(2026, 10, 1, tzinfo=timezone.utc))
        self.assertEqual(parse_timestamp("25/12/2026 18:00"), datetime(2026, 12, 25, 18, 0, tzinfo=timezone.utc))

    def test_unix_seconds_and_millis(self) -> None:
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp(1_700_000_000), expected)
        self.assertEqual(parse_timestamp("1700000000"), expected)
        self.assertEqual(parse_timestamp(1_700_000_000_000), expected)

    def test_unparseable_values(self) -> None:
        for value in (None, True, "", "soon", "12", float("nan")):
            self.assertIsNone(parse_timestamp(value), value)


class TestParseCoordinate(unittest.TestCase):
    def test_numbers_and_decimal_strings(self) -> None:
        self.assertEqual(parse_coordinate(52.52), 52.52)
        self.assertEqual(parse_coordinate("-13.405"), -13.405)
        self.assertEqual(parse_coordinate("13,405"), 13.405)

    def test_directional_suffix(self) -> None:
        self.assertEqual(parse_coordinate("52.5N"), 52.5)
        self.assertEqual(parse_coordinate("33.9 S"), -33.9)
        self.assertEqual(parse_coordinate("13.4 W"), -13.4)

    def test_degrees_minutes_seconds(self) -> None:
        self.assertAlmostEqual(parse_coordinate("52°31'12\"N"), 52.52, places=6)
        self.assertAlmostEqual(parse_coordinate("33°52'12\"S"), -33.87, places=6)

    def test_garbage(self) -> None:
        for value in (None, False, "", "north", float("inf")):
            self.assertIsNone(parse_coordinate(value), value)


class TestNormalizeAddress(unittest.TestCase):
    def test_collapses_case_whitespace_and_punctuation(self) -> None:
        self.assertEqual(normalize_address("  Berlin,,  Alexanderplatz!! "), "berlin, alexanderplatz")

    def test_equivalent_spellings_share_a_key(self) -> None:
        self.assertEqual(
            normalize_address("Hamburg  Hafen"),
            normalize_address("hamburg hafen,"),
        )

    def test_none_is_empty(self) -> None:
        self.assertEqual(normalize_address(None), "")


class TestValidateCoordinates(unittest.TestCase):
    def test_valid_pair(self) -> None:
        result = validate_coordinates("52.52", "13.405")
        self.assertEqual(result.status, ValidationStatus.VALID)
        self.assertEqual((result.latitude, result.longitude), (52.52, 13.405))
        self.assertTrue(result.usable)

    def test_swapped_pair_is_corrected(self) -> None:
        result = validate_coordinates(120.0, 45.0)
        self.assertEqual(result.status, ValidationStatus.SWAPPED)
        self.assertEqual((result.latitude, result.longitude), (45.0, 120.0))
        self.assertTrue(result.usable)

    def test_null_island_is_flagged_but_kept(self) -> None:
        result = validate_coordinates(0, 0)
        self.assertEqual(result.status, ValidationStatus.SUSPICIOUS_ZERO)
        self.assertTrue(result.usable)

    def test_out_of_range_and_missing(self) -> None:
        self.assertEqual(validate_coordinates(95, 200).status, ValidationStatus.INVALID)
        self.assertFalse(validate_coordinates("abc", 1).usable)
        self.assertFalse(validate_coordinates(None, 13.4).usable)
