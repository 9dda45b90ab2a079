"""Tests for free-form duration parsing."""

import pytest

from giveaway_bot.duration import parse_duration


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("30m", 1_800_000),
            ("2h", 7_200_000),
            ("1d", 86_400_000),
            ("1w", 604_800_000),
            ("45s", 45_000),
            ("1.5h", 5_400_000),
            ("2days", 172_800_000),
        ],
    )
    def test_single_unit_tokens(self, text, expected):
        assert parse_duration(text) == expected

    def test_detached_unit_word_is_skipped(self):
        assert parse_duration("3 hours") == 180_000

    def test_bare_integer_is_minutes(self):
        assert parse_duration("90") == 5_400_000

    def test_tokens_are_summed(self):
        assert parse_duration("1h 30m") == 5_400_000
        assert parse_duration("1d 15") == 86_400_000 + 900_000

    def test_unrecognized_tokens_are_ignored(self):
        assert parse_duration("2h soon 5") == 7_200_000 + 300_000
        assert parse_duration("1h30m 10m") == 600_000

    def test_extra_whitespace(self):
        assert parse_duration("  10m \t 20m\n") == 1_800_000

    @pytest.mark.parametrize("text", ["", None, "   ", "soon", "abc xyz", "0", "0m"])
    def test_empty_or_unrecognized_returns_none(self, text):
        assert parse_duration(text) is None

    def test_non_positive_total_returns_none(self):
        assert parse_duration("-5m") is None
        assert parse_duration("-10m 5m") is None

    def test_negative_tokens_count_towards_sum(self):
        assert parse_duration("-10m 30m") == 1_200_000

    def test_case_insensitive_units(self):
        assert parse_duration("2H") == 7_200_000

    @pytest.mark.parametrize("text", ["9" * 400, "9" * 400 + "y", "1" + "0" * 400 + "m 5m"])
    def test_overflowing_amount_returns_none(self, text):
        assert parse_duration(text) is None
