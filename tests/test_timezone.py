"""
Tests for timestamp parsing, display formatting and channel id normalization.
"""
from datetime import datetime, timedelta, timezone

import pytest

from epg_now.utils.identifiers import normalize_channel_id
from epg_now.utils.timezone import (
    format_for_display,
    from_epoch_ms,
    parse_display_offset,
    parse_timestamp,
    to_epoch_ms,
    validate_display_offset,
)


class TestNormalizeChannelId:

    def test_strips_punctuation_and_spaces(self):
        assert normalize_channel_id("RAI 1!") == "rai1"

    def test_keeps_dots_and_underscores(self):
        assert normalize_channel_id("Rai1.IT") == "rai1.it"
        assert normalize_channel_id("bbc_one.uk") == "bbc_one.uk"

    def test_absent_input(self):
        assert normalize_channel_id(None) == ""
        assert normalize_channel_id("") == ""

    def test_non_ascii_is_dropped(self):
        assert normalize_channel_id("Télé 5") == "tl5"

    @pytest.mark.parametrize("raw", ["RAI 1!", "  Canale-5 HD ", "a.b_c", "ÄÖÜ", "", "x y.z!"])
    def test_idempotent(self, raw):
        once = normalize_channel_id(raw)
        assert normalize_channel_id(once) == once


class TestParseTimestamp:

    def test_applies_offset(self):
        result = parse_timestamp("20240115080000 +0100")
        assert result == datetime(2024, 1, 15, 7, 0, tzinfo=timezone.utc)

    def test_negative_offset(self):
        result = parse_timestamp("20080715003000 -0600")
        assert result == datetime(2008, 7, 15, 6, 30, tzinfo=timezone.utc)

    def test_offset_without_space(self):
        assert parse_timestamp("20240115080000+0000") == datetime(2024, 1, 15, 8, tzinfo=timezone.utc)

    def test_result_is_utc(self):
        assert parse_timestamp("20240115080000 +0530").tzinfo == timezone.utc

    @pytest.mark.parametrize(
        "raw",
        [
            "bad-date",
            "202401150800 +0100",
            "20240115080000",
            "20240115080000 0100",
            "20241315080000 +0000",
            "20240230080000 +0000",
            "20240115250000 +0000",
            "20240115080000 +2500",
            " 20240115080000 +0000",
            "20240115080000 +0100\n",
            "\u0662\u0660\u0662\u06640115080000 +0100",
            "20240115080000 +0199",
            "",
            None,
        ],
    )
    def test_rejects_malformed(self, raw):
        assert parse_timestamp(raw) is None


class TestDisplayFormatting:

    def test_formats_in_offset(self):
        instant = datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)
        assert format_for_display(instant, "+1:00") == "09:00"
        assert format_for_display(instant, "-05:30") == "02:30"

    def test_invalid_offset_uses_default(self):
        instant = datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)
        assert format_for_display(instant, "CET") == "09:00"
        assert format_for_display(instant, None) == "09:00"

    def test_wraps_midnight(self):
        instant = datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc)
        assert format_for_display(instant, "+2:00") == "01:30"

    def test_none_instant(self):
        assert format_for_display(None, "+1:00") == ""

    def test_parse_display_offset(self):
        assert parse_display_offset("+2:00") == timedelta(hours=2)
        assert parse_display_offset("-10:45") == -timedelta(hours=10, minutes=45)
        assert parse_display_offset("garbage") == timedelta(hours=1)

    def test_validate_display_offset(self):
        assert validate_display_offset("+05:30") == "+05:30"
        assert validate_display_offset("+5") == "+1:00"
        assert validate_display_offset("+1:00\n") == "+1:00"
        assert validate_display_offset("+1:75") == "+1:00"


class TestEpochConversion:

    def test_round_trip_is_exact_for_milliseconds(self):
        instant = datetime(2024, 1, 15, 7, 0, 0, 123000, tzinfo=timezone.utc)
        assert to_epoch_ms(instant) == 1705302000123
        assert from_epoch_ms(1705302000123) == instant
