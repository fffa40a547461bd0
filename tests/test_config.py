"""
Tests for settings validation.
"""
import pytest
from pydantic import ValidationError

from epg_now.config import CustomSettings


def make_settings(tmp_path, **values):
    return CustomSettings(database_path=str(tmp_path / "epg.db"), **values)


class TestCustomSettings:

    def test_defaults(self, tmp_path):
        config = make_settings(tmp_path)
        assert config.timezone_offset == "+1:00"
        assert config.epg_fetch_cron == "0 3 * * *"
        assert config.epg_source is None
        assert config.epg_allow_partial_chunks is False

    def test_invalid_timezone_offset_falls_back(self, tmp_path):
        assert make_settings(tmp_path, timezone_offset="Europe/Rome").timezone_offset == "+1:00"

    @pytest.mark.parametrize("offset", ["+1:00\n", "+1:60", "+١:00"])
    def test_offset_must_match_exactly(self, tmp_path, offset):
        assert make_settings(tmp_path, timezone_offset=offset).timezone_offset == "+1:00"

    def test_valid_timezone_offset_is_kept(self, tmp_path):
        assert make_settings(tmp_path, timezone_offset="-05:30").timezone_offset == "-05:30"

    def test_blank_source_is_unset(self, tmp_path):
        assert make_settings(tmp_path, epg_source="  ").epg_source is None

    def test_invalid_cron_is_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            make_settings(tmp_path, epg_fetch_cron="not a cron")

    @pytest.mark.parametrize(
        "field, value",
        [
            ("epg_programs_batch_size", 0),
            ("epg_max_workers", 0),
            ("epg_download_timeout_sec", 0),
            ("sqlite_journal_mode", "FAST"),
            ("log_level", "LOUD"),
        ],
    )
    def test_rejects_bad_values(self, tmp_path, field, value):
        with pytest.raises(ValidationError):
            make_settings(tmp_path, **{field: value})

    def test_journal_mode_is_normalized(self, tmp_path):
        assert make_settings(tmp_path, sqlite_journal_mode="wal").sqlite_journal_mode == "WAL"

    def test_reads_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EPG_SOURCE", "http://example.com/epg.xml.gz")
        monkeypatch.setenv("TIMEZONE_OFFSET", "+2:00")
        config = make_settings(tmp_path)
        assert config.epg_source == "http://example.com/epg.xml.gz"
        assert config.timezone_offset == "+2:00"
