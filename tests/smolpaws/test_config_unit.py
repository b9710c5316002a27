"""Unit tests for settings loading and parsing helpers."""

import pytest
from pydantic import ValidationError

from src.smolpaws.config import (
    DEFAULT_AUTO_STOP_MINUTES,
    SmolpawsSettings,
    parse_allow_list,
    parse_auto_stop_minutes,
)


class TestParseAllowList:
    def test_empty_values(self):
        assert parse_allow_list(None) == frozenset()
        assert parse_allow_list("") == frozenset()
        assert parse_allow_list(" , ,") == frozenset()

    def test_trims_and_lowercases(self):
        assert parse_allow_list("Alice, bob,,ACME/Widgets ") == frozenset(
            {"alice", "bob", "acme/widgets"}
        )


class TestParseAutoStopMinutes:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, DEFAULT_AUTO_STOP_MINUTES),
            ("", DEFAULT_AUTO_STOP_MINUTES),
            ("abc", DEFAULT_AUTO_STOP_MINUTES),
            ("-5", DEFAULT_AUTO_STOP_MINUTES),
            ("inf", DEFAULT_AUTO_STOP_MINUTES),
            ("nan", DEFAULT_AUTO_STOP_MINUTES),
            ("0", 0),
            ("15", 15),
            ("12.9", 12),
            (45, 45),
        ],
    )
    def test_values(self, raw, expected):
        assert parse_auto_stop_minutes(raw) == expected


class TestSmolpawsSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DAYTONA_API_KEY", raising=False)
        settings = SmolpawsSettings(_env_file=None)

        assert settings.smolpaws_queue_backend == "memory"
        assert settings.smolpaws_daytona_auto_stop_minutes == 30
        assert settings.smolpaws_retry_delay_seconds == 30
        assert settings.port == 8787
        assert settings.sandbox_enabled is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "shh")
        monkeypatch.setenv("SMOLPAWS_QUEUE_BACKEND", " SQS ")
        monkeypatch.setenv("SMOLPAWS_DAYTONA_AUTO_STOP_MINUTES", "not-a-number")
        monkeypatch.setenv("DAYTONA_API_KEY", "dtn")

        settings = SmolpawsSettings(_env_file=None)

        assert settings.github_webhook_secret == "shh"
        assert settings.smolpaws_queue_backend == "sqs"
        assert settings.smolpaws_daytona_auto_stop_minutes == DEFAULT_AUTO_STOP_MINUTES
        assert settings.sandbox_enabled is True

    @pytest.mark.parametrize(
        "field,value",
        [
            ("smolpaws_queue_backend", "kafka"),
            ("smolpaws_queue_batch_size", 11),
            ("smolpaws_retry_delay_seconds", -1),
            ("port", 0),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            SmolpawsSettings(_env_file=None, **{field: value})
