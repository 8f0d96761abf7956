"""
Tests for app/config.py
"""

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from app.config import Settings, log_config_summary


class TestSettings:
    def test_table_name_is_required(self, monkeypatch):
        monkeypatch.delenv("TABLE_NAME", raising=False)
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None)

    def test_table_name_must_not_be_empty(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, TABLE_NAME="")

    def test_defaults(self):
        settings = Settings(_env_file=None, TABLE_NAME="persons")

        assert settings.EVENT_BUS_NAME == "DDBStreamCustomEventBus"
        assert settings.STREAM_START_POSITION == "LATEST"
        assert settings.RELAY_BATCH_SIZE == 100
        assert settings.DELIVERY_MAX_ATTEMPTS == 3
        assert settings.PERSISTENCE_ENABLED is True
        assert settings.NOTIFY_WEBHOOK_URL is None

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TABLE_NAME", "people")
        monkeypatch.setenv("RELAY_BATCH_SIZE", "25")
        monkeypatch.setenv("STREAM_START_POSITION", "TRIM_HORIZON")

        settings = Settings(_env_file=None)

        assert settings.TABLE_NAME == "people"
        assert settings.RELAY_BATCH_SIZE == 25
        assert settings.STREAM_START_POSITION == "TRIM_HORIZON"

    def test_invalid_start_position(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, TABLE_NAME="persons", STREAM_START_POSITION="OLDEST")

    def test_batch_size_bounds(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, TABLE_NAME="persons", RELAY_BATCH_SIZE=0)

    def test_cors_origins_parsed(self):
        settings = Settings(
            _env_file=None, TABLE_NAME="persons", CORS_ORIGINS="http://a.test, http://b.test,"
        )
        assert settings.cors_origins == ["http://a.test", "http://b.test"]


def test_log_config_summary(caplog):
    settings = Settings(_env_file=None, TABLE_NAME="persons", PERSISTENCE_ENABLED=False)
    with caplog.at_level(logging.INFO, logger="app.config"):
        log_config_summary(settings)

    assert "Table: persons" in caplog.text
    assert "in-memory table" in caplog.text
