"""
Unit tests for logging configuration.
"""

import logging

import pytest

from breathflow import logging_config
from breathflow.config import LoggingSettings


@pytest.fixture
def unconfigured(monkeypatch):
    monkeypatch.setattr(logging_config, "_configured", False)


class TestResolveLogFile:
    """Test log file placement."""

    def test_configured_directory_is_created(self, tmp_path):
        log_dir = tmp_path / "nested" / "logs"

        path = logging_config.resolve_log_file(LoggingSettings(directory=str(log_dir)))

        assert path == log_dir / "breathflow.log"
        assert log_dir.is_dir()

    def test_defaults_to_home_log_dir(self, tmp_path, monkeypatch):
        monkeypatch.setattr(logging_config, "DEFAULT_LOG_DIR", tmp_path / "default")

        path = logging_config.resolve_log_file(LoggingSettings())

        assert path == tmp_path / "default" / "breathflow.log"


class TestBuildLoggingConfig:
    """Test the dictConfig dictionary."""

    def test_file_handler_follows_settings(self, tmp_path):
        settings = LoggingSettings(
            directory=str(tmp_path), level="info", max_size_mb=2, backup_count=3
        )

        config = logging_config.build_logging_config(settings)

        handler = config["handlers"]["file"]
        assert handler["class"] == "logging.handlers.RotatingFileHandler"
        assert handler["filename"] == str(tmp_path / "breathflow.log")
        assert handler["level"] == "INFO"
        assert handler["maxBytes"] == 2 * 1024 * 1024
        assert handler["backupCount"] == 3
        assert config["root"]["handlers"] == ["console", "file"]

    def test_disabled_file_log_creates_nothing(self, tmp_path):
        log_dir = tmp_path / "unused"

        config = logging_config.build_logging_config(
            LoggingSettings(enabled=False, directory=str(log_dir))
        )

        assert "file" not in config["handlers"]
        assert config["root"]["handlers"] == ["console"]
        assert not log_dir.exists()

    def test_verbose_console(self):
        settings = LoggingSettings(enabled=False)

        quiet = logging_config.build_logging_config(settings)
        verbose = logging_config.build_logging_config(
            settings, verbose=True, console_format="%(message)s"
        )

        assert quiet["handlers"]["console"]["level"] == "INFO"
        assert verbose["handlers"]["console"]["level"] == "DEBUG"
        assert verbose["formatters"]["console"]["format"] == "%(message)s"

    @pytest.mark.parametrize("name", ["torch", "sqlalchemy.engine"])
    def test_third_party_loggers_quieted(self, name):
        config = logging_config.build_logging_config(LoggingSettings(enabled=False))

        assert config["loggers"][name]["level"] == "WARNING"


class TestSetupLogging:
    """Test one-time logging setup."""

    def test_configures_once(self, tmp_path, unconfigured, monkeypatch):
        calls = []
        monkeypatch.setattr(logging_config.logging.config, "dictConfig", calls.append)
        settings = LoggingSettings(directory=str(tmp_path))

        logging_config.setup_logging(settings)
        logging_config.setup_logging(settings)

        assert len(calls) == 1
        assert calls[0]["handlers"]["file"]["filename"] == str(tmp_path / "breathflow.log")

    def test_reads_user_config_when_no_settings(
        self, tmp_path, config_path, unconfigured, monkeypatch
    ):
        calls = []
        monkeypatch.setattr(logging_config.logging.config, "dictConfig", calls.append)
        monkeypatch.setattr(logging_config, "DEFAULT_LOG_DIR", tmp_path / "logs")

        logging_config.setup_logging()

        assert calls[0]["handlers"]["file"]["filename"] == str(
            tmp_path / "logs" / "breathflow.log"
        )

    def test_falls_back_to_basic_config(self, tmp_path, unconfigured, monkeypatch):
        def broken(config):
            raise ValueError("bad handler")

        basic = []
        monkeypatch.setattr(logging_config.logging.config, "dictConfig", broken)
        monkeypatch.setattr(logging_config.logging, "basicConfig", lambda **kw: basic.append(kw))

        logging_config.setup_logging(LoggingSettings(directory=str(tmp_path)), verbose=True)

        assert basic[0]["level"] == logging.DEBUG
        assert basic[0]["format"] == logging_config.FALLBACK_FORMAT
        assert logging_config._configured

    def test_unwritable_directory_falls_back(self, tmp_path, unconfigured, monkeypatch):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        basic = []
        monkeypatch.setattr(logging_config.logging, "basicConfig", lambda **kw: basic.append(kw))

        logging_config.setup_logging(LoggingSettings(directory=str(blocker / "logs")))

        assert basic[0]["level"] == logging.INFO
