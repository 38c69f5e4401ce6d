"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

from chat_tui.infrastructure.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_logging() -> None:
    """Start every test with a bare root logger."""
    logging.getLogger().handlers.clear()


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    return tmp_path / "logs"


def _file_handlers() -> list[TimedRotatingFileHandler]:
    return [
        h for h in logging.getLogger().handlers if isinstance(h, TimedRotatingFileHandler)
    ]


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_creates_nested_log_directory(self, tmp_path: Path) -> None:
        """The log directory is created with its parents."""
        nested = tmp_path / "a" / "b" / "logs"
        configure_logging(log_dir=str(nested))
        assert nested.is_dir()

    def test_three_handlers_added(self, log_dir: Path) -> None:
        """Console, latest.log and error.log handlers are installed."""
        configure_logging(log_dir=str(log_dir))
        assert len(logging.getLogger().handlers) == 3

    def test_console_handler_only_reports_errors(self, log_dir: Path) -> None:
        """The console must stay quiet so the live transcript is not garbled."""
        configure_logging(log_dir=str(log_dir))
        stream_handlers = [
            h
            for h in logging.getLogger().handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, TimedRotatingFileHandler)
        ]
        assert len(stream_handlers) == 1
        assert stream_handlers[0].level == logging.ERROR

    def test_latest_log_uses_configured_level(self, log_dir: Path) -> None:
        """latest.log uses the configured log level."""
        configure_logging(log_level="debug", log_dir=str(log_dir))
        latest = [h for h in _file_handlers() if h.baseFilename.endswith("latest.log")]
        assert len(latest) == 1
        assert latest[0].level == logging.DEBUG

    def test_error_log_handler(self, log_dir: Path) -> None:
        """error.log receives warnings and above."""
        configure_logging(log_dir=str(log_dir))
        errors = [h for h in _file_handlers() if h.baseFilename.endswith("error.log")]
        assert len(errors) == 1
        assert errors[0].level == logging.WARNING

    def test_file_handler_rotation_config(self, log_dir: Path) -> None:
        """File handlers rotate daily with the configured backup count."""
        configure_logging(log_dir=str(log_dir), log_backup_count=14)
        handlers = _file_handlers()
        assert len(handlers) == 2
        for handler in handlers:
            assert handler.when == "MIDNIGHT"
            assert handler.backupCount == 14
            assert handler.suffix == "%Y-%m-%d"

    def test_invalid_log_level_defaults_to_info(
        self,
        log_dir: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """An unknown log level falls back to INFO."""
        configure_logging(log_level="LOUD", log_dir=str(log_dir))
        assert "Invalid log level" in capsys.readouterr().err
        latest = [h for h in _file_handlers() if h.baseFilename.endswith("latest.log")]
        assert latest[0].level == logging.INFO

    def test_clears_existing_handlers(self, log_dir: Path) -> None:
        """Handlers from an earlier configuration are removed."""
        marker = logging.StreamHandler()
        logging.getLogger().addHandler(marker)

        configure_logging(log_dir=str(log_dir))

        assert marker not in logging.getLogger().handlers

    def test_third_party_log_levels(self, log_dir: Path) -> None:
        """Noisy third-party loggers are raised to WARNING."""
        configure_logging(log_dir=str(log_dir))
        assert logging.getLogger("asyncio").level == logging.WARNING
        assert logging.getLogger("markdown_it").level == logging.WARNING

    def test_fallback_on_directory_creation_failure(
        self,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A file in the way of the log directory leaves console logging only."""
        blocker = tmp_path / "blocked"
        blocker.write_text("")

        configure_logging(log_dir=str(blocker / "logs"))

        assert "Failed to create log directory" in capsys.readouterr().err
        assert _file_handlers() == []
        assert len(logging.getLogger().handlers) == 1


class TestFileOutput:
    """Tests for what ends up in the log files."""

    def test_latest_log_receives_all_levels(self, log_dir: Path) -> None:
        """latest.log receives every level at or above the configured one."""
        configure_logging(log_level="DEBUG", log_dir=str(log_dir))
        logger = get_logger("test")

        logger.debug("debug msg")
        logger.info("info msg")
        logger.warning("warning msg")
        _flush()

        latest = (log_dir / "latest.log").read_text()
        assert "debug msg" in latest
        assert "info msg" in latest
        assert "warning msg" in latest

    def test_error_log_receives_warning_and_above(self, log_dir: Path) -> None:
        """error.log only receives warnings and above."""
        configure_logging(log_level="DEBUG", log_dir=str(log_dir))
        logger = get_logger("test")

        logger.info("info msg")
        logger.warning("warning msg")
        _flush()

        error_log = (log_dir / "error.log").read_text()
        assert "info msg" not in error_log
        assert "warning msg" in error_log

    def test_log_output_is_json_with_context(self, log_dir: Path) -> None:
        """File records are JSON and carry the bound context."""
        configure_logging(log_dir=str(log_dir))
        get_logger("test").warning("json test", origin="github.com/acme/tools")
        _flush()

        lines = (log_dir / "latest.log").read_text().strip().splitlines()
        records = [json.loads(line) for line in lines]
        record = next(r for r in records if r["event"] == "json test")
        assert record["origin"] == "github.com/acme/tools"
        assert record["level"] == "warning"
        assert "timestamp" in record
