"""Tests for the structlog setup and the per-job log context."""

import json
import logging

import pytest
import structlog

from encoder_ops.platform.logging_config import configure_logging, get_logger, job_context


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_level_from_argument(self):
        configure_logging("debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        configure_logging()
        assert logging.getLogger().level == logging.ERROR

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_driver_loggers_are_quieted(self):
        configure_logging("debug")
        assert logging.getLogger("pymongo").level == logging.WARNING

    def test_single_root_handler(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_json_lines_carry_job_context(self, capsys):
        configure_logging("info")
        logger = get_logger("encoder_ops.test")

        with job_context("J1", "W1"):
            logger.info("aid_claimed", attempt=2)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "aid_claimed"
        assert event["level"] == "info"
        assert event["logger"] == "encoder_ops.test"
        assert event["job_id"] == "J1"
        assert event["encoder_id"] == "W1"
        assert event["attempt"] == 2
        assert "timestamp" in event


class TestJobContext:
    """Tests for job_context()."""

    def test_binds_and_unbinds(self):
        with job_context("J1", "W1"):
            assert structlog.contextvars.get_contextvars() == {
                "job_id": "J1",
                "encoder_id": "W1",
            }
        assert structlog.contextvars.get_contextvars() == {}

    def test_unbinds_on_error(self):
        with pytest.raises(RuntimeError):
            with job_context("J1"):
                raise RuntimeError("boom")
        assert structlog.contextvars.get_contextvars() == {}

    def test_nested_context_restores_outer(self):
        with job_context("J1", "W1"):
            with job_context("J2", "W2"):
                pass
            assert structlog.contextvars.get_contextvars()["job_id"] == "J1"
