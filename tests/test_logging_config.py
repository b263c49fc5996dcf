"""
test_logging_config.py - Tests for leadminer/logging_config.py

Verifies Loguru setup, stdlib logging interception, level control, format
selection, and the optional file sink. Uses loguru sink capture for assertions.

Called by: pytest
Depends on: leadminer/logging_config.py
"""

import json
import logging
from unittest.mock import patch

import pytest
from loguru import logger

from leadminer.config import Settings
from leadminer.logging_config import setup_logging

DEV = Settings(app_url="http://localhost:8000", log_level="INFO")


@pytest.fixture(autouse=True)
def _clean_loguru():
    """Remove all handlers before/after each test for isolation."""
    logger.remove()
    yield
    logger.remove()
    logging.basicConfig(handlers=[], force=True)


def test_setup_logging_adds_handler():
    assert len(logger._core.handlers) == 0
    with patch("leadminer.logging_config.settings", DEV):
        setup_logging()
    assert len(logger._core.handlers) > 0


def test_stdlib_logging_intercepted():
    """Module loggers (logging.getLogger("leadminer.x")) go through Loguru."""
    with patch("leadminer.logging_config.settings", DEV):
        setup_logging()

    messages = []
    logger.add(lambda m: messages.append(str(m)), format="{message}")
    logging.getLogger("leadminer.mining").warning("Mining %s failed", "sess-9")

    assert any("Mining sess-9 failed" in m for m in messages)


def test_log_level_from_settings():
    quiet = Settings(app_url="http://localhost:8000", log_level="warning")
    with patch("leadminer.logging_config.settings", quiet):
        setup_logging()

    levels = {h.levelno for h in logger._core.handlers.values()}
    assert levels == {logger.level("WARNING").no}


def test_noisy_loggers_quieted():
    with patch("leadminer.logging_config.settings", DEV):
        setup_logging()
    assert logging.getLogger("httpx").level == logging.WARNING


def test_production_mode_uses_serialize():
    """https app_url means JSON lines (serialize=True)."""
    prod = Settings(app_url="https://leads.example.com")
    with patch("leadminer.logging_config.settings", prod):
        with patch("loguru.logger.add") as mock_add:
            setup_logging()
    serialize_calls = [c for c in mock_add.call_args_list if c.kwargs.get("serialize") is True]
    assert len(serialize_calls) >= 1


def test_explicit_text_format_overrides_https():
    cfg = Settings(app_url="https://leads.example.com", log_format="text")
    with patch("loguru.logger.add") as mock_add:
        setup_logging(cfg)
    assert not any(c.kwargs.get("serialize") for c in mock_add.call_args_list)


def test_no_file_sink_by_default():
    with patch("loguru.logger.add") as mock_add:
        setup_logging(DEV)
    assert mock_add.call_count == 1


def test_log_file_sink_writes_json(tmp_path):
    path = tmp_path / "leadminer.log"
    setup_logging(Settings(app_url="http://localhost:8000", log_file=str(path)))

    logging.getLogger("leadminer.mining").info("Mining %s started", "sess-3")
    logger.remove()

    records = [json.loads(line)["record"] for line in path.read_text().splitlines()]
    mined = [r for r in records if r["message"] == "Mining sess-3 started"]
    assert mined and mined[0]["extra"]["area"] == "leadminer.mining"
