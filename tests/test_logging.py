"""Tests for logging helpers."""

import logging

from openera_mcp.utils.logging import get_logger, parse_level


def test_parse_level():
    assert parse_level("DEBUG") == logging.DEBUG
    assert parse_level("warning") == logging.WARNING
    assert parse_level(logging.ERROR) == logging.ERROR
    assert parse_level("nonsense") == logging.INFO


def test_data_is_appended_to_message(caplog):
    logger = get_logger("openera.test.data")

    with caplog.at_level(logging.INFO):
        logger.info("Tools listed", data=["read_file", "ping"])

    assert caplog.records[-1].getMessage() == "Tools listed ['read_file', 'ping']"


def test_loggers_are_cached():
    assert get_logger("openera.test.cached") is get_logger("openera.test.cached")
