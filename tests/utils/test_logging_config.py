"""
Unit tests for root logging setup.
"""

import logging

import pytest

from utils.logging_config import configure_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    botocore_level = logging.getLogger("botocore").level
    yield root
    root.setLevel(level)
    root.handlers = handlers
    logging.getLogger("botocore").setLevel(botocore_level)


def test_explicit_level(root_logger):
    configure_logging("debug")
    assert root_logger.level == logging.DEBUG
    assert logging.getLogger("botocore").level == logging.INFO


def test_level_from_environment(root_logger, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    configure_logging()
    assert root_logger.level == logging.WARNING


def test_unknown_level_falls_back_to_info(root_logger):
    configure_logging("chatty")
    assert root_logger.level == logging.INFO
