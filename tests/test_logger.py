from __future__ import annotations

import logging

from backend.utils import logger as logger_module
from backend.utils.logger import configure_logging, get_logger


def test_explicit_level_moves_root_level_once_configured(monkeypatch) -> None:
    monkeypatch.setattr(logger_module, "_configured_level", "INFO")
    root = logging.getLogger()
    previous = root.level
    try:
        assert configure_logging("debug") == "DEBUG"
        assert root.level == logging.DEBUG
        assert get_logger("backend.services.example").getEffectiveLevel() == logging.DEBUG
        assert configure_logging() == "DEBUG"
    finally:
        root.setLevel(previous)


def test_repeated_configuration_is_a_no_op(monkeypatch) -> None:
    monkeypatch.setattr(logger_module, "_configured_level", "WARNING")
    root = logging.getLogger()
    previous = root.level
    handlers = list(root.handlers)

    assert configure_logging("warning") == "WARNING"
    assert root.level == previous
    assert root.handlers == handlers
