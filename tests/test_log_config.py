from __future__ import annotations

import logging

from log_config import QUIET_LOGGERS, setup_logging


def test_level_from_environment(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("LOG_LEVEL", "warning")
    root = setup_logging()

    assert root.level == logging.WARNING


def test_third_party_loggers_stay_above_debug() -> None:
    setup_logging("DEBUG")

    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.INFO
    setup_logging("INFO")


def test_unknown_level_falls_back_to_info() -> None:
    assert setup_logging("chatty").level == logging.INFO
