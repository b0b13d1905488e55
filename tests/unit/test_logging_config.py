from __future__ import annotations

import logging

from services.logging_config import ROOT_LOGGER_NAME, get_logger


def test_repeated_get_logger_adds_no_handlers():
    first = get_logger("merkle_client")
    for _ in range(5):
        again = get_logger("merkle_client")

    assert again is first
    assert first.name == "cipherpay.merkle_client"
    assert first.handlers == []


def test_root_logger_has_a_single_null_handler():
    get_logger("orchestrator")
    get_logger("orchestrator")
    root = logging.getLogger(ROOT_LOGGER_NAME)
    nulls = [h for h in root.handlers if isinstance(h, logging.NullHandler)]
    assert len(nulls) == 1
