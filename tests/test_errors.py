from __future__ import annotations

import logging

from core.errors import (
    OUT_OF_MEMORY_TEXT,
    UNKNOWN_ERROR_TEXT,
    BackendError,
    ClientError,
    describe_error,
    log_error,
)


def test_describe_error() -> None:
    assert describe_error(ClientError("count must be at least 1.")) == "count must be at least 1."
    assert describe_error(BackendError("Checkpoint not found")) == "Checkpoint not found"
    assert describe_error(BackendError(errors="CUDA out of memory")) == OUT_OF_MEMORY_TEXT
    assert describe_error(BackendError()) == UNKNOWN_ERROR_TEXT
    assert describe_error(KeyError("x")) == UNKNOWN_ERROR_TEXT


def test_log_error_levels(caplog) -> None:
    logger = logging.getLogger("test-errors")
    with caplog.at_level(logging.DEBUG, logger="test-errors"):
        log_error(logger, ClientError("bad"))
        log_error(logger, BackendError("failed", detail="trace"))
        log_error(logger, RuntimeError("boom"))

    levels = [(record.levelno, record.getMessage()) for record in caplog.records]
    assert levels == [
        (logging.DEBUG, "Client error: bad"),
        (logging.INFO, "Backend error: failed"),
        (logging.INFO, "Details: trace"),
        (logging.ERROR, "Unexpected error"),
    ]
