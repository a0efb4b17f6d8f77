from __future__ import annotations

import logging

OUT_OF_MEMORY_TEXT = "Out of memory. Please reduce the size of the requested image."
UNKNOWN_ERROR_TEXT = "Unknown error."


class ClientError(ValueError):
    """Bad user input. Reported to the user directly, never enqueued."""


class BackendError(RuntimeError):
    """A remote generation backend failed or reported an error."""

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        errors: str | None = None,
    ) -> None:
        super().__init__(message or "")
        self.message = message
        self.detail = detail
        self.errors = errors

    @property
    def is_out_of_memory(self) -> bool:
        text = f"{self.message or ''} {self.detail or ''} {self.errors or ''}".lower()
        return "outofmemory" in text or "out of memory" in text


class SchedulerInvariantViolation(AssertionError):
    """The execution queue reached a state that must never happen."""


def describe_error(exc: BaseException) -> str:
    """User-facing text for a failed request."""
    if isinstance(exc, ClientError):
        return str(exc) or UNKNOWN_ERROR_TEXT
    if isinstance(exc, BackendError):
        if exc.is_out_of_memory:
            return OUT_OF_MEMORY_TEXT
        return exc.message or UNKNOWN_ERROR_TEXT
    return UNKNOWN_ERROR_TEXT


def log_error(logger: logging.Logger, exc: BaseException) -> None:
    if isinstance(exc, ClientError):
        logger.debug("Client error: %s", exc)
    elif isinstance(exc, BackendError):
        logger.info("Backend error: %s", exc.message)
        if exc.detail:
            logger.info("Details: %s", exc.detail)
        if exc.errors:
            logger.info("Errors: %s", exc.errors)
    else:
        logger.error("Unexpected error", exc_info=exc)
