"""Typed exception hierarchy for data-source and price-feed errors.

Provides structured exceptions so failures can be recorded with a
source key, an error code and an HTTP status where one exists.
"""


class SourceError(Exception):
    """Base exception for all source-related errors.

    Carries the source key so callers can identify which source failed.
    """

    error_code = "ERR_SOURCE_RUN"

    def __init__(self, message: str, source_key: str = ""):
        self.source_key = source_key
        super().__init__(message)


class SourceNotConfiguredError(SourceError):
    """An enabled source has no runner registered."""

    error_code = "ERR_SOURCE_NOT_CONFIGURED"


class PriceFeedError(SourceError):
    """A price-feed request could not be completed.

    ``status_code`` is the last HTTP status seen, or ``None`` when the
    request never got a response (timeout, connection refused).
    """

    error_code = "ERR_PRICES"

    def __init__(
        self,
        message: str,
        source_key: str = "prices",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, source_key)

    @property
    def retriable(self) -> bool:
        """Transport failures, 429 and 5xx are worth retrying."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class InvalidTransitionError(ValueError):
    """A snapshot or source run was asked to make an illegal state change."""

    pass
