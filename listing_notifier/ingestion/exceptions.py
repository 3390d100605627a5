"""Exceptions raised while fetching listings."""


class IngestionError(Exception):
    """Base exception for listing fetch errors.

    The scan tick catches this per tab and continues with what it has.
    """


class ListingsHTTPError(IngestionError):
    """The listings API answered with a 4xx/5xx status or the connection failed.

    ``status_code`` is 0 for connection-level failures.
    """

    def __init__(self, message: str, status_code: int, url: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class ListingsTimeoutError(IngestionError):
    """The request did not complete within the configured timeout."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class ListingsResponseError(IngestionError):
    """The response was not valid JSON or lacked required fields."""
