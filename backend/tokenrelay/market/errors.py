"""Exceptions raised inside the market relay."""

from __future__ import annotations


class ProviderError(Exception):
    """The market-data provider failed or returned something unusable.

    Raised by gateway internals and caught at the gateway/resolver boundary;
    callers of the relay never see it.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
