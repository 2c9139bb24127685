"""
Typed failures raised by quota checks.

A rejected request is NOT an error: it is a normal QuotaResult with
allowed=False. The exceptions below mean the decision is indeterminate
and the caller has to apply its fail policy.
"""


class QuotaError(Exception):
    """Base class for indeterminate quota checks."""

    def __init__(self, message: str, identifier: str | None = None) -> None:
        super().__init__(message)
        self.identifier = identifier


class StoreUnavailable(QuotaError):
    """The atomic store could not be reached."""


class StoreTimeout(StoreUnavailable):
    """The check did not complete before its deadline."""


class TransactionFailed(QuotaError):
    """The store accepted the call but the transaction itself failed."""
