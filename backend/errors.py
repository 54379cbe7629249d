"""Exceptions raised by the settlement synchronization core.

Adapters translate SDK failures into this hierarchy so the scanner, the
stream consumer and the coordinator never need to know about gRPC or
Firestore exception types.

    SyncError
    +-- CallTimeoutError
    +-- LedgerError
    |   +-- InvalidPaymentRequestError
    |   +-- LedgerStreamError
    +-- StoreError
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by this package."""


class CallTimeoutError(SyncError):
    """A blocking ledger or store call did not finish within its timeout."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class LedgerError(SyncError):
    """The payment node rejected a call or could not be reached."""


class InvalidPaymentRequestError(LedgerError):
    """A payment request string could not be decoded."""

    def __init__(self, payment_request: str, reason: str = "") -> None:
        message = f"cannot decode payment request {payment_request[:24]!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.payment_request = payment_request


class LedgerStreamError(LedgerError):
    """The invoice subscription failed while receiving."""


class StoreError(SyncError):
    """The record store rejected a query or an update."""


__all__ = [
    "SyncError",
    "CallTimeoutError",
    "LedgerError",
    "InvalidPaymentRequestError",
    "LedgerStreamError",
    "StoreError",
]
