"""Exception hierarchy for the dexflow transaction client."""

from typing import Any

UNKNOWN_REVERT = "UnknownRevert"


class DexFlowError(Exception):
    """Base exception for all dexflow errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(DexFlowError):
    """Raised when required configuration is missing or malformed."""

    def __init__(self, message: str, setting: str | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.setting = setting


class ValidationError(DexFlowError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class InvalidCredential(ValidationError):
    """Raised when a private key does not decode to a usable signing key."""


class UnknownFunction(ValidationError):
    """Raised when a call names a function the binding does not declare."""


class InvalidArguments(ValidationError):
    """Raised when call arguments do not match the declared parameter types."""


class IncompatibleUnits(ValidationError):
    """Raised when amounts with different decimals are combined."""


class InsufficientFunds(ValidationError):
    """Raised when a balance read shows the operation cannot be funded."""


class NetworkError(DexFlowError):
    """Raised when network/connection issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class ContractCallReverted(DexFlowError):
    """Raised when a read-only call reverts on the node."""

    def __init__(self, reason: str | None = None, data: str | None = None):
        super().__init__(f"Execution reverted: {reason or UNKNOWN_REVERT}", {"data": data})
        self.reason = reason or UNKNOWN_REVERT
        self.data = data


class TransactionError(DexFlowError):
    """Base class for failures tied to a specific transaction attempt."""

    def __init__(
        self,
        message: str,
        tx_hash: str | None = None,
        nonce: int | None = None,
        reason: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.tx_hash = tx_hash
        self.nonce = nonce
        self.reason = reason


class WouldRevert(TransactionError):
    """Raised when the pre-flight simulation of a call reverts."""


class SubmissionRejected(TransactionError):
    """Raised when the node refuses a signed transaction."""


class TransactionReverted(TransactionError):
    """Raised when an included transaction failed on chain."""


class TransactionDropped(TransactionError):
    """Raised when a broadcast transaction disappeared from the network."""


class TransactionTimedOut(TransactionError):
    """Raised when the local wait expired while the transaction was still pending."""
