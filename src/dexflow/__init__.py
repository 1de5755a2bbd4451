"""dexflow - transaction orchestration for DEX router, token and bridge calls.

This library builds, simulates, signs, submits and confirms contract calls on
an EVM-compatible network, and reports each one's terminal state.
"""

from .amounts import Amount
from .binding import ContractBinding, EventDecoder, FunctionSignature, Mutability
from .client import DexClient
from .config import ClientConfig, EngineConfig
from .connections import Endpoint
from .exceptions import (
    UNKNOWN_REVERT,
    ConfigurationError,
    ContractCallReverted,
    DexFlowError,
    IncompatibleUnits,
    InsufficientFunds,
    InvalidArguments,
    InvalidCredential,
    NetworkError,
    SubmissionRejected,
    TransactionDropped,
    TransactionError,
    TransactionReverted,
    TransactionTimedOut,
    UnknownFunction,
    ValidationError,
    WouldRevert,
)
from .operations import (
    add_liquidity,
    approve,
    bridge_transfer,
    quote_min_output,
    remove_liquidity,
    swap_native_for_tokens,
    swap_tokens_for_native,
)
from .signer import Signer, derive_address
from .transactions import TransactionEngine
from .types import CallIntent, OperationResult, TransactionRecord, TxState

__version__ = "0.1.0"

__all__ = [
    # Core components
    "Amount",
    "CallIntent",
    "ClientConfig",
    "ContractBinding",
    "DexClient",
    "Endpoint",
    "EngineConfig",
    "EventDecoder",
    "FunctionSignature",
    "Mutability",
    "OperationResult",
    "Signer",
    "TransactionEngine",
    "TransactionRecord",
    "TxState",
    "derive_address",
    # Operations
    "add_liquidity",
    "approve",
    "bridge_transfer",
    "quote_min_output",
    "remove_liquidity",
    "swap_native_for_tokens",
    "swap_tokens_for_native",
    # Exceptions
    "UNKNOWN_REVERT",
    "ConfigurationError",
    "ContractCallReverted",
    "DexFlowError",
    "IncompatibleUnits",
    "InsufficientFunds",
    "InvalidArguments",
    "InvalidCredential",
    "NetworkError",
    "SubmissionRejected",
    "TransactionDropped",
    "TransactionError",
    "TransactionReverted",
    "TransactionTimedOut",
    "UnknownFunction",
    "ValidationError",
    "WouldRevert",
]
