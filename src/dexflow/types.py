"""Type definitions and data models for dexflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import (
    UNKNOWN_REVERT,
    TransactionDropped,
    TransactionReverted,
    TransactionTimedOut,
)

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .binding import ContractBinding

Address = str  # Ethereum address
Wei = int  # Native currency amount in wei


class TxState(str, Enum):
    """Lifecycle states of a submitted transaction."""

    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    DROPPED = "dropped"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({TxState.CONFIRMED, TxState.REVERTED, TxState.DROPPED, TxState.TIMED_OUT})

ALLOWED_TRANSITIONS: dict[TxState, frozenset[TxState]] = {
    TxState.BUILT: frozenset({TxState.SIGNED}),
    TxState.SIGNED: frozenset({TxState.SUBMITTED}),
    TxState.SUBMITTED: frozenset({TxState.PENDING}),
    TxState.PENDING: frozenset(_TERMINAL),
    # A timed-out wait can be resumed by re-attaching to the hash.
    TxState.TIMED_OUT: frozenset({TxState.PENDING}),
    TxState.CONFIRMED: frozenset(),
    TxState.REVERTED: frozenset(),
    TxState.DROPPED: frozenset(),
}


@dataclass(frozen=True)
class CallIntent:
    """Immutable description of a contract call to be sent as a transaction."""

    binding: ContractBinding
    function: str
    args: tuple[Any, ...] = ()
    value: Wei = 0
    gas_limit: int | None = None
    action: str = ""

    @property
    def label(self) -> str:
        return self.action or self.function


@dataclass
class TransactionRecord:
    """Mutable state for one transaction attempt, owned by the engine."""

    intent: CallIntent | None
    state: TxState = TxState.BUILT
    sender: Address | None = None
    to: Address | None = None
    value: Wei = 0
    payload: bytes = b""
    chain_id: int | None = None
    nonce: int | None = None
    gas_limit: int | None = None
    gas_price: Wei | None = None
    raw_transaction: bytes | None = None
    tx_hash: str | None = None
    submitted_block: int | None = None
    block_number: int | None = None
    receipt: dict[str, Any] | None = None
    revert_reason: str | None = None
    simulated_output: Any = None
    result: dict[str, Any] = field(default_factory=dict)
    watch_cancelled: bool = False
    history: list[TxState] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def label(self) -> str:
        return self.intent.label if self.intent is not None else "attached"

    def raise_for_state(self) -> None:
        """Raise the matching error unless the record is Confirmed."""

        context = {"tx_hash": self.tx_hash, "nonce": self.nonce}
        if self.state is TxState.REVERTED:
            reason = self.revert_reason or UNKNOWN_REVERT
            raise TransactionReverted(
                f"Transaction reverted: {reason}", reason=reason, **context
            )
        if self.state is TxState.DROPPED:
            raise TransactionDropped("Transaction was dropped by the network", **context)
        if self.state is TxState.TIMED_OUT:
            raise TransactionTimedOut(
                "Timed out waiting for confirmation; transaction may still be mined", **context
            )
        if self.state is not TxState.CONFIRMED:
            raise RuntimeError(f"Transaction is not terminal (state={self.state.value})")


@dataclass
class OperationResult:
    """Terminal report for an operation script.

    ``output`` holds amounts read from the confirmed receipt's events;
    ``simulated_output`` is what the pre-submission simulation returned and
    can differ when the chain state moved in between.
    """

    operation: str
    state: TxState
    success: bool
    transaction_hash: str | None = None
    nonce: int | None = None
    block_number: int | None = None
    revert_reason: str | None = None
    output: Any = None
    simulated_output: Any = None
    events: list[dict[str, Any]] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(
        cls, operation: str, record: TransactionRecord, context: dict[str, Any] | None = None
    ) -> OperationResult:
        return cls(
            operation=operation,
            state=record.state,
            success=record.state is TxState.CONFIRMED,
            transaction_hash=record.tx_hash,
            nonce=record.nonce,
            block_number=record.block_number,
            revert_reason=record.revert_reason,
            simulated_output=record.simulated_output,
            events=list(record.result.get("events", [])),
            context=dict(context or {}),
        )
