"""Transaction lifecycle engine: build, sign, submit and watch contract calls."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping
from typing import Any

from .binding import EventDecoder, Mutability
from .config import EngineConfig
from .connections import Endpoint
from .exceptions import (
    UNKNOWN_REVERT,
    ContractCallReverted,
    InvalidArguments,
    NetworkError,
    SubmissionRejected,
    TransactionDropped,
    ValidationError,
    WouldRevert,
)
from .nonces import NonceManager
from .signer import Signer
from .types import ALLOWED_TRANSITIONS, CallIntent, TransactionRecord, TxState
from .utils import serialise_receipt

logger = logging.getLogger(__name__)

DEFAULT_FEE_BUMP = 1.125


class TransactionEngine:
    """Drive one signer's contract calls from intent to a terminal state.

    ``Built -> Signed -> Submitted -> Pending -> {Confirmed | Reverted | Dropped | TimedOut}``

    Every call is simulated before signing; a simulated revert raises
    :class:`WouldRevert` and nothing is broadcast. Build, nonce allocation and
    submission run under the signer's nonce lock, so nonces are handed out in
    build order. Waiting for inclusion happens outside the lock. Nothing is
    retried automatically.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        signer: Signer,
        *,
        config: EngineConfig | None = None,
        nonces: NonceManager | None = None,
        event_decoder: EventDecoder | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._signer = signer
        self._config = config or EngineConfig()
        self._nonces = nonces or NonceManager(endpoint, signer.address)
        self._event_decoder = event_decoder

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def address(self) -> str:
        return self._signer.address

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------
    async def execute(self, intent: CallIntent, *, timeout: float | None = None) -> TransactionRecord:
        record = await self.submit(intent)
        return await self.wait(record, timeout=timeout)

    async def submit(self, intent: CallIntent, *, gas_price: int | None = None) -> TransactionRecord:
        """Build, sign and broadcast ``intent``; returns a Pending record."""

        async with self._nonces.lock:
            record = await self.build(intent, gas_price=gas_price)
            nonce = await self._nonces.allocate()
            try:
                self._sign(record, nonce)
            except Exception:
                self._nonces.release(nonce)
                raise
            try:
                await self._broadcast(record)
            except SubmissionRejected:
                raise
            except BaseException:
                # The node may or may not have accepted the transaction.
                self._nonces.reset()
                raise
        return record

    async def build(self, intent: CallIntent, *, gas_price: int | None = None) -> TransactionRecord:
        binding = intent.binding
        fn = binding.function(intent.function)
        payload = binding.encode_call(intent.function, intent.args)

        if fn.mutability is Mutability.READ:
            raise InvalidArguments(
                f"{fn.signature} is read-only; use ContractBinding.read()",
                field="function",
                value=intent.function,
            )
        if intent.value < 0:
            raise InvalidArguments("Attached value cannot be negative", field="value", value=intent.value)
        if intent.value and fn.mutability is not Mutability.PAYABLE:
            raise InvalidArguments(
                f"{fn.signature} is not payable", field="value", value=intent.value
            )

        record = TransactionRecord(
            intent=intent,
            sender=self._signer.address,
            to=binding.address,
            value=intent.value,
            payload=payload,
        )
        logger.info("Dispatching %s via %s.%s", intent.label, binding.name, intent.function)

        call_tx = self._call_transaction(record)
        try:
            raw_output = await self._endpoint.call(call_tx)
            if intent.gas_limit is None:
                estimate = await self._endpoint.estimate_gas(call_tx)
                gas_limit = math.ceil(estimate * self._config.gas_limit_multiplier)
            else:
                gas_limit = intent.gas_limit
        except ContractCallReverted as exc:
            logger.warning("Simulation of %s reverted: %s", intent.label, exc.reason)
            raise WouldRevert(
                f"{intent.label} would revert: {exc.reason}",
                reason=exc.reason,
                details={"function": intent.function, "to": binding.address, "data": exc.data},
            ) from exc

        record.simulated_output = binding.decode_output(intent.function, raw_output)
        record.gas_limit = gas_limit
        record.chain_id = await self._endpoint.chain_id()
        record.gas_price = await self._resolve_gas_price(gas_price)
        logger.debug(
            "Built %s: gas_limit=%s gas_price=%s value=%s",
            intent.label,
            record.gas_limit,
            record.gas_price,
            record.value,
        )
        return record

    async def wait(self, record: TransactionRecord, *, timeout: float | None = None) -> TransactionRecord:
        """Watch a broadcast transaction until it reaches a terminal state.

        ``TimedOut`` only ends the local wait; the transaction may still be
        mined and can be watched again with :meth:`wait` or :meth:`attach`.
        Cancelling the wait leaves the record Pending with
        ``watch_cancelled`` set.
        """

        if record.tx_hash is None:
            raise ValidationError("Record has not been submitted", field="tx_hash")
        if record.state is TxState.TIMED_OUT:
            self._advance(record, TxState.PENDING)
        if record.state is not TxState.PENDING:
            return record

        record.watch_cancelled = False
        loop = asyncio.get_running_loop()
        limit = self._config.receipt_timeout if timeout is None else timeout
        deadline = loop.time() + limit

        try:
            while True:
                if await self._poll(record):
                    return record
                if loop.time() >= deadline:
                    logger.warning(
                        "Timed out after %.1fs waiting for action=%s hash=%s",
                        limit,
                        record.label,
                        record.tx_hash,
                    )
                    self._advance(record, TxState.TIMED_OUT)
                    return record
                await asyncio.sleep(self._config.poll_interval)
        except asyncio.CancelledError:
            record.watch_cancelled = True
            logger.info(
                "Stopped watching action=%s hash=%s; the transaction remains broadcast",
                record.label,
                record.tx_hash,
            )
            raise

    async def attach(self, tx_hash: str, *, timeout: float | None = None) -> TransactionRecord:
        """Resume watching a previously broadcast transaction by hash."""

        tx = await self._endpoint.get_transaction(tx_hash)
        if tx is None:
            raise TransactionDropped(
                "Transaction is unknown to the node", tx_hash=tx_hash, reason="not found"
            )

        head = await self._endpoint.block_number()
        record = TransactionRecord(
            intent=None,
            state=TxState.PENDING,
            sender=tx.get("from"),
            to=tx.get("to"),
            value=int(tx.get("value", 0) or 0),
            payload=bytes(tx.get("input", b"") or b""),
            nonce=tx.get("nonce"),
            gas_limit=tx.get("gas"),
            gas_price=tx.get("gasPrice"),
            tx_hash=tx_hash,
            submitted_block=tx.get("blockNumber") or head,
        )
        logger.info("Attached to hash=%s nonce=%s", tx_hash, record.nonce)
        return await self.wait(record, timeout=timeout)

    async def resubmit(
        self, record: TransactionRecord, *, fee_multiplier: float = DEFAULT_FEE_BUMP
    ) -> TransactionRecord:
        """Send a dropped record's intent again as a new transaction with a higher fee."""

        if record.state is not TxState.DROPPED:
            raise ValidationError(
                "Only dropped transactions can be resubmitted",
                field="state",
                value=record.state.value,
            )
        if record.intent is None:
            raise ValidationError("Attached records carry no intent to resubmit", field="intent")
        if fee_multiplier <= 1:
            raise ValidationError(
                "Fee multiplier must be greater than 1", field="fee_multiplier", value=fee_multiplier
            )

        previous = record.gas_price or await self._endpoint.gas_price()
        bumped = math.ceil(previous * fee_multiplier)
        logger.info(
            "Resubmitting action=%s (previous hash=%s) with gas_price %s -> %s",
            record.label,
            record.tx_hash,
            previous,
            bumped,
        )
        return await self.submit(record.intent, gas_price=bumped)

    # ------------------------------------------------------------------
    # Internal workflow
    # ------------------------------------------------------------------
    def _sign(self, record: TransactionRecord, nonce: int) -> None:
        transaction = {
            "chainId": record.chain_id,
            "nonce": nonce,
            "to": record.to,
            "value": record.value,
            "data": record.payload,
            "gas": record.gas_limit,
            "gasPrice": record.gas_price,
        }
        envelope = self._signer.sign(transaction)
        record.nonce = envelope.nonce
        record.raw_transaction = bytes(envelope.raw_transaction)
        record.tx_hash = envelope.tx_hash
        self._advance(record, TxState.SIGNED)

    async def _broadcast(self, record: TransactionRecord) -> None:
        assert record.raw_transaction is not None and record.nonce is not None

        try:
            tx_hash = await self._endpoint.send_raw_transaction(record.raw_transaction)
        except NetworkError as exc:
            self._nonces.release(record.nonce)
            reason = str(exc.details.get("error") or exc)
            logger.error(
                "Submission rejected for action=%s nonce=%s: %s", record.label, record.nonce, reason
            )
            raise SubmissionRejected(
                f"Node rejected {record.label}: {reason}",
                nonce=record.nonce,
                reason=reason,
                details={"local_hash": record.tx_hash},
            ) from exc

        record.tx_hash = tx_hash
        self._advance(record, TxState.SUBMITTED)
        logger.info(
            "Transaction sent for action=%s hash=%s nonce=%s", record.label, tx_hash, record.nonce
        )
        self._advance(record, TxState.PENDING)
        try:
            record.submitted_block = await self._endpoint.block_number()
        except NetworkError as exc:
            # The hash is already known; the first poll fills in the block.
            logger.warning("Could not read head block after sending hash=%s: %s", tx_hash, exc)

    async def _poll(self, record: TransactionRecord) -> bool:
        assert record.tx_hash is not None

        receipt = await self._endpoint.get_transaction_receipt(record.tx_hash)
        head = await self._endpoint.block_number()
        if record.submitted_block is None:
            record.submitted_block = head

        if receipt is not None:
            included = int(receipt["blockNumber"])
            depth = head - included
            logger.debug(
                "hash=%s included at block %s (head=%s, depth=%s/%s)",
                record.tx_hash,
                included,
                head,
                depth,
                self._config.confirmations,
            )
            if depth >= self._config.confirmations:
                await self._finalise(record, receipt)
                return True
            return False

        if await self._endpoint.get_transaction(record.tx_hash) is not None:
            logger.debug("hash=%s still pending at block %s", record.tx_hash, head)
            return False

        # Unknown to the node: either the nonce was consumed by another
        # transaction or the drop window has elapsed.
        if record.nonce is not None and record.sender is not None:
            mined = await self._endpoint.get_transaction_count(record.sender, "latest")
            if mined > record.nonce:
                receipt = await self._endpoint.get_transaction_receipt(record.tx_hash)
                if receipt is not None:
                    return False
                self._mark_dropped(record, "nonce consumed by another transaction")
                return True

        waited = head - record.submitted_block
        if waited >= self._config.drop_after_blocks:
            self._mark_dropped(record, f"not seen for {waited} blocks")
            return True
        return False

    async def _finalise(self, record: TransactionRecord, receipt: Mapping[str, Any]) -> None:
        record.receipt = serialise_receipt(receipt)
        record.block_number = int(receipt["blockNumber"])

        if int(receipt.get("status", 0)) == 1:
            events = self._event_decoder.decode(receipt.get("logs", [])) if self._event_decoder else []
            record.result = {"simulated": record.simulated_output, "events": events}
            self._advance(record, TxState.CONFIRMED)
            logger.info(
                "Transaction confirmed for action=%s hash=%s block=%s",
                record.label,
                record.tx_hash,
                record.block_number,
            )
            return

        record.revert_reason = await self._replay_revert_reason(record)
        record.result = {"simulated": None, "events": []}
        self._advance(record, TxState.REVERTED)
        logger.error(
            "Transaction reverted for action=%s hash=%s block=%s reason=%s",
            record.label,
            record.tx_hash,
            record.block_number,
            record.revert_reason,
        )

    async def _replay_revert_reason(self, record: TransactionRecord) -> str:
        block = max((record.block_number or 1) - 1, 0)
        call_tx = self._call_transaction(record)
        if record.gas_limit:
            call_tx["gas"] = record.gas_limit
        try:
            await self._endpoint.call(call_tx, block)
        except ContractCallReverted as exc:
            return exc.reason
        except NetworkError as exc:
            logger.debug("Unable to replay hash=%s for a revert reason: %s", record.tx_hash, exc)
        return UNKNOWN_REVERT

    def _mark_dropped(self, record: TransactionRecord, why: str) -> None:
        record.result = {"reason": why}
        self._advance(record, TxState.DROPPED)
        # The node never kept this nonce; re-read it on the next allocation.
        self._nonces.reset()
        logger.warning(
            "Transaction dropped for action=%s hash=%s nonce=%s (%s)",
            record.label,
            record.tx_hash,
            record.nonce,
            why,
        )

    def _advance(self, record: TransactionRecord, state: TxState) -> None:
        allowed = ALLOWED_TRANSITIONS[record.state]
        if state not in allowed:
            raise RuntimeError(f"Illegal transaction transition {record.state.value} -> {state.value}")
        logger.debug("hash=%s %s -> %s", record.tx_hash, record.state.value, state.value)
        record.state = state
        record.history.append(state)

    def _call_transaction(self, record: TransactionRecord) -> dict[str, Any]:
        return {
            "from": record.sender,
            "to": record.to,
            "data": record.payload,
            "value": record.value,
        }

    async def _resolve_gas_price(self, override: int | None) -> int:
        if override is not None:
            return override
        if self._config.gas_price_wei is not None:
            return self._config.gas_price_wei
        return await self._endpoint.gas_price()
