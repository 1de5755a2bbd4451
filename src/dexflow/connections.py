"""Async JSON-RPC endpoint wrapper around :class:`web3.AsyncWeb3`."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound
from web3.types import BlockIdentifier, ChecksumAddress

from .exceptions import ContractCallReverted, NetworkError

logger = logging.getLogger(__name__)

_REVERT_PREFIX = "execution reverted"


class Endpoint:
    """Manage one RPC provider and expose the calls the engine needs.

    Raw web3 failures are translated here: reverted calls become
    :class:`ContractCallReverted`, everything else :class:`NetworkError`.
    """

    def __init__(self, rpc_url: str, *, request_timeout: float = 10.0) -> None:
        self.rpc_url = rpc_url
        self._request_timeout = request_timeout
        self._web3: AsyncWeb3 | None = None
        self._chain_id: int | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        provider = AsyncWeb3.AsyncHTTPProvider(
            self.rpc_url, request_kwargs={"timeout": self._request_timeout}
        )
        web3 = AsyncWeb3(provider)
        try:
            connected = await web3.is_connected()
        except Exception as exc:
            raise NetworkError(
                "Unable to reach RPC endpoint", endpoint=self.rpc_url, details={"error": str(exc)}
            ) from exc
        if not connected:
            raise NetworkError("Unable to connect to RPC endpoint", endpoint=self.rpc_url)

        self._web3 = web3
        self._chain_id = await self._request("eth_chainId", lambda w3: w3.eth.chain_id)
        logger.info("Connected to RPC at %s (chain id %s)", self.rpc_url, self._chain_id)

    async def disconnect(self) -> None:
        web3 = self._web3
        self._web3 = None
        self._chain_id = None
        if web3 is not None:
            await web3.provider.disconnect()

    def is_connected(self) -> bool:
        return self._web3 is not None

    @property
    def web3(self) -> AsyncWeb3:
        if self._web3 is None:
            raise NetworkError("RPC provider not connected; call connect() first", endpoint=self.rpc_url)
        return self._web3

    # ------------------------------------------------------------------
    # Chain context
    # ------------------------------------------------------------------
    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._request("eth_chainId", lambda w3: w3.eth.chain_id)
        return self._chain_id

    async def block_number(self) -> int:
        return await self._request("eth_blockNumber", lambda w3: w3.eth.block_number)

    async def gas_price(self) -> int:
        return await self._request("eth_gasPrice", lambda w3: w3.eth.gas_price)

    async def get_balance(self, address: ChecksumAddress) -> int:
        return await self._request("eth_getBalance", lambda w3: w3.eth.get_balance(address))

    async def get_transaction_count(
        self, address: ChecksumAddress, block_identifier: BlockIdentifier = "pending"
    ) -> int:
        return await self._request(
            "eth_getTransactionCount",
            lambda w3: w3.eth.get_transaction_count(address, block_identifier),
        )

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    async def call(
        self, transaction: Mapping[str, Any], block_identifier: BlockIdentifier = "latest"
    ) -> bytes:
        result = await self._request(
            "eth_call", lambda w3: w3.eth.call(dict(transaction), block_identifier)
        )
        return bytes(result)

    async def estimate_gas(self, transaction: Mapping[str, Any]) -> int:
        return await self._request("eth_estimateGas", lambda w3: w3.eth.estimate_gas(dict(transaction)))

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        tx_hash = await self._request(
            "eth_sendRawTransaction", lambda w3: w3.eth.send_raw_transaction(raw_transaction)
        )
        return HexBytes(tx_hash).to_0x_hex()

    async def get_transaction(self, tx_hash: str) -> Mapping[str, Any] | None:
        try:
            return await self._request(
                "eth_getTransactionByHash", lambda w3: w3.eth.get_transaction(tx_hash)
            )
        except TransactionNotFound:
            return None

    async def get_transaction_receipt(self, tx_hash: str) -> Mapping[str, Any] | None:
        try:
            return await self._request(
                "eth_getTransactionReceipt", lambda w3: w3.eth.get_transaction_receipt(tx_hash)
            )
        except TransactionNotFound:
            return None

    # ------------------------------------------------------------------
    # Internal wiring
    # ------------------------------------------------------------------
    async def _request(self, method: str, build) -> Any:
        web3 = self.web3
        try:
            return await build(web3)
        except TransactionNotFound:
            raise
        except ContractLogicError as exc:
            raise ContractCallReverted(
                reason=revert_reason_from_message(getattr(exc, "message", None) or str(exc)),
                data=_as_hex(getattr(exc, "data", None)),
            ) from exc
        except Exception as exc:
            logger.debug("RPC %s failed: %s", method, exc)
            raise NetworkError(
                f"RPC request {method} failed",
                endpoint=self.rpc_url,
                details={"method": method, "error": str(exc)},
            ) from exc


def revert_reason_from_message(message: str | None) -> str | None:
    """Strip the node's ``execution reverted:`` prefix from an error message."""

    if not message:
        return None
    text = str(message).strip()
    if text.lower().startswith(_REVERT_PREFIX):
        text = text[len(_REVERT_PREFIX) :].lstrip(": ").strip()
    return text or None


def _as_hex(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes | bytearray):
        return HexBytes(value).to_0x_hex()
    return str(value)
