"""Per-invocation context wiring the endpoint, signer, engine and bindings."""

from __future__ import annotations

import logging

from web3.types import ChecksumAddress

from .abi import Bridge_abi, ERC20_abi, Pair_abi, Router_abi, WrappedNative_abi
from .amounts import Amount
from .binding import ContractBinding, EventDecoder
from .config import ClientConfig
from .connections import Endpoint
from .exceptions import DexFlowError, NetworkError
from .signer import Signer
from .transactions import TransactionEngine
from .utils import checksum

logger = logging.getLogger(__name__)

NATIVE_DECIMALS = 18


class DexClient:
    """Everything one operation run needs, passed around explicitly.

    The credential is decoded at construction so a bad key fails before any
    network activity.
    """

    def __init__(self, config: ClientConfig, *, endpoint: Endpoint | None = None) -> None:
        self.config = config
        self.signer = Signer.from_key(config.private_key)
        self.endpoint = endpoint or Endpoint(config.rpc_url, request_timeout=config.request_timeout)
        self.engine = TransactionEngine(
            self.endpoint,
            self.signer,
            config=config.engine,
            event_decoder=EventDecoder([Pair_abi, WrappedNative_abi, Bridge_abi]),
        )
        self._decimals: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        if self.endpoint.is_connected():
            return
        try:
            await self.endpoint.connect()
        except DexFlowError:
            raise
        except Exception as exc:  # pragma: no cover - defensive
            raise NetworkError(
                "Failed to initialise RPC connection",
                endpoint=self.config.rpc_url,
                details={"error": str(exc)},
            ) from exc
        logger.info("Signer %s ready", self.address)

    async def disconnect(self) -> None:
        await self.endpoint.disconnect()

    async def __aenter__(self) -> DexClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    @property
    def address(self) -> ChecksumAddress:
        return self.signer.address

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------
    def token(self, address: str) -> ContractBinding:
        return ContractBinding.from_abi(checksum(address, "token"), ERC20_abi, self.endpoint, name="ERC20")

    def pair(self, address: str) -> ContractBinding:
        return ContractBinding.from_abi(checksum(address, "pair"), Pair_abi, self.endpoint, name="Pair")

    def router(self) -> ContractBinding:
        return ContractBinding.from_abi(
            self.config.require_router(), Router_abi, self.endpoint, name="Router"
        )

    def bridge(self) -> ContractBinding:
        return ContractBinding.from_abi(
            self.config.require_bridge(), Bridge_abi, self.endpoint, name="Bridge"
        )

    async def wrapped_native(self) -> ChecksumAddress:
        """Configured wrapped-native token, else the router's ``WAVAX()``."""

        if self.config.wrapped_native_address is not None:
            return self.config.wrapped_native_address
        return checksum(await self.router().read("WAVAX"), "wrapped_native")

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------
    async def decimals(self, token: str) -> int:
        key = checksum(token, "token")
        if key not in self._decimals:
            self._decimals[key] = int(await self.token(key).read("decimals"))
        return self._decimals[key]

    async def token_amount(self, token: str, text: str) -> Amount:
        return Amount.from_decimal_string(text, await self.decimals(token))

    async def token_balance(self, token: str, owner: str | None = None) -> Amount:
        holder = checksum(owner, "owner") if owner else self.address
        raw = await self.token(token).read("balanceOf", [holder])
        return Amount.from_raw(raw, await self.decimals(token))

    async def allowance(self, token: str, spender: str, owner: str | None = None) -> Amount:
        holder = checksum(owner, "owner") if owner else self.address
        raw = await self.token(token).read("allowance", [holder, checksum(spender, "spender")])
        return Amount.from_raw(raw, await self.decimals(token))

    async def native_balance(self, owner: str | None = None) -> Amount:
        holder = checksum(owner, "owner") if owner else self.address
        return Amount.from_raw(await self.endpoint.get_balance(holder), NATIVE_DECIMALS)
