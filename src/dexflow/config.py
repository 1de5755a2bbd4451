"""Configuration containers for the dexflow client."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TypeVar

from web3 import Web3
from web3.types import ChecksumAddress

from .exceptions import ConfigurationError

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_RECEIPT_TIMEOUT = 120.0
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_CONFIRMATIONS = 1
DEFAULT_DROP_AFTER_BLOCKS = 50
DEFAULT_GAS_LIMIT_MULTIPLIER = 1.2
DEFAULT_SLIPPAGE_BPS = 50
DEFAULT_DEADLINE_SECONDS = 1200

T = TypeVar("T")


@dataclass(frozen=True)
class EngineConfig:
    """Tuning for the transaction lifecycle engine."""

    confirmations: int = DEFAULT_CONFIRMATIONS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT
    drop_after_blocks: int = DEFAULT_DROP_AFTER_BLOCKS
    gas_limit_multiplier: float = DEFAULT_GAS_LIMIT_MULTIPLIER
    gas_price_wei: int | None = None

    def __post_init__(self) -> None:
        if self.confirmations < 0:
            raise ConfigurationError("Confirmations cannot be negative", setting="CONFIRMATIONS")
        if self.poll_interval <= 0:
            raise ConfigurationError("Poll interval must be positive", setting="POLL_INTERVAL")
        if self.receipt_timeout <= 0:
            raise ConfigurationError("Receipt timeout must be positive", setting="RECEIPT_TIMEOUT")
        if self.drop_after_blocks <= 0:
            raise ConfigurationError(
                "Drop window must be at least one block", setting="DROP_AFTER_BLOCKS"
            )
        if self.gas_limit_multiplier < 1:
            raise ConfigurationError("Gas limit multiplier must be >= 1", setting="GAS_MULTIPLIER")


@dataclass(frozen=True)
class ClientConfig:
    """Aggregated configuration used to construct a :class:`~dexflow.client.DexClient`."""

    private_key: str = field(repr=False)
    rpc_url: str
    router_address: ChecksumAddress | None = None
    wrapped_native_address: ChecksumAddress | None = None
    bridge_address: ChecksumAddress | None = None
    bridge_destination_chain_id: int | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    engine: EngineConfig = EngineConfig()

    def __post_init__(self) -> None:
        if not self.private_key:
            raise ConfigurationError("A signing credential is required", setting="PRIVATE_KEY")
        if not self.rpc_url:
            raise ConfigurationError("An RPC endpoint URI is required", setting="RPC_URL")
        if not 0 <= self.slippage_bps < 10_000:
            raise ConfigurationError("Slippage must be 0-9999 bps", setting="SLIPPAGE_BPS")
        if self.deadline_seconds <= 0:
            raise ConfigurationError("Deadline window must be positive", setting="DEADLINE_SECONDS")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build a configuration from environment variables.

        ``PRIVATE_KEY`` and ``RPC_URL`` are mandatory; everything else falls
        back to the module defaults.
        """

        env = os.environ if environ is None else environ

        engine = EngineConfig(
            confirmations=_parse(env, "CONFIRMATIONS", int, DEFAULT_CONFIRMATIONS),
            poll_interval=_parse(env, "POLL_INTERVAL", float, DEFAULT_POLL_INTERVAL),
            receipt_timeout=_parse(env, "RECEIPT_TIMEOUT", float, DEFAULT_RECEIPT_TIMEOUT),
            drop_after_blocks=_parse(env, "DROP_AFTER_BLOCKS", int, DEFAULT_DROP_AFTER_BLOCKS),
            gas_limit_multiplier=_parse(
                env, "GAS_MULTIPLIER", float, DEFAULT_GAS_LIMIT_MULTIPLIER
            ),
            gas_price_wei=_parse(env, "GAS_PRICE_WEI", int, None),
        )

        return cls(
            private_key=_require(env, "PRIVATE_KEY"),
            rpc_url=_require(env, "RPC_URL"),
            router_address=_address(env, "ROUTER_ADDRESS"),
            wrapped_native_address=_address(env, "WRAPPED_NATIVE_ADDRESS"),
            bridge_address=_address(env, "BRIDGE_ADDRESS"),
            bridge_destination_chain_id=_parse(env, "BRIDGE_DESTINATION_CHAIN_ID", int, None),
            request_timeout=_parse(env, "REQUEST_TIMEOUT", float, DEFAULT_REQUEST_TIMEOUT),
            slippage_bps=_parse(env, "SLIPPAGE_BPS", int, DEFAULT_SLIPPAGE_BPS),
            deadline_seconds=_parse(env, "DEADLINE_SECONDS", int, DEFAULT_DEADLINE_SECONDS),
            engine=engine,
        )

    def require_router(self) -> ChecksumAddress:
        return _configured(self.router_address, "ROUTER_ADDRESS")

    def require_bridge(self) -> ChecksumAddress:
        return _configured(self.bridge_address, "BRIDGE_ADDRESS")


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} not found in environment variables", setting=name)
    return value


def _parse(env: Mapping[str, str], name: str, cast: Callable[[str], T], default: T) -> T:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} has an invalid value", setting=name, details={"value": raw}
        ) from exc


def _address(env: Mapping[str, str], name: str) -> ChecksumAddress | None:
    raw = env.get(name, "").strip()
    if not raw:
        return None
    try:
        return Web3.to_checksum_address(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} is not a valid address", setting=name, details={"value": raw}
        ) from exc


def _configured(value: ChecksumAddress | None, name: str) -> ChecksumAddress:
    if value is None:
        raise ConfigurationError(f"{name} is not configured", setting=name)
    return value
