"""Contract bindings: a fixed address plus its declared call signatures."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi import is_encodable
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import InvalidEventABI, LogTopicError, MismatchedABI
from web3.types import BlockIdentifier, ChecksumAddress

from .amounts import Amount
from .exceptions import InvalidArguments, NetworkError, UnknownFunction, ValidationError

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .connections import Endpoint

logger = logging.getLogger(__name__)


class Mutability(str, Enum):
    READ = "read"
    WRITE = "write"
    PAYABLE = "payable"

    @classmethod
    def from_abi(cls, state_mutability: str) -> Mutability:
        if state_mutability in ("view", "pure"):
            return cls.READ
        if state_mutability == "payable":
            return cls.PAYABLE
        return cls.WRITE


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...]
    mutability: Mutability
    input_names: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    @classmethod
    def from_abi(cls, entry: Mapping[str, Any]) -> FunctionSignature:
        return cls(
            name=entry["name"],
            inputs=tuple(_canonical_type(item) for item in entry.get("inputs", [])),
            outputs=tuple(_canonical_type(item) for item in entry.get("outputs", [])),
            mutability=Mutability.from_abi(entry.get("stateMutability", "nonpayable")),
            input_names=tuple(item.get("name", "") for item in entry.get("inputs", [])),
        )


@dataclass(frozen=True)
class EventSignature:
    name: str
    inputs: tuple[tuple[str, str, bool], ...]

    @property
    def topic(self) -> bytes:
        types = ",".join(typ for _, typ, _ in self.inputs)
        return bytes(Web3.keccak(text=f"{self.name}({types})"))

    @classmethod
    def from_abi(cls, entry: Mapping[str, Any]) -> EventSignature:
        return cls(
            name=entry["name"],
            inputs=tuple(
                (item.get("name", ""), _canonical_type(item), bool(item.get("indexed")))
                for item in entry.get("inputs", [])
            ),
        )


class ContractBinding:
    """Associate a contract address with the functions it may be called through.

    Arguments are validated against the declared types before any network
    round-trip. Reads are never cached.
    """

    def __init__(
        self,
        address: str,
        functions: Iterable[FunctionSignature],
        endpoint: Endpoint | None = None,
        *,
        name: str = "contract",
        events: Iterable[EventSignature] = (),
    ) -> None:
        try:
            self.address: ChecksumAddress = Web3.to_checksum_address(address)
        except ValueError as exc:
            raise ValidationError(
                "Invalid contract address", field="address", value=address
            ) from exc
        self.name = name
        self._functions: dict[str, FunctionSignature] = {}
        for fn in functions:
            if fn.name in self._functions:
                raise ValidationError(
                    f"{name} declares {fn.name} more than once; overloads are not supported",
                    field="functions",
                    value=fn.signature,
                    details={"existing": self._functions[fn.name].signature},
                )
            self._functions[fn.name] = fn
        self.events = tuple(events)
        self._endpoint = endpoint

    @classmethod
    def from_abi(
        cls,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        endpoint: Endpoint | None = None,
        *,
        name: str = "contract",
    ) -> ContractBinding:
        functions = [FunctionSignature.from_abi(e) for e in abi if e.get("type") == "function"]
        events = [EventSignature.from_abi(e) for e in abi if e.get("type") == "event"]
        return cls(address, functions, endpoint, name=name, events=events)

    def __repr__(self) -> str:
        return f"ContractBinding(name={self.name!r}, address={self.address})"

    def function(self, name: str) -> FunctionSignature:
        try:
            return self._functions[name]
        except KeyError:
            raise UnknownFunction(
                f"{self.name} does not declare function '{name}'",
                field="function",
                value=name,
                details={"address": self.address, "declared": list(self._functions)},
            ) from None

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------
    def normalise_args(self, name: str, args: Sequence[Any]) -> tuple[Any, ...]:
        fn = self.function(name)
        if len(args) != len(fn.inputs):
            raise InvalidArguments(
                f"{fn.signature} expects {len(fn.inputs)} arguments, got {len(args)}",
                field="args",
                value=list(args),
            )

        normalised = []
        for index, (abi_type, value) in enumerate(zip(fn.inputs, args)):
            coerced = _coerce(abi_type, value)
            if not is_encodable(abi_type, coerced):
                label = fn.input_names[index] if index < len(fn.input_names) else str(index)
                raise InvalidArguments(
                    f"Argument '{label or index}' of {fn.signature} is not a valid {abi_type}",
                    field=label or str(index),
                    value=value,
                )
            normalised.append(coerced)
        return tuple(normalised)

    def encode_call(self, name: str, args: Sequence[Any]) -> bytes:
        fn = self.function(name)
        values = self.normalise_args(name, args)
        return fn.selector + abi_encode(list(fn.inputs), list(values))

    def decode_output(self, name: str, data: bytes) -> Any:
        fn = self.function(name)
        if not fn.outputs:
            return None
        try:
            decoded = abi_decode(list(fn.outputs), bytes(data))
        except Exception as exc:
            raise NetworkError(
                f"Failed to decode {fn.signature} response",
                endpoint=self.address,
                details={"error": str(exc), "data": HexBytes(data).to_0x_hex()},
            ) from exc
        values = tuple(_plain(value) for value in decoded)
        return values[0] if len(values) == 1 else values

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def read(
        self, name: str, args: Sequence[Any] = (), *, block_identifier: BlockIdentifier = "latest"
    ) -> Any:
        fn = self.function(name)
        if fn.mutability is not Mutability.READ:
            raise InvalidArguments(
                f"{fn.signature} changes state and must be sent as a transaction",
                field="function",
                value=name,
            )
        data = self.encode_call(name, args)
        if self._endpoint is None:
            raise NetworkError(f"{self.name} binding has no endpoint for reads", endpoint=self.address)

        result = await self._endpoint.call({"to": self.address, "data": data}, block_identifier)
        return self.decode_output(name, result)


class EventDecoder:
    """Decode receipt logs for every event declared across a set of ABIs.

    Decoding goes through web3's contract event API, so receipt logs must
    carry the usual ``logIndex``/``transactionHash``/``blockHash`` fields.
    """

    def __init__(self, abis: Iterable[Sequence[Mapping[str, Any]]]) -> None:
        w3 = Web3()
        self._by_topic: dict[bytes, Any] = {}
        for abi in abis:
            contract = w3.eth.contract(abi=list(abi))
            for entry in abi:
                if entry.get("type") == "event":
                    topic = EventSignature.from_abi(entry).topic
                    self._by_topic.setdefault(topic, contract.events[entry["name"]]())

    def decode(self, logs: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        decoded: list[dict[str, Any]] = []
        for log in logs:
            topics = log.get("topics") or []
            if not topics:
                continue
            event = self._by_topic.get(bytes(HexBytes(topics[0])))
            if event is None:
                continue
            try:
                data = event.process_log(log)
            except (MismatchedABI, LogTopicError, InvalidEventABI, DecodingError) as exc:
                # Same signature but a different indexing layout, or a truncated payload.
                logger.debug("Skipping undecodable %s log: %s", event.event_name, exc)
                continue
            decoded.append(
                {
                    "event": data["event"],
                    "address": log.get("address"),
                    "args": {k: _plain(v) for k, v in data["args"].items()},
                }
            )
        return decoded


def _canonical_type(item: Mapping[str, Any]) -> str:
    typ = str(item["type"])
    if typ == "uint":
        return "uint256"
    if typ == "int":
        return "int256"
    return typ


def _coerce(abi_type: str, value: Any) -> Any:
    if isinstance(value, Amount) and abi_type.startswith("uint"):
        return value.raw
    if abi_type == "address" and isinstance(value, str) and Web3.is_address(value):
        return Web3.to_checksum_address(value)
    if abi_type.endswith("[]") and isinstance(value, list | tuple):
        inner = abi_type[:-2]
        return [_coerce(inner, item) for item in value]
    return value


def _plain(value: Any) -> Any:
    if isinstance(value, tuple | list):
        return [_plain(item) for item in value]
    if isinstance(value, bytes):
        return HexBytes(value).to_0x_hex()
    if isinstance(value, str) and Web3.is_address(value):
        return Web3.to_checksum_address(value)
    return value
