"""Helper functions shared by the engine and operation scripts."""

import time
from collections.abc import Mapping, Sequence
from typing import Any

from hexbytes import HexBytes
from web3 import Web3
from web3.types import ChecksumAddress

from .exceptions import InvalidArguments


def serialise_receipt(receipt: Any) -> Any:
    """Serialise web3 receipt objects into JSON-friendly structures."""
    if receipt is None:
        return None
    if isinstance(receipt, Mapping):
        return {key: serialise_receipt(value) for key, value in receipt.items()}
    if isinstance(receipt, Sequence) and not isinstance(
        receipt, str | bytes | bytearray | HexBytes
    ):
        return [serialise_receipt(item) for item in receipt]
    if isinstance(receipt, bytes | bytearray | HexBytes):
        return HexBytes(receipt).to_0x_hex()
    return receipt


def deadline_from_now(seconds: int, *, now: float | None = None) -> int:
    """Unix timestamp ``seconds`` in the future."""
    if seconds <= 0:
        raise InvalidArguments("Deadline window must be positive", field="deadline", value=seconds)
    current = time.time() if now is None else now
    return int(current) + int(seconds)


def checksum(address: str, field: str = "address") -> ChecksumAddress:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidArguments(f"Invalid {field}", field=field, value=address)
    return Web3.to_checksum_address(address)
