"""Signing identity derived from a local private key."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast

from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3.types import ChecksumAddress

from .exceptions import InvalidCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedEnvelope:
    """Raw signed transaction ready for broadcast."""

    raw_transaction: HexBytes
    tx_hash: str
    nonce: int


class Signer:
    """Hold a credential in memory and sign transaction payloads with it.

    Signatures are deterministic (RFC 6979) for a given payload and key.
    """

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str | bytes) -> Signer:
        try:
            account = cast(LocalAccount, Account.from_key(private_key))
        except Exception as exc:
            # The key itself must not leak into logs or error details.
            raise InvalidCredential(
                "Failed to derive signer account from provided private key",
                field="private_key",
                details={"error": type(exc).__name__},
            ) from None
        logger.debug("Loaded signer %s", account.address)
        return cls(account)

    @property
    def address(self) -> ChecksumAddress:
        return cast(ChecksumAddress, self._account.address)

    def sign(self, transaction: Mapping[str, Any]) -> SignedEnvelope:
        signed = self._account.sign_transaction(dict(transaction))
        return SignedEnvelope(
            raw_transaction=HexBytes(signed.raw_transaction),
            tx_hash=HexBytes(signed.hash).to_0x_hex(),
            nonce=int(transaction["nonce"]),
        )

    def __repr__(self) -> str:
        return f"Signer(address={self.address})"


def derive_address(private_key: str | bytes) -> ChecksumAddress:
    return Signer.from_key(private_key).address
