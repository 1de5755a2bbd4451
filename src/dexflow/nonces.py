"""Single-writer nonce allocation per signing address."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from web3.types import ChecksumAddress

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .connections import Endpoint

logger = logging.getLogger(__name__)


class NonceManager:
    """Hand out strictly increasing nonces for one address.

    Callers hold :attr:`lock` from nonce allocation until the signed
    transaction has been submitted, so no two in-flight transactions from
    the same signer can claim the same nonce.
    """

    def __init__(self, endpoint: Endpoint, address: ChecksumAddress) -> None:
        self._endpoint = endpoint
        self._address = address
        self._next: int | None = None
        self.lock = asyncio.Lock()

    async def allocate(self) -> int:
        if not self.lock.locked():
            raise RuntimeError("NonceManager.allocate() requires the nonce lock")

        chain_next = await self._endpoint.get_transaction_count(self._address, "pending")
        nonce = chain_next if self._next is None else max(chain_next, self._next)
        self._next = nonce + 1
        logger.debug("Allocated nonce %s for %s (chain pending=%s)", nonce, self._address, chain_next)
        return nonce

    def release(self, nonce: int) -> None:
        """Return an allocated nonce that never reached the network."""

        if self._next == nonce + 1:
            self._next = nonce
            logger.debug("Released nonce %s for %s", nonce, self._address)
        else:
            self._next = None
            logger.debug("Nonce cache reset for %s after releasing %s", self._address, nonce)

    def reset(self) -> None:
        self._next = None
