"""Example: bridge a token to the configured destination chain."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from dexflow import ClientConfig, DexClient, TransactionError, bridge_transfer

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("bridge_transfer")


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} not found in environment variables")
    return value


async def main() -> None:
    token = _require_env("BRIDGE_TOKEN")
    destination = int(_require_env("BRIDGE_DESTINATION_CHAIN_ID"))

    config = ClientConfig.from_env()
    async with DexClient(config) as client:
        amount = await client.token_amount(token, os.getenv("BRIDGE_AMOUNT", "1"))
        try:
            result = await bridge_transfer(
                client,
                token=token,
                amount=amount,
                destination_chain_id=destination,
                recipient=client.address,
            )
        except TransactionError as exc:
            logger.error("Bridge transfer not sent: %s", exc.reason)
            return

        if result.success:
            logger.info(
                "Bridged %s to chain %s (tx %s)", amount, destination, result.transaction_hash
            )
        else:
            logger.error(
                "Bridge transfer ended %s (tx %s)", result.state.value, result.transaction_hash
            )


if __name__ == "__main__":
    asyncio.run(main())
