"""Example: re-attach to a broadcast transaction by hash and wait for it."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from dexflow import ClientConfig, DexClient, TransactionDropped

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("watch_transaction")


async def main(tx_hash: str) -> None:
    config = ClientConfig.from_env()
    async with DexClient(config) as client:
        try:
            timeout = float(os.getenv("WATCH_TIMEOUT", "300"))
            record = await client.engine.attach(tx_hash, timeout=timeout)
        except TransactionDropped:
            logger.error("Node does not know %s", tx_hash)
            return
        logger.info("Transaction %s is %s", tx_hash, record.state.value)
        if record.revert_reason:
            logger.info("  revert reason: %s", record.revert_reason)


if __name__ == "__main__":
    if len(sys.argv) != 2:
        raise SystemExit("usage: watch_transaction.py <tx-hash>")
    asyncio.run(main(sys.argv[1]))
