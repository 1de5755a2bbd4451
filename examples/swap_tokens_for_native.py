"""Example: sell an ERC20 token for native currency through the DEX router."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from dexflow import ClientConfig, DexClient, OperationResult, swap_tokens_for_native
from dexflow.utils import deadline_from_now

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("swap_tokens_for_native")


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} not found in environment variables")
    return value


def _log_result(result: OperationResult) -> None:
    if result.success:
        logger.info("Swap confirmed in block %s", result.block_number)
        logger.info("  tx: %s", result.transaction_hash)
        logger.info(
            "  received: %s wei (minimum %s)",
            result.output["amount_out"],
            result.context["min_output"],
        )
    else:
        logger.error("Swap ended %s: %s", result.state.value, result.revert_reason)
        logger.error("  tx: %s", result.transaction_hash)


async def main() -> None:
    token = _require_env("SWAP_TOKEN")
    amount_text = os.getenv("SWAP_AMOUNT", "1")

    config = ClientConfig.from_env()
    async with DexClient(config) as client:
        wrapped = await client.wrapped_native()
        amount = await client.token_amount(token, amount_text)
        balance = await client.token_balance(token)
        logger.info("Balance before swap: %s", balance)

        result = await swap_tokens_for_native(
            client,
            token_in=token,
            amount_in=amount,
            route=[token, wrapped],
            recipient=client.address,
            deadline=deadline_from_now(config.deadline_seconds),
        )
        _log_result(result)


if __name__ == "__main__":
    asyncio.run(main())
