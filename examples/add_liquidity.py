"""Example: approve the router and add token/native liquidity."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from dexflow import Amount, ClientConfig, DexClient, add_liquidity, approve
from dexflow.utils import deadline_from_now

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("add_liquidity")


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} not found in environment variables")
    return value


async def main() -> None:
    token = _require_env("LIQUIDITY_TOKEN")

    config = ClientConfig.from_env()
    async with DexClient(config) as client:
        token_amount = await client.token_amount(token, os.getenv("LIQUIDITY_TOKEN_AMOUNT", "1"))
        native_amount = Amount.from_decimal_string(os.getenv("LIQUIDITY_NATIVE_AMOUNT", "0.1"), 18)
        router = config.require_router()

        if await client.allowance(token, router) < token_amount:
            approval = await approve(client, token=token, spender=router, amount=token_amount)
            if not approval.success:
                logger.error(
                    "Approval ended %s (tx %s)", approval.state.value, approval.transaction_hash
                )
                return

        result = await add_liquidity(
            client,
            token=token,
            token_amount=token_amount,
            native_amount=native_amount,
            recipient=client.address,
            deadline=deadline_from_now(config.deadline_seconds),
        )
        if result.success:
            out = result.output
            logger.info(
                "Deposited %s token / %s native for %s LP",
                out["amount_token"],
                out["amount_native"],
                out["liquidity"],
            )
        else:
            logger.error("add_liquidity ended %s: %s", result.state.value, result.revert_reason)


if __name__ == "__main__":
    asyncio.run(main())
