"""Command-line entry point: one operation per invocation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from dotenv import load_dotenv

from . import operations
from .amounts import Amount
from .client import NATIVE_DECIMALS, DexClient
from .config import ClientConfig
from .exceptions import ConfigurationError, DexFlowError, TransactionError, ValidationError
from .types import OperationResult, TxState
from .utils import deadline_from_now

logger = logging.getLogger("dexflow")

EXIT_OK = 0
EXIT_NOT_CONFIRMED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dexflow", description="Build, sign, submit and confirm DEX and bridge calls."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    balance = sub.add_parser("balance", help="Show native and token balances")
    balance.add_argument("--token", help="ERC20 token address")
    balance.add_argument("--owner", help="Address to inspect (default: signer)")

    approve = sub.add_parser("approve", help="Approve a spender for a token")
    approve.add_argument("--token", required=True)
    approve.add_argument("--amount", required=True, help="Human amount, e.g. 12.5")
    approve.add_argument("--spender", help="Spender address (default: router)")

    add = sub.add_parser("add-liquidity", help="addLiquidityAVAX")
    add.add_argument("--token", required=True)
    add.add_argument("--amount", required=True, help="Token amount to deposit")
    add.add_argument("--native-amount", required=True, help="Native amount sent as value")
    add.add_argument("--token-min", help="Minimum token amount accepted")
    add.add_argument("--native-min", help="Minimum native amount accepted")
    _add_common(add)

    remove = sub.add_parser("remove-liquidity", help="removeLiquidityAVAX")
    remove.add_argument("--token", required=True)
    remove.add_argument("--pair", required=True, help="LP token (pair) address")
    remove.add_argument("--liquidity", required=True, help="LP amount to burn")
    remove.add_argument("--token-min")
    remove.add_argument("--native-min")
    _add_common(remove)

    swap = sub.add_parser("swap", help="swapExactTokensForAVAX")
    swap.add_argument("--token", required=True, help="Input token address")
    swap.add_argument("--amount", required=True)
    swap.add_argument("--route", required=True, help="Comma separated token addresses")
    swap.add_argument("--min-output", help="Minimum native output (default: quote less slippage)")
    _add_common(swap)

    swap_native = sub.add_parser("swap-native", help="swapExactAVAXForTokens")
    swap_native.add_argument("--amount", required=True, help="Native amount to sell")
    swap_native.add_argument("--route", required=True)
    swap_native.add_argument("--min-output")
    _add_common(swap_native)

    bridge = sub.add_parser("bridge", help="bridgeTo")
    bridge.add_argument("--token", required=True)
    bridge.add_argument("--amount", required=True)
    bridge.add_argument("--destination-chain-id", required=True, type=int)
    bridge.add_argument("--recipient", required=True)
    bridge.add_argument("--timeout", type=float)

    attach = sub.add_parser("attach", help="Resume watching a broadcast transaction")
    attach.add_argument("--hash", required=True, dest="tx_hash")
    attach.add_argument("--timeout", type=float)

    return parser


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--recipient", required=True)
    parser.add_argument("--deadline", type=int, help="Unix timestamp")
    parser.add_argument("--deadline-seconds", type=int, help="Deadline relative to now")
    parser.add_argument("--slippage-bps", type=int)
    parser.add_argument("--timeout", type=float, help="Local confirmation wait in seconds")


def _deadline(args: argparse.Namespace, config: ClientConfig) -> int:
    if args.deadline is not None:
        return args.deadline
    return deadline_from_now(args.deadline_seconds or config.deadline_seconds)


async def _optional(client: DexClient, token: str, text: str | None) -> Amount | None:
    return None if text is None else await client.token_amount(token, text)


def _native(text: str | None) -> Amount | None:
    return None if text is None else Amount.from_decimal_string(text, NATIVE_DECIMALS)


async def run_command(args: argparse.Namespace, client: DexClient) -> dict[str, Any]:
    config = client.config

    if args.command == "balance":
        summary: dict[str, Any] = {
            "address": args.owner or client.address,
            "native": str(await client.native_balance(args.owner)),
        }
        if args.token:
            summary["token"] = str(await client.token_balance(args.token, args.owner))
        return summary

    if args.command == "attach":
        record = await client.engine.attach(args.tx_hash, timeout=args.timeout)
        return _report(OperationResult.from_record("attach", record))

    if args.command == "approve":
        result = await operations.approve(
            client,
            token=args.token,
            spender=args.spender or config.require_router(),
            amount=await client.token_amount(args.token, args.amount),
        )
    elif args.command == "add-liquidity":
        result = await operations.add_liquidity(
            client,
            token=args.token,
            token_amount=await client.token_amount(args.token, args.amount),
            native_amount=Amount.from_decimal_string(args.native_amount, NATIVE_DECIMALS),
            recipient=args.recipient,
            deadline=_deadline(args, config),
            token_min=await _optional(client, args.token, args.token_min),
            native_min=_native(args.native_min),
            slippage_bps=args.slippage_bps,
            timeout=args.timeout,
        )
    elif args.command == "remove-liquidity":
        result = await operations.remove_liquidity(
            client,
            token=args.token,
            pair=args.pair,
            liquidity=await client.token_amount(args.pair, args.liquidity),
            recipient=args.recipient,
            deadline=_deadline(args, config),
            token_min=await _optional(client, args.token, args.token_min),
            native_min=_native(args.native_min),
            slippage_bps=args.slippage_bps,
            timeout=args.timeout,
        )
    elif args.command == "swap":
        result = await operations.swap_tokens_for_native(
            client,
            token_in=args.token,
            amount_in=await client.token_amount(args.token, args.amount),
            route=_route(args.route),
            recipient=args.recipient,
            deadline=_deadline(args, config),
            min_output=_native(args.min_output),
            slippage_bps=args.slippage_bps,
            timeout=args.timeout,
        )
    elif args.command == "swap-native":
        route = _route(args.route)
        result = await operations.swap_native_for_tokens(
            client,
            amount_in=Amount.from_decimal_string(args.amount, NATIVE_DECIMALS),
            route=route,
            recipient=args.recipient,
            deadline=_deadline(args, config),
            min_output=await _optional(client, route[-1], args.min_output),
            slippage_bps=args.slippage_bps,
            timeout=args.timeout,
        )
    elif args.command == "bridge":
        result = await operations.bridge_transfer(
            client,
            token=args.token,
            amount=await client.token_amount(args.token, args.amount),
            destination_chain_id=args.destination_chain_id,
            recipient=args.recipient,
            timeout=args.timeout,
        )
    else:  # pragma: no cover - argparse enforces choices
        raise ValidationError("Unknown command", field="command", value=args.command)

    return _report(result)


def _route(text: str) -> list[str]:
    hops = [hop.strip() for hop in text.split(",") if hop.strip()]
    if not hops:
        raise ValidationError("Route cannot be empty", field="route", value=text)
    return hops


def _report(result: OperationResult) -> dict[str, Any]:
    return {
        "operation": result.operation,
        "state": result.state.value,
        "transaction_hash": result.transaction_hash,
        "nonce": result.nonce,
        "block_number": result.block_number,
        "revert_reason": result.revert_reason,
        "output": result.output,
        "simulated_output": result.simulated_output,
        "events": result.events,
        "context": result.context,
    }


async def _main_async(args: argparse.Namespace, config: ClientConfig) -> dict[str, Any]:
    async with DexClient(config) as client:
        return await run_command(args, client)


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOGLEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    try:
        config = ClientConfig.from_env()
        summary = asyncio.run(_main_async(args, config))
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_USAGE
    except ValidationError as exc:
        logger.error("Invalid request (%s): %s", exc.field, exc)
        return EXIT_USAGE
    except TransactionError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        print(
            json.dumps(
                {
                    "error": type(exc).__name__,
                    "reason": exc.reason,
                    "transaction_hash": exc.tx_hash,
                    "nonce": exc.nonce,
                },
                indent=2,
            )
        )
        return EXIT_NOT_CONFIRMED
    except DexFlowError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return EXIT_NOT_CONFIRMED

    print(json.dumps(summary, indent=2, default=str))
    state = summary.get("state")
    if state is None or state == TxState.CONFIRMED.value:
        return EXIT_OK
    return EXIT_NOT_CONFIRMED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
