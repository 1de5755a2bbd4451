"""Operation scripts: one read-check plus one contract write each.

Every operation follows the same sequence: read the balances/allowances it
depends on, build a :class:`CallIntent`, run it through the transaction
engine and report the terminal state. Slippage minimums and deadlines are
always explicit; a zero minimum is refused.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from .amounts import Amount
from .client import NATIVE_DECIMALS, DexClient
from .exceptions import (
    ConfigurationError,
    IncompatibleUnits,
    InsufficientFunds,
    InvalidArguments,
    ValidationError,
)
from .types import CallIntent, OperationResult
from .utils import checksum

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20


# ----------------------------------------------------------------------
# Approvals
# ----------------------------------------------------------------------
async def approve(
    client: DexClient,
    *,
    token: str,
    spender: str,
    amount: Amount,
    timeout: float | None = None,
) -> OperationResult:
    token = checksum(token, "token")
    spender = checksum(spender, "spender")
    current = await client.allowance(token, spender)
    logger.info("Current allowance of %s for %s: %s", token, spender, current)

    intent = CallIntent(
        binding=client.token(token),
        function="approve",
        args=(spender, amount),
        action="approve",
    )
    context = {"token": token, "spender": spender, "amount": amount.raw, "previous": current.raw}
    return await _run(client, "approve", intent, context, timeout)


# ----------------------------------------------------------------------
# Liquidity
# ----------------------------------------------------------------------
async def add_liquidity(
    client: DexClient,
    *,
    token: str,
    token_amount: Amount,
    native_amount: Amount,
    recipient: str,
    deadline: int,
    token_min: Amount | None = None,
    native_min: Amount | None = None,
    slippage_bps: int | None = None,
    timeout: float | None = None,
) -> OperationResult:
    token = checksum(token, "token")
    recipient = checksum(recipient, "recipient")
    router = client.router()
    _require_deadline(deadline)
    _require_positive(token_amount, "token_amount")
    _require_positive(native_amount, "native_amount")

    bps = _slippage(client, slippage_bps)
    token_min = token_min if token_min is not None else token_amount.less_slippage(bps)
    native_min = native_min if native_min is not None else native_amount.less_slippage(bps)
    _require_positive(token_min, "token_min")
    _require_positive(native_min, "native_min")
    if token_min > token_amount or native_min > native_amount:
        raise InvalidArguments("Minimum amounts cannot exceed the deposited amounts", field="min")

    balance, allowance, native_balance = await asyncio.gather(
        client.token_balance(token),
        client.allowance(token, router.address),
        client.native_balance(),
    )
    _require_funds(balance, token_amount, "token_amount")
    _require_funds(native_balance, native_amount, "native_amount")
    _require_allowance(allowance, token_amount, router.address)
    wrapped = await client.wrapped_native()

    intent = CallIntent(
        binding=router,
        function="addLiquidityAVAX",
        args=(token, token_amount, token_min, native_min, recipient, deadline),
        value=native_amount.raw,
        action="add_liquidity",
    )
    context = {
        "token": token,
        "token_amount": token_amount.raw,
        "native_amount": native_amount.raw,
        "token_min": token_min.raw,
        "native_min": native_min.raw,
        "recipient": recipient,
        "deadline": deadline,
    }
    result = await _run(client, "add_liquidity", intent, context, timeout)
    if result.success:
        result.output = {
            "amount_token": _sum_event_amounts(
                result.events, "Transfer", token, "value", sender=client.address
            ),
            "amount_native": _sum_event_amounts(result.events, "Deposit", wrapped, "wad"),
            "liquidity": _sum_event_amounts(
                result.events, "Transfer", None, "value", sender=ZERO_ADDRESS, recipient=recipient
            ),
        }
    return result


async def remove_liquidity(
    client: DexClient,
    *,
    token: str,
    pair: str,
    liquidity: Amount,
    recipient: str,
    deadline: int,
    token_min: Amount | None = None,
    native_min: Amount | None = None,
    slippage_bps: int | None = None,
    timeout: float | None = None,
) -> OperationResult:
    token = checksum(token, "token")
    pair = checksum(pair, "pair")
    recipient = checksum(recipient, "recipient")
    router = client.router()
    _require_deadline(deadline)
    _require_positive(liquidity, "liquidity")

    lp_balance, allowance, wrapped = await asyncio.gather(
        client.token_balance(pair),
        client.allowance(pair, router.address),
        client.wrapped_native(),
    )
    _require_funds(lp_balance, liquidity, "liquidity")
    _require_allowance(allowance, liquidity, router.address)

    if token_min is None or native_min is None:
        expected_token, expected_native = await expected_withdrawal(client, token, pair, liquidity)
        bps = _slippage(client, slippage_bps)
        if token_min is None:
            token_min = expected_token.less_slippage(bps)
        if native_min is None:
            native_min = expected_native.less_slippage(bps)
    _require_positive(token_min, "token_min")
    _require_positive(native_min, "native_min")

    intent = CallIntent(
        binding=router,
        function="removeLiquidityAVAX",
        args=(token, liquidity, token_min, native_min, recipient, deadline),
        action="remove_liquidity",
    )
    context = {
        "token": token,
        "pair": pair,
        "liquidity": liquidity.raw,
        "token_min": token_min.raw,
        "native_min": native_min.raw,
        "recipient": recipient,
        "deadline": deadline,
    }
    result = await _run(client, "remove_liquidity", intent, context, timeout)
    if result.success:
        result.output = {
            "amount_token": _sum_event_amounts(
                result.events, "Transfer", token, "value", recipient=recipient
            ),
            "amount_native": _sum_event_amounts(result.events, "Withdrawal", wrapped, "wad"),
        }
    return result


async def expected_withdrawal(
    client: DexClient, token: str, pair: str, liquidity: Amount
) -> tuple[Amount, Amount]:
    """Pro-rata token/native amounts ``liquidity`` would redeem at current reserves."""

    pair_binding = client.pair(pair)
    token0, reserves, total_supply, wrapped, token_decimals = await asyncio.gather(
        pair_binding.read("token0"),
        pair_binding.read("getReserves"),
        pair_binding.read("totalSupply"),
        client.wrapped_native(),
        client.decimals(token),
    )
    if not total_supply:
        raise ValidationError("Pair has no liquidity", field="pair", value=pair)

    reserve0, reserve1, _ = reserves
    token1 = checksum(await pair_binding.read("token1"), "token1")
    if {checksum(token0, "token0"), token1} != {token, wrapped}:
        raise InvalidArguments(
            "Pair does not hold the token and the wrapped native currency",
            field="pair",
            value=pair,
            details={"token0": token0, "token1": token1},
        )

    reserve_token, reserve_native = (
        (reserve0, reserve1) if checksum(token0, "token0") == token else (reserve1, reserve0)
    )
    return (
        Amount(liquidity.raw * reserve_token // total_supply, token_decimals),
        Amount(liquidity.raw * reserve_native // total_supply, NATIVE_DECIMALS),
    )


# ----------------------------------------------------------------------
# Swaps
# ----------------------------------------------------------------------
async def quote_min_output(
    client: DexClient,
    amount_in: Amount,
    route: Sequence[str],
    *,
    output_decimals: int,
    slippage_bps: int | None = None,
) -> tuple[Amount, Amount]:
    """Return ``(quoted_output, minimum_output)`` from the router's live price."""

    amounts = await client.router().read("getAmountsOut", [amount_in, list(route)])
    if not amounts or len(amounts) != len(route):
        raise ValidationError("Router returned an unexpected quote", field="route", value=amounts)
    quoted = Amount(int(amounts[-1]), output_decimals)
    minimum = quoted.less_slippage(_slippage(client, slippage_bps))
    _require_positive(minimum, "min_output")
    return quoted, minimum


async def swap_tokens_for_native(
    client: DexClient,
    *,
    token_in: str,
    amount_in: Amount,
    route: Sequence[str],
    recipient: str,
    deadline: int,
    min_output: Amount | None = None,
    slippage_bps: int | None = None,
    timeout: float | None = None,
) -> OperationResult:
    token_in = checksum(token_in, "token_in")
    recipient = checksum(recipient, "recipient")
    router = client.router()
    _require_deadline(deadline)
    _require_positive(amount_in, "amount_in")

    wrapped = await client.wrapped_native()
    path = _validate_route(route, start=token_in, end=wrapped)

    balance, allowance = await asyncio.gather(
        client.token_balance(token_in),
        client.allowance(token_in, router.address),
    )
    _require_funds(balance, amount_in, "amount_in")
    _require_allowance(allowance, amount_in, router.address)

    quoted, minimum = await quote_min_output(
        client, amount_in, path, output_decimals=NATIVE_DECIMALS, slippage_bps=slippage_bps
    )
    if min_output is not None:
        _require_positive(min_output, "min_output")
        minimum = min_output
    _require_units(minimum, NATIVE_DECIMALS, "min_output")

    intent = CallIntent(
        binding=router,
        function="swapExactTokensForAVAX",
        args=(amount_in, minimum, path, recipient, deadline),
        action="swap_tokens_for_native",
    )
    context: dict[str, Any] = {
        "token_in": token_in,
        "amount_in": amount_in.raw,
        "route": path,
        "quoted_output": quoted.raw,
        "min_output": minimum.raw,
        "recipient": recipient,
        "deadline": deadline,
    }
    result = await _run(client, "swap_tokens_for_native", intent, context, timeout)
    if result.success:
        result.output = {
            "amount_out": _sum_event_amounts(result.events, "Withdrawal", wrapped, "wad")
        }
    return result


async def swap_native_for_tokens(
    client: DexClient,
    *,
    amount_in: Amount,
    route: Sequence[str],
    recipient: str,
    deadline: int,
    min_output: Amount | None = None,
    slippage_bps: int | None = None,
    timeout: float | None = None,
) -> OperationResult:
    recipient = checksum(recipient, "recipient")
    router = client.router()
    _require_deadline(deadline)
    _require_positive(amount_in, "amount_in")
    _require_units(amount_in, NATIVE_DECIMALS, "amount_in")

    wrapped = await client.wrapped_native()
    if not route:
        raise InvalidArguments("Route cannot be empty", field="route", value=route)
    token_out = checksum(route[-1], "route")
    path = _validate_route(route, start=wrapped, end=token_out)

    native_balance, out_decimals = await asyncio.gather(
        client.native_balance(), client.decimals(token_out)
    )
    _require_funds(native_balance, amount_in, "amount_in")

    quoted, minimum = await quote_min_output(
        client, amount_in, path, output_decimals=out_decimals, slippage_bps=slippage_bps
    )
    if min_output is not None:
        _require_positive(min_output, "min_output")
        minimum = min_output
    _require_units(minimum, out_decimals, "min_output")

    intent = CallIntent(
        binding=router,
        function="swapExactAVAXForTokens",
        args=(minimum, path, recipient, deadline),
        value=amount_in.raw,
        action="swap_native_for_tokens",
    )
    context: dict[str, Any] = {
        "amount_in": amount_in.raw,
        "route": path,
        "quoted_output": quoted.raw,
        "min_output": minimum.raw,
        "recipient": recipient,
        "deadline": deadline,
    }
    result = await _run(client, "swap_native_for_tokens", intent, context, timeout)
    if result.success:
        result.output = {
            "amount_out": _sum_event_amounts(
                result.events, "Transfer", token_out, "value", recipient=recipient
            )
        }
    return result


# ----------------------------------------------------------------------
# Bridge
# ----------------------------------------------------------------------
async def bridge_transfer(
    client: DexClient,
    *,
    token: str,
    amount: Amount,
    destination_chain_id: int,
    recipient: str,
    timeout: float | None = None,
) -> OperationResult:
    """Send ``amount`` of ``token`` through the bridge.

    ``bridgeTo`` carries no destination fields, so the destination chain must
    match the bridge's configured route and the recipient must be the signer.
    """

    token = checksum(token, "token")
    recipient = checksum(recipient, "recipient")
    bridge = client.bridge()
    _require_positive(amount, "amount")

    configured_chain = client.config.bridge_destination_chain_id
    if configured_chain is None:
        raise ConfigurationError(
            "BRIDGE_DESTINATION_CHAIN_ID is not configured", setting="BRIDGE_DESTINATION_CHAIN_ID"
        )
    if destination_chain_id != configured_chain:
        raise InvalidArguments(
            f"Bridge at {bridge.address} only delivers to chain {configured_chain}",
            field="destination_chain_id",
            value=destination_chain_id,
        )
    if recipient != client.address:
        raise InvalidArguments(
            "Bridge credits the sending address; recipient must be the signer",
            field="recipient",
            value=recipient,
            details={"signer": client.address},
        )

    balance, allowance = await asyncio.gather(
        client.token_balance(token),
        client.allowance(token, bridge.address),
    )
    _require_funds(balance, amount, "amount")
    _require_allowance(allowance, amount, bridge.address)

    intent = CallIntent(
        binding=bridge,
        function="bridgeTo",
        args=(token, amount),
        action="bridge_transfer",
    )
    context = {
        "token": token,
        "amount": amount.raw,
        "destination_chain_id": destination_chain_id,
        "recipient": recipient,
    }
    return await _run(client, "bridge_transfer", intent, context, timeout)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
async def _run(
    client: DexClient,
    operation: str,
    intent: CallIntent,
    context: dict[str, Any],
    timeout: float | None,
) -> OperationResult:
    record = await client.engine.execute(intent, timeout=timeout)
    result = OperationResult.from_record(operation, record, context)
    if result.success:
        logger.info("%s confirmed (tx=%s)", operation, result.transaction_hash)
    else:
        logger.error(
            "%s ended %s (tx=%s, reason=%s)",
            operation,
            result.state.value,
            result.transaction_hash,
            result.revert_reason,
        )
    return result


def _slippage(client: DexClient, override: int | None) -> int:
    return client.config.slippage_bps if override is None else override


def _validate_route(route: Sequence[str], *, start: str, end: str) -> list[str]:
    if len(route) < 2:
        raise InvalidArguments("Route needs at least two tokens", field="route", value=list(route))
    path = [checksum(hop, "route") for hop in route]
    if path[0] != start or path[-1] != end:
        raise InvalidArguments(
            "Invalid route endpoints",
            field="route",
            value=path,
            details={"expected_start": start, "expected_end": end},
        )
    return path


def _require_deadline(deadline: int) -> None:
    if not isinstance(deadline, int) or isinstance(deadline, bool) or deadline <= 0:
        raise InvalidArguments(
            "Deadline must be a positive unix timestamp", field="deadline", value=deadline
        )


def _require_positive(amount: Amount, field: str) -> None:
    if not isinstance(amount, Amount):
        raise InvalidArguments(f"{field} must be an Amount", field=field, value=amount)
    if amount.is_zero():
        raise InvalidArguments(f"{field} must be greater than zero", field=field, value=amount.raw)


def _require_units(amount: Amount, decimals: int, field: str) -> None:
    if amount.decimals != decimals:
        raise IncompatibleUnits(
            f"{field} must use {decimals} decimals",
            field=field,
            value=amount.decimals,
        )


def _require_funds(balance: Amount, needed: Amount, field: str) -> None:
    if balance < needed:
        raise InsufficientFunds(
            f"Insufficient balance for {field}: have {balance}, need {needed}",
            field=field,
            value=needed.raw,
            details={"balance": balance.raw},
        )


def _require_allowance(allowance: Amount, needed: Amount, spender: str) -> None:
    if allowance < needed:
        raise InvalidArguments(
            f"Allowance for {spender} is {allowance}, need {needed}; approve it first",
            field="allowance",
            value=allowance.raw,
            details={"spender": spender, "required": needed.raw},
        )


def _sum_event_amounts(
    events: Sequence[dict[str, Any]],
    name: str,
    address: str | None,
    key: str,
    *,
    sender: str | None = None,
    recipient: str | None = None,
) -> int | None:
    """Total ``key`` over matching receipt events; ``None`` when nothing matched."""

    total = None
    for event in events:
        if event.get("event") != name or event.get("address") is None:
            continue
        if address is not None and checksum(event["address"], "address") != address:
            continue
        args = event.get("args", {})
        if sender is not None and args.get("from") != sender:
            continue
        if recipient is not None and args.get("to") != recipient:
            continue
        total = (total or 0) + int(args.get(key, 0))
    return total
