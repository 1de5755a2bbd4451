"""Declared ABI fragments for the contracts dexflow talks to."""

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[tuple[str, str]],
    mutability: str,
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
    }


def _event(name: str, inputs: list[tuple[str, str, bool]]) -> dict[str, Any]:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": i} for n, t, i in inputs],
    }


ERC20_abi: list[dict[str, Any]] = [
    _fn("balanceOf", [("account", "address")], [("", "uint256")], "view"),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")], "view"),
    _fn("decimals", [], [("", "uint8")], "view"),
    _fn("symbol", [], [("", "string")], "view"),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")], "nonpayable"),
    _event("Transfer", [("from", "address", True), ("to", "address", True), ("value", "uint256", False)]),
    _event(
        "Approval",
        [("owner", "address", True), ("spender", "address", True), ("value", "uint256", False)],
    ),
]

Pair_abi: list[dict[str, Any]] = ERC20_abi + [
    _fn("token0", [], [("", "address")], "view"),
    _fn("token1", [], [("", "address")], "view"),
    _fn("totalSupply", [], [("", "uint256")], "view"),
    _fn(
        "getReserves",
        [],
        [("reserve0", "uint112"), ("reserve1", "uint112"), ("blockTimestampLast", "uint32")],
        "view",
    ),
    _event("Sync", [("reserve0", "uint112", False), ("reserve1", "uint112", False)]),
    _event(
        "Swap",
        [
            ("sender", "address", True),
            ("amount0In", "uint256", False),
            ("amount1In", "uint256", False),
            ("amount0Out", "uint256", False),
            ("amount1Out", "uint256", False),
            ("to", "address", True),
        ],
    ),
    _event(
        "Mint", [("sender", "address", True), ("amount0", "uint256", False), ("amount1", "uint256", False)]
    ),
    _event(
        "Burn",
        [
            ("sender", "address", True),
            ("amount0", "uint256", False),
            ("amount1", "uint256", False),
            ("to", "address", True),
        ],
    ),
]

WrappedNative_abi: list[dict[str, Any]] = [
    _event("Deposit", [("dst", "address", True), ("wad", "uint256", False)]),
    _event("Withdrawal", [("src", "address", True), ("wad", "uint256", False)]),
]

Router_abi: list[dict[str, Any]] = [
    _fn("WAVAX", [], [("", "address")], "view"),
    _fn(
        "getAmountsOut",
        [("amountIn", "uint256"), ("path", "address[]")],
        [("amounts", "uint256[]")],
        "view",
    ),
    _fn(
        "addLiquidityAVAX",
        [
            ("token", "address"),
            ("amountTokenDesired", "uint256"),
            ("amountTokenMin", "uint256"),
            ("amountAVAXMin", "uint256"),
            ("to", "address"),
            ("deadline", "uint256"),
        ],
        [("amountToken", "uint256"), ("amountAVAX", "uint256"), ("liquidity", "uint256")],
        "payable",
    ),
    _fn(
        "removeLiquidityAVAX",
        [
            ("token", "address"),
            ("liquidity", "uint256"),
            ("amountTokenMin", "uint256"),
            ("amountAVAXMin", "uint256"),
            ("to", "address"),
            ("deadline", "uint256"),
        ],
        [("amountToken", "uint256"), ("amountAVAX", "uint256")],
        "nonpayable",
    ),
    _fn(
        "swapExactAVAXForTokens",
        [("amountOutMin", "uint256"), ("path", "address[]"), ("to", "address"), ("deadline", "uint256")],
        [("amounts", "uint256[]")],
        "payable",
    ),
    _fn(
        "swapExactTokensForAVAX",
        [
            ("amountIn", "uint256"),
            ("amountOutMin", "uint256"),
            ("path", "address[]"),
            ("to", "address"),
            ("deadline", "uint256"),
        ],
        [("amounts", "uint256[]")],
        "nonpayable",
    ),
]

Bridge_abi: list[dict[str, Any]] = [
    _fn("bridgeTo", [("token", "address"), ("amount", "uint256")], [], "nonpayable"),
]
