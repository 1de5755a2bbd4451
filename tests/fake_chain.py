"""In-memory stand-in for an RPC endpoint backed by a tiny DEX world."""

from __future__ import annotations

import copy
import math
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

import rlp
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

from dexflow.abi import Bridge_abi, ERC20_abi, Pair_abi, Router_abi
from dexflow.binding import FunctionSignature
from dexflow.exceptions import ContractCallReverted, NetworkError

PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SENDER = Web3.to_checksum_address("0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266")
OTHER = Web3.to_checksum_address("0x" + "42" * 20)
TOKEN = Web3.to_checksum_address("0x" + "aa" * 20)
WAVAX = Web3.to_checksum_address("0x" + "77" * 20)
PAIR = Web3.to_checksum_address("0x" + "bb" * 20)
ROUTER = Web3.to_checksum_address("0x" + "cc" * 20)
BRIDGE = Web3.to_checksum_address("0x" + "dd" * 20)
CHAIN_ID = 43113
GAS_PRICE = 25 * 10**9
ETHER = 10**18
START_TIME = 1_700_000_000


def _topic_address(address: str) -> bytes:
    return abi_encode(["address"], [address])


def _event_topic(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature))


class Execution:
    def __init__(self, sender: str, value: int, contract: str) -> None:
        self.sender = sender
        self.value = value
        self.contract = contract
        self.logs: list[dict[str, Any]] = []

    def emit(self, address: str, signature: str, indexed: list[str], types: list[str], values: list[Any]):
        self.logs.append(
            {
                "address": address,
                "topics": [_event_topic(signature)] + [_topic_address(a) for a in indexed],
                "data": abi_encode(types, values),
            }
        )


class FakeContract:
    abi: list[dict[str, Any]] = []

    def __init__(self, address: str) -> None:
        self.address = address
        self._by_selector = {
            fn.selector: fn
            for fn in (FunctionSignature.from_abi(e) for e in self.abi if e["type"] == "function")
        }

    def dispatch(self, world: World, ex: Execution, data: bytes) -> bytes:
        fn = self._by_selector.get(bytes(data[:4]))
        if fn is None:
            raise ContractCallReverted(None)
        args = abi_decode(list(fn.inputs), bytes(data[4:])) if fn.inputs else ()
        result = getattr(self, fn.name)(world, ex, *args)
        if not fn.outputs:
            return b""
        if len(fn.outputs) == 1:
            result = (result,)
        return abi_encode(list(fn.outputs), list(result))


class FakeToken(FakeContract):
    abi = ERC20_abi

    def __init__(self, address: str, decimals: int = 18) -> None:
        super().__init__(address)
        self.decimals_value = decimals
        self.balances: dict[str, int] = defaultdict(int)
        self.allowances: dict[tuple[str, str], int] = defaultdict(int)

    def balanceOf(self, world, ex, account):
        return self.balances[Web3.to_checksum_address(account)]

    def allowance(self, world, ex, owner, spender):
        return self.allowances[(Web3.to_checksum_address(owner), Web3.to_checksum_address(spender))]

    def decimals(self, world, ex):
        return self.decimals_value

    def symbol(self, world, ex):
        return "TKN"

    def approve(self, world, ex, spender, amount):
        spender = Web3.to_checksum_address(spender)
        self.allowances[(ex.sender, spender)] = amount
        ex.emit(
            self.address,
            "Approval(address,address,uint256)",
            [ex.sender, spender],
            ["uint256"],
            [amount],
        )
        return True

    # Internal helpers used by other fake contracts.
    def transfer_from(self, ex: Execution, owner: str, spender: str, to: str, amount: int) -> None:
        if self.allowances[(owner, spender)] < amount or self.balances[owner] < amount:
            raise ContractCallReverted("TransferHelper: TRANSFER_FROM_FAILED")
        self.allowances[(owner, spender)] -= amount
        self.move(ex, owner, to, amount)

    def move(self, ex: Execution, owner: str, to: str, amount: int) -> None:
        if self.balances[owner] < amount:
            raise ContractCallReverted("TRANSFER_FAILED")
        self.balances[owner] -= amount
        self.balances[to] += amount
        ex.emit(self.address, "Transfer(address,address,uint256)", [owner, to], ["uint256"], [amount])


class FakePair(FakeToken):
    abi = Pair_abi

    def __init__(self, address: str, token0: str, token1: str) -> None:
        super().__init__(address, 18)
        self.token0_address = token0
        self.token1_address = token1
        self.reserves = {token0: 0, token1: 0}
        self.total_supply = 0

    def token0(self, world, ex):
        return self.token0_address

    def token1(self, world, ex):
        return self.token1_address

    def totalSupply(self, world, ex):
        return self.total_supply

    def getReserves(self, world, ex):
        return self.reserves[self.token0_address], self.reserves[self.token1_address], 0

    def mint_lp(self, ex: Execution, to: str, amount: int) -> None:
        self.total_supply += amount
        self.balances[to] += amount
        zero = Web3.to_checksum_address("0x" + "00" * 20)
        ex.emit(self.address, "Transfer(address,address,uint256)", [zero, to], ["uint256"], [amount])


class FakeRouter(FakeContract):
    abi = Router_abi

    def __init__(self, address: str, pair: str, token: str, wavax: str) -> None:
        super().__init__(address)
        self.pair_address = pair
        self.token_address = token
        self.wavax_address = wavax

    def WAVAX(self, world, ex):
        return self.wavax_address

    def _pair(self, world: World) -> FakePair:
        return world.contracts[self.pair_address]

    def _ensure(self, world: World, deadline: int) -> None:
        if deadline < world.timestamp:
            raise ContractCallReverted("DEXV2Router02::ensure: EXPIRED")

    def _wrap(self, ex: Execution, amount: int) -> None:
        ex.emit(self.wavax_address, "Deposit(address,uint256)", [self.address], ["uint256"], [amount])

    @staticmethod
    def amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
        amount_in_with_fee = amount_in * 997
        return (amount_in_with_fee * reserve_out) // (reserve_in * 1000 + amount_in_with_fee)

    def getAmountsOut(self, world, ex, amount_in, path):
        if len(path) != 2:
            raise ContractCallReverted("DEXV2Library: INVALID_PATH")
        pair = self._pair(world)
        src, dst = (Web3.to_checksum_address(p) for p in path)
        if {src, dst} != {self.token_address, self.wavax_address}:
            raise ContractCallReverted("DEXV2Router02::_swap: PAIR_NOT_FOUND")
        return [amount_in, self.amount_out(amount_in, pair.reserves[src], pair.reserves[dst])]

    def swapExactTokensForAVAX(self, world, ex, amount_in, amount_out_min, path, to, deadline):
        self._ensure(world, deadline)
        if Web3.to_checksum_address(path[-1]) != self.wavax_address:
            raise ContractCallReverted("DEXV2Router02::swapExactTokensForNative: INVALID_PATH")
        amounts = self.getAmountsOut(world, ex, amount_in, path)
        if amounts[-1] < amount_out_min:
            raise ContractCallReverted(
                "DEXV2Router02::swapExactTokensForNative: INSUFFICIENT_OUTPUT_AMOUNT"
            )
        pair = self._pair(world)
        token: FakeToken = world.contracts[self.token_address]
        token.transfer_from(ex, ex.sender, self.address, pair.address, amount_in)
        pair.reserves[self.token_address] += amount_in
        pair.reserves[self.wavax_address] -= amounts[-1]
        ex.emit(self.wavax_address, "Withdrawal(address,uint256)", [self.address], ["uint256"], [amounts[-1]])
        world.native[Web3.to_checksum_address(to)] += amounts[-1]
        return amounts

    def swapExactAVAXForTokens(self, world, ex, amount_out_min, path, to, deadline):
        self._ensure(world, deadline)
        if Web3.to_checksum_address(path[0]) != self.wavax_address:
            raise ContractCallReverted("DEXV2Router02::swapExactNativeForTokens: INVALID_PATH")
        amounts = self.getAmountsOut(world, ex, ex.value, path)
        if amounts[-1] < amount_out_min:
            raise ContractCallReverted(
                "DEXV2Router02::swapExactNativeForTokens: INSUFFICIENT_OUTPUT_AMOUNT"
            )
        self._wrap(ex, ex.value)
        pair = self._pair(world)
        token: FakeToken = world.contracts[self.token_address]
        pair.reserves[self.wavax_address] += ex.value
        pair.reserves[self.token_address] -= amounts[-1]
        token.move(ex, pair.address, Web3.to_checksum_address(to), amounts[-1])
        return amounts

    def addLiquidityAVAX(self, world, ex, token, desired, token_min, native_min, to, deadline):
        self._ensure(world, deadline)
        pair = self._pair(world)
        reserve_token = pair.reserves[self.token_address]
        reserve_native = pair.reserves[self.wavax_address]
        optimal_native = desired * reserve_native // reserve_token
        if optimal_native <= ex.value:
            amount_token, amount_native = desired, optimal_native
        else:
            amount_token, amount_native = ex.value * reserve_token // reserve_native, ex.value
        if amount_token < token_min:
            raise ContractCallReverted("DEXV2Router02::_addLiquidity: INSUFFICIENT_A_AMOUNT")
        if amount_native < native_min:
            raise ContractCallReverted("DEXV2Router02::_addLiquidity: INSUFFICIENT_B_AMOUNT")
        erc20: FakeToken = world.contracts[self.token_address]
        self._wrap(ex, amount_native)
        erc20.transfer_from(ex, ex.sender, self.address, pair.address, amount_token)
        liquidity = min(
            amount_token * pair.total_supply // reserve_token,
            amount_native * pair.total_supply // reserve_native,
        )
        pair.reserves[self.token_address] += amount_token
        pair.reserves[self.wavax_address] += amount_native
        pair.mint_lp(ex, Web3.to_checksum_address(to), liquidity)
        world.native[ex.sender] += ex.value - amount_native
        return amount_token, amount_native, liquidity

    def removeLiquidityAVAX(self, world, ex, token, liquidity, token_min, native_min, to, deadline):
        self._ensure(world, deadline)
        pair = self._pair(world)
        amount_token = liquidity * pair.reserves[self.token_address] // pair.total_supply
        amount_native = liquidity * pair.reserves[self.wavax_address] // pair.total_supply
        if amount_token < token_min:
            raise ContractCallReverted("DEXV2Router02::removeLiquidity: INSUFFICIENT_A_AMOUNT")
        if amount_native < native_min:
            raise ContractCallReverted("DEXV2Router02::removeLiquidity: INSUFFICIENT_B_AMOUNT")
        pair.transfer_from(ex, ex.sender, self.address, pair.address, liquidity)
        pair.balances[pair.address] -= liquidity
        pair.total_supply -= liquidity
        pair.reserves[self.token_address] -= amount_token
        pair.reserves[self.wavax_address] -= amount_native
        erc20: FakeToken = world.contracts[self.token_address]
        erc20.move(ex, pair.address, Web3.to_checksum_address(to), amount_token)
        ex.emit(self.wavax_address, "Withdrawal(address,uint256)", [self.address], ["uint256"], [amount_native])
        world.native[Web3.to_checksum_address(to)] += amount_native
        return amount_token, amount_native


class FakeBridge(FakeContract):
    abi = Bridge_abi

    def bridgeTo(self, world, ex, token, amount):
        erc20: FakeToken = world.contracts[Web3.to_checksum_address(token)]
        erc20.transfer_from(ex, ex.sender, self.address, self.address, amount)
        return ()


class World:
    def __init__(self) -> None:
        self.timestamp = START_TIME
        self.native: dict[str, int] = defaultdict(int)
        self.contracts: dict[str, FakeContract] = {}

    def execute(self, sender: str, to: str, value: int, data: bytes) -> tuple[bytes, list[dict]]:
        if self.native[sender] < value:
            raise ContractCallReverted("insufficient funds for transfer")
        contract = self.contracts.get(to)
        if contract is None:
            raise ContractCallReverted(None)
        self.native[sender] -= value
        ex = Execution(sender, value, to)
        output = contract.dispatch(self, ex, data)
        return output, ex.logs


def default_world() -> World:
    world = World()
    token = FakeToken(TOKEN, 18)
    pair = FakePair(PAIR, TOKEN, WAVAX)
    world.contracts[TOKEN] = token
    world.contracts[PAIR] = pair
    world.contracts[ROUTER] = FakeRouter(ROUTER, PAIR, TOKEN, WAVAX)
    world.contracts[BRIDGE] = FakeBridge(BRIDGE)

    pair.reserves = {TOKEN: 1_000 * ETHER, WAVAX: 1_000 * ETHER}
    pair.total_supply = 1_000 * ETHER
    pair.balances[OTHER] = 990 * ETHER
    pair.balances[SENDER] = 10 * ETHER
    token.balances[PAIR] = 1_000 * ETHER
    token.balances[SENDER] = 100 * ETHER
    world.native[SENDER] = 100 * ETHER
    return world


class FakeChain:
    """Implements the subset of :class:`dexflow.connections.Endpoint` the engine uses.

    Each ``block_number()`` call mines a block while ``auto_mine`` is on, so
    confirmation depth grows as the engine polls.
    """

    def __init__(self, world: World | None = None) -> None:
        self.world = world or default_world()
        self.block = 100
        self.auto_mine = True
        self.drop_submissions = False
        self.reject_reason: str | None = None
        self.confirmed_nonce: dict[str, int] = defaultdict(int)
        self.pending: dict[str, dict[str, Any]] = {}
        self.mined: dict[str, dict[str, Any]] = {}
        self.receipts: dict[str, dict[str, Any]] = {}
        self.sent: list[dict[str, Any]] = []
        self.call_count = 0
        self.before_mine: list = []
        self.connected = False

    # Endpoint lifecycle
    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    # Chain context
    async def chain_id(self) -> int:
        return CHAIN_ID

    async def block_number(self) -> int:
        if self.auto_mine:
            self.mine()
        return self.block

    async def gas_price(self) -> int:
        return GAS_PRICE

    async def get_balance(self, address: str) -> int:
        return self.world.native[address]

    async def get_transaction_count(self, address: str, block_identifier: Any = "pending") -> int:
        mined = self.confirmed_nonce[address]
        if block_identifier == "pending":
            return mined + sum(1 for tx in self.pending.values() if tx["from"] == address)
        return mined

    # Calls
    async def call(self, transaction: Mapping[str, Any], block_identifier: Any = "latest") -> bytes:
        self.call_count += 1
        scratch = copy.deepcopy(self.world)
        sender = Web3.to_checksum_address(transaction.get("from") or OTHER)
        output, _ = scratch.execute(
            sender,
            Web3.to_checksum_address(transaction["to"]),
            int(transaction.get("value", 0)),
            bytes(HexBytes(transaction.get("data", b""))),
        )
        return output

    async def estimate_gas(self, transaction: Mapping[str, Any]) -> int:
        await self.call(transaction)
        return 150_000

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        raw = bytes(raw_transaction)
        if self.reject_reason is not None:
            raise NetworkError(
                "RPC request eth_sendRawTransaction failed",
                details={"error": self.reject_reason},
            )
        fields = rlp.decode(raw)
        sender = Account.recover_transaction(raw)
        nonce = int.from_bytes(fields[0], "big")
        expected = await self.get_transaction_count(sender, "pending")
        if nonce != expected:
            raise NetworkError(
                "RPC request eth_sendRawTransaction failed",
                details={"error": f"nonce too low: have {nonce}, want {expected}"},
            )
        tx_hash = HexBytes(Web3.keccak(raw)).to_0x_hex()
        tx = {
            "hash": tx_hash,
            "from": sender,
            "nonce": nonce,
            "gasPrice": int.from_bytes(fields[1], "big"),
            "gas": int.from_bytes(fields[2], "big"),
            "to": Web3.to_checksum_address(fields[3]),
            "value": int.from_bytes(fields[4], "big"),
            "input": bytes(fields[5]),
            "blockNumber": None,
        }
        self.sent.append(tx)
        if not self.drop_submissions:
            self.pending[tx_hash] = tx
        return tx_hash

    async def get_transaction(self, tx_hash: str) -> Mapping[str, Any] | None:
        return self.pending.get(tx_hash) or self.mined.get(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> Mapping[str, Any] | None:
        return self.receipts.get(tx_hash)

    # Test controls
    def mine(self) -> None:
        for hook in list(self.before_mine):
            hook(self)
        self.before_mine.clear()
        self.block += 1
        self.world.timestamp += 2
        for tx_hash, tx in sorted(self.pending.items(), key=lambda item: item[1]["nonce"]):
            self._include(tx_hash, tx)
        self.pending.clear()

    def _include(self, tx_hash: str, tx: dict[str, Any]) -> None:
        sender = tx["from"]
        self.confirmed_nonce[sender] = max(self.confirmed_nonce[sender], tx["nonce"] + 1)
        scratch = copy.deepcopy(self.world)
        try:
            _, logs = scratch.execute(sender, tx["to"], tx["value"], tx["input"])
        except ContractCallReverted:
            status, logs = 0, []
        else:
            status = 1
            self.world = scratch
        fee = math.ceil(tx["gas"] * tx["gasPrice"] / 2)
        self.world.native[sender] -= min(self.world.native[sender], fee)
        tx = dict(tx, blockNumber=self.block)
        block_hash = HexBytes(self.block.to_bytes(32, "big"))
        self.mined[tx_hash] = tx
        self.receipts[tx_hash] = {
            "transactionHash": HexBytes(tx_hash),
            "blockNumber": self.block,
            "status": status,
            "gasUsed": tx["gas"] // 2,
            "logs": [
                dict(
                    log,
                    logIndex=index,
                    transactionIndex=0,
                    transactionHash=HexBytes(tx_hash),
                    blockHash=block_hash,
                    blockNumber=self.block,
                )
                for index, log in enumerate(logs)
            ],
        }
