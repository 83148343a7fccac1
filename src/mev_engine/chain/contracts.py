"""
Contract call encoding for routers, lending pools, price feeds and the executor.

Selectors are derived from canonical signatures; arguments and return data go
through eth_abi so every amount stays an exact integer.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3


def function_selector(signature: str) -> bytes:
    """First four bytes of the keccak hash of a function signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def encode_call(selector: bytes, arg_types: Sequence[str], args: Sequence[Any]) -> bytes:
    """Selector followed by ABI encoded arguments."""
    return selector + encode(list(arg_types), list(args))


# Uniswap V2 style routers
GET_AMOUNTS_OUT = "getAmountsOut(uint256,address[])"
SWAP_EXACT_TOKENS_FOR_TOKENS = "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"
SWAP_EXACT_ETH_FOR_TOKENS = "swapExactETHForTokens(uint256,address[],address,uint256)"

# Aave V3 pool
FLASH_LOAN_SIMPLE = "flashLoanSimple(address,address,uint256,bytes,uint16)"
GET_USER_ACCOUNT_DATA = "getUserAccountData(address)"
LIQUIDATION_CALL = "liquidationCall(address,address,address,uint256,bool)"

# ERC20 and Chainlink
APPROVE = "approve(address,uint256)"
LATEST_ANSWER = "latestAnswer()"

# Executor contract: runs every step in one transaction and reverts as a whole
EXECUTE_PLAN = "executePlan((address,bytes4,bytes,uint256,bool)[],uint256)"

SWAP_TOKENS_TYPES = ("uint256", "uint256", "address[]", "address", "uint256")
SWAP_ETH_TYPES = ("uint256", "address[]", "address", "uint256")
FLASH_LOAN_TYPES = ("address", "address", "uint256", "bytes", "uint16")
LIQUIDATION_TYPES = ("address", "address", "address", "uint256", "bool")
APPROVE_TYPES = ("address", "uint256")

SELECTORS: Dict[str, bytes] = {
    name: function_selector(name)
    for name in (
        GET_AMOUNTS_OUT,
        SWAP_EXACT_TOKENS_FOR_TOKENS,
        SWAP_EXACT_ETH_FOR_TOKENS,
        FLASH_LOAN_SIMPLE,
        GET_USER_ACCOUNT_DATA,
        LIQUIDATION_CALL,
        APPROVE,
        LATEST_ANSWER,
        EXECUTE_PLAN,
    )
}

# Health factor below 1.0 (18 decimals) makes a position liquidatable
HEALTH_FACTOR_LIQUIDATION_THRESHOLD = 10 ** 18

NATIVE_ETH = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
WETH = Web3.to_checksum_address("0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2")

# Chainlink USD price feeds on Ethereum mainnet
CHAINLINK_FEEDS: Dict[str, str] = {
    Web3.to_checksum_address(asset): Web3.to_checksum_address(feed)
    for asset, feed in (
        (NATIVE_ETH, "0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419"),
        (WETH, "0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419"),
        ("0x6b175474e89094c44da98b954eedeac495271d0f", "0xaed0c38402a5d19df6e4c03f4e2dced6e29c1ee9"),
        ("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", "0x8fffffd4afb6115b954bd326cbe7b4ba576818f6"),
    )
}


def encode_get_amounts_out(amount_in: int, path: Sequence[str]) -> bytes:
    return encode_call(SELECTORS[GET_AMOUNTS_OUT], ("uint256", "address[]"), (amount_in, list(path)))


def decode_amounts_out(data: bytes) -> List[int]:
    (amounts,) = decode(["uint256[]"], data)
    return list(amounts)


def encode_get_user_account_data(user: str) -> bytes:
    return encode_call(SELECTORS[GET_USER_ACCOUNT_DATA], ("address",), (user,))


@dataclass(frozen=True)
class UserAccountData:
    """Aave V3 getUserAccountData result, base currency amounts in 8 decimals."""
    total_collateral_base: int
    total_debt_base: int
    available_borrows_base: int
    current_liquidation_threshold: int
    ltv: int
    health_factor: int

    @property
    def is_liquidatable(self) -> bool:
        return self.total_debt_base > 0 and self.health_factor < HEALTH_FACTOR_LIQUIDATION_THRESHOLD


def decode_user_account_data(data: bytes) -> UserAccountData:
    values = decode(["uint256"] * 6, data)
    return UserAccountData(*values)


def encode_latest_answer() -> bytes:
    return SELECTORS[LATEST_ANSWER]


def decode_latest_answer(data: bytes) -> int:
    (answer,) = decode(["int256"], data)
    return answer


@dataclass(frozen=True)
class DecodedSwap:
    """Arguments of a router swap found in pending transaction input."""
    method: str
    amount_in: int
    amount_out_min: int
    path: Tuple[str, ...]
    recipient: str
    deadline: int


def decode_swap_input(data: bytes, value: int = 0) -> Optional[DecodedSwap]:
    """Decode router swap calldata, or None for any other call."""
    if len(data) < 4:
        return None

    selector, payload = bytes(data[:4]), bytes(data[4:])
    if selector == SELECTORS[SWAP_EXACT_TOKENS_FOR_TOKENS]:
        amount_in, amount_out_min, path, to, deadline = decode(list(SWAP_TOKENS_TYPES), payload)
        return DecodedSwap(
            method=SWAP_EXACT_TOKENS_FOR_TOKENS,
            amount_in=amount_in,
            amount_out_min=amount_out_min,
            path=tuple(Web3.to_checksum_address(p) for p in path),
            recipient=Web3.to_checksum_address(to),
            deadline=deadline,
        )
    if selector == SELECTORS[SWAP_EXACT_ETH_FOR_TOKENS]:
        amount_out_min, path, to, deadline = decode(list(SWAP_ETH_TYPES), payload)
        return DecodedSwap(
            method=SWAP_EXACT_ETH_FOR_TOKENS,
            amount_in=value,
            amount_out_min=amount_out_min,
            path=tuple(Web3.to_checksum_address(p) for p in path),
            recipient=Web3.to_checksum_address(to),
            deadline=deadline,
        )
    return None
