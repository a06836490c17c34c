"""
Call-data decoder.

Matches the 4-byte selector of a transaction's call data against an ordered
registry of well-known interfaces and decodes the arguments into named
parameters. Pure and synchronous: no I/O, never raises.
"""

from decimal import Decimal, localcontext
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from .models import DecodedTransaction

MAX_UINT256 = 2 ** 256 - 1
# well below 2**256 so "near-max" approvals are caught too
UNLIMITED_APPROVAL_THRESHOLD = 10 ** 30
UNLIMITED_SENTINEL = "unlimited"
NATIVE_DATA = {"", "0x", "0x0"}

ParamType = Union[str, Sequence[Tuple[str, Any]]]


class AbiFunction:
    """One function signature: name plus ordered (param_name, type) inputs.

    A type is either an ABI type string or a sequence of (name, type) pairs
    describing a struct.
    """

    def __init__(self, name: str, *inputs: Tuple[str, ParamType]):
        self.name = name
        self.inputs = inputs
        self.types = [_canonical_type(t) for _, t in inputs]
        signature = f"{name}({','.join(self.types)})"
        self.selector = bytes(Web3.keccak(text=signature)[:4])

    def __repr__(self):
        return f"AbiFunction({self.name}, 0x{self.selector.hex()})"


def _canonical_type(t: ParamType) -> str:
    if isinstance(t, str):
        return t
    return "(" + ",".join(_canonical_type(ct) for _, ct in t) + ")"


ERC20_FUNCTIONS = [
    AbiFunction("transfer", ("to", "address"), ("amount", "uint256")),
    AbiFunction("approve", ("spender", "address"), ("amount", "uint256")),
    AbiFunction("transferFrom", ("from", "address"), ("to", "address"), ("amount", "uint256")),
    AbiFunction("balanceOf", ("account", "address")),
    AbiFunction("allowance", ("owner", "address"), ("spender", "address")),
]

UNISWAP_V2_ROUTER_FUNCTIONS = [
    AbiFunction("swapExactTokensForTokens", ("amountIn", "uint256"), ("amountOutMin", "uint256"),
                ("path", "address[]"), ("to", "address"), ("deadline", "uint256")),
    AbiFunction("swapTokensForExactTokens", ("amountOut", "uint256"), ("amountInMax", "uint256"),
                ("path", "address[]"), ("to", "address"), ("deadline", "uint256")),
    AbiFunction("swapExactETHForTokens", ("amountOutMin", "uint256"), ("path", "address[]"),
                ("to", "address"), ("deadline", "uint256")),
    AbiFunction("swapTokensForExactETH", ("amountOut", "uint256"), ("amountInMax", "uint256"),
                ("path", "address[]"), ("to", "address"), ("deadline", "uint256")),
    AbiFunction("swapExactTokensForETH", ("amountIn", "uint256"), ("amountOutMin", "uint256"),
                ("path", "address[]"), ("to", "address"), ("deadline", "uint256")),
    AbiFunction("swapETHForExactTokens", ("amountOut", "uint256"), ("path", "address[]"),
                ("to", "address"), ("deadline", "uint256")),
    AbiFunction("addLiquidity", ("tokenA", "address"), ("tokenB", "address"),
                ("amountADesired", "uint256"), ("amountBDesired", "uint256"),
                ("amountAMin", "uint256"), ("amountBMin", "uint256"),
                ("to", "address"), ("deadline", "uint256")),
    AbiFunction("removeLiquidity", ("tokenA", "address"), ("tokenB", "address"),
                ("liquidity", "uint256"), ("amountAMin", "uint256"), ("amountBMin", "uint256"),
                ("to", "address"), ("deadline", "uint256")),
]

_EXACT_INPUT_SINGLE = (
    ("tokenIn", "address"), ("tokenOut", "address"), ("fee", "uint24"), ("recipient", "address"),
    ("deadline", "uint256"), ("amountIn", "uint256"), ("amountOutMinimum", "uint256"),
    ("sqrtPriceLimitX96", "uint160"),
)
_EXACT_INPUT = (
    ("path", "bytes"), ("recipient", "address"), ("deadline", "uint256"),
    ("amountIn", "uint256"), ("amountOutMinimum", "uint256"),
)
_EXACT_OUTPUT_SINGLE = (
    ("tokenIn", "address"), ("tokenOut", "address"), ("fee", "uint24"), ("recipient", "address"),
    ("deadline", "uint256"), ("amountOut", "uint256"), ("amountInMaximum", "uint256"),
    ("sqrtPriceLimitX96", "uint160"),
)
_EXACT_OUTPUT = (
    ("path", "bytes"), ("recipient", "address"), ("deadline", "uint256"),
    ("amountOut", "uint256"), ("amountInMaximum", "uint256"),
)

UNISWAP_V3_ROUTER_FUNCTIONS = [
    AbiFunction("exactInputSingle", ("params", _EXACT_INPUT_SINGLE)),
    AbiFunction("exactInput", ("params", _EXACT_INPUT)),
    AbiFunction("exactOutputSingle", ("params", _EXACT_OUTPUT_SINGLE)),
    AbiFunction("exactOutput", ("params", _EXACT_OUTPUT)),
]

ERC721_FUNCTIONS = [
    AbiFunction("safeTransferFrom", ("from", "address"), ("to", "address"), ("tokenId", "uint256")),
    AbiFunction("transferFrom", ("from", "address"), ("to", "address"), ("tokenId", "uint256")),
    AbiFunction("approve", ("to", "address"), ("tokenId", "uint256")),
    AbiFunction("setApprovalForAll", ("operator", "address"), ("approved", "bool")),
]

# Order matters: first structural match wins. ERC20 shadows the ERC721
# transferFrom/approve selectors on purpose.
ABI_REGISTRY: List[Tuple[str, List[AbiFunction]]] = [
    ("ERC20", ERC20_FUNCTIONS),
    ("UniswapV2Router", UNISWAP_V2_ROUTER_FUNCTIONS),
    ("UniswapV3Router", UNISWAP_V3_ROUTER_FUNCTIONS),
    ("ERC721", ERC721_FUNCTIONS),
]


# ------------------------------------------------------------------
#  Amount helpers
# ------------------------------------------------------------------
def is_unlimited_approval(amount: int) -> bool:
    return amount > UNLIMITED_APPROVAL_THRESHOLD


def format_units(amount: int, decimals: int = 18) -> str:
    """Render an integer amount of base units as a plain decimal string."""
    with localcontext() as ctx:
        ctx.prec = 100
        text = format(Decimal(amount).scaleb(-decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_token_amount(amount: int, decimals: int = 18) -> str:
    if is_unlimited_approval(amount):
        return UNLIMITED_SENTINEL
    return format_units(amount, decimals)


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


# ------------------------------------------------------------------
#  Decoding
# ------------------------------------------------------------------
def _plain(value: Any, t: ParamType) -> Any:
    if not isinstance(t, str):
        return {name: _plain(v, ct) for (name, ct), v in zip(t, value)}
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        inner = t[:-2] if t.endswith("[]") else t
        return [_plain(v, inner) for v in value]
    if isinstance(value, str) and t == "address":
        return value.lower()
    return value


def _try_decode(fn: AbiFunction, payload: bytes) -> Optional[Dict[str, Any]]:
    try:
        values = decode(fn.types, payload)
    except (DecodingError, ValueError, OverflowError):
        return None
    return {name: _plain(v, t) for (name, t), v in zip(fn.inputs, values)}


def _enrich(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    if method in ("transfer", "approve", "transferFrom") and "amount" in params:
        amount = _to_int(params["amount"])
        params["amountFormatted"] = format_token_amount(amount)
        if method == "approve":
            params["isUnlimited"] = is_unlimited_approval(amount)
    return params


def decode_transaction(data: Optional[str], value: Optional[str], to: str) -> DecodedTransaction:
    data = (data or "").strip().lower()

    if data in NATIVE_DATA:
        wei = _to_int(value)
        return DecodedTransaction(
            method="native_transfer",
            method_id="0x",
            abi=None,
            params={"to": to, "value": format_units(wei), "valueWei": str(wei)},
            is_native_transfer=True,
            is_contract_call=False,
        )

    method_id = data[:10]
    unknown = DecodedTransaction(
        method="unknown",
        method_id=method_id,
        abi=None,
        params={"rawData": data},
        is_native_transfer=False,
        is_contract_call=True,
    )

    hex_body = data[2:] if data.startswith("0x") else data
    try:
        raw = bytes.fromhex(hex_body)
    except ValueError:
        return unknown
    if len(raw) < 4:
        return unknown

    selector, payload = raw[:4], raw[4:]
    for abi_name, functions in ABI_REGISTRY:
        for fn in functions:
            if fn.selector != selector:
                continue
            params = _try_decode(fn, payload)
            if params is None:
                continue
            return DecodedTransaction(
                method=fn.name,
                method_id=method_id,
                abi=abi_name,
                params=_enrich(fn.name, params),
                is_native_transfer=False,
                is_contract_call=True,
            )

    return unknown


# ------------------------------------------------------------------
#  Human-readable summary
# ------------------------------------------------------------------
def shorten_address(address: Optional[str]) -> str:
    if not address:
        return "unknown"
    return f"{address[:6]}...{address[-4:]}"


def describe_transaction(decoded: DecodedTransaction, to_address: str) -> str:
    params = decoded.params
    method = decoded.method

    if decoded.is_native_transfer:
        return f"Transfer {params.get('value')} ETH to {shorten_address(to_address)}"
    if method == "transfer":
        return f"Transfer {params.get('amountFormatted')} tokens to {shorten_address(params.get('to'))}"
    if method == "approve":
        if params.get("isUnlimited"):
            return f"Approve UNLIMITED tokens to {shorten_address(params.get('spender'))}"
        return f"Approve {params.get('amountFormatted')} tokens to {shorten_address(params.get('spender'))}"
    if method == "transferFrom":
        return (f"Transfer {params.get('amountFormatted')} tokens from "
                f"{shorten_address(params.get('from'))} to {shorten_address(params.get('to'))}")
    if method.startswith("swap") or method.startswith("exact"):
        return f"Swap tokens via {decoded.abi}"
    if method == "setApprovalForAll":
        verb = "Grant" if params.get("approved") else "Revoke"
        return f"{verb} NFT operator access to {shorten_address(params.get('operator'))}"
    if method == "unknown":
        return f"Contract interaction with method {decoded.method_id}"
    return f"Call {method} on contract"
