"""Minimal contract ABIs used by the monitor."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
SWAP_EVENT_SIGNATURE = (
    "Swap(address,address,address,address,uint256,uint256,uint256,uint256,uint256,uint256)"
)
# Non-indexed Swap fields, in emission order.
SWAP_DATA_TYPES = [
    "address",  # tokenIn
    "address",  # tokenOut
    "uint256",  # amountIn
    "uint256",  # amountOut
    "uint256",  # newReserveUSID
    "uint256",  # newReserveToken
    "uint256",  # feeAmount
    "uint256",  # timestamp
]


def _fn(
    name: str,
    inputs: Sequence[Tuple[str, str]],
    outputs: Sequence[str] = (),
    mutability: str = "view",
) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "outputs": [{"name": "", "type": kind} for kind in outputs],
    }


ERC20_ABI: List[Dict[str, Any]] = [
    _fn("name", [], ["string"]),
    _fn("symbol", [], ["string"]),
    _fn("decimals", [], ["uint8"]),
    _fn("totalSupply", [], ["uint256"]),
    _fn("balanceOf", [("account", "address")], ["uint256"]),
]

ROUTER_QUOTE_ABI: List[Dict[str, Any]] = [
    _fn(
        "getAmountsOut",
        [("amountIn", "uint256"), ("path", "address[]")],
        ["uint256[]"],
    ),
]

_ETH_IN = [
    ("amountOutMin", "uint256"),
    ("path", "address[]"),
    ("to", "address"),
    ("deadline", "uint256"),
]
_EXACT_IN = [
    ("amountIn", "uint256"),
    ("amountOutMin", "uint256"),
    ("path", "address[]"),
    ("to", "address"),
    ("deadline", "uint256"),
]
_EXACT_OUT = [
    ("amountOut", "uint256"),
    ("amountInMax", "uint256"),
    ("path", "address[]"),
    ("to", "address"),
    ("deadline", "uint256"),
]

ROUTER_SWAP_ABI: List[Dict[str, Any]] = [
    _fn("swapExactETHForTokens", _ETH_IN, ["uint256[]"], "payable"),
    _fn(
        "swapExactETHForTokensSupportingFeeOnTransferTokens", _ETH_IN, [], "payable"
    ),
    _fn(
        "swapETHForExactTokens",
        [("amountOut", "uint256")] + _ETH_IN[1:],
        ["uint256[]"],
        "payable",
    ),
    _fn("swapExactTokensForTokens", _EXACT_IN, ["uint256[]"], "nonpayable"),
    _fn("swapTokensForExactTokens", _EXACT_OUT, ["uint256[]"], "nonpayable"),
    _fn("swapExactTokensForETH", _EXACT_IN, ["uint256[]"], "nonpayable"),
    _fn("swapTokensForExactETH", _EXACT_OUT, ["uint256[]"], "nonpayable"),
    _fn(
        "swapExactTokensForTokensSupportingFeeOnTransferTokens",
        _EXACT_IN,
        [],
        "nonpayable",
    ),
]

HLPMM_FACTORY_ABI: List[Dict[str, Any]] = [
    _fn("poolToToken", [("pool", "address")], ["address"]),
    _fn("tokenToPool", [("token", "address")], ["address"]),
]

HLPMM_QUOTER_ABI: List[Dict[str, Any]] = [
    _fn("getSpotPrice", [("pool", "address")], ["uint256"]),
    _fn("getMarketCap", [("pool", "address")], ["uint256"]),
]
