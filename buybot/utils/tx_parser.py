"""Router call-data helpers for attributing what a buyer paid."""

from typing import Any, Dict, List, Optional

# Uniswap V2 style router swap method names
NATIVE_INPUT_METHODS = {
    "swapExactETHForTokens",
    "swapExactETHForTokensSupportingFeeOnTransferTokens",
    "swapETHForExactTokens",
}

EXACT_INPUT_METHODS = {
    "swapExactTokensForTokens",
    "swapExactTokensForETH",
    "swapExactTokensForTokensSupportingFeeOnTransferTokens",
}

EXACT_OUTPUT_METHODS = {
    "swapTokensForExactTokens",
    "swapTokensForExactETH",
}

SWAP_METHODS = NATIVE_INPUT_METHODS | EXACT_INPUT_METHODS | EXACT_OUTPUT_METHODS


def swap_path(params: Dict[str, Any]) -> List[str]:
    """Return the decoded swap path as lowercase addresses."""
    path = params.get("path")
    if not isinstance(path, (list, tuple)):
        return []
    return [str(item).lower() for item in path]


def path_ends_with(params: Dict[str, Any], token_address: str) -> bool:
    path = swap_path(params)
    return len(path) >= 2 and path[-1] == token_address.lower()


def input_amount(method: str, params: Dict[str, Any], tx_value: int) -> Optional[int]:
    """Return the raw amount of the input asset a swap call spends.

    Native-input methods spend ``msg.value``; exact-input methods spend
    ``amountIn``; exact-output methods are bounded by ``amountInMax``.
    """
    if method in NATIVE_INPUT_METHODS:
        raw = tx_value
    elif method in EXACT_INPUT_METHODS:
        raw = params.get("amountIn")
    elif method in EXACT_OUTPUT_METHODS:
        raw = params.get("amountInMax")
    else:
        return None
    if not isinstance(raw, int) or raw <= 0:
        return None
    return raw
