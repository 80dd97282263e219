"""JSON-RPC access for the monitor, decoded into fixed records."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from eth_abi import decode as abi_decode
from web3 import Web3
from web3.exceptions import TransactionNotFound

from buybot.chain.abis import (
    ERC20_ABI,
    HLPMM_FACTORY_ABI,
    HLPMM_QUOTER_ABI,
    ROUTER_QUOTE_ABI,
    ROUTER_SWAP_ABI,
    SWAP_DATA_TYPES,
    SWAP_EVENT_SIGNATURE,
    TRANSFER_TOPIC,
)
from buybot.monitor_types import (
    SwapLog,
    TokenInfo,
    TransferLog,
    TxInfo,
    normalize_address,
)
from buybot.utils.logging import get_logger

logger = get_logger(__name__)

SWAP_TOPIC = Web3.to_hex(Web3.keccak(text=SWAP_EVENT_SIGNATURE))

RANGE_LIMIT_MARKERS = (
    "maximum [from, to] blocks distance",
    "maximum from, to blocks distance",
    "block range is too large",
    "exceed maximum block range",
    "query returned more than",
)


def is_range_limit_error(error: BaseException | str) -> bool:
    """Return True when an RPC error means the log query spanned too many blocks."""
    message = str(error or "").lower()
    return any(marker in message for marker in RANGE_LIMIT_MARKERS)


def address_to_topic(address: str) -> str:
    stripped = normalize_address(address)[2:]
    return "0x" + stripped.rjust(64, "0")


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value or "")
    return text.lower() if text.startswith("0x") else "0x" + text.lower()


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value or "")
    if text.startswith("0x"):
        text = text[2:]
    return bytes.fromhex(text) if text else b""


def _topic_address(topic: Any) -> str:
    return "0x" + _to_hex(topic)[-40:]


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def decode_transfer_log(raw: Dict[str, Any]) -> Optional[TransferLog]:
    """Decode an ERC-20 Transfer log, returning None for other shapes."""
    topics = list(raw.get("topics") or [])
    if len(topics) < 3 or _to_hex(topics[0]) != TRANSFER_TOPIC:
        return None
    data = _to_bytes(raw.get("data"))
    if len(data) >= 32:
        value = int.from_bytes(data[:32], "big")
    elif len(topics) >= 4:
        value = int.from_bytes(_to_bytes(topics[3]), "big")
    else:
        return None
    return TransferLog(
        token_address=normalize_address(raw.get("address")),
        from_address=_topic_address(topics[1]),
        to_address=_topic_address(topics[2]),
        value=value,
        tx_hash=_to_hex(raw.get("transactionHash")),
        block_number=int(raw.get("blockNumber") or 0),
        transaction_index=_optional_int(raw.get("transactionIndex")),
        log_index=_optional_int(raw.get("logIndex")),
    )


def decode_swap_log(raw: Dict[str, Any]) -> Optional[SwapLog]:
    """Decode an HLPMM emitter Swap log."""
    topics = list(raw.get("topics") or [])
    if len(topics) < 3 or _to_hex(topics[0]) != SWAP_TOPIC:
        return None
    (
        token_in,
        token_out,
        amount_in,
        amount_out,
        _reserve_usid,
        _reserve_token,
        fee_amount,
        _timestamp,
    ) = abi_decode(SWAP_DATA_TYPES, _to_bytes(raw.get("data")))
    return SwapLog(
        pool=_topic_address(topics[1]),
        sender=_topic_address(topics[2]),
        token_in=normalize_address(token_in),
        token_out=normalize_address(token_out),
        amount_in=int(amount_in),
        amount_out=int(amount_out),
        fee_amount=int(fee_amount),
        tx_hash=_to_hex(raw.get("transactionHash")),
        block_number=int(raw.get("blockNumber") or 0),
        transaction_index=_optional_int(raw.get("transactionIndex")),
        log_index=_optional_int(raw.get("logIndex")),
    )


class ChainClient:
    """Thin async facade over a synchronous web3 HTTP provider.

    web3 calls block, so every RPC round-trip runs in a worker thread.
    """

    def __init__(self, rpc_url: str, timeout: float = 10.0) -> None:
        self.rpc_url = rpc_url
        self._session = requests.Session()
        self.w3 = Web3(
            Web3.HTTPProvider(
                rpc_url,
                request_kwargs={"timeout": timeout},
                session=self._session,
            )
        )
        self._router_decoder = self.w3.eth.contract(abi=ROUTER_SWAP_ABI)

    async def close(self) -> None:
        await asyncio.to_thread(self._session.close)
        logger.info("chain_client_closed", rpc=self.rpc_url)

    def _contract(self, address: str, abi: List[Dict[str, Any]]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _call(self, address: str, abi: List[Dict[str, Any]], fn: str, *args):
        contract = self._contract(address, abi)
        return await asyncio.to_thread(contract.functions[fn](*args).call)

    async def get_block_number(self) -> int:
        return int(await asyncio.to_thread(lambda: self.w3.eth.block_number))

    async def _get_logs(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return list(await asyncio.to_thread(self.w3.eth.get_logs, params))

    async def get_transfer_logs(
        self,
        token_address: str,
        from_block: int,
        to_block: int,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
    ) -> List[TransferLog]:
        """Return Transfer logs of a token in [from_block, to_block]."""
        topics: List[Optional[str]] = [
            TRANSFER_TOPIC,
            address_to_topic(from_address) if from_address else None,
            address_to_topic(to_address) if to_address else None,
        ]
        while topics and topics[-1] is None:
            topics.pop()
        raw_logs = await self._get_logs(
            {
                "address": Web3.to_checksum_address(token_address),
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": topics,
            }
        )
        decoded: List[TransferLog] = []
        for raw in raw_logs:
            transfer = decode_transfer_log(raw)
            if transfer:
                decoded.append(transfer)
        return decoded

    async def get_swap_logs(
        self, emitter_address: str, from_block: int, to_block: int
    ) -> List[SwapLog]:
        raw_logs = await self._get_logs(
            {
                "address": Web3.to_checksum_address(emitter_address),
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [SWAP_TOPIC],
            }
        )
        decoded: List[SwapLog] = []
        for raw in raw_logs:
            try:
                swap = decode_swap_log(raw)
            except Exception as exc:
                logger.warning(
                    "swap_log_decode_failed",
                    tx_hash=_to_hex(raw.get("transactionHash")),
                    error=str(exc),
                )
                continue
            if swap:
                decoded.append(swap)
        return decoded

    async def get_transaction(self, tx_hash: str) -> Optional[TxInfo]:
        try:
            tx = await asyncio.to_thread(self.w3.eth.get_transaction, tx_hash)
        except TransactionNotFound:
            return None
        if not tx:
            return None
        return TxInfo(
            hash=_to_hex(tx.get("hash") or tx_hash),
            from_address=normalize_address(tx.get("from")),
            to_address=normalize_address(tx.get("to")) or None,
            value=int(tx.get("value") or 0),
            input=_to_hex(tx.get("input") or b""),
            block_number=_optional_int(tx.get("blockNumber")),
            transaction_index=_optional_int(tx.get("transactionIndex")),
        )

    async def get_transaction_index(self, tx_hash: str) -> Optional[int]:
        try:
            receipt = await asyncio.to_thread(
                self.w3.eth.get_transaction_receipt, tx_hash
            )
        except TransactionNotFound:
            return None
        return _optional_int(receipt.get("transactionIndex"))

    async def get_token_info(self, token_address: str) -> TokenInfo:
        name, symbol, decimals, total_supply = await asyncio.gather(
            self._call(token_address, ERC20_ABI, "name"),
            self._call(token_address, ERC20_ABI, "symbol"),
            self._call(token_address, ERC20_ABI, "decimals"),
            self._call(token_address, ERC20_ABI, "totalSupply"),
        )
        return TokenInfo(
            name=str(name),
            symbol=str(symbol),
            decimals=int(decimals),
            total_supply=int(total_supply),
        )

    async def get_symbol_and_decimals(self, token_address: str) -> Tuple[str, int]:
        symbol, decimals = await asyncio.gather(
            self._call(token_address, ERC20_ABI, "symbol"),
            self._call(token_address, ERC20_ABI, "decimals"),
        )
        return str(symbol), int(decimals)

    async def get_decimals(self, token_address: str) -> int:
        return int(await self._call(token_address, ERC20_ABI, "decimals"))

    async def balance_of(self, token_address: str, wallet: str) -> int:
        return int(
            await self._call(
                token_address,
                ERC20_ABI,
                "balanceOf",
                Web3.to_checksum_address(wallet),
            )
        )

    async def get_amounts_out(
        self, router_address: str, amount_in: int, path: Sequence[str]
    ) -> List[int]:
        checksum_path = [Web3.to_checksum_address(item) for item in path]
        amounts = await self._call(
            router_address, ROUTER_QUOTE_ABI, "getAmountsOut", amount_in, checksum_path
        )
        return [int(amount) for amount in amounts]

    async def token_to_pool(self, factory_address: str, token_address: str) -> str:
        pool = await self._call(
            factory_address,
            HLPMM_FACTORY_ABI,
            "tokenToPool",
            Web3.to_checksum_address(token_address),
        )
        return normalize_address(pool)

    async def pool_to_token(self, factory_address: str, pool_address: str) -> str:
        token = await self._call(
            factory_address,
            HLPMM_FACTORY_ABI,
            "poolToToken",
            Web3.to_checksum_address(pool_address),
        )
        return normalize_address(token)

    async def get_spot_price(self, quoter_address: str, pool_address: str) -> int:
        return int(
            await self._call(
                quoter_address,
                HLPMM_QUOTER_ABI,
                "getSpotPrice",
                Web3.to_checksum_address(pool_address),
            )
        )

    async def get_market_cap(self, quoter_address: str, pool_address: str) -> int:
        return int(
            await self._call(
                quoter_address,
                HLPMM_QUOTER_ABI,
                "getMarketCap",
                Web3.to_checksum_address(pool_address),
            )
        )

    def decode_router_call(self, input_data: str) -> Tuple[str, Dict[str, Any]]:
        """Decode router swap call data into (method name, named arguments)."""
        func, params = self._router_decoder.decode_function_input(input_data)
        return func.fn_name, dict(params)
