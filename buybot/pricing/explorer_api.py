"""Blockscout-style explorer client used as a status-metrics fallback."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from buybot.monitor_types import normalize_address
from buybot.utils.logging import get_logger

logger = get_logger(__name__)

MAX_TRANSFER_PAGES = 20


@dataclass(frozen=True)
class ExplorerTransfer:
    tx_hash: str
    from_address: str
    to_address: str
    value: int
    decimals: int
    timestamp: datetime

    @property
    def amount(self) -> float:
        return self.value / (10**self.decimals)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _address(field: Any) -> str:
    if isinstance(field, dict):
        return normalize_address(field.get("hash"))
    return normalize_address(field if isinstance(field, str) else None)


def parse_transfer(item: Dict[str, Any]) -> Optional[ExplorerTransfer]:
    timestamp = parse_timestamp(item.get("timestamp"))
    total = item.get("total") or {}
    if timestamp is None or not isinstance(total, dict):
        return None
    token = item.get("token") if isinstance(item.get("token"), dict) else {}
    try:
        value = int(total.get("value") or 0)
        decimals = int(total.get("decimals") or token.get("decimals") or 18)
    except (TypeError, ValueError):
        return None
    return ExplorerTransfer(
        tx_hash=normalize_address(item.get("tx_hash") or item.get("transaction_hash")),
        from_address=_address(item.get("from")),
        to_address=_address(item.get("to")),
        value=value,
        decimals=decimals,
        timestamp=timestamp,
    )


class ExplorerClient:
    """Reads token transfers and holder counters from ``/api/v2``."""

    def __init__(
        self,
        api_base: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_base = str(api_base).rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = await self._client.get(f"{self.api_base}{path}", params=params)
        resp.raise_for_status()
        return resp.json()

    async def get_transfers_since(
        self,
        token_address: str,
        since: datetime,
        max_pages: int = MAX_TRANSFER_PAGES,
    ) -> List[ExplorerTransfer]:
        """Return transfers newer than ``since``, newest first.

        Pages are followed until an item older than ``since`` shows up or
        the explorer stops returning ``next_page_params``.
        """
        path = f"/api/v2/tokens/{normalize_address(token_address)}/transfers"
        params: Optional[Dict[str, Any]] = None
        transfers: List[ExplorerTransfer] = []

        for _ in range(max_pages):
            data = await self._get(path, params=params)
            items = data.get("items") if isinstance(data, dict) else None
            if not isinstance(items, list):
                break
            reached_cutoff = False
            for item in items:
                if not isinstance(item, dict):
                    continue
                transfer = parse_transfer(item)
                if transfer is None:
                    continue
                if transfer.timestamp < since:
                    reached_cutoff = True
                    break
                transfers.append(transfer)
            next_page = data.get("next_page_params")
            if reached_cutoff or not isinstance(next_page, dict) or not next_page:
                break
            params = next_page
        else:
            logger.warning(
                "explorer_transfer_pages_exhausted",
                token=token_address,
                pages=max_pages,
            )
        return transfers

    async def get_holder_count(self, token_address: str) -> Optional[int]:
        data = await self._get(
            f"/api/v2/tokens/{normalize_address(token_address)}/counters"
        )
        if not isinstance(data, dict):
            return None
        raw = data.get("token_holders_count")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None
