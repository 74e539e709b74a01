from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from candlescore.errors import SourceUnavailable

logger = logging.getLogger(__name__)

HYPERLIQUID_INFO_URL = "https://api.hyperliquid.xyz/info"


class HyperliquidProvider:
    name = "hyperliquid"

    def __init__(
        self,
        info_url: str = HYPERLIQUID_INFO_URL,
        request_timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.info_url = info_url
        self.request_timeout = float(request_timeout)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.request_timeout)

    async def _post_info(self, payload: dict[str, Any], *, symbol: str | None = None) -> Any:
        try:
            response = await self._client.post(self.info_url, json=payload)
            response.raise_for_status()
        except asyncio.CancelledError:
            raise
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise SourceUnavailable(
                f"Hyperliquid {payload.get('type')} request failed ({status})",
                symbol=symbol,
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(
                f"Hyperliquid {payload.get('type')} request failed: {type(exc).__name__}",
                symbol=symbol,
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise SourceUnavailable(
                f"Hyperliquid {payload.get('type')} returned invalid JSON", symbol=symbol
            ) from exc

    async def fetch_symbols(self) -> dict[str, Optional[float]]:
        data = await self._post_info({"type": "allMids"})
        if not isinstance(data, dict):
            raise SourceUnavailable("Hyperliquid allMids returned an unexpected payload")

        mids: dict[str, Optional[float]] = {}
        for symbol, raw_price in data.items():
            try:
                mids[str(symbol)] = float(raw_price)
            except (TypeError, ValueError):
                logger.debug("Non-numeric mid price", extra={"stage": "provider", "symbol": symbol})
                mids[str(symbol)] = None
        return mids

    async def fetch_candles(
        self, symbol: str, interval: str, start_ms: int, end_ms: int
    ) -> list[dict[str, Any]]:
        data = await self._post_info(
            {
                "type": "candleSnapshot",
                "req": {"coin": symbol, "interval": interval, "startTime": int(start_ms), "endTime": int(end_ms)},
            },
            symbol=symbol,
        )
        return data if isinstance(data, list) else []

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
