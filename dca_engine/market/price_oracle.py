from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

from dca_engine.common import log_event


class PriceOracleError(RuntimeError):
    pass


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def select_usd_price(payload: Any, chain: str) -> Decimal | None:
    """Price of the most liquid pair (by 24h volume) on ``chain``."""
    if not isinstance(payload, dict):
        return None
    pairs = payload.get("pairs")
    if not isinstance(pairs, list):
        return None

    on_chain = [
        pair
        for pair in pairs
        if isinstance(pair, dict) and str(pair.get("chainId") or "").lower() == chain.lower()
    ]
    on_chain.sort(key=lambda pair: _to_float((pair.get("volume") or {}).get("h24")), reverse=True)

    for pair in on_chain:
        raw_price = pair.get("priceUsd")
        if raw_price in (None, ""):
            continue
        try:
            price = Decimal(str(raw_price))
        except InvalidOperation:
            continue
        if price.is_finite() and price > 0:
            return price
    return None


class DexScreenerPriceOracle:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        api_base_url: str = "https://api.dexscreener.com/latest/dex/tokens",
        timeout_seconds: float = 15.0,
    ) -> None:
        self._logger = logger
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def get_usd_price(self, asset_address: str, chain: str) -> Decimal | None:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Price oracle HTTP session is not initialized.")

        url = f"{self._api_base_url}/{asset_address}"
        try:
            async with self._session.get(url, headers={"Accept": "application/json"}) as response:
                status = response.status
                body = await response.text()
        except aiohttp.ClientError as error:
            raise PriceOracleError(f"Price request for {asset_address} failed: {error}") from error

        if status >= 400:
            raise PriceOracleError(f"Price request for {asset_address} failed: status={status}")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as error:
            raise PriceOracleError(f"Price response for {asset_address} is not JSON") from error

        price = select_usd_price(payload, chain)
        if price is None:
            log_event(
                self._logger,
                level="warning",
                event="price_not_found",
                message="No price data found for asset",
                asset_address=asset_address,
                chain=chain,
            )
        return price
