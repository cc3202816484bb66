from __future__ import annotations

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

from dca_engine.common import log_event
from dca_engine.execution.types import TargetAsset

CONTRACT_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class TrendingAssetError(RuntimeError):
    pass


def extract_chain_address(coin: dict[str, Any], blockchain: str) -> str | None:
    addresses = coin.get("contractAddresses")
    if not isinstance(addresses, list):
        return None
    prefix = f"{blockchain.lower()}/"
    for entry in addresses:
        text = str(entry or "")
        if text.lower().startswith(prefix):
            candidate = text.split("/", 1)[1].strip()
            if CONTRACT_ADDRESS_RE.match(candidate):
                return candidate.lower()
    return None


def normalize_price(value: Any) -> str:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as error:
        raise TrendingAssetError(f"Invalid asset price: {value!r}") from error
    if not price.is_finite() or price < 0:
        raise TrendingAssetError(f"Invalid asset price: {value!r}")
    return format(price.normalize(), "f")


def select_target_asset(payload: Any, blockchain: str) -> TargetAsset:
    """Top ranked coin that has a contract address on ``blockchain``."""
    coins = ((payload or {}).get("data") or {}).get("coins") if isinstance(payload, dict) else None
    if not isinstance(coins, list) or not coins:
        raise TrendingAssetError("No coins returned by the trending asset service")

    top_coin = coins[0]
    if not isinstance(top_coin, dict):
        raise TrendingAssetError("Malformed coin entry from the trending asset service")

    contract_address = extract_chain_address(top_coin, blockchain)
    if contract_address is None:
        raise TrendingAssetError(
            f"No {blockchain} contract address found for top coin {top_coin.get('symbol')!r}"
        )

    return TargetAsset(
        symbol=str(top_coin.get("symbol") or "").strip(),
        name=str(top_coin.get("name") or "").strip(),
        contract_address=contract_address,
        price=normalize_price(top_coin.get("price")),
    )


class CoinrankingTrendingResolver:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        api_url: str = "https://api.coinranking.com/v2/coins",
        api_key: str = "",
        tag: str = "meme",
        blockchain: str = "base",
        timeout_seconds: float = 15.0,
    ) -> None:
        self._logger = logger
        self._api_url = api_url
        self._api_key = api_key
        self._tag = tag
        self._blockchain = blockchain
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None
        self._missing_api_key_logged = False

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-access-token"] = self._api_key
        elif not self._missing_api_key_logged:
            self._missing_api_key_logged = True
            log_event(
                self._logger,
                level="warning",
                event="trending_api_key_missing",
                message="COINRANKING_API_KEY is not set; trending requests may be rate-limited",
            )
        return headers

    async def get_target_asset(self) -> TargetAsset:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Trending resolver HTTP session is not initialized.")

        params = {"tags[]": self._tag, "blockchains[]": self._blockchain}
        try:
            async with self._session.get(self._api_url, params=params, headers=self._build_headers()) as response:
                status = response.status
                body = await response.text()
        except aiohttp.ClientError as error:
            raise TrendingAssetError(f"Trending asset request failed: {error}") from error

        if status == 429:
            raise TrendingAssetError("Trending asset service rate limit exceeded")
        if status >= 400:
            raise TrendingAssetError(f"Trending asset request failed: status={status}")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as error:
            raise TrendingAssetError("Trending asset response is not JSON") from error

        return select_target_asset(payload, self._blockchain)
