from __future__ import annotations

import logging
from decimal import Decimal

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3

from dca_engine.common import guarded_call, with_timeout

WEI_PER_ETHER = Decimal(10) ** 18


def wei_to_ether(value: int) -> Decimal:
    return Decimal(int(value)) / WEI_PER_ETHER


class Web3ChainReader:
    """Native-asset balance reads against one JSON-RPC endpoint."""

    def __init__(self, *, logger: logging.Logger, rpc_url: str, timeout_seconds: float = 15.0) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._timeout_seconds = timeout_seconds
        self._provider = AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)},
        )
        self._web3 = AsyncWeb3(self._provider)

    @property
    def web3(self) -> AsyncWeb3:
        return self._web3

    async def connect(self) -> None:
        await self.healthcheck()

    async def healthcheck(self) -> None:
        await with_timeout(
            self._web3.eth.block_number,
            timeout_seconds=self._timeout_seconds,
            operation="chain rpc healthcheck",
        )

    async def get_native_balance(self, address: str) -> Decimal:
        checksum = AsyncWeb3.to_checksum_address(address)
        balance_wei = await with_timeout(
            self._web3.eth.get_balance(checksum),
            timeout_seconds=self._timeout_seconds,
            operation=f"balance read for {address}",
        )
        return wei_to_ether(balance_wei)

    async def close(self) -> None:
        disconnect = getattr(self._provider, "disconnect", None)
        if callable(disconnect):
            await guarded_call(
                disconnect,
                logger=self._logger,
                event="chain_reader_close_failed",
                message="Failed to close chain RPC provider",
            )
