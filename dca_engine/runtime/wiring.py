from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from dca_engine.common import log_event
from dca_engine.contracts import SpendingLimitsContractStore
from dca_engine.execution import DcaEngine, PolicyScheduler, SpendLimitGate, SwapExecutor
from dca_engine.market import CoinrankingTrendingResolver, DexScreenerPriceOracle, Web3ChainReader
from dca_engine.signing import CapacityCredentialManager, SigningNetworkClient
from dca_engine.storage import StorageGateway

from .settings import AppSettings


@dataclass(slots=True)
class EngineComponents:
    storage: StorageGateway
    engine: DcaEngine
    chain_reader: Web3ChainReader
    signing: SigningNetworkClient
    clients: list[Any] = field(default_factory=list)

    @property
    def healthchecks(self) -> list[Any]:
        return [self.chain_reader.healthcheck, self.signing.healthcheck]


def build_components(
    *,
    logger: logging.Logger,
    app_settings: AppSettings,
    storage: StorageGateway,
) -> EngineComponents:
    price_oracle = DexScreenerPriceOracle(
        logger=logger,
        api_base_url=app_settings.price_oracle_api,
        timeout_seconds=app_settings.http_timeout_seconds,
    )
    trending = CoinrankingTrendingResolver(
        logger=logger,
        api_url=app_settings.trending_api,
        api_key=app_settings.trending_api_key,
        tag=app_settings.trending_tag,
        blockchain=app_settings.trending_blockchain,
        timeout_seconds=app_settings.http_timeout_seconds,
    )
    chain_reader = Web3ChainReader(
        logger=logger,
        rpc_url=app_settings.chain_rpc_url,
        timeout_seconds=app_settings.rpc_timeout_seconds,
    )
    # Capacity credits are paid for on the signing network's own chain.
    signing_chain_reader = Web3ChainReader(
        logger=logger,
        rpc_url=app_settings.signing_network_rpc_url,
        timeout_seconds=app_settings.rpc_timeout_seconds,
    )
    signing = SigningNetworkClient(
        logger=logger,
        base_url=app_settings.signing_network_url,
        delegatee_private_key=app_settings.delegatee_private_key,
        network=app_settings.signing_network_name,
        timeout_seconds=app_settings.signing_timeout_seconds,
    )
    credentials = CapacityCredentialManager(
        logger=logger,
        minter=signing,
        balance_reader=signing_chain_reader,
        delegatee_address=signing.delegatee_address,
        requests_per_kilosecond=app_settings.capacity_requests_per_kilosecond,
        days_until_utc_midnight_expiration=app_settings.capacity_days_until_expiration,
        early_expiration=timedelta(minutes=app_settings.capacity_early_expiration_minutes),
    )

    clients: list[Any] = [price_oracle, trending, signing, chain_reader, signing_chain_reader]

    spend_gate: SpendLimitGate | None = None
    if app_settings.spend_limit_enabled:
        if app_settings.spend_limit_rpc_url == app_settings.chain_rpc_url:
            spend_web3 = chain_reader.web3
        else:
            spend_reader = Web3ChainReader(
                logger=logger,
                rpc_url=app_settings.spend_limit_rpc_url,
                timeout_seconds=app_settings.rpc_timeout_seconds,
            )
            clients.append(spend_reader)
            spend_web3 = spend_reader.web3
        spend_gate = SpendLimitGate(
            logger=logger,
            store=SpendingLimitsContractStore(
                logger=logger,
                web3=spend_web3,
                contract_address=app_settings.spend_limit_contract_address,
                delegatee_private_key=app_settings.delegatee_private_key,
                timeout_seconds=app_settings.rpc_timeout_seconds,
                receipt_timeout_seconds=app_settings.spend_receipt_timeout_seconds,
            ),
            decimals=app_settings.usd_decimals,
        )
    else:
        log_event(
            logger,
            level="warning",
            event="spend_limit_disabled",
            message="Spend limit gate is disabled; trades are not checked against a spending policy",
        )

    executor = SwapExecutor(
        logger=logger,
        store=storage,
        trending=trending,
        price_oracle=price_oracle,
        chain_reader=chain_reader,
        delegatee_chain_reader=signing_chain_reader,
        credentials=credentials,
        signer=signing,
        spend_gate=spend_gate,
        swap_action_id=app_settings.swap_action_id,
        chain_name=app_settings.chain_name,
        chain_id=app_settings.chain_id,
        chain_rpc_url=app_settings.chain_rpc_url,
        wrapped_native_address=app_settings.wrapped_native_address,
        gas_buffer_percent=app_settings.gas_buffer_percent,
        delegatee_min_balance=app_settings.delegatee_min_balance,
        session_duration=timedelta(seconds=app_settings.session_duration_seconds),
        delegation_ttl=timedelta(seconds=app_settings.capacity_delegation_ttl_seconds),
        usd_decimals=app_settings.usd_decimals,
    )
    scheduler = PolicyScheduler(
        logger=logger,
        store=storage,
        executor=executor,
        guard_store=storage,
        guard_ttl_seconds=app_settings.effective_guard_ttl_seconds(),
        owner_prefix=f"{storage.engine_id}:{storage.run_id}",
        max_concurrent_executions=app_settings.max_concurrent_executions,
    )
    engine = DcaEngine(logger=logger, store=storage, executor=executor, scheduler=scheduler)
    return EngineComponents(
        storage=storage,
        engine=engine,
        chain_reader=chain_reader,
        signing=signing,
        clients=clients,
    )
