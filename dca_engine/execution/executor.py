from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Protocol

from dca_engine.common import log_event
from dca_engine.errors import (
    DelegateeUnderfunded,
    InsufficientUserBalance,
    PreconditionFailure,
    PriceUnavailable,
    SpendLimitRejected,
    SystemicExecutionError,
    TargetAssetUnavailable,
)
from dca_engine.signing.types import (
    LIT_ACTION_EXECUTION,
    ActionResult,
    CapacityCredential,
    SessionHandle,
)

from .spend_limit import SpendLimitGate, to_usd_value
from .types import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCEEDED,
    ChainReader,
    ExecutionOutcome,
    Policy,
    PolicyStore,
    PriceOracle,
    PurchaseRecord,
    SwapQuote,
    TargetAsset,
    TrendingAssetResolver,
    normalize_wallet_address,
    utc_now,
)


class CredentialProvider(Protocol):
    async def get_or_mint(self, now: datetime | None = None) -> CapacityCredential:
        ...


class SwapSigner(Protocol):
    @property
    def delegatee_address(self) -> str:
        ...

    async def create_delegated_session(
        self,
        *,
        credential: CapacityCredential,
        abilities: tuple[str, ...],
        session_duration: timedelta,
        delegation_ttl: timedelta,
    ) -> SessionHandle:
        ...

    async def submit_action(
        self,
        *,
        session: SessionHandle,
        action_id: str,
        params: dict[str, Any],
    ) -> ActionResult:
        ...


class SwapExecutor:
    """Runs one purchase for one policy through every safety gate.

    Steps before the capacity credential raise ``PreconditionFailure`` and
    leave no record. Everything after them ends in exactly one persisted
    ``PurchaseRecord`` unless a systemic fault propagates.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: PolicyStore,
        trending: TrendingAssetResolver,
        price_oracle: PriceOracle,
        chain_reader: ChainReader,
        delegatee_chain_reader: ChainReader | None = None,
        credentials: CredentialProvider,
        signer: SwapSigner,
        spend_gate: SpendLimitGate | None,
        swap_action_id: str,
        chain_name: str,
        chain_id: str,
        chain_rpc_url: str,
        wrapped_native_address: str,
        gas_buffer_percent: Decimal = Decimal("10"),
        delegatee_min_balance: Decimal = Decimal("0.01"),
        session_duration: timedelta = timedelta(hours=24),
        delegation_ttl: timedelta = timedelta(minutes=10),
        usd_decimals: int = 18,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._logger = logger
        self._store = store
        self._trending = trending
        self._price_oracle = price_oracle
        self._chain_reader = chain_reader
        self._delegatee_chain_reader = delegatee_chain_reader or chain_reader
        self._credentials = credentials
        self._signer = signer
        self._spend_gate = spend_gate
        self._swap_action_id = swap_action_id
        self._chain_name = chain_name
        self._chain_id = chain_id
        self._chain_rpc_url = chain_rpc_url
        self._wrapped_native_address = wrapped_native_address
        self._gas_buffer_percent = gas_buffer_percent
        self._delegatee_min_balance = delegatee_min_balance
        self._session_duration = session_duration
        self._delegation_ttl = delegation_ttl
        self._usd_decimals = usd_decimals
        self._clock = clock or utc_now

    async def check_delegatee_funded(self) -> Decimal:
        address = self._signer.delegatee_address
        balance = await self._delegatee_chain_reader.get_native_balance(address)
        if balance < self._delegatee_min_balance:
            raise DelegateeUnderfunded(address=address, balance=balance, minimum=self._delegatee_min_balance)
        return balance

    async def simulate(self, wallet_address: str, purchase_amount: str) -> SwapQuote:
        """Resolve, price and check solvency without signing or recording anything."""
        return await self._quote(normalize_wallet_address(wallet_address), Decimal(str(purchase_amount)))

    async def execute(self, policy: Policy, purchased_at: datetime | None = None) -> ExecutionOutcome:
        """Run one purchase. ``purchased_at`` is the tick time the record is anchored on."""
        purchased_at = purchased_at or self._clock()
        try:
            quote = await self._quote(policy.wallet_address, policy.purchase_amount_decimal)
        except PreconditionFailure as error:
            log_event(
                self._logger,
                level="warning",
                event="execution_precondition_failed",
                message="Execution skipped before any trade was attempted",
                policy_id=policy.policy_id,
                wallet_address=policy.wallet_address,
                reason=error.reason,
                error=str(error),
            )
            return ExecutionOutcome(
                status=OUTCOME_SKIPPED,
                wallet_address=policy.wallet_address,
                reason=error.reason,
                metadata={"error": str(error)},
            )

        if not quote.affordable:
            error = InsufficientUserBalance(
                wallet_address=policy.wallet_address,
                balance=quote.user_balance,
                required=quote.total_required,
            )
            log_event(
                self._logger,
                level="info",
                event="execution_insufficient_balance",
                message="Execution skipped due to insufficient user balance",
                policy_id=policy.policy_id,
                wallet_address=policy.wallet_address,
                balance=str(quote.user_balance),
                required=str(quote.total_required),
            )
            return ExecutionOutcome(
                status=OUTCOME_SKIPPED,
                wallet_address=policy.wallet_address,
                reason=error.reason,
                metadata={"error": str(error)},
            )

        if not quote.delegatee_funded:
            raise DelegateeUnderfunded(
                address=self._signer.delegatee_address,
                balance=quote.delegatee_balance,
                minimum=self._delegatee_min_balance,
            )

        try:
            result = await self._trade(policy, quote)
        except SystemicExecutionError:
            raise
        except SpendLimitRejected as error:
            record = self._build_record(
                policy, quote.asset, purchased_at=purchased_at, success=False, error=str(error)
            )
        except Exception as error:
            log_event(
                self._logger,
                level="error",
                event="execution_trade_failed",
                message="Trade attempt raised an error",
                policy_id=policy.policy_id,
                wallet_address=policy.wallet_address,
                error_type=type(error).__name__,
                error=str(error),
            )
            record = self._build_record(
                policy,
                quote.asset,
                purchased_at=purchased_at,
                success=False,
                error=str(error) or type(error).__name__,
            )
        else:
            record = self._build_record(
                policy,
                quote.asset,
                purchased_at=purchased_at,
                success=result.success,
                tx_hash=result.tx_hash if result.success else None,
                error=None if result.success else (result.error or f"Swap action returned status {result.status}"),
            )

        await self._persist(record)
        status = OUTCOME_SUCCEEDED if record.success else OUTCOME_FAILED
        log_event(
            self._logger,
            level="info" if record.success else "warning",
            event="execution_recorded",
            message="Purchase attempt recorded",
            policy_id=policy.policy_id,
            wallet_address=policy.wallet_address,
            status=status,
            symbol=record.symbol,
            tx_hash=record.tx_hash,
            error=record.error,
        )
        return ExecutionOutcome(
            status=status,
            wallet_address=policy.wallet_address,
            reason="swap succeeded" if record.success else (record.error or "swap failed"),
            record=record,
            metadata={"quote": quote.to_dict()},
        )

    async def _quote(self, wallet_address: str, amount: Decimal) -> SwapQuote:
        asset = await self._resolve_asset()
        native_price = await self._resolve_native_price()

        gas_buffer = amount * self._gas_buffer_percent / Decimal(100)
        total_required = amount + gas_buffer
        user_balance = await self._read_balance(self._chain_reader, wallet_address, label="user")
        delegatee_balance = await self._read_balance(
            self._delegatee_chain_reader,
            self._signer.delegatee_address,
            label="delegatee",
        )

        return SwapQuote(
            wallet_address=wallet_address,
            asset=asset,
            purchase_amount=format(amount, "f"),
            native_price_usd=native_price,
            purchase_value_usd=to_usd_value(native_price, amount, self._usd_decimals),
            gas_buffer=gas_buffer,
            total_required=total_required,
            user_balance=user_balance,
            delegatee_balance=delegatee_balance,
            affordable=user_balance >= total_required,
            delegatee_funded=delegatee_balance >= self._delegatee_min_balance,
        )

    async def _resolve_asset(self) -> TargetAsset:
        try:
            asset = await self._trending.get_target_asset()
        except Exception as error:
            raise TargetAssetUnavailable(f"Target asset lookup failed: {error}") from error
        if not asset.contract_address:
            raise TargetAssetUnavailable(f"Target asset {asset.symbol} has no contract address")
        return asset

    async def _resolve_native_price(self) -> Decimal:
        try:
            price = await self._price_oracle.get_usd_price(self._wrapped_native_address, self._chain_name)
        except Exception as error:
            raise PriceUnavailable(f"Price lookup failed: {error}") from error
        if price is None or price <= 0:
            raise PriceUnavailable(
                f"No USD price for {self._wrapped_native_address} on {self._chain_name}"
            )
        return price

    async def _read_balance(self, reader: ChainReader, address: str, *, label: str) -> Decimal:
        try:
            return await reader.get_native_balance(address)
        except Exception as error:
            raise PreconditionFailure(f"Failed to read {label} balance for {address}: {error}") from error

    async def _trade(self, policy: Policy, quote: SwapQuote) -> ActionResult:
        credential = await self._credentials.get_or_mint(self._clock())

        if self._spend_gate is not None:
            await self._spend_gate.authorize(
                wallet_address=policy.wallet_address,
                asset_address=self._wrapped_native_address,
                amount=policy.purchase_amount,
                price_usd=quote.native_price_usd,
            )

        session = await self._signer.create_delegated_session(
            credential=credential,
            abilities=(LIT_ACTION_EXECUTION,),
            session_duration=self._session_duration,
            delegation_ttl=self._delegation_ttl,
        )
        log_event(
            self._logger,
            level="info",
            event="swap_submitting",
            message="Submitting swap action",
            policy_id=policy.policy_id,
            wallet_address=policy.wallet_address,
            token_out=quote.asset.contract_address,
            amount_in=policy.purchase_amount,
        )
        return await self._signer.submit_action(
            session=session,
            action_id=self._swap_action_id,
            params={
                "pkpEthAddress": policy.wallet_address,
                "rpcUrl": self._chain_rpc_url,
                "chainId": self._chain_id,
                "tokenIn": self._wrapped_native_address,
                "tokenOut": quote.asset.contract_address,
                "amountIn": policy.purchase_amount,
            },
        )

    def _build_record(
        self,
        policy: Policy,
        asset: TargetAsset,
        *,
        purchased_at: datetime,
        success: bool,
        tx_hash: str | None = None,
        error: str | None = None,
    ) -> PurchaseRecord:
        return PurchaseRecord(
            policy_id=policy.policy_id,
            wallet_address=policy.wallet_address,
            symbol=asset.symbol,
            name=asset.name,
            coin_address=asset.contract_address,
            price=asset.price,
            purchase_amount=policy.purchase_amount,
            success=success,
            purchased_at=purchased_at,
            tx_hash=tx_hash,
            error=error,
        )

    async def _persist(self, record: PurchaseRecord) -> None:
        try:
            await self._store.insert_purchase_record(record)
        except Exception as error:
            log_event(
                self._logger,
                level="critical" if record.success else "error",
                event="purchase_record_write_failed",
                message="Failed to persist purchase record",
                policy_id=record.policy_id,
                wallet_address=record.wallet_address,
                tx_hash=record.tx_hash,
                error=str(error),
            )
            raise
