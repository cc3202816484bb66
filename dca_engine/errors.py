"""Failure taxonomy for a single execution attempt.

``PreconditionFailure`` aborts the attempt without a record and is expected to
heal on a later tick. ``SystemicExecutionError`` stops the remaining executions
of the current tick. ``SpendLimitRejected`` is turned into a failed record.
"""

from __future__ import annotations

from decimal import Decimal


class PreconditionFailure(Exception):
    reason = "precondition_failed"


class TargetAssetUnavailable(PreconditionFailure):
    reason = "target_asset_unavailable"


class PriceUnavailable(PreconditionFailure):
    reason = "price_unavailable"


class InsufficientUserBalance(PreconditionFailure):
    reason = "insufficient_user_balance"

    def __init__(self, *, wallet_address: str, balance: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient balance in wallet {wallet_address}: {balance} < {required} required"
        )
        self.wallet_address = wallet_address
        self.balance = balance
        self.required = required


class SystemicExecutionError(Exception):
    reason = "systemic_failure"


class DelegateeUnderfunded(SystemicExecutionError):
    reason = "delegatee_underfunded"

    def __init__(self, *, address: str, balance: Decimal, minimum: Decimal) -> None:
        super().__init__(f"Delegatee wallet {address} balance {balance} is below minimum {minimum}")
        self.address = address
        self.balance = balance
        self.minimum = minimum


class CapacityMintError(SystemicExecutionError):
    reason = "capacity_mint_failed"


class SpendLimitRejected(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(f"spend limit: {reason}")
        self.reason = reason


class ExecutionInFlight(Exception):
    reason = "execution_in_flight"
