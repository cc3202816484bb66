from .engine import DcaEngine
from .executor import SwapExecutor
from .scheduler import InFlightRegistry, PolicyScheduler, is_policy_due
from .spend_limit import SpendAuthorization, SpendLimitGate, to_usd_units, to_usd_value
from .types import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCEEDED,
    ExecutionOutcome,
    InvalidPolicyError,
    Policy,
    PurchaseRecord,
    SpendingPolicy,
    SwapQuote,
    TargetAsset,
    TickSummary,
)

__all__ = [
    "DcaEngine",
    "ExecutionOutcome",
    "InFlightRegistry",
    "InvalidPolicyError",
    "OUTCOME_FAILED",
    "OUTCOME_SKIPPED",
    "OUTCOME_SUCCEEDED",
    "Policy",
    "PolicyScheduler",
    "PurchaseRecord",
    "SpendAuthorization",
    "SpendLimitGate",
    "SpendingPolicy",
    "SwapExecutor",
    "SwapQuote",
    "TargetAsset",
    "TickSummary",
    "is_policy_due",
    "to_usd_units",
    "to_usd_value",
]
