from .spending_limits import SPENDING_LIMITS_ABI, SpendingLimitsContractStore, SpendRecordError

__all__ = [
    "SPENDING_LIMITS_ABI",
    "SpendRecordError",
    "SpendingLimitsContractStore",
]
