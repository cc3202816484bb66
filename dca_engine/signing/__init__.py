from .capacity import CapacityCredentialManager
from .client import SigningNetworkClient, SigningNetworkError
from .types import (
    LIT_ACTION_EXECUTION,
    ActionResult,
    CapacityCredential,
    SessionHandle,
    parse_action_response,
    utc_midnight_after,
)

__all__ = [
    "ActionResult",
    "CapacityCredential",
    "CapacityCredentialManager",
    "LIT_ACTION_EXECUTION",
    "SessionHandle",
    "SigningNetworkClient",
    "SigningNetworkError",
    "parse_action_response",
    "utc_midnight_after",
]
