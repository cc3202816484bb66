from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

LIT_ACTION_EXECUTION = "lit-action-execution"


def utc_midnight_after(moment: datetime, days: int) -> datetime:
    """UTC midnight at the start of the day ``days`` after ``moment``'s UTC date."""
    anchor = moment.astimezone(timezone.utc)
    start_of_day = anchor.replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day + timedelta(days=days)


@dataclass(slots=True, frozen=True)
class CapacityCredential:
    token_id: str
    requests_per_kilosecond: int
    minted_at: datetime
    days_until_utc_midnight_expiration: int

    @property
    def expires_at(self) -> datetime:
        return utc_midnight_after(self.minted_at, self.days_until_utc_midnight_expiration)

    def expiry_boundary(self, early_expiration: timedelta) -> datetime:
        return self.expires_at - early_expiration

    def is_expired(self, now: datetime, early_expiration: timedelta) -> bool:
        return now >= self.expiry_boundary(early_expiration)


@dataclass(slots=True, frozen=True)
class SessionHandle:
    session_sigs: dict[str, Any]
    expires_at: datetime
    abilities: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class ActionResult:
    success: bool
    status: str
    tx_hash: str | None
    error: str | None
    raw: dict[str, Any] = field(default_factory=dict)


def _error_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        message = value.get("message") or value.get("error")
        if message:
            return str(message)
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def parse_action_response(payload: Any) -> ActionResult:
    """Interpret a swap action response.

    The action returns its result as a JSON string under ``response``; some
    gateways unwrap it already, so both shapes are accepted.
    """
    body: Any = payload
    if isinstance(payload, dict) and "response" in payload:
        body = payload.get("response")
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            return ActionResult(
                success=False,
                status="invalid_response",
                tx_hash=None,
                error=f"Unparseable action response: {body[:200]}",
                raw={"response": body},
            )
    if not isinstance(body, dict):
        return ActionResult(
            success=False,
            status="invalid_response",
            tx_hash=None,
            error="Action response is not an object",
            raw={"response": body},
        )

    status = str(body.get("status") or "").strip().lower()
    tx_hash_raw = body.get("swapHash") or body.get("txHash") or body.get("transactionHash")
    tx_hash = str(tx_hash_raw).strip().lower() if tx_hash_raw else None
    success = status == "success"
    error = _error_text(body.get("error"))
    if not success and not error:
        error = f"Swap action returned status {status or 'unknown'}"

    return ActionResult(
        success=success,
        status=status or "unknown",
        tx_hash=tx_hash if success else None,
        error=None if success else error,
        raw=body,
    )
