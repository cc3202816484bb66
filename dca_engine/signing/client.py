from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct

from dca_engine.common import log_event

from .types import ActionResult, CapacityCredential, SessionHandle, parse_action_response

WEI_PER_ETHER = Decimal(10) ** 18


class SigningNetworkError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _preview(body: str, limit: int = 300) -> str:
    compact = " ".join(body.split())
    return compact[:limit]


class SigningNetworkClient:
    """HTTP client for the threshold-signing network gateway.

    Every request made on behalf of the delegatee carries an EIP-191 auth
    signature; the network's own signing protocol stays behind the gateway.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        base_url: str,
        delegatee_private_key: str,
        network: str = "datil",
        timeout_seconds: float = 90.0,
    ) -> None:
        self._logger = logger
        self._base_url = base_url.rstrip("/")
        self._network = network
        self._timeout_seconds = timeout_seconds
        self._account = Account.from_key(delegatee_private_key)
        self._session: aiohttp.ClientSession | None = None

    @property
    def delegatee_address(self) -> str:
        return self._account.address.lower()

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def healthcheck(self) -> None:
        await self._request("GET", "/v1/health")

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Signing network HTTP session is not initialized.")

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(
                method,
                url,
                json=payload,
                headers={"Accept": "application/json", "User-Agent": "dca-engine/1.0"},
            ) as response:
                status = response.status
                body = await response.text()
        except aiohttp.ClientError as error:
            raise SigningNetworkError(f"Signing network request {path} failed: {error}") from error

        if status >= 400:
            raise SigningNetworkError(
                f"Signing network request {path} failed: status={status} body={_preview(body)!r}",
                status=status,
            )

        try:
            parsed = json.loads(body) if body else {}
        except json.JSONDecodeError as error:
            raise SigningNetworkError(
                f"Signing network returned non-JSON body for {path}: {_preview(body)!r}",
                status=status,
            ) from error
        if not isinstance(parsed, dict):
            raise SigningNetworkError(f"Signing network returned unexpected payload for {path}", status=status)
        if parsed.get("error") and not parsed.get("response"):
            raise SigningNetworkError(f"Signing network error for {path}: {parsed['error']}", status=status)
        return parsed

    async def _auth_sig(self, *, statement: str, expiration: datetime, resources: list[str]) -> dict[str, str]:
        nonce_payload = await self._request("GET", "/v1/nonce")
        nonce = str(nonce_payload.get("nonce") or "")
        if not nonce:
            raise SigningNetworkError("Signing network did not return a nonce")

        issued_at = datetime.now(timezone.utc)
        lines = [
            f"{self._base_url} wants you to sign in with your Ethereum account:",
            self._account.address,
            "",
            statement,
            "",
            f"URI: lit:session:{self._network}",
            "Version: 1",
            "Chain ID: 1",
            f"Nonce: {nonce}",
            f"Issued At: {issued_at.isoformat()}",
            f"Expiration Time: {expiration.isoformat()}",
        ]
        if resources:
            lines.append("Resources:")
            lines.extend(f"- {resource}" for resource in resources)
        message = "\n".join(lines)

        signed = self._account.sign_message(encode_defunct(text=message))
        return {
            "sig": "0x" + bytes(signed.signature).hex(),
            "derivedVia": "web3.eth.personal.sign",
            "signedMessage": message,
            "address": self._account.address,
        }

    async def get_capacity_mint_cost(self, *, requests_per_kilosecond: int, expires_at: datetime) -> Decimal:
        payload = await self._request(
            "POST",
            "/v1/capacity-credits/cost",
            {
                "network": self._network,
                "requestsPerKilosecond": requests_per_kilosecond,
                "expiresAt": int(expires_at.timestamp()),
            },
        )
        cost_wei = payload.get("costWei", payload.get("cost"))
        try:
            return Decimal(str(cost_wei)) / WEI_PER_ETHER
        except ArithmeticError as error:
            raise SigningNetworkError(f"Invalid capacity credit cost: {cost_wei!r}") from error

    async def mint_capacity_credential(
        self,
        *,
        requests_per_kilosecond: int,
        days_until_utc_midnight_expiration: int,
    ) -> CapacityCredential:
        expiration = datetime.now(timezone.utc) + timedelta(minutes=10)
        auth_sig = await self._auth_sig(
            statement="Mint a capacity credit for the DCA delegatee.",
            expiration=expiration,
            resources=[],
        )
        payload = await self._request(
            "POST",
            "/v1/capacity-credits",
            {
                "network": self._network,
                "requestsPerKilosecond": requests_per_kilosecond,
                "daysUntilUTCMidnightExpiration": days_until_utc_midnight_expiration,
                "authSig": auth_sig,
            },
        )
        token_id = str(payload.get("capacityTokenIdStr") or payload.get("capacityTokenId") or "").strip()
        if not token_id:
            raise SigningNetworkError("Capacity credit mint response did not include a token id")

        credential = CapacityCredential(
            token_id=token_id,
            requests_per_kilosecond=requests_per_kilosecond,
            minted_at=datetime.now(timezone.utc),
            days_until_utc_midnight_expiration=days_until_utc_midnight_expiration,
        )
        log_event(
            self._logger,
            level="info",
            event="capacity_credit_minted",
            message="Capacity credit minted",
            token_id=token_id,
            requests_per_kilosecond=requests_per_kilosecond,
            expires_at=credential.expires_at.isoformat(),
        )
        return credential

    async def create_delegated_session(
        self,
        *,
        credential: CapacityCredential,
        abilities: tuple[str, ...],
        session_duration: timedelta,
        delegation_ttl: timedelta,
    ) -> SessionHandle:
        now = datetime.now(timezone.utc)
        delegation_auth_sig = await self._auth_sig(
            statement=f"Delegate one use of capacity credit {credential.token_id}.",
            expiration=now + delegation_ttl,
            resources=[f"lit-ratelimitincrease://{credential.token_id}"],
        )
        delegation = await self._request(
            "POST",
            "/v1/capacity-delegations",
            {
                "network": self._network,
                "capacityTokenId": credential.token_id,
                "uses": "1",
                "expiration": (now + delegation_ttl).isoformat(),
                "authSig": delegation_auth_sig,
            },
        )
        capability_sig = delegation.get("capacityDelegationAuthSig")
        if not capability_sig:
            raise SigningNetworkError("Capacity delegation response did not include an auth signature")

        expires_at = now + session_duration
        session_auth_sig = await self._auth_sig(
            statement="Create a session to execute one signed action.",
            expiration=expires_at,
            resources=[f"lit-litaction://*#{ability}" for ability in abilities],
        )
        payload = await self._request(
            "POST",
            "/v1/sessions",
            {
                "network": self._network,
                "chain": "ethereum",
                "expiration": expires_at.isoformat(),
                "resourceAbilityRequests": [{"resource": "lit-litaction://*", "ability": a} for a in abilities],
                "capabilityAuthSigs": [capability_sig],
                "authSig": session_auth_sig,
            },
        )
        session_sigs = payload.get("sessionSigs")
        if not isinstance(session_sigs, dict) or not session_sigs:
            raise SigningNetworkError("Session response did not include session signatures")
        return SessionHandle(session_sigs=session_sigs, expires_at=expires_at, abilities=abilities)

    async def submit_action(
        self,
        *,
        session: SessionHandle,
        action_id: str,
        params: dict[str, Any],
    ) -> ActionResult:
        payload = await self._request(
            "POST",
            "/v1/actions/execute",
            {
                "network": self._network,
                "sessionSigs": session.session_sigs,
                "ipfsId": action_id,
                "jsParams": {"litActionParams": params},
            },
        )
        return parse_action_response(payload)
