from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any

from google.cloud import firestore

from dca_engine.common import guarded_call, log_event
from dca_engine.execution.types import InvalidPolicyError, Policy, PurchaseRecord

from .helpers import doc_id_from_text as _doc_id_from_text


class FirestoreStorageOps:
    async def find_active_policies(self) -> list[Policy]:
        query = self._policies_collection().where(filter=firestore.FieldFilter("active", "==", True))
        snapshots = await asyncio.to_thread(lambda: list(query.stream()))
        policies: list[Policy] = []
        for snapshot in snapshots:
            policy = self._policy_from_snapshot(snapshot)
            if policy is not None and policy.active:
                policies.append(policy)
        return policies

    async def find_policy_by_wallet(self, wallet_address: str) -> Policy | None:
        query = self._policies_collection().where(
            filter=firestore.FieldFilter("walletAddress", "==", wallet_address.lower())
        )
        snapshots = await asyncio.to_thread(lambda: list(query.stream()))
        fallback: Policy | None = None
        for snapshot in snapshots:
            policy = self._policy_from_snapshot(snapshot)
            if policy is None:
                continue
            if policy.active:
                return policy
            fallback = fallback or policy
        return fallback

    async def find_latest_purchase(self, policy_id: str) -> PurchaseRecord | None:
        query = (
            self._purchases_collection()
            .where(filter=firestore.FieldFilter("scheduleId", "==", policy_id))
            .order_by("purchasedAt", direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        snapshots = await asyncio.to_thread(lambda: list(query.stream()))
        if not snapshots:
            return None
        return PurchaseRecord.from_document(snapshots[0].to_dict() or {})

    async def list_purchases(self, wallet_address: str, limit: int) -> list[PurchaseRecord]:
        query = (
            self._purchases_collection()
            .where(filter=firestore.FieldFilter("walletAddress", "==", wallet_address.lower()))
            .order_by("purchasedAt", direction=firestore.Query.DESCENDING)
            .limit(max(1, limit))
        )
        snapshots = await asyncio.to_thread(lambda: list(query.stream()))
        return [PurchaseRecord.from_document(snapshot.to_dict() or {}) for snapshot in snapshots]

    async def insert_purchase_record(self, record: PurchaseRecord) -> str:
        collection = self._purchases_collection()
        payload = record.to_document()
        payload["engineId"] = self.settings.engine_id
        payload["runId"] = self.settings.engine_run_id
        payload["createdAt"] = firestore.SERVER_TIMESTAMP

        if record.tx_hash:
            # create() fails with AlreadyExists, so a tx hash is recorded once.
            document_id = _doc_id_from_text(record.tx_hash.lower())
            await asyncio.to_thread(collection.document(document_id).create, payload)
            return document_id

        _update_time, document_ref = await asyncio.to_thread(collection.add, payload)
        return document_ref.id

    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
        event_id: str | None = None,
    ) -> None:
        if self._firestore is None or self._events_collection_ref is None:
            log_event(
                self._logger,
                level="warning",
                event="publish_skipped",
                message="Skipping Firestore event because client is not ready",
            )
            return

        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc),
            "server_timestamp": firestore.SERVER_TIMESTAMP,
            "level": level,
            "event": event,
            "message": message,
            "engine_id": self.settings.engine_id,
            "run_id": self.settings.engine_run_id,
            "env": self.settings.engine_env,
            "schema_version": self.settings.config_schema_version,
        }
        if details:
            payload["details"] = details

        async def write_event() -> None:
            if event_id:
                event_ref = self._events_collection_ref.document(_doc_id_from_text(event_id))
                await asyncio.to_thread(event_ref.set, payload, merge=True)
                return

            await asyncio.to_thread(self._events_collection_ref.add, payload)

        await guarded_call(
            write_event,
            logger=self._logger,
            event="publish_failed",
            message="Failed to publish Firestore event",
            level="error",
        )

    async def mark_run_stopped(self, *, reason: str) -> None:
        if self._run_doc_ref is None:
            return

        payload = {
            "status": "stopped",
            "stop_reason": reason,
            "stopped_at": firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }
        await guarded_call(
            lambda: asyncio.to_thread(self._run_doc_ref.set, payload, merge=True),
            logger=self._logger,
            event="run_status_update_failed",
            message="Failed to update run status",
        )

    def _policy_from_snapshot(self, snapshot: Any) -> Policy | None:
        try:
            return Policy.from_document(snapshot.id, snapshot.to_dict() or {})
        except InvalidPolicyError as error:
            log_event(
                self._logger,
                level="warning",
                event="policy_invalid",
                message="Skipping policy document that failed validation",
                policy_id=snapshot.id,
                error=str(error),
            )
            return None

    async def _ensure_engine_namespace(self) -> None:
        if self._engine_doc_ref is None or self._run_doc_ref is None:
            raise RuntimeError("Firestore namespace references are not initialized.")

        engine_payload: dict[str, Any] = {
            "engine_id": self.settings.engine_id,
            "env": self.settings.engine_env,
            "schema_version": self.settings.config_schema_version,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }
        run_payload: dict[str, Any] = {
            "run_id": self.settings.engine_run_id,
            "engine_id": self.settings.engine_id,
            "env": self.settings.engine_env,
            "status": "running",
            "pid": os.getpid(),
            "started_at": firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }

        await asyncio.gather(
            asyncio.to_thread(self._engine_doc_ref.set, engine_payload, merge=True),
            asyncio.to_thread(self._run_doc_ref.set, run_payload, merge=True),
        )

    def _initialize_namespace_refs(self) -> None:
        firestore_client = self._require_firestore()

        self._engine_doc_ref = firestore_client.document(
            f"{self.settings.engine_collection}/{self.settings.engine_id}"
        )
        self._run_doc_ref = self._engine_doc_ref.collection(self.settings.engine_runs_collection).document(
            self.settings.engine_run_id
        )
        self._events_collection_ref = self._run_doc_ref.collection(self.settings.engine_events_collection)

    def _policies_collection(self) -> Any:
        return self._require_firestore().collection(self.settings.policies_collection)

    def _purchases_collection(self) -> Any:
        return self._require_firestore().collection(self.settings.purchases_collection)

    def _require_firestore(self) -> firestore.Client:
        if self._firestore is None:
            raise RuntimeError("Firestore client is not initialized.")
        return self._firestore
