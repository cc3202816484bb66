from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _sanitize_engine_id(value: str, default: str) -> str:
    normalized = (value.strip() or default).replace("/", "-")
    return normalized or default


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    firestore_project_id: str | None
    policies_collection: str
    purchases_collection: str
    engine_collection: str
    engine_id: str
    engine_env: str
    engine_run_id: str
    engine_runs_collection: str
    engine_events_collection: str
    config_schema_version: int
    heartbeat_key: str
    tick_summary_key: str
    execution_guard_prefix: str

    @classmethod
    def from_env(cls) -> "StorageSettings":
        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            policies_collection=(os.getenv("POLICIES_COLLECTION", "schedules").strip("/") or "schedules"),
            purchases_collection=(os.getenv("PURCHASES_COLLECTION", "purchases").strip("/") or "purchases"),
            engine_collection=(os.getenv("ENGINE_COLLECTION", "engines").strip("/") or "engines"),
            engine_id=_sanitize_engine_id(os.getenv("ENGINE_ID", "dca-engine"), "dca-engine"),
            engine_env=os.getenv("ENGINE_ENV", "dev"),
            engine_run_id=os.getenv("ENGINE_RUN_ID")
            or datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ"),
            engine_runs_collection=os.getenv("ENGINE_RUNS_COLLECTION", "runs"),
            engine_events_collection=os.getenv("ENGINE_EVENTS_COLLECTION", "events"),
            config_schema_version=max(1, to_int(os.getenv("CONFIG_SCHEMA_VERSION"), 1)),
            heartbeat_key=os.getenv("REDIS_HEARTBEAT_KEY", "dca:heartbeat"),
            tick_summary_key=os.getenv("REDIS_TICK_SUMMARY_KEY", "dca:tick:last"),
            execution_guard_prefix=os.getenv("REDIS_EXECUTION_GUARD_PREFIX", "dca:guard"),
        )
