from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from dca_engine.common import guarded_call, log_event

if TYPE_CHECKING:
    from dca_engine.storage import StorageGateway

    from .settings import AppSettings


async def wait_with_stop(stop_event: asyncio.Event, timeout_seconds: float) -> None:
    if timeout_seconds <= 0:
        return

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        pass


def next_tick_deadline(*, next_tick: float, now: float, interval_seconds: float) -> float:
    """Advance ``next_tick`` by one interval, skipping any cycles already missed."""
    next_tick += interval_seconds
    if next_tick <= now:
        missed_cycles = int((now - next_tick) / interval_seconds) + 1
        next_tick += missed_cycles * interval_seconds
    return next_tick


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    clients: Sequence[Any],
) -> None:
    while not stop_event.is_set():
        try:
            await storage.connect()
            for client in clients:
                await client.connect()
            return
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                error=str(error),
            )
            await guarded_call(
                lambda: storage.publish_event(
                    level="ERROR",
                    event="bootstrap_error",
                    message="Failed to initialize dependencies",
                    details={"error": str(error)},
                ),
                logger=logger,
                event="bootstrap_publish_error_failed",
                message="Failed to publish bootstrap error",
            )
            for client in clients:
                await guarded_call(
                    client.close,
                    logger=logger,
                    event="bootstrap_client_close_failed",
                    message="Failed to close client during bootstrap retry",
                    client=type(client).__name__,
                )
            await guarded_call(
                storage.close,
                logger=logger,
                event="bootstrap_storage_close_failed",
                message="Failed to close storage during bootstrap retry",
            )
            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


async def try_resume_executions(
    *,
    logger: logging.Logger,
    healthchecks: Sequence[Callable[[], Awaitable[Any]]],
    pause_reason: str,
) -> bool:
    try:
        for healthcheck in healthchecks:
            await healthcheck()
        log_event(
            logger,
            level="info",
            event="executions_resumed",
            message="Executions resumed after health check passed",
            reason=pause_reason,
        )
        return True
    except Exception as error:
        log_event(
            logger,
            level="warning",
            event="executions_still_paused",
            message="Executions remain paused",
            reason=pause_reason,
            error=str(error),
        )
        return False


async def close_clients(*, logger: logging.Logger, clients: Sequence[Any]) -> None:
    for client in clients:
        await guarded_call(
            client.close,
            logger=logger,
            event="client_close_failed",
            message="Failed to close client",
            client=type(client).__name__,
        )


__all__ = [
    "bootstrap_dependencies",
    "close_clients",
    "next_tick_deadline",
    "try_resume_executions",
    "wait_with_stop",
]
