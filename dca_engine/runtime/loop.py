from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

from dca_engine.common import guarded_call, log_event
from dca_engine.execution import DcaEngine
from dca_engine.storage import StorageGateway

from .loop_helpers import next_tick_deadline, try_resume_executions, wait_with_stop
from .settings import AppSettings


async def run_scheduler_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    engine: DcaEngine,
    healthchecks: Sequence[Callable[[], Awaitable[Any]]] = (),
) -> None:
    loop = asyncio.get_running_loop()
    next_tick = loop.time()

    executions_paused = False
    pause_reason = ""
    resume_checks = [storage.healthcheck, *healthchecks, engine.healthcheck]

    async def pause_executions(*, reason: str, event: str, details: dict[str, Any]) -> None:
        nonlocal executions_paused, pause_reason
        executions_paused = True
        pause_reason = reason
        await guarded_call(
            lambda: storage.publish_event(
                level="ERROR",
                event=event,
                message="Executions paused until dependencies recover",
                details=details,
            ),
            logger=logger,
            event="pause_publish_failed",
            message="Failed to publish pause event",
        )

    while not stop_event.is_set():
        try:
            if executions_paused:
                recovered = await try_resume_executions(
                    logger=logger,
                    healthchecks=resume_checks,
                    pause_reason=pause_reason,
                )
                if not recovered:
                    await guarded_call(
                        storage.update_heartbeat,
                        logger=logger,
                        event="paused_heartbeat_failed",
                        message="Failed to update heartbeat while executions are paused",
                    )
                    continue

                executions_paused = False
                pause_reason = ""
                await guarded_call(
                    lambda: storage.publish_event(
                        level="INFO",
                        event="executions_resumed",
                        message="Executions resumed",
                    ),
                    logger=logger,
                    event="resume_publish_failed",
                    message="Failed to publish resume event",
                )

            summary = await engine.run_tick()
            await guarded_call(
                lambda: storage.update_heartbeat(summary.to_dict()),
                logger=logger,
                event="heartbeat_failed",
                message="Failed to update heartbeat",
            )

            if summary.aborted:
                await pause_executions(
                    reason=summary.abort_reason,
                    event="tick_aborted",
                    details=summary.to_dict(),
                )
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="main_loop_error",
                message="Scheduler tick failed and executions have been paused",
                error=str(error),
            )
            await pause_executions(
                reason=str(error),
                event="executions_paused",
                details={"error": str(error)},
            )
        finally:
            now = loop.time()
            next_tick = next_tick_deadline(
                next_tick=next_tick,
                now=now,
                interval_seconds=app_settings.tick_interval_seconds,
            )
            delay_seconds = max(0.0, next_tick - now)
            if executions_paused:
                delay_seconds = max(delay_seconds, app_settings.error_backoff_seconds)

            await wait_with_stop(stop_event, delay_seconds)
