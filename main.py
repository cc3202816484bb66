from __future__ import annotations

import asyncio
import contextlib
import signal

from dotenv import load_dotenv

from dca_engine.common import guarded_call, log_event
from dca_engine.runtime import (
    AppSettings,
    bootstrap_dependencies,
    close_clients,
    run_scheduler_loop,
    setup_logger,
)
from dca_engine.runtime.wiring import build_components
from dca_engine.storage import StorageGateway, StorageSettings


async def main() -> None:
    load_dotenv()
    logger = setup_logger()

    app_settings = AppSettings.from_env()
    app_settings.require_complete()
    storage_settings = StorageSettings.from_env()

    storage = StorageGateway(storage_settings, logger)
    components = build_components(logger=logger, app_settings=app_settings, storage=storage)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    await bootstrap_dependencies(
        logger=logger,
        stop_event=stop_event,
        app_settings=app_settings,
        storage=storage,
        clients=components.clients,
    )

    await guarded_call(
        lambda: storage.publish_event(
            level="INFO",
            event="engine_started",
            message="DCA engine started",
            details={
                "tick_interval_seconds": app_settings.tick_interval_seconds,
                "max_concurrent_executions": app_settings.max_concurrent_executions,
                "spend_limit_enabled": app_settings.spend_limit_enabled,
                "chain": app_settings.chain_name,
                "delegatee_address": components.signing.delegatee_address,
            },
        ),
        logger=logger,
        event="startup_publish_failed",
        message="Failed to publish startup event",
    )

    try:
        await run_scheduler_loop(
            logger=logger,
            stop_event=stop_event,
            app_settings=app_settings,
            storage=storage,
            engine=components.engine,
            healthchecks=components.healthchecks,
        )
    finally:
        await guarded_call(
            lambda: storage.publish_event(
                level="INFO",
                event="engine_stopped",
                message="DCA engine stopped",
            ),
            logger=logger,
            event="shutdown_publish_failed",
            message="Failed to publish shutdown event",
        )
        await storage.mark_run_stopped(reason="shutdown")
        await close_clients(logger=logger, clients=components.clients)
        await guarded_call(
            storage.close,
            logger=logger,
            event="storage_close_failed",
            message="Failed to close storage",
        )


if __name__ == "__main__":
    asyncio.run(main())
