"""Main entry point for the Lyon transit ingestion service."""

import asyncio
import signal

from lyon_transit.client import GrandLyonClient, create_http_client
from lyon_transit.config import Settings, load_feeds_file
from lyon_transit.database import Database
from lyon_transit.health import HealthServer
from lyon_transit.ingestion import Ingestor
from lyon_transit.logging import configure_logging, get_logger
from lyon_transit.scheduler import IngestionScheduler


async def run() -> None:
    """Run the ingestion service until SIGTERM or SIGINT."""
    # Load settings from environment
    settings = Settings()  # type: ignore[call-arg]

    # Configure logging
    configure_logging(settings.log_level, settings.log_format)
    logger = get_logger(__name__)

    logger.info(
        "starting",
        feeds_config_path=str(settings.feeds_config_path) if settings.feeds_config_path else None,
        static_interval_seconds=settings.static_interval_seconds,
        realtime_interval_seconds=settings.realtime_interval_seconds,
    )

    provider = load_feeds_file(settings.feeds_config_path)

    db = Database.from_url(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )

    http_client = create_http_client(settings.max_connections)
    client = GrandLyonClient(
        http_client,
        api_token=settings.api_token,
        provider=provider,
        line_icons_path=settings.line_icons_csv_path,
    )

    scheduler = IngestionScheduler(
        Ingestor(client, db),
        static_interval=settings.static_interval_seconds,
        realtime_interval=settings.realtime_interval_seconds,
    )

    health_server = HealthServer(
        port=settings.health_port,
        scheduler=scheduler,
    )

    # Set up shutdown handling
    shutdown_event = asyncio.Event()

    def handle_shutdown(signum: int, _frame: object) -> None:
        logger.info("shutdown_signal_received", signal=signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        await health_server.start()
        logger.info("health_server_started", port=settings.health_port)

        await scheduler.start()
        logger.info("scheduler_started", jobs=scheduler.get_job_count())

        await shutdown_event.wait()

    finally:
        # Graceful shutdown
        logger.info("shutting_down")

        await scheduler.stop(wait=True)
        logger.info("scheduler_stopped")

        await health_server.stop()
        logger.info("health_server_stopped")

        await http_client.aclose()
        await db.close()

        logger.info("shutdown_complete")


def main() -> None:
    """Entry point for the Lyon transit ingestion service."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
