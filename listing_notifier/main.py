"""Main entry point for the Listing Notifier service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from listing_notifier.config.environment import EnvironmentConfig
from listing_notifier.config.exceptions import ConfigurationError
from listing_notifier.config.loader import load_config
from listing_notifier.config.models import AppConfig
from listing_notifier.delivery import DeliveryQueue, TelegramClient
from listing_notifier.ingestion import ListingIngestor, ListingsClient
from listing_notifier.logging import get_logger
from listing_notifier.logging.config import configure_logging
from listing_notifier.matching import MatchEngine
from listing_notifier.notifications import (
    CaptionRenderer,
    NotificationScheduler,
    ReminderScheduler,
    ThumbnailRenderer,
)
from listing_notifier.persistence.database import close_database, init_database
from listing_notifier.pipeline import ProcessPipeline, ScanPipeline
from listing_notifier.scheduler import SchedulerService

logger = get_logger(__name__, component="cli")


@dataclass
class Application:
    """Wired service objects shared by both run modes."""

    queue: DeliveryQueue
    telegram_client: TelegramClient
    listings_client: ListingsClient
    scan_pipeline: ScanPipeline
    process_pipeline: ProcessPipeline
    reminder_scheduler: ReminderScheduler

    def close(self) -> None:
        self.listings_client.close()
        self.telegram_client.close()


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and apply the log level priority: CLI > environment > config.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_application(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    telegram_client: Optional[TelegramClient] = None,
    listings_client: Optional[ListingsClient] = None,
    autostart_queue: bool = True,
) -> Application:
    """Create the delivery queue, schedulers and pipelines from configuration."""
    telegram_client = telegram_client or TelegramClient(
        env_config.telegram_bot_token, timeout=app_config.delivery.send_timeout
    )
    listings_client = listings_client or ListingsClient(app_config.listings)

    queue = DeliveryQueue.from_config(telegram_client, app_config.delivery, autostart=autostart_queue)
    caption_renderer = CaptionRenderer()
    thumbnail_renderer = ThumbnailRenderer(env_config.listing_image_url)

    notification_scheduler = NotificationScheduler(
        queue,
        caption_renderer=caption_renderer,
        thumbnail_renderer=thumbnail_renderer,
        config=app_config.notifications,
        reminder_interval_hours=app_config.reminders.default_interval_hours,
        listings_base_url=app_config.listings.base_url,
    )
    reminder_scheduler = ReminderScheduler(
        queue,
        caption_renderer=caption_renderer,
        thumbnail_renderer=thumbnail_renderer,
        config=app_config.reminders,
        listings_base_url=app_config.listings.base_url,
    )

    return Application(
        queue=queue,
        telegram_client=telegram_client,
        listings_client=listings_client,
        scan_pipeline=ScanPipeline(ListingIngestor(listings_client, app_config.listings)),
        process_pipeline=ProcessPipeline(
            MatchEngine(), notification_scheduler, reminder_scheduler, queue
        ),
        reminder_scheduler=reminder_scheduler,
    )


def run_manual(app: Application) -> int:
    """Run one scan tick and one process tick, then deliver everything queued."""
    logger.info("Executing manual run", extra={"event": "service.manual_run.starting"})

    scan = app.scan_pipeline.run_once()
    tick = app.process_pipeline.run_once()
    app.queue.drain()

    failed_steps = [step.name for step in tick.steps if not step.succeeded]
    ingestion = scan.ingestion
    logger.info(
        f"Manual run completed: "
        f"{ingestion.upserted if ingestion else 0} listings stored, "
        f"failed steps: {', '.join(failed_steps) or 'none'}",
        extra={
            "event": "service.manual_run.completed",
            "scan_had_errors": scan.had_errors,
            "tick_had_errors": tick.had_errors,
            "duration_seconds": tick.duration_seconds,
        },
    )
    return 1 if scan.had_errors or tick.had_errors else 0


def run_daemon(app: Application, app_config: AppConfig) -> int:
    """Run both ticks on their schedules until SIGINT or SIGTERM."""
    shutdown_event = threading.Event()

    scheduler_service = SchedulerService(
        scan_callable=app.scan_pipeline.run_once,
        process_callable=app.process_pipeline.run_once,
        scan_interval_seconds=app_config.scan_interval_seconds,
        process_interval_seconds=app_config.process_interval_seconds,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info(
        "Scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )
        scheduler_service.shutdown(wait=False)

    pending = app.queue.get_status().queue_size
    if pending:
        logger.warning(
            f"Discarding {pending} undelivered message(s) on shutdown",
            extra={"event": "service.queue.discarded", "count": pending},
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Listing Notifier - skill-matched listing alerts and reminders over Telegram"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml if present)",
    )
    parser.add_argument(
        "--manual-run",
        action="store_true",
        help="Run one scan and one process tick, deliver queued messages and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the Listing Notifier.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Listing Notifier starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "environment": env_config.environment,
                "log_level": env_config.log_level,
                "manual_run": args.manual_run,
                "scan_interval_seconds": app_config.scan_interval_seconds,
                "process_interval_seconds": app_config.process_interval_seconds,
            },
        )

        init_database(env_config.database_url)
        app = build_application(app_config, env_config)

        try:
            if args.manual_run:
                exit_code = run_manual(app)
            else:
                exit_code = run_daemon(app, app_config)
        finally:
            app.close()
            close_database()

        logger.info(
            "Listing Notifier stopped",
            extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
        )
        return exit_code

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={"event": "service.startup.failed", "error_type": type(e).__name__, "error": str(e)},
            exc_info=True,
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
