"""Application entry point and CLI for kiosk-resilience.

This module implements the main entry point: CLI argument parsing,
configuration loading, logging setup, component wiring and signal handling.

Signals:
- SIGINT / SIGTERM: unauthorized close request, answered with a restart
- SIGUSR1: admin-authorized shutdown
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Coroutine
from datetime import timedelta
from pathlib import Path
from typing import NoReturn

from kiosk_resilience.core.config import MainConfig, load_config
from kiosk_resilience.core.feeds import FeedManager, HttpHealthProbe, HttpUpdateTransport, IpApiRegionResolver
from kiosk_resilience.core.retry import ErrorLog, ErrorLogStore, NetworkRecovery, RecoveryRegistry, RetryEngine
from kiosk_resilience.core.scheduler import AsyncioScheduler
from kiosk_resilience.core.supervisor import FileHeartbeat, ProcessSupervisor, SubprocessDisplayPort
from kiosk_resilience.errors import ConfigurationError, EnvironmentVariableError
from kiosk_resilience.notifications import HttpErrorCollector, LoggingNotifier, WebhookNotifier
from kiosk_resilience.types import (
    DisplayEvent,
    DisplayEventKind,
    ErrorCollector,
    ErrorSeverity,
    OperatorNotifier,
)
from kiosk_resilience.utils.http_client import AIOHTTPClient
from kiosk_resilience.utils.logging import configure_logging

__all__ = ["main"]

DEFAULT_CONFIG_PATH: Path = Path("/etc/kiosk-resilience/config.yaml")

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 1

logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    CLI Arguments:
        --config, -c: Path to the configuration file
        --log-level: Override log level from config
        --no-syslog: Disable syslog integration
    """
    parser = argparse.ArgumentParser(
        prog="kiosk-resilience",
        description="Supervise an unattended kiosk UI with automatic restarts and update feed failover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kiosk-resilience
  kiosk-resilience --config /path/to/config.yaml
  kiosk-resilience --no-syslog --log-level DEBUG

Send SIGUSR1 to shut the kiosk down as an administrator.
        """,
    )

    _ = parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
        metavar="PATH",
    )

    _ = parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
        metavar="LEVEL",
    )

    _ = parser.add_argument(
        "--no-syslog",
        action="store_true",
        help="Disable syslog integration (useful for development)",
    )

    return parser.parse_args(argv)


def build_notifier(config: MainConfig, client: AIOHTTPClient) -> OperatorNotifier:
    if config.notifications.webhook_url:
        return WebhookNotifier(client, config.notifications.webhook_url, timeout=config.notifications.timeout)
    return LoggingNotifier()


def build_supervisor(config: MainConfig, client: AIOHTTPClient, scheduler: AsyncioScheduler) -> ProcessSupervisor:
    """Wire every component of the resilience core from configuration."""
    notifier = build_notifier(config, client)

    collector: ErrorCollector | None = None
    if config.error_log.collector_url:
        collector = HttpErrorCollector(client, config.error_log.collector_url)

    error_log = ErrorLog(
        notifier=notifier,
        collector=collector,
        store=ErrorLogStore(config.error_log.storage_file) if config.error_log.storage_file else None,
        retention=timedelta(days=config.error_log.retention_days),
    )
    retry_engine = RetryEngine(
        error_log=error_log,
        scheduler=scheduler,
        recovery=RecoveryRegistry({"network": NetworkRecovery()}),
        default_config=config.retry.to_retry_config(),
        sweep_interval=config.retry.sweep_interval,
        cleanup_interval=config.error_log.cleanup_interval,
    )

    feeds = config.feeds
    region_resolver = IpApiRegionResolver(client, url=feeds.region_lookup_url) if feeds.region_lookup_url else None
    feed_manager = FeedManager(
        feeds.to_feeds(),
        transport=HttpUpdateTransport(client, config.application.version, timeout=feeds.check_timeout),
        prober=HttpHealthProbe(client, timeout=feeds.health_check_timeout),
        scheduler=scheduler,
        region_resolver=region_resolver,
        max_retries=feeds.max_retries,
        retry_delay=feeds.retry_delay,
        failover_delay=feeds.failover_delay,
        check_timeout=feeds.check_timeout,
        initial_check_delay=feeds.initial_check_delay,
        check_interval=feeds.check_interval,
    )

    supervisor_config = config.supervisor
    display = SubprocessDisplayPort(
        supervisor_config.command,
        fullscreen_args=supervisor_config.fullscreen_args,
        hang_threshold=supervisor_config.hang_threshold,
    )
    heartbeat = FileHeartbeat(supervisor_config.heartbeat_file) if supervisor_config.heartbeat_file else None

    return ProcessSupervisor(
        display,
        notifier,
        scheduler,
        policy=supervisor_config.to_policy(),
        heartbeat=heartbeat,
        heartbeat_interval=supervisor_config.heartbeat_interval,
        cleanup_timeout=supervisor_config.cleanup_timeout,
        feed_manager=feed_manager,
        retry_engine=retry_engine,
    )


async def async_main(
    *,
    config_path: Path,
    log_level: str | None = None,
    enable_syslog: bool = True,
) -> None:
    """Async main function implementing the application lifecycle.

    Runs until an admin-authorized shutdown completes.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config = load_config(config_path)

    configure_logging(
        log_level=log_level or config.application.log_level,
        enable_syslog=enable_syslog and config.application.syslog_enabled,
        enable_console=True,
    )
    logger.info(
        "kiosk-resilience %s starting",
        config.application.version,
        extra={"config_path": str(config_path)},
    )

    scheduler = AsyncioScheduler()
    loop = asyncio.get_running_loop()
    signal_tasks: set[asyncio.Task[None]] = set()

    async with AIOHTTPClient(user_agent=f"kiosk-resilience/{config.application.version}") as client:
        supervisor = build_supervisor(config, client, scheduler)
        error_log = supervisor.retry_engine.error_log if supervisor.retry_engine is not None else None

        def spawn(coro: Coroutine[object, object, None]) -> None:
            task = asyncio.create_task(coro)
            signal_tasks.add(task)
            task.add_done_callback(signal_tasks.discard)

        def intercept_close(signum: int) -> None:
            logger.warning("Received %s, treating it as an unauthorized close request", signal.Signals(signum).name)
            spawn(supervisor.handle_event(DisplayEvent(DisplayEventKind.CLOSE_REQUESTED)))

        def request_admin_shutdown() -> None:
            logger.info("Received SIGUSR1, starting admin shutdown")
            spawn(supervisor.admin_shutdown())

        def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, object]) -> None:
            exc = context.get("exception")
            if error_log is not None and isinstance(exc, Exception):
                _ = error_log.record(exc, "event_loop", ErrorSeverity.HIGH)
            loop.default_exception_handler(context)

        loop.set_exception_handler(handle_loop_exception)
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, intercept_close, sig)
        loop.add_signal_handler(signal.SIGUSR1, request_admin_shutdown)

        try:
            await supervisor.start()
            await supervisor.wait_closed()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGUSR1):
                _ = loop.remove_signal_handler(sig)
            loop.set_exception_handler(None)
            scheduler.cancel_all()
            if error_log is not None:
                await error_log.wait_pending()
            logger.info("kiosk-resilience shutdown complete")


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point.

    Exit Codes:
        0: Clean admin shutdown
        1: Configuration error or runtime error
    """
    args = parse_arguments(argv)

    config_path_arg: Path = args.config  # pyright: ignore[reportAny]  # argparse boundary
    log_level_arg: str | None = args.log_level  # pyright: ignore[reportAny]  # argparse boundary
    no_syslog_arg: bool = args.no_syslog  # pyright: ignore[reportAny]  # argparse boundary

    try:
        asyncio.run(
            async_main(
                config_path=config_path_arg,
                log_level=log_level_arg,
                enable_syslog=not no_syslog_arg,
            )
        )

    except ConfigurationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except EnvironmentVariableError as exc:
        print(f"Environment variable error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except Exception as exc:
        print(f"Runtime error: {exc}", file=sys.stderr)
        logging.exception("Unexpected error during application execution")
        sys.exit(EXIT_RUNTIME_ERROR)

    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
