"""
txnwatch command-line interface.

Usage: python -m txnwatch <command>

Exit codes: 0 on a clean run, 1 on a configuration error or unhandled
failure, 130 when interrupted.
"""

import asyncio
import sys
from typing import List, Optional

import structlog

from txnwatch.channels.factory import build_channel
from txnwatch.core.config import Settings, get_settings
from txnwatch.core.logging import configure_logging
from txnwatch.db import base
from txnwatch.db.init import create_tables, sanitize_db_url
from txnwatch.sources.registry import AdapterRegistry, build_adapter_registry
from txnwatch.sync.config import ConfigError, SyncConfig, load_sync_config
from txnwatch.sync.cycle import SyncCycle
from txnwatch.sync.notifier import Notifier
from txnwatch.sync.scheduler import Scheduler
from txnwatch.sync.shutdown import ShutdownSignal
from txnwatch.sync.tracker import DiscoveryTracker

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

USAGE = """\
Usage: python -m txnwatch <command> [options]

Commands:
  run [once|continuous]   Run the engine (mode defaults to run_mode from config)
  once                    Run a single cycle and exit
  init-db                 Create database tables
  check-config            Validate the configuration file and exit

Environment:
  CONFIG_FILE             Path to the YAML configuration (default: config.yaml)
  DATABASE_URL            SQLAlchemy async database URL
"""


def load_config(settings: Settings) -> SyncConfig:
    """Load the sync configuration and check every account has an adapter."""
    config = load_sync_config(settings.CONFIG_FILE)
    unsupported = build_adapter_registry(settings).unsupported(config.accounts)
    if unsupported:
        raise ConfigError(
            "No source adapter for: "
            + ", ".join(unsupported)
            + " (set SCRAPER_SERVICE_URL)"
        )
    return config


def print_config_summary(config: SyncConfig, settings: Settings):
    """Pretty print a validated configuration."""
    print("\n=== txnwatch configuration ===\n")
    print(f"Config file: {settings.CONFIG_FILE}")
    print(f"Database: {sanitize_db_url(settings.DATABASE_URL)}")
    print(f"Run mode: {config.run_mode}")
    print(f"Interval: {config.update_interval_minutes} minutes")
    print(f"Fetch window: {config.days_ago} days")
    print(f"Channel: {config.notification.channel}")

    print(f"\n--- Accounts ({len(config.accounts)}) ---")
    for account in config.accounts:
        print(f"{account.company}: {account.display_name}")

    if config.ignore_descriptions:
        print(f"\nIgnored descriptions: {len(config.ignore_descriptions)}")
    print()


async def run_command(mode: Optional[str] = None) -> int:
    """Run the engine until it finishes or is stopped."""
    settings = get_settings()
    config = load_config(settings)
    if mode:
        config = config.model_copy(update={"run_mode": mode})

    await create_tables()

    registry: AdapterRegistry = build_adapter_registry(settings)
    channel = build_channel(
        config.notification, settings, timeout=config.delivery_timeout_seconds
    )
    shutdown = ShutdownSignal()
    shutdown.install_handlers()

    tracker = DiscoveryTracker()
    scheduler = Scheduler(
        config,
        sync_cycle=SyncCycle(config, registry, tracker),
        notifier=Notifier(config, channel),
        tracker=tracker,
        shutdown=shutdown,
    )

    logger.info(
        "engine.starting",
        mode=config.run_mode,
        accounts=len(config.accounts),
        channel=channel.name,
    )
    try:
        await scheduler.run()
    finally:
        await registry.aclose()
        await channel.aclose()
        await base.engine.dispose()

    if shutdown.reason == "SIGINT":
        return EXIT_INTERRUPTED
    return EXIT_OK


async def init_db_command() -> int:
    await create_tables()
    print("Database tables are ready.")
    return EXIT_OK


def check_config_command() -> int:
    settings = get_settings()
    config = load_config(settings)
    build_channel(config.notification, settings)
    print_config_summary(config, settings)
    print("Configuration OK.")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(USAGE)
        return EXIT_FAILURE

    settings = get_settings()
    level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL
    configure_logging(settings.ENV, level, settings.LOG_FILE)

    command = args[0]
    try:
        if command == "run":
            mode = args[1] if len(args) > 1 else None
            if mode not in (None, "once", "continuous"):
                print(f"Unknown run mode: {mode}")
                return EXIT_FAILURE
            return asyncio.run(run_command(mode))
        elif command == "once":
            return asyncio.run(run_command("once"))
        elif command == "init-db":
            return asyncio.run(init_db_command())
        elif command == "check-config":
            return check_config_command()
        else:
            print(f"Unknown command: {command}")
            print(USAGE)
            return EXIT_FAILURE
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"Error: {str(e)}")
        logger.exception("cli.error", command=command)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
