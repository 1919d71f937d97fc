"""Schedule collector agent. Use --help for usage."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.config import CollectorConfig, load_config
from core.logging import setup_logging
from core.utils import generate_agent_id
from schedule_collector.agent import CollectorAgent
from schedule_collector.hook_server import HookServer
from schedule_collector.host import HostTrafficHooks
from schedule_collector.scheduler import FAILED_OUTCOMES
from schedule_collector.signals import (
    remove_shutdown_signal_handlers,
    setup_shutdown_signal_handlers,
)

# Project root directory (where .env file is located)
# __main__.py is at src/schedule_collector/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="schedule_collector",
        description="Collect schedule snapshots using credentials observed from host traffic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run continuously with the default config/config.yaml
  python -m schedule_collector

  # Single cycle, then exit (exit code 1 if the cycle failed)
  python -m schedule_collector --once

  # Custom config, JSON logs
  python -m schedule_collector --config /etc/collector.yaml --json-logs
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single collection cycle and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Console log level (overrides config)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines on the console",
    )
    parser.add_argument(
        "--no-hook-server",
        action="store_true",
        help="Do not start the HTTP hook receiver",
    )
    return parser.parse_args(argv)


async def run_agent(config: CollectorConfig, args: argparse.Namespace, agent_id: str) -> int:
    hooks = HostTrafficHooks()
    agent = CollectorAgent(config, hooks, agent_id=agent_id)

    hook_server = None
    if config.hook_server.enabled and not args.no_hook_server:
        hook_server = HookServer(hooks, host=config.hook_server.host, port=config.hook_server.port)
        await hook_server.start()

    try:
        if args.once:
            outcome = await agent.run_once()
            logger.info("Single cycle finished", extra={"cycle_outcome": outcome.value})
            return 1 if outcome in FAILED_OUTCOMES else 0

        shutdown_event = asyncio.Event()
        setup_shutdown_signal_handlers(shutdown_event.set)
        try:
            await agent.start()
            await shutdown_event.wait()
            logger.info("Shutdown signal received, stopping agent")
        finally:
            await agent.stop()
            remove_shutdown_signal_handlers()
        return 0
    finally:
        if hook_server is not None:
            await hook_server.stop()


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        setup_logging(level=args.log_level or "INFO", json_format=args.json_logs)
        logger.error("Configuration error: %s", e)
        return 2

    agent_id = generate_agent_id("collector")
    setup_logging(
        level=args.log_level or config.logging.level,
        json_format=args.json_logs or config.logging.json,
        log_file=config.logging.file,
        worker_id=agent_id,
        domain="schedule",
    )
    logger.info("Starting schedule collector", extra={"url": config.upstream.url})

    try:
        return asyncio.run(run_agent(config, args, agent_id))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
