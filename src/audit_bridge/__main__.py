"""Audit stream bridge entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config import load_config
from config.config import BridgeConfig
from core.logging import log_exception, log_startup_banner, set_log_context, setup_logging
from core.utils import generate_worker_id

from audit_bridge import __version__
from audit_bridge.backfill import backfill
from audit_bridge.bridge import AuditStreamBridge, BridgeSettings
from audit_bridge.kinesis import KinesisStreamClient, RetryingStreamClient, create_kinesis_client
from audit_bridge.sink import DynamoEventSink, EventSink, LoggingEventSink

# __main__.py is at src/audit_bridge/__main__.py, so the project root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="audit_bridge",
        description="Bridge audit events from a Kinesis stream into the audit table",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Read every shard of the configured stream into DynamoDB
    python -m audit_bridge run

    # Against LocalStack, only logging the decoded events
    APP_ENVIRONMENT=local python -m audit_bridge run --dry-run

    # Write a JSON array of events through the decoder into the table
    python -m audit_bridge backfill events.json
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Base config file (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--environment",
        choices=["local", "production"],
        default=None,
        help="Config overlay to apply (default: APP_ENVIRONMENT or local)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log decoded events instead of writing them to DynamoDB",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping the file handler. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Consume the stream until every shard closes")
    run_parser.add_argument("--stream", default=None, help="Override the configured stream name")
    run_parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port",
    )

    backfill_parser = subparsers.add_parser(
        "backfill", help="Decode a JSON array of events and write them to the sink"
    )
    backfill_parser.add_argument("path", type=Path, help="JSON file holding an array of events")

    return parser.parse_args(argv)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("true", "1", "yes")


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            available_port = s.getsockname()[1]
        start_http_server(available_port)
        return available_port


def build_sink(config: BridgeConfig, dry_run: bool) -> EventSink:
    if dry_run:
        return LoggingEventSink()

    import boto3

    dynamodb = boto3.resource(
        "dynamodb", region_name=config.region, endpoint_url=config.endpoint_url
    )
    return DynamoEventSink(
        dynamodb.Table(config.dynamo_table_name),
        retry_config=config.get_retry_config(),
    )


def build_stream_client(config: BridgeConfig) -> RetryingStreamClient:
    client = create_kinesis_client(config.region, config.endpoint_url)
    return RetryingStreamClient(
        KinesisStreamClient(config.stream_name, client, fetch_limit=config.fetch_limit),
        retry_config=config.get_retry_config(),
    )


async def run_bridge(config: BridgeConfig, sink: EventSink) -> int:
    bridge = AuditStreamBridge(
        build_stream_client(config),
        sink,
        BridgeSettings.from_config(config),
    )
    result = await bridge.run()
    if not result.ok:
        logger.error(
            "Bridge finished with failed shards",
            extra={"failed_shards": sorted(result.failed_shards)},
        )
        return 1
    return 0


async def run_backfill(path: Path, sink: EventSink) -> int:
    result = await backfill(path, sink)
    return 1 if result.decode_failures else 0


def _run_until_signalled(coro) -> int:
    """Run coro on a fresh loop; SIGINT/SIGTERM cancel it."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(coro, name="audit-bridge")

    def handle_signal(sig):
        logger.info("Received signal, shutting down", extra={"signal": sig.name})
        task.cancel()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        return loop.run_until_complete(task)
    except asyncio.CancelledError:
        logger.info("Bridge cancelled")
        return 130
    finally:
        loop.close()
        asyncio.set_event_loop(None)


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("audit-bridge")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")
    setup_logging(
        name="audit_bridge",
        log_dir=log_dir,
        json_format=_env_flag("JSON_LOGS") or not sys.stdout.isatty(),
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )
    set_log_context(stage=args.command)
    logger = logging.getLogger(__name__)

    overrides = {}
    if getattr(args, "stream", None):
        overrides = {"stream": {"name": args.stream}}

    try:
        config = load_config(args.config, args.environment, overrides)
    except (ValueError, FileNotFoundError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 2

    metrics_port = None
    if getattr(args, "metrics_port", None):
        metrics_port = start_metrics_server(args.metrics_port)

    log_startup_banner(
        logger,
        worker_name="Audit Stream Bridge",
        version=__version__,
        worker_id=worker_id,
        stream=config.stream_name,
        region=config.region,
        endpoint_url=config.endpoint_url,
        table="(dry run)" if args.dry_run else config.dynamo_table_name,
        metrics_port=metrics_port,
    )

    sink = build_sink(config, args.dry_run)

    try:
        if args.command == "backfill":
            return _run_until_signalled(run_backfill(args.path, sink))
        return _run_until_signalled(run_bridge(config, sink))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return 130
    except Exception as e:
        log_exception(logger, e, "Fatal error")
        return 1


if __name__ == "__main__":
    sys.exit(main())
