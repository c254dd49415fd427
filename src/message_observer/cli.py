"""CLI commands for sqs-message-observer.

This module provides command-line utilities for:
- Validating configuration
- Dumping configuration (with secrets redacted)
- Showing deprecated environment variables
- Watching the observation queue and waiting for a specific message
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

import structlog

from message_observer._version import __version__
from message_observer.config.env_aliases import _DEPRECATED_ALIASES
from message_observer.config.load import load_settings
from message_observer.config.redact import redact_settings_dict
from message_observer.config.settings import Settings
from message_observer.domain.errors import MessageWaitTimeout
from message_observer.domain.models import SourceType
from message_observer.harness.observer import MessageObserver
from message_observer.observability.logger import configure_logging
from message_observer.observability.metrics import render_latest

log = structlog.get_logger(__name__)


def _configure_logging(settings: Settings) -> None:
    configure_logging(
        log_level=settings.observability.log_level,
        log_format=settings.observability.log_format,
        json_logs=settings.observability.json_logs,
    )


def cmd_validate_config(args: argparse.Namespace) -> int:
    """Validate configuration and exit with appropriate code.

    Exit codes:
        0: Configuration is valid
        1: Configuration is invalid
    """
    try:
        settings = load_settings()
        print("✓ Configuration is valid")
        print(f"  - Queue URL: {settings.queue.url}")
        print(f"  - Region: {settings.aws.region}")
        print(f"  - Replay capacity: {settings.harness.replay_capacity}")
        print(f"  - Trigger API: {settings.trigger.api_base_url or '(not set)'}")
        return 0
    except Exception as e:
        print(f"✗ Configuration is invalid: {e}", file=sys.stderr)
        return 1


def cmd_dump_config(args: argparse.Namespace) -> int:
    """Dump current configuration as JSON (with secrets redacted)."""
    try:
        settings = load_settings()
        data = settings.model_dump(mode="json")
        redacted = redact_settings_dict(data)
        print(json.dumps(redacted, indent=2, default=str))
        return 0
    except Exception as e:
        print(f"✗ Failed to load configuration: {e}", file=sys.stderr)
        return 1


def cmd_show_deprecated(args: argparse.Namespace) -> int:
    """Show deprecated environment variables that are in use."""
    found = []
    for old_name, new_name in _DEPRECATED_ALIASES.items():
        if old_name in os.environ:
            found.append((old_name, new_name, os.environ.get(new_name) is None))

    if not found:
        print("No deprecated environment variables in use.")
        return 0

    print("Deprecated environment variables detected:")
    print()
    for old_name, new_name, needs_migration in found:
        status = "NEEDS MIGRATION" if needs_migration else "has canonical override"
        print(f"  {old_name} -> {new_name} ({status})")

    print()
    print("These variables will be removed in a future version.")
    print("Please migrate to the canonical names.")
    return 0


async def _watch(observer: MessageObserver, *, duration: float | None) -> int:
    printed = 0

    def _print(message) -> None:  # noqa: ANN001
        nonlocal printed
        printed += 1
        print(json.dumps(message.to_dict(), ensure_ascii=False), flush=True)

    subscription = observer.replay_log.subscribe(_print)
    try:
        async with observer:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
    finally:
        subscription.close()
    return printed


def cmd_watch(args: argparse.Namespace) -> int:
    """Print every observed message as one JSON line until interrupted."""
    try:
        settings = load_settings()
    except Exception as e:
        print(f"✗ Failed to load configuration: {e}", file=sys.stderr)
        return 1

    _configure_logging(settings)
    observer = MessageObserver.from_settings(settings)
    duration = getattr(args, "duration", None)
    try:
        printed = asyncio.run(_watch(observer, duration=duration))
    except KeyboardInterrupt:
        return 0
    log.info("observer.watch_finished", printed=printed)
    if getattr(args, "metrics", False):
        payload, _content_type = render_latest()
        sys.stderr.write(payload.decode("utf-8"))
    return 0


async def _wait(observer: MessageObserver, args: argparse.Namespace) -> dict[str, str]:
    async with observer:
        message = await observer.wait_for_message(
            args.source_type,
            args.source_id,
            args.payload,
            timeout=args.timeout,
        )
    return message.to_dict()


def cmd_wait(args: argparse.Namespace) -> int:
    """Wait for one message; exit 0 when it is observed and 1 on timeout."""
    try:
        settings = load_settings()
        SourceType.parse(args.source_type)
    except Exception as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    _configure_logging(settings)
    observer = MessageObserver.from_settings(settings)
    try:
        matched = asyncio.run(_wait(observer, args))
    except MessageWaitTimeout as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(json.dumps(matched, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="message-observer",
        description="Observe side-effect messages delivered to an SQS test queue",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    validate_parser = subparsers.add_parser(
        "validate-config",
        help="Validate configuration and exit",
    )
    validate_parser.set_defaults(func=cmd_validate_config)

    dump_parser = subparsers.add_parser(
        "dump-config",
        help="Dump configuration as JSON (secrets redacted)",
    )
    dump_parser.set_defaults(func=cmd_dump_config)

    deprecated_parser = subparsers.add_parser(
        "show-deprecated",
        help="Show deprecated environment variables in use",
    )
    deprecated_parser.set_defaults(func=cmd_show_deprecated)

    watch_parser = subparsers.add_parser(
        "watch",
        help="Print observed messages as JSON lines",
    )
    watch_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    watch_parser.add_argument(
        "--metrics",
        action="store_true",
        help="Write Prometheus metrics to stderr when finished",
    )
    watch_parser.set_defaults(func=cmd_watch)

    wait_parser = subparsers.add_parser(
        "wait",
        help="Wait for one matching message",
    )
    wait_parser.add_argument(
        "--source-type",
        required=True,
        help="broadcast|routedEvent (aliases: sns, eventbridge)",
    )
    wait_parser.add_argument("--source-id", required=True, help="Topic ARN or event bus name")
    wait_parser.add_argument("--payload", required=True, help="Exact payload string to match")
    wait_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait (default: harness.default_wait_timeout_seconds)",
    )
    wait_parser.set_defaults(func=cmd_wait)
    return parser


def main() -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
