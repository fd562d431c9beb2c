"""Command-line interface for factoryplus-client."""

from __future__ import annotations

import argparse
import asyncio
import configparser
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import constants
from .client import FactoryPlusClient
from .config import ClientConfig, load_config
from .errors import FactoryPlusError
from .events import (
    AliasFailed,
    DecodeFailed,
    MessageEvent,
    RawMessage,
    SequenceGapEvent,
    SessionEvent,
    StateChanged,
)
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)

MASKED_OPTIONS = {("credentials", "secret")}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="factoryplus-client", description="Factory+ Sparkplug client"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve_parser = subparsers.add_parser(
        "resolve", help="Look up the URLs of a Factory+ service"
    )
    resolve_parser.add_argument("service", help="Service name or UUID, e.g. mqtt")

    watch_parser = subparsers.add_parser(
        "watch", help="Connect to the broker and print Sparkplug traffic"
    )
    watch_parser.add_argument(
        "filters",
        nargs="+",
        metavar="filter",
        help="MQTT topic filter, e.g. spBv1.0/+/NDATA/#",
    )

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def format_event(event: SessionEvent) -> str:
    if isinstance(event, MessageEvent):
        values = ", ".join(
            f"{metric.name}={'null' if metric.is_null else metric.value!r}"
            for metric in event.metrics
        )
        seq = event.resolved.seq
        return f"{event.topic} seq={'-' if seq is None else seq} {values}"
    if isinstance(event, SequenceGapEvent):
        return (
            f"{event.topic} sequence gap: expected {event.gap.expected}, "
            f"got {event.gap.received}"
        )
    if isinstance(event, AliasFailed):
        return f"{event.topic} dropped: {event.error}"
    if isinstance(event, DecodeFailed):
        return f"{event.topic} undecodable: {event.error}"
    if isinstance(event, RawMessage):
        return f"{event.topic} ({len(event.data)} bytes, not Sparkplug)"
    if isinstance(event, StateChanged):
        detail = f" ({event.detail})" if event.detail else ""
        return f"-- session {event.state.value}{detail}"
    return repr(event)


async def _resolve(config: ClientConfig, service: str) -> int:
    async with FactoryPlusClient(config) as client:
        for url in await client.resolver.resolve_urls(service):
            print(url)
    return 0


async def _watch(config: ClientConfig, filters: Sequence[str]) -> int:
    async with FactoryPlusClient(config) as client:
        session = await client.connect()
        for topic_filter in filters:
            await session.subscribe(topic_filter)
        async for event in session.events():
            print(format_event(event), flush=True)
    return 0


def _show_config(config: ClientConfig) -> int:
    print(f"Configuration loaded from {config.path!s}\n")
    for section in config.raw.sections():
        print(f"[{section}]")
        for key, value in config.raw[section].items():
            if (section, key) in MASKED_OPTIONS and value:
                value = "***"
            print(f"{key} = {value}")
        print()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ValueError, configparser.Error) as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    if args.command == "show-config":
        return _show_config(config)

    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
        secrets=[config.credentials.secret] if config.credentials else (),
    )

    try:
        if args.command == "resolve":
            return asyncio.run(_resolve(config, args.service))
        if args.command == "watch":
            return asyncio.run(_watch(config, args.filters))
    except FactoryPlusError as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
    except KeyboardInterrupt:
        LOGGER.info("factoryplus-client interrupted")
        return 130

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
