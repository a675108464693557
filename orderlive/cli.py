"""Command-line entry points.

    orderlive bridge                 host the Delivery Bridge
    orderlive feed                   host a development change-feed relay
    orderlive track ORDER_ID         follow one order in the terminal
    orderlive publish ORDER_ID STATUS [--items]
    orderlive push [TEXT]            deliver a push body to the bridge
    orderlive queue URL BODY         queue an order request for the next sync
    orderlive sync [TAG]             fire a background-sync trigger
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Optional

import structlog

from .bridge_service import run_bridge_server
from .client import BridgeClient
from .config import Settings
from .errors import OrderLiveError
from .feed import ORDER_ITEMS_TABLE, ORDERS_TABLE, ChannelStatus, GrpcChangeFeed, run_feed_server
from .presenter import LogForegroundNotifier, NotificationCard, NotificationPermission, NotificationPresenter
from .progress import ProgressTracker, ProgressView, format_progress
from .server import configure_logging
from .session import OrderTrackingSession
from .sound import SoundPlayer
from .status import TERMINAL_STATUSES, parse_status
from .subscription import SubscriptionClient

logger = structlog.get_logger()

RESUBSCRIBE_DELAY_SECONDS = 3.0


def _port_of(endpoint: str, fallback: str) -> str:
    _, sep, port = endpoint.rpartition(":")
    return port if sep and port.isdigit() else fallback


def _bell(pcm: bytes, sample_rate: int) -> None:
    sys.stdout.write("\a")
    sys.stdout.flush()


def _print_cards(cards: list[NotificationCard]) -> None:
    shown = [f"{c.icon} {c.title} ({c.time})" for c in cards if c.state == "show"]
    print("  cards: " + (" | ".join(shown) if shown else "-"))


def cmd_bridge(args: argparse.Namespace, settings: Settings) -> int:
    run_bridge_server(settings, default_port=_port_of(settings.bridge_endpoint, "50070"))
    return 0


def cmd_feed(args: argparse.Namespace, settings: Settings) -> int:
    run_feed_server(default_port=_port_of(settings.feed_endpoint, "50071"))
    return 0


def cmd_publish(args: argparse.Namespace, settings: Settings) -> int:
    status = parse_status(args.status)
    table = ORDER_ITEMS_TABLE if args.items else ORDERS_TABLE
    feed = GrpcChangeFeed.connect(settings.feed_endpoint)
    try:
        delivered = feed.publish(table, {"order_id": args.order_id, "status": str(status)})
    finally:
        feed.close()
    print(f"{table} update for {args.order_id} -> {status} delivered to {delivered} channel(s)")
    return 0


def cmd_push(args: argparse.Namespace, settings: Settings) -> int:
    client = BridgeClient.connect(settings.bridge_endpoint)
    try:
        print(json.dumps(client.push(args.text), ensure_ascii=False))
    finally:
        client.close()
    return 0


def cmd_queue(args: argparse.Namespace, settings: Settings) -> int:
    client = BridgeClient.connect(settings.bridge_endpoint)
    try:
        result = client.enqueue(
            args.url,
            args.body.encode("utf-8"),
            method=args.method,
            headers={"Content-Type": args.content_type},
        )
    finally:
        client.close()
    print(json.dumps(result))
    return 0


def cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    client = BridgeClient.connect(settings.bridge_endpoint)
    try:
        print(json.dumps(client.sync(args.tag or settings.sync_tag)))
    finally:
        client.close()
    return 0


def cmd_track(args: argparse.Namespace, settings: Settings) -> int:
    loop = asyncio.new_event_loop()
    feed = GrpcChangeFeed.connect(settings.feed_endpoint, dispatch=loop.call_soon_threadsafe)
    bridge = None if args.no_bridge else BridgeClient.connect(settings.bridge_endpoint)

    presenter = NotificationPresenter(
        loop,
        bridge=bridge,
        foreground=LogForegroundNotifier(),
        sound=SoundPlayer(None if args.quiet else _bell),
        permission=NotificationPermission.GRANTED,
        max_visible=settings.max_visible,
        default_duration_ms=settings.duration_ms,
        icon=settings.icon,
        on_change=_print_cards,
    )

    def on_render(view: ProgressView) -> None:
        print(format_progress(view))
        if tracker.current_status in TERMINAL_STATUSES:
            loop.call_later(settings.duration_ms / 1000.0 + 0.5, loop.stop)

    tracker = ProgressTracker(presenter, order_id=args.order_id, on_render=on_render)

    def on_connection(status: ChannelStatus) -> None:
        print(f"  live updates: {status}")
        if status == ChannelStatus.ERRORED:
            loop.call_later(RESUBSCRIBE_DELAY_SECONDS, session.resubscribe)

    session = OrderTrackingSession(
        args.order_id, SubscriptionClient(feed), tracker, on_connection=on_connection
    )
    try:
        with session.open(args.status):
            loop.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()
        feed.close()
        if bridge is not None:
            bridge.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="orderlive", description="Live order-status pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("bridge", help="host the Delivery Bridge").set_defaults(func=cmd_bridge)
    sub.add_parser("feed", help="host a development change-feed relay").set_defaults(func=cmd_feed)

    track = sub.add_parser("track", help="follow one order")
    track.add_argument("order_id")
    track.add_argument("--status", help="status already known when the screen opens")
    track.add_argument("--no-bridge", action="store_true", help="skip system notifications via the bridge")
    track.add_argument("--quiet", action="store_true", help="no notification tones")
    track.set_defaults(func=cmd_track)

    publish = sub.add_parser("publish", help="publish a status change")
    publish.add_argument("order_id")
    publish.add_argument("status")
    publish.add_argument("--items", action="store_true", help="publish on the order_items table")
    publish.set_defaults(func=cmd_publish)

    push = sub.add_parser("push", help="deliver a push body to the bridge")
    push.add_argument("text", nargs="?", default=None)
    push.set_defaults(func=cmd_push)

    queue = sub.add_parser("queue", help="queue an order request for the next sync")
    queue.add_argument("url")
    queue.add_argument("body")
    queue.add_argument("--method", default="POST")
    queue.add_argument("--content-type", default="application/json")
    queue.set_defaults(func=cmd_queue)

    sync = sub.add_parser("sync", help="fire a background-sync trigger")
    sync.add_argument("tag", nargs="?", default=None)
    sync.set_defaults(func=cmd_sync)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        settings = Settings.from_env()
        return args.func(args, settings)
    except OrderLiveError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        return 1
