"""Backend row-change feed: channel state, in-process feed, gRPC relay.

A channel is one logical subscription to row-change events on a table,
narrowed by a ``column=eq.value`` filter. Every channel walks the same small
state machine: connecting, then subscribed, then errored; any live state can
close, and closed is final (see CHANNEL_TRANSITIONS).

Feeds never retry a channel on their own; whoever opened it watches the status
and decides.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Optional, Protocol

import grpc
import structlog

from . import wire
from .client import create_channel
from .errors import GRPCError, InvalidArgumentError
from .server import run_server

logger = structlog.get_logger()

EVENT_UPDATE = "UPDATE"
ORDERS_TABLE = "orders"
ORDER_ITEMS_TABLE = "order_items"


class ChannelStatus(StrEnum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERRORED = "errored"
    CLOSED = "closed"


CHANNEL_TRANSITIONS: dict[ChannelStatus, set[ChannelStatus]] = {
    ChannelStatus.CONNECTING: {ChannelStatus.SUBSCRIBED, ChannelStatus.ERRORED, ChannelStatus.CLOSED},
    ChannelStatus.SUBSCRIBED: {ChannelStatus.ERRORED, ChannelStatus.CLOSED},
    ChannelStatus.ERRORED: {ChannelStatus.CLOSED},
    ChannelStatus.CLOSED: set(),
}


@dataclass(frozen=True)
class RowFilter:
    """Equality predicate on one column, written ``column=eq.value``."""

    column: str
    value: str

    @property
    def expr(self) -> str:
        return f"{self.column}=eq.{self.value}"

    @classmethod
    def parse(cls, expr: str) -> RowFilter:
        column, sep, rest = expr.partition("=eq.")
        if not sep or not column:
            raise InvalidArgumentError(f"unsupported filter {expr!r}")
        return cls(column=column, value=rest)

    def matches(self, row: dict[str, Any]) -> bool:
        value = row.get(self.column)
        return value is not None and str(value) == self.value


@dataclass(frozen=True)
class ChangeEvent:
    """One row-change event as delivered by the feed."""

    table: str
    new: dict[str, Any]
    old: dict[str, Any] = field(default_factory=dict)
    event: str = EVENT_UPDATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "change",
            "table": self.table,
            "event": self.event,
            "new": dict(self.new),
            "old": dict(self.old),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ChangeEvent:
        return cls(
            table=str(raw.get("table", "")),
            new=dict(raw.get("new") or {}),
            old=dict(raw.get("old") or {}),
            event=str(raw.get("event", EVENT_UPDATE)),
        )


ChangeCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[["ChannelRef", ChannelStatus], None]


class ChannelRef:
    """A live channel and its status."""

    def __init__(
        self,
        name: str,
        table: str,
        row_filter: RowFilter,
        on_change: ChangeCallback,
        on_status: Optional[StatusCallback] = None,
        event: str = EVENT_UPDATE,
    ):
        self.name = name
        self.table = table
        self.row_filter = row_filter
        self.event = event
        self.status = ChannelStatus.CONNECTING
        self.error: Optional[str] = None
        self._on_change = on_change
        self._on_status = on_status
        self._call: Any = None
        self._lock = threading.Lock()

    def advance(self, next_status: ChannelStatus, error: Optional[str] = None) -> bool:
        """Move to ``next_status`` if the state table allows it."""
        with self._lock:
            if next_status == self.status or next_status not in CHANNEL_TRANSITIONS[self.status]:
                return False
            self.status = next_status
            if error:
                self.error = error
        logger.debug("channel_status", channel=self.name, status=next_status, error=error)
        if self._on_status is not None:
            self._on_status(self, next_status)
        return True

    def deliver(self, event: ChangeEvent) -> None:
        """Hand an event to the subscriber unless the channel has been closed."""
        if self.status == ChannelStatus.CLOSED:
            return
        if event.event != self.event or event.table != self.table:
            return
        self._on_change(event)

    @property
    def is_closed(self) -> bool:
        return self.status == ChannelStatus.CLOSED

    def __repr__(self) -> str:
        return f"ChannelRef(name={self.name!r}, status={self.status})"


class ChangeFeed(Protocol):
    """What the subscription client needs from a row-change feed."""

    def open_channel(
        self,
        name: str,
        table: str,
        row_filter: RowFilter,
        on_change: ChangeCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> ChannelRef: ...

    def remove_channel(self, ref: ChannelRef) -> None: ...


class LocalChangeFeed:
    """In-process feed: ``publish`` fans row updates out to matching channels."""

    def __init__(self, auto_subscribe: bool = True):
        self._channels: list[ChannelRef] = []
        self._lock = threading.Lock()
        self._auto_subscribe = auto_subscribe

    def open_channel(
        self,
        name: str,
        table: str,
        row_filter: RowFilter,
        on_change: ChangeCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> ChannelRef:
        ref = ChannelRef(name, table, row_filter, on_change, on_status)
        with self._lock:
            self._channels.append(ref)
        if self._auto_subscribe:
            ref.advance(ChannelStatus.SUBSCRIBED)
        return ref

    def remove_channel(self, ref: ChannelRef) -> None:
        with self._lock:
            if ref in self._channels:
                self._channels.remove(ref)
        ref.advance(ChannelStatus.CLOSED)

    def channels(self) -> list[ChannelRef]:
        with self._lock:
            return list(self._channels)

    def confirm(self, ref: ChannelRef) -> None:
        """Acknowledge a pending channel (when auto_subscribe is off)."""
        ref.advance(ChannelStatus.SUBSCRIBED)

    def fail(self, ref: ChannelRef, reason: str = "channel error") -> None:
        ref.advance(ChannelStatus.ERRORED, reason)

    def publish(
        self,
        table: str,
        new: dict[str, Any],
        old: Optional[dict[str, Any]] = None,
        event: str = EVENT_UPDATE,
    ) -> int:
        """Deliver a row change to every matching open channel, in order."""
        change = ChangeEvent(table=table, new=dict(new), old=dict(old or {}), event=event)
        with self._lock:
            targets = [
                ref
                for ref in self._channels
                if ref.table == table
                and ref.status == ChannelStatus.SUBSCRIBED
                and ref.row_filter.matches(change.new)
            ]
        for ref in targets:
            ref.deliver(change)
        return len(targets)


Dispatch = Callable[..., Any]


def _direct(fn: Callable, *args: Any) -> Any:
    return fn(*args)


class GrpcChangeFeed:
    """Feed client for a remote ``orderlive.ChangeFeed`` relay.

    Each channel gets a reader thread. Events and status changes are handed to
    ``dispatch(fn, *args)``; pass ``loop.call_soon_threadsafe`` so they run on
    the page's event loop.
    """

    def __init__(self, channel: grpc.Channel, dispatch: Dispatch = _direct):
        self._channel = channel
        self._dispatch = dispatch
        self._watch = wire.stream_call(channel, wire.FEED_SERVICE, "Watch")
        self._publish = wire.unary_call(channel, wire.FEED_SERVICE, "Publish")

    @classmethod
    def connect(cls, endpoint: str, dispatch: Dispatch = _direct) -> GrpcChangeFeed:
        return cls(create_channel(endpoint), dispatch)

    def open_channel(
        self,
        name: str,
        table: str,
        row_filter: RowFilter,
        on_change: ChangeCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> ChannelRef:
        ref = ChannelRef(name, table, row_filter, on_change, on_status)
        request = {"channel": name, "table": table, "filter": row_filter.expr, "event": ref.event}
        reader = threading.Thread(
            target=self._read, args=(ref, request), name=f"feed-{name}", daemon=True
        )
        reader.start()
        return ref

    def _read(self, ref: ChannelRef, request: dict[str, Any]) -> None:
        call = self._watch(request)
        with ref._lock:
            ref._call = call
            closed = ref.status == ChannelStatus.CLOSED
        if closed:
            call.cancel()
            return
        try:
            for frame in call:
                if frame.get("type") == "system":
                    if frame.get("status") == "SUBSCRIBED":
                        self._dispatch(ref.advance, ChannelStatus.SUBSCRIBED)
                    continue
                self._dispatch(ref.deliver, ChangeEvent.from_dict(frame))
        except grpc.RpcError as e:
            if e.code() == grpc.StatusCode.CANCELLED and ref.is_closed:
                return
            logger.warning("feed_channel_failed", channel=ref.name, code=str(e.code()))
            self._dispatch(ref.advance, ChannelStatus.ERRORED, str(e.code()))
            return
        if not ref.is_closed:
            self._dispatch(ref.advance, ChannelStatus.ERRORED, "stream ended")

    def remove_channel(self, ref: ChannelRef) -> None:
        ref.advance(ChannelStatus.CLOSED)
        with ref._lock:
            call = ref._call
        if call is not None:
            call.cancel()

    def publish(
        self,
        table: str,
        new: dict[str, Any],
        old: Optional[dict[str, Any]] = None,
        event: str = EVENT_UPDATE,
    ) -> int:
        """Send a row change to the relay. Returns how many channels got it."""
        change = ChangeEvent(table=table, new=new, old=old or {}, event=event)
        try:
            reply = self._publish(change.to_dict())
        except grpc.RpcError as e:
            raise GRPCError(e) from e
        return int(reply.get("delivered", 0))

    def close(self) -> None:
        self._channel.close()


class FeedRelayServicer:
    """Serves a LocalChangeFeed over gRPC as ``orderlive.ChangeFeed``."""

    def __init__(self, feed: LocalChangeFeed, poll_interval: float = 0.5):
        self._feed = feed
        self._poll_interval = poll_interval

    def Watch(self, request: dict, context: grpc.ServicerContext):
        try:
            row_filter = RowFilter.parse(str(request.get("filter", "")))
        except InvalidArgumentError as e:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(e))
        frames: queue.Queue = queue.Queue()
        ref = self._feed.open_channel(
            str(request.get("channel", "")),
            str(request.get("table", "")),
            row_filter,
            on_change=frames.put,
            on_status=lambda _ref, status: frames.put(status),
        )
        logger.info("feed_watch_opened", channel=ref.name, filter=row_filter.expr)
        try:
            while context.is_active():
                try:
                    item = frames.get(timeout=self._poll_interval)
                except queue.Empty:
                    continue
                if isinstance(item, ChangeEvent):
                    yield item.to_dict()
                elif item == ChannelStatus.SUBSCRIBED:
                    yield {"type": "system", "status": "SUBSCRIBED"}
                elif item == ChannelStatus.ERRORED:
                    context.abort(grpc.StatusCode.UNAVAILABLE, ref.error or "channel error")
        finally:
            self._feed.remove_channel(ref)
            logger.info("feed_watch_closed", channel=ref.name)

    def Publish(self, request: dict, context: grpc.ServicerContext) -> dict:
        change = ChangeEvent.from_dict(request)
        if not change.table:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, "table is required")
        delivered = self._feed.publish(change.table, change.new, change.old, change.event)
        logger.info("feed_change_published", table=change.table, delivered=delivered)
        return {"delivered": delivered}

    def generic_handler(self) -> grpc.GenericRpcHandler:
        return grpc.method_handlers_generic_handler(
            wire.FEED_SERVICE,
            {
                "Watch": wire.server_stream(self.Watch),
                "Publish": wire.unary(self.Publish),
            },
        )


def run_feed_server(
    default_port: str = "50071",
    logger: Optional[structlog.BoundLogger] = None,
) -> None:
    """Host a development change-feed relay until interrupted."""
    servicer = FeedRelayServicer(LocalChangeFeed())
    run_server(
        [servicer.generic_handler()],
        service_name=wire.FEED_SERVICE,
        default_port=default_port,
        logger=logger,
    )
