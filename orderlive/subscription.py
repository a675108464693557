"""Per-order change subscriptions.

Each subscription opens two channels on the row-change feed: one on the
order record and one on its line items, both filtered by the order's public
id. Order updates reach the callback as the full new record; item updates
as ``{"status": ...}`` only. Events are passed on in the order they arrive,
without coalescing, so callbacks must be last-write-wins on ``status``.

Handles are owned by whoever opened them and must be released::

    with client.subscribe(order_id, on_update) as handle:
        ...
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Callable, Optional

import structlog

from .errors import InvalidArgumentError
from .feed import (
    ORDER_ITEMS_TABLE,
    ORDERS_TABLE,
    ChangeEvent,
    ChangeFeed,
    ChannelRef,
    ChannelStatus,
    RowFilter,
)

logger = structlog.get_logger()

UpdateCallback = Callable[[dict[str, Any]], None]
HandleStatusCallback = Callable[["SubscriptionHandle", ChannelStatus], None]


class SubscriptionKind(StrEnum):
    ORDER = "order"
    ITEMS = "items"


class SubscriptionHandle:
    """One screen's subscription to one order."""

    def __init__(
        self,
        client: SubscriptionClient,
        order_id: str,
        callback: UpdateCallback,
        on_status: Optional[HandleStatusCallback] = None,
    ):
        self.order_id = order_id
        self.callback = callback
        self.channel_ref: Optional[ChannelRef] = None
        self.items_channel_ref: Optional[ChannelRef] = None
        self._client = client
        self._on_status = on_status
        self._released = False
        self._reported = ChannelStatus.CONNECTING
        self._log = logger.bind(order_id=order_id)

    @property
    def refs(self) -> tuple[Optional[ChannelRef], Optional[ChannelRef]]:
        return (self.channel_ref, self.items_channel_ref)

    @property
    def state(self) -> ChannelStatus:
        """Combined status of both channels.

        Errored if either channel errored, subscribed once both are, closed
        once released.
        """
        if self._released:
            return ChannelStatus.CLOSED
        statuses = [ref.status if ref else ChannelStatus.CONNECTING for ref in self.refs]
        if ChannelStatus.ERRORED in statuses:
            return ChannelStatus.ERRORED
        if all(s == ChannelStatus.SUBSCRIBED for s in statuses):
            return ChannelStatus.SUBSCRIBED
        if all(s == ChannelStatus.CLOSED for s in statuses):
            return ChannelStatus.CLOSED
        return ChannelStatus.CONNECTING

    @property
    def released(self) -> bool:
        return self._released

    def unsubscribe(self) -> None:
        """Release both channels. Safe to call repeatedly and at any state."""
        if self._released:
            return
        self._released = True
        self._client._release(self)
        self._log.info("order_unsubscribed")

    def _on_order_change(self, event: ChangeEvent) -> None:
        self._log.debug("order_update_received", status=event.new.get("status"))
        self.callback(dict(event.new))

    def _on_item_change(self, event: ChangeEvent) -> None:
        status = event.new.get("status")
        if status is None:
            self._log.debug("order_item_update_without_status")
            return
        self._log.debug("order_item_update_received", status=status)
        self.callback({"status": status})

    def _channel_status(self, ref: ChannelRef, status: ChannelStatus) -> None:
        self._log.info("subscription_status_changed", channel=ref.name, status=status)
        self._report()

    def _report(self) -> None:
        """Tell the owner when the combined state changes."""
        state = self.state
        if state == self._reported or self._released:
            return
        self._reported = state
        if self._on_status is not None:
            self._on_status(self, state)

    def __enter__(self) -> SubscriptionHandle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"SubscriptionHandle(order_id={self.order_id!r}, state={self.state})"


class SubscriptionClient:
    """Opens and tracks order subscriptions on a change feed.

    At most one subscription per (order id, kind) is live; subscribing again
    to the same order releases the earlier handle first.
    """

    def __init__(self, feed: ChangeFeed, filter_column: str = "order_id"):
        self._feed = feed
        self._filter_column = filter_column
        self._active: dict[tuple[str, SubscriptionKind], SubscriptionHandle] = {}

    def subscribe(
        self,
        order_id: str,
        callback: UpdateCallback,
        on_status: Optional[HandleStatusCallback] = None,
    ) -> SubscriptionHandle:
        if not order_id:
            raise InvalidArgumentError("order_id is required")

        for kind in SubscriptionKind:
            previous = self._active.get((order_id, kind))
            if previous is not None:
                logger.info("subscription_replaced", order_id=order_id, kind=kind)
                previous.unsubscribe()

        handle = SubscriptionHandle(self, order_id, callback, on_status)
        row_filter = RowFilter(self._filter_column, order_id)

        self._active[(order_id, SubscriptionKind.ORDER)] = handle
        handle.channel_ref = self._feed.open_channel(
            f"order-{order_id}",
            ORDERS_TABLE,
            row_filter,
            on_change=handle._on_order_change,
            on_status=handle._channel_status,
        )
        self._active[(order_id, SubscriptionKind.ITEMS)] = handle
        handle.items_channel_ref = self._feed.open_channel(
            f"order-items-{order_id}",
            ORDER_ITEMS_TABLE,
            row_filter,
            on_change=handle._on_item_change,
            on_status=handle._channel_status,
        )
        if handle.released:
            # released from inside a status callback while still opening
            self._release(handle)
        else:
            handle._report()
        logger.info("order_subscribed", order_id=order_id)
        return handle

    def active(self, order_id: str, kind: SubscriptionKind = SubscriptionKind.ORDER) -> Optional[SubscriptionHandle]:
        return self._active.get((order_id, kind))

    def _release(self, handle: SubscriptionHandle) -> None:
        for kind, ref in zip(SubscriptionKind, handle.refs):
            if self._active.get((handle.order_id, kind)) is handle:
                del self._active[(handle.order_id, kind)]
            if ref is not None and not ref.is_closed:
                self._feed.remove_channel(ref)
