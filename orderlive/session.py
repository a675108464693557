"""Order-tracking screen: wires a subscription into a progress tracker.

The session owns the subscription handle for as long as the screen is
open; leaving the ``with`` block releases it.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import structlog

from .errors import InvalidStatusError
from .feed import ChannelStatus
from .progress import ProgressTracker
from .subscription import SubscriptionClient, SubscriptionHandle

logger = structlog.get_logger()


class OrderTrackingSession:
    def __init__(
        self,
        order_id: str,
        subscriptions: SubscriptionClient,
        tracker: ProgressTracker,
        on_connection: Optional[Callable[[ChannelStatus], None]] = None,
    ):
        self.order_id = order_id
        self.tracker = tracker
        self.rejected: list[Any] = []
        self._subscriptions = subscriptions
        self._on_connection = on_connection
        self._handle: Optional[SubscriptionHandle] = None
        self._log = logger.bind(order_id=order_id)

    @property
    def connection(self) -> ChannelStatus:
        if self._handle is None:
            return ChannelStatus.CLOSED
        return self._handle.state

    def open(self, initial_status: Optional[str] = None) -> OrderTrackingSession:
        """Subscribe, optionally seeding the tracker with the status already known."""
        if initial_status is not None:
            self.apply({"status": initial_status})
        self._handle = self._subscriptions.subscribe(
            self.order_id, self.apply, on_status=self._connection_changed
        )
        return self

    def resubscribe(self) -> None:
        """Open a fresh subscription after an error; the old one is released."""
        self._log.info("order_resubscribing", previous=self.connection)
        self.close()
        self._handle = None
        self._handle = self._subscriptions.subscribe(
            self.order_id, self.apply, on_status=self._connection_changed
        )

    def close(self) -> None:
        if self._handle is not None:
            self._handle.unsubscribe()

    def apply(self, record: dict[str, Any]) -> bool:
        """Feed one order or item update into the tracker."""
        status = record.get("status")
        if status is None:
            return False
        try:
            return self.tracker.update_status(status)
        except InvalidStatusError as e:
            self.rejected.append(status)
            self._log.warning("order_status_rejected", error=str(e))
            return False

    def _connection_changed(self, handle: SubscriptionHandle, status: ChannelStatus) -> None:
        if handle is not self._handle and self._handle is not None:
            return
        if self._on_connection is not None:
            self._on_connection(status)

    def __enter__(self) -> OrderTrackingSession:
        if self._handle is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
