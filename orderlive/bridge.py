"""Delivery Bridge: the background agent that outlives the page.

Owns the shell cache, shows system-level notifications for pushes and page
messages, and routes notification clicks back to a page. Order requests a
page could not send are queued with queue_order() and replayed on
background sync.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import structlog

from .agent import (
    BackgroundAgent,
    EventKind,
    FetchEvent,
    MessageEvent,
    NotificationClickEvent,
    PushEvent,
    SyncEvent,
    WindowClient,
    listens,
)
from .cache import (
    UNAVAILABLE_RESPONSE,
    CacheStorage,
    OutboundQueue,
    ResourceCache,
    Request,
    Response,
)
from .config import Settings
from .errors import InvalidArgumentError, ResourceUnavailableError
from .fetch import Fetcher
from .models import (
    ACTION_CLOSE,
    ACTION_VIEW,
    DEFAULT_ACTIONS,
    MessageType,
    NotificationAction,
    NotificationPayload,
    parse_message,
    parse_push,
)

logger = structlog.get_logger()


@dataclass
class SystemNotification:
    """A notification as displayed by the operating system tray."""

    title: str
    body: str
    icon: str
    badge: str
    tag: str
    require_interaction: bool
    vibrate: tuple[int, ...]
    data: dict[str, Any]
    actions: tuple[NotificationAction, ...]
    shown_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False

    @classmethod
    def from_payload(
        cls,
        payload: NotificationPayload,
        actions: tuple[NotificationAction, ...] = (),
    ) -> SystemNotification:
        return cls(
            title=payload.title,
            body=payload.body,
            icon=payload.icon,
            badge=payload.badge,
            tag=payload.tag,
            require_interaction=payload.require_interaction,
            vibrate=payload.vibrate,
            data=dict(payload.data),
            actions=tuple(actions),
        )


NotificationSink = Callable[[SystemNotification], None]


class NotificationCenter:
    """The system tray: at most one visible notification per tag.

    ``sink`` is called for every displayed notification and is where a real
    desktop integration plugs in. ``on_click`` receives click events.
    """

    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        on_click: Optional[Callable[[NotificationClickEvent], Any]] = None,
    ):
        self._visible: dict[str, SystemNotification] = {}
        self._sink = sink
        self.on_click = on_click

    def show(
        self,
        payload: NotificationPayload,
        actions: tuple[NotificationAction, ...] = DEFAULT_ACTIONS,
    ) -> SystemNotification:
        notification = SystemNotification.from_payload(payload, actions)
        replaced = self._visible.pop(notification.tag, None)
        if replaced is not None:
            replaced.closed = True
        self._visible[notification.tag] = notification
        if self._sink is not None:
            self._sink(notification)
        logger.info(
            "notification_displayed",
            tag=notification.tag,
            title=notification.title,
            replaced=replaced is not None,
        )
        return notification

    def close(self, notification: SystemNotification) -> None:
        notification.closed = True
        if self._visible.get(notification.tag) is notification:
            del self._visible[notification.tag]

    def get(self, tag: str) -> Optional[SystemNotification]:
        return self._visible.get(tag)

    def visible(self) -> list[SystemNotification]:
        return list(self._visible.values())

    def click(self, tag: str, action: str = "") -> Any:
        """Simulate the user clicking a visible notification."""
        notification = self._visible.get(tag)
        if notification is None:
            raise InvalidArgumentError(f"no visible notification tagged {tag!r}")
        if self.on_click is None:
            return None
        return self.on_click(NotificationClickEvent(notification=notification, action=action))


class DeliveryBridge(BackgroundAgent):
    """The food-court background agent."""

    def __init__(
        self,
        settings: Settings,
        storage: CacheStorage,
        fetcher: Fetcher,
        notifications: NotificationCenter,
        resources: Optional[ResourceCache] = None,
    ):
        super().__init__(version=settings.cache_name)
        self.settings = settings
        self.notifications = notifications
        self.resources = resources or ResourceCache(
            storage,
            fetcher,
            generation=settings.cache_name,
            manifest=settings.manifest,
            offline_path=settings.offline_path,
            keep=(settings.orders_cache,),
        )
        self.outbound = OutboundQueue(storage, fetcher, settings.orders_cache)
        self.defaults = NotificationPayload(icon=settings.icon, badge=settings.badge)

    # -- lifecycle ------------------------------------------------------------

    @listens(EventKind.INSTALL)
    def on_install(self, event) -> None:
        self.resources.install()

    @listens(EventKind.ACTIVATE)
    def on_activate(self, event) -> list[str]:
        return self.resources.activate()

    def close(self) -> None:
        self.resources.close()

    # -- functional events ----------------------------------------------------

    @listens(EventKind.FETCH)
    def on_fetch(self, event: FetchEvent) -> Response:
        try:
            return self.resources.handle_fetch(event.request)
        except ResourceUnavailableError:
            return UNAVAILABLE_RESPONSE.clone()

    @listens(EventKind.PUSH)
    def on_push(self, event: PushEvent) -> SystemNotification:
        payload = parse_push(event.data, self.defaults)
        logger.info("push_received", tag=payload.tag)
        return self.display(payload)

    def display(self, payload: NotificationPayload) -> SystemNotification:
        """Show a system notification with the View/Dismiss actions."""
        return self.notifications.show(payload, DEFAULT_ACTIONS)

    @listens(EventKind.NOTIFICATION_CLICK)
    def on_notification_click(self, event: NotificationClickEvent) -> Optional[WindowClient]:
        logger.info("notification_clicked", action=event.action or None, tag=event.notification.tag)
        self.notifications.close(event.notification)

        if event.action not in (ACTION_VIEW, "", None):
            if event.action != ACTION_CLOSE:
                logger.debug("notification_action_ignored", action=event.action)
            return None

        url = self.tracking_url(event.notification.data.get("orderId"))
        for client in self.clients.match_all():
            if self.settings.client_scope in client.url:
                return client.focus().navigate(url)
        return self.clients.open_window(url)

    def tracking_url(self, order_id: Optional[str]) -> str:
        if order_id in (None, ""):
            return self.settings.tracking_path
        return f"{self.settings.tracking_path}?{urlencode({'order': order_id})}"

    @listens(EventKind.MESSAGE)
    def on_message(self, event: MessageEvent) -> Optional[SystemNotification]:
        try:
            message = parse_message(event.data)
        except InvalidArgumentError as e:
            logger.warning("message_rejected", error=str(e))
            return None

        if message is MessageType.SKIP_WAITING:
            logger.info("skip_waiting_requested", version=self.version)
            self.skip_waiting()
            return None

        return self.display(message.to_payload(icon=self.settings.icon))

    def queue_order(self, request: Request) -> int:
        """Hold an order request for the next sync; returns how many are waiting."""
        self.outbound.enqueue(request)
        return len(self.outbound.queued())

    @listens(EventKind.SYNC)
    def on_sync(self, event: SyncEvent) -> Optional[tuple[int, int]]:
        if event.tag != self.settings.sync_tag:
            logger.debug("sync_tag_ignored", tag=event.tag)
            return None
        logger.info("orders_sync_started", tag=event.tag)
        return self.outbound.replay()
