"""Bounded, auto-expiring queue of on-screen notification cards.

The presenter owns every QueuedNotification from ``show`` until its exit
transition ends, when the item leaves the queue and the rendered cards
together. Rendering is a pure function of the queue (``render_cards``).

Each ``show`` also tries a system-level notification: through the Delivery
Bridge when permission is granted and an agent is active, otherwise through
the page's own notification API. Failures on either path, and sound
failures, only cost that channel.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Callable, Optional, Protocol

import structlog

from .errors import InvalidArgumentError, OrderLiveError
from .models import DEFAULT_ICON_PATH, DEFAULT_TAG, NotificationPayload
from .sound import SoundPlayer
from .status import status_icon

logger = structlog.get_logger()

EXIT_TRANSITION_MS = 400
FOREGROUND_CLOSE_MS = 5000


class NotificationPermission(StrEnum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Timer source of the page's event loop; asyncio loops satisfy it."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class SystemNotifier(Protocol):
    """Route to the background agent (BridgeClient satisfies it)."""

    def is_active(self) -> bool: ...

    def show_notification(self, payload: NotificationPayload) -> Any: ...


class Closeable(Protocol):
    def close(self) -> None: ...


class ForegroundNotifier(Protocol):
    """The page's own notification API; only visible while the page is open."""

    def notify(self, payload: NotificationPayload) -> Optional[Closeable]: ...


@dataclass
class QueuedNotification:
    id: str
    status: str
    title: str
    message: str
    created_at: datetime
    dismiss_at: datetime
    order_id: Optional[str] = None
    leaving: bool = field(default=False, compare=False)


@dataclass(frozen=True)
class NotificationCard:
    """Render-ready view of one queued notification."""

    id: str
    status: str
    icon: str
    title: str
    message: str
    time: str
    state: str


def render_cards(items: list[QueuedNotification]) -> list[NotificationCard]:
    """Cards for the current queue, oldest first."""
    return [
        NotificationCard(
            id=item.id,
            status=item.status,
            icon=status_icon(item.status),
            title=item.title,
            message=item.message,
            time=item.created_at.astimezone().strftime("%H:%M"),
            state="hide" if item.leaving else "show",
        )
        for item in items
    ]


class _LoggedNotification:
    def __init__(self, tag: str):
        self.tag = tag

    def close(self) -> None:
        logger.debug("foreground_notification_closed", tag=self.tag)


class LogForegroundNotifier:
    """Foreground notifier for headless pages: writes the notification to the log."""

    def notify(self, payload: NotificationPayload) -> _LoggedNotification:
        logger.info("foreground_notification", title=payload.title, body=payload.body, tag=payload.tag)
        return _LoggedNotification(payload.tag)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationPresenter:
    """Per-session notification service; construct one per screen and pass it around."""

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        bridge: Optional[SystemNotifier] = None,
        foreground: Optional[ForegroundNotifier] = None,
        sound: Optional[SoundPlayer] = None,
        permission: NotificationPermission = NotificationPermission.DEFAULT,
        max_visible: int = 3,
        default_duration_ms: int = 5000,
        icon: str = DEFAULT_ICON_PATH,
        on_change: Optional[Callable[[list[NotificationCard]], None]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_visible < 1:
            raise InvalidArgumentError("max_visible must be at least 1")
        self.max_visible = max_visible
        self.default_duration_ms = default_duration_ms
        self.permission = permission
        self._scheduler = scheduler
        self._bridge = bridge
        self._foreground = foreground
        self._sound = sound
        self._icon = icon
        self._on_change = on_change
        self._clock = clock
        self._items: list[QueuedNotification] = []
        self._timers: dict[str, TimerHandle] = {}

    @property
    def visible(self) -> list[QueuedNotification]:
        """Queued items not yet on their way out; never longer than max_visible."""
        return [item for item in self._items if not item.leaving]

    @property
    def items(self) -> list[QueuedNotification]:
        """Everything still rendered, including cards mid-exit."""
        return list(self._items)

    def cards(self) -> list[NotificationCard]:
        return render_cards(self._items)

    def request_permission(self, prompt: Callable[[], NotificationPermission]) -> NotificationPermission:
        """Ask the user once; later calls keep the earlier answer."""
        if self.permission == NotificationPermission.DEFAULT:
            self.permission = NotificationPermission(prompt())
        return self.permission

    def toggle_sound(self) -> bool:
        if self._sound is None:
            return False
        self._sound.enabled = not self._sound.enabled
        return self._sound.enabled

    def show(
        self,
        status: str,
        title: str,
        message: str,
        duration_ms: Optional[int] = None,
        play_sound: bool = True,
        order_id: Optional[str] = None,
    ) -> QueuedNotification:
        duration_ms = self.default_duration_ms if duration_ms is None else duration_ms
        now = self._clock()
        item = QueuedNotification(
            id=uuid.uuid4().hex,
            status=status,
            title=title,
            message=message,
            created_at=now,
            dismiss_at=now + timedelta(milliseconds=duration_ms),
            order_id=order_id,
        )
        self._items.append(item)
        self._timers[item.id] = self._scheduler.call_later(duration_ms / 1000.0, self.dismiss, item)
        logger.debug("notification_shown", id=item.id, status=status)

        while len(self.visible) > self.max_visible:
            self.dismiss(self.visible[0])
        self._changed()

        if play_sound and self._sound is not None:
            self._sound.play(status)
        self._notify_system(item)
        return item

    def dismiss(self, item: QueuedNotification) -> None:
        """Start the exit transition; no-op if it already started or finished."""
        if item.leaving or item not in self._items:
            return
        item.leaving = True
        timer = self._timers.pop(item.id, None)
        if timer is not None:
            timer.cancel()
        self._changed()
        self._scheduler.call_later(EXIT_TRANSITION_MS / 1000.0, self._remove, item)

    def _remove(self, item: QueuedNotification) -> None:
        if item in self._items:
            self._items.remove(item)
            self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.cards())

    def _payload(self, item: QueuedNotification) -> NotificationPayload:
        data: dict[str, Any] = {"status": item.status}
        if item.order_id:
            data["orderId"] = item.order_id
        return NotificationPayload(
            title=item.title,
            body=item.message,
            icon=self._icon,
            badge=self._icon,
            tag=f"order-{item.order_id}" if item.order_id else DEFAULT_TAG,
            data=data,
        )

    def _notify_system(self, item: QueuedNotification) -> None:
        if self.permission != NotificationPermission.GRANTED:
            return
        payload = self._payload(item)

        if self._bridge is not None:
            try:
                if self._bridge.is_active():
                    self._bridge.show_notification(payload)
                    logger.debug("system_notification_via_bridge", tag=payload.tag)
                    return
            except OrderLiveError as e:
                logger.warning("bridge_notification_failed", error=str(e))

        if self._foreground is None:
            return
        try:
            handle = self._foreground.notify(payload)
        except Exception as e:  # the in-page card already shows the update
            logger.warning("foreground_notification_failed", error=str(e))
            return
        if handle is not None:
            self._scheduler.call_later(FOREGROUND_CLOSE_MS / 1000.0, handle.close)
