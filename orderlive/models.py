"""Notification payloads and the foreground/background message kinds.

Wire shapes use the camelCase keys the push transport and the page speak
(``requireInteraction``, ``orderId``); the dataclasses use snake_case.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Optional

import structlog

from .errors import InvalidArgumentError

logger = structlog.get_logger()

DEFAULT_TITLE = "Sarawak Food Court"
DEFAULT_BODY = "Your order status has been updated"
DEFAULT_ICON_PATH = "/assets/logo.png"
DEFAULT_TAG = "order-update"
DEFAULT_VIBRATE = (200, 100, 200)
ORDER_UPDATE_TITLE = "Order Update"


@dataclass(frozen=True)
class NotificationAction:
    """A button on a system-level notification."""

    action: str
    title: str
    icon: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"action": self.action, "title": self.title, "icon": self.icon}


ACTION_VIEW = "view"
ACTION_CLOSE = "close"

DEFAULT_ACTIONS: tuple[NotificationAction, ...] = (
    NotificationAction(ACTION_VIEW, "View Order", "/assets/icons/view.png"),
    NotificationAction(ACTION_CLOSE, "Dismiss", "/assets/icons/close.png"),
)


def _vibrate_pattern(value: Any) -> Optional[tuple[int, ...]]:
    """A single duration or a list of durations; anything else is rejected."""
    if isinstance(value, bool):
        return None
    steps = [value] if isinstance(value, (int, float)) else value
    if not isinstance(steps, (list, tuple)):
        return None
    try:
        return tuple(int(v) for v in steps if not isinstance(v, bool))
    except (TypeError, ValueError, OverflowError):
        return None


def _flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _coerce(attr: str, value: Any) -> Any:
    if attr == "vibrate":
        return _vibrate_pattern(value)
    if attr == "require_interaction":
        return _flag(value)
    if attr == "data":
        return dict(value) if isinstance(value, dict) else {}
    return str(value)


@dataclass(frozen=True)
class NotificationPayload:
    """What a system-level notification shows.

    ``tag`` names a logical slot: a payload with the same tag replaces the
    visible notification instead of stacking next to it.
    """

    title: str = DEFAULT_TITLE
    body: str = DEFAULT_BODY
    icon: str = DEFAULT_ICON_PATH
    badge: str = DEFAULT_ICON_PATH
    vibrate: tuple[int, ...] = DEFAULT_VIBRATE
    tag: str = DEFAULT_TAG
    require_interaction: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    _WIRE_KEYS = {
        "title": "title",
        "body": "body",
        "icon": "icon",
        "badge": "badge",
        "vibrate": "vibrate",
        "tag": "tag",
        "requireInteraction": "require_interaction",
        "data": "data",
    }

    @property
    def order_id(self) -> Optional[str]:
        value = self.data.get("orderId")
        return str(value) if value not in (None, "") else None

    def merged(self, overrides: dict[str, Any]) -> NotificationPayload:
        """Shallow-merge wire-shaped overrides onto this payload.

        Unknown keys are ignored. ``None`` values, and values that do not
        coerce to the field's type, keep the current value.
        """
        changes: dict[str, Any] = {}
        for wire_key, attr in self._WIRE_KEYS.items():
            if wire_key not in overrides or overrides[wire_key] is None:
                continue
            value = _coerce(attr, overrides[wire_key])
            if value is None:
                logger.debug("push_field_ignored", field=wire_key, value=repr(overrides[wire_key]))
                continue
            changes[attr] = value
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "vibrate": list(self.vibrate),
            "tag": self.tag,
            "requireInteraction": self.require_interaction,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NotificationPayload:
        return cls().merged(raw)


def parse_push(
    raw: bytes | str | None,
    defaults: NotificationPayload | None = None,
) -> NotificationPayload:
    """Resolve a raw push body into a payload.

    A JSON object overrides any subset of the defaults. Anything else that
    arrives (plain text, or JSON that is not an object) becomes the body under
    the default title and icon, so the push is still delivered.
    """
    payload = defaults or NotificationPayload()
    if raw is None:
        return payload

    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if not text:
        return payload

    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None

    if isinstance(decoded, dict):
        return payload.merged(decoded)

    logger.warning("push_payload_not_json", length=len(text))
    return replace(payload, body=text)


class MessageType(StrEnum):
    """Message kinds the page posts to the background agent."""

    SKIP_WAITING = "SKIP_WAITING"
    ORDER_UPDATE = "ORDER_UPDATE"


@dataclass(frozen=True)
class OrderUpdateMessage:
    order_id: str
    status: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": MessageType.ORDER_UPDATE,
            "orderId": self.order_id,
            "status": self.status,
            "message": self.message,
        }

    def to_payload(self, icon: str = DEFAULT_ICON_PATH) -> NotificationPayload:
        """Build the notification for this update, tagged per order."""
        return NotificationPayload(
            title=ORDER_UPDATE_TITLE,
            body=self.message,
            icon=icon,
            badge=icon,
            tag=f"order-{self.order_id}",
            data={"orderId": self.order_id, "status": self.status},
        )


SKIP_WAITING_MESSAGE = {"type": MessageType.SKIP_WAITING}


def parse_message(raw: dict[str, Any]) -> MessageType | OrderUpdateMessage:
    """Decode a message posted by the page.

    Returns ``MessageType.SKIP_WAITING`` for the control message, or an
    ``OrderUpdateMessage``.

    Raises:
        InvalidArgumentError: If the message type is unknown or the update is
            missing its order id.
    """
    kind = raw.get("type") if isinstance(raw, dict) else None
    if kind == MessageType.SKIP_WAITING:
        return MessageType.SKIP_WAITING
    if kind == MessageType.ORDER_UPDATE:
        order_id = raw.get("orderId")
        if order_id in (None, ""):
            raise InvalidArgumentError("ORDER_UPDATE requires orderId")
        return OrderUpdateMessage(
            order_id=str(order_id),
            status=str(raw.get("status") or ""),
            message=str(raw.get("message") or ""),
        )
    raise InvalidArgumentError(f"unknown message type {kind!r}")
