"""gRPC hosting for the Delivery Bridge.

The bridge runs in its own process; pages reach it only through these RPCs.
Health for ``orderlive.DeliveryBridge`` reports SERVING exactly while an
agent version is active, which is what pages check before routing a system
notification through the bridge.
"""

from __future__ import annotations

import base64
import threading
from typing import Any, Callable, Optional

import grpc
import structlog
from grpc_health.v1 import health, health_pb2

from . import wire
from .agent import AgentHost, FetchEvent, MessageEvent, PushEvent, SyncEvent
from .bridge import DeliveryBridge, NotificationCenter, SystemNotification
from .cache import CacheStorage, Request
from .config import Settings
from .errors import InvalidArgumentError
from .fetch import HttpFetcher
from .models import MessageType, NotificationPayload
from .server import run_server

logger = structlog.get_logger()

BridgeFactory = Callable[[], DeliveryBridge]


def _notification_summary(notification: Optional[SystemNotification]) -> dict[str, Any]:
    if notification is None:
        return {"displayed": False}
    return {
        "displayed": True,
        "tag": notification.tag,
        "title": notification.title,
        "body": notification.body,
    }


class BridgeServicer:
    """Exposes an AgentHost's active bridge as ``orderlive.DeliveryBridge``.

    If no version is active when a call arrives, registration is retried
    first, the way a page re-registers after a failed install.
    """

    def __init__(self, host: AgentHost, factory: BridgeFactory):
        self._host = host
        self._factory = factory
        self._lock = threading.Lock()
        self._health: Optional[health.HealthServicer] = None

    def attach_health(self, health_servicer: health.HealthServicer) -> None:
        self._health = health_servicer
        self.ensure_active()

    def ensure_active(self) -> bool:
        with self._lock:
            if self._host.active is None:
                self._host.register(self._factory())
            active = self._host.active is not None
        self._set_health(active)
        return active

    def _set_health(self, serving: bool) -> None:
        if self._health is None:
            return
        status = (
            health_pb2.HealthCheckResponse.SERVING
            if serving
            else health_pb2.HealthCheckResponse.NOT_SERVING
        )
        self._health.set(wire.BRIDGE_SERVICE, status)

    def _require_active(self, context: grpc.ServicerContext) -> DeliveryBridge:
        if not self.ensure_active():
            context.abort(grpc.StatusCode.UNAVAILABLE, "no active delivery bridge")
        return self._host.active

    # -- RPCs -------------------------------------------------------------------

    def PostMessage(self, request: dict, context: grpc.ServicerContext) -> dict:
        """Deliver a page message (SKIP_WAITING or ORDER_UPDATE)."""
        if request.get("type") == MessageType.SKIP_WAITING and self._host.waiting is not None:
            self._host.post_to_waiting(request)
            return {"accepted": True}
        self._require_active(context)
        result = self._host.dispatch(MessageEvent(data=request))
        summary = _notification_summary(result if isinstance(result, SystemNotification) else None)
        return {"accepted": True, **summary}

    def Push(self, request: dict, context: grpc.ServicerContext) -> dict:
        """Deliver a raw push body as the push transport would."""
        self._require_active(context)
        notification = self._host.dispatch(PushEvent(data=request.get("data")))
        return _notification_summary(notification)

    def ShowNotification(self, request: dict, context: grpc.ServicerContext) -> dict:
        """Display a notification payload directly."""
        bridge = self._require_active(context)
        return _notification_summary(bridge.display(NotificationPayload.from_dict(request)))

    def Sync(self, request: dict, context: grpc.ServicerContext) -> dict:
        """Fire a background-sync trigger."""
        self._require_active(context)
        result = self._host.dispatch(SyncEvent(tag=str(request.get("tag", ""))))
        if result is None:
            return {"recognized": False}
        synced, failed = result
        return {"recognized": True, "synced": synced, "failed": failed}

    def Enqueue(self, request: dict, context: grpc.ServicerContext) -> dict:
        """Queue an order request for the next sync. The body travels base64-encoded."""
        bridge = self._require_active(context)
        url = request.get("url")
        if not url:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, "url is required")
        try:
            body = base64.b64decode(request.get("body") or "", validate=True)
        except (TypeError, ValueError):
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, "body must be base64")
        headers = request.get("headers") or {}
        if not isinstance(headers, dict):
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, "headers must be an object")
        order = Request(
            url=url,
            method=str(request.get("method") or "POST").upper(),
            body=body,
            headers=tuple(sorted((str(k), str(v)) for k, v in headers.items())),
        )
        return {"queued": bridge.queue_order(order)}

    def Fetch(self, request: dict, context: grpc.ServicerContext) -> dict:
        """Fetch through the shell cache. Bodies travel base64-encoded."""
        self._require_active(context)
        url = request.get("url")
        if not url:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, "url is required")
        response = self._host.dispatch(
            FetchEvent(request=Request(url=url, method=request.get("method", "GET")))
        )
        return {
            "status": response.status,
            "headers": response.headers,
            "body": base64.b64encode(response.body).decode("ascii"),
        }

    def generic_handler(self) -> grpc.GenericRpcHandler:
        return grpc.method_handlers_generic_handler(
            wire.BRIDGE_SERVICE,
            {
                "PostMessage": wire.unary(self.PostMessage),
                "Push": wire.unary(self.Push),
                "ShowNotification": wire.unary(self.ShowNotification),
                "Sync": wire.unary(self.Sync),
                "Fetch": wire.unary(self.Fetch),
                "Enqueue": wire.unary(self.Enqueue),
            },
        )


def build_bridge_factory(
    settings: Settings,
    storage: Optional[CacheStorage] = None,
    notifications: Optional[NotificationCenter] = None,
) -> tuple[BridgeFactory, NotificationCenter]:
    """Wire one deployment's storage, fetcher and tray into a bridge factory."""
    storage = storage or CacheStorage()
    notifications = notifications or NotificationCenter()
    fetcher = HttpFetcher(settings.origin, timeout=settings.fetch_timeout)

    def factory() -> DeliveryBridge:
        return DeliveryBridge(settings, storage, fetcher, notifications)

    return factory, notifications


def run_bridge_server(
    settings: Settings,
    default_port: str = "50070",
    logger: Optional[structlog.BoundLogger] = None,
) -> None:
    """Host the Delivery Bridge until interrupted."""
    factory, notifications = build_bridge_factory(settings)
    host = AgentHost()
    servicer = BridgeServicer(host, factory)
    notifications.on_click = host.dispatch

    if not settings.manifest:
        raise InvalidArgumentError("cache manifest is empty")

    run_server(
        [servicer.generic_handler()],
        service_name=wire.BRIDGE_SERVICE,
        default_port=default_port,
        logger=logger,
        on_started=servicer.attach_health,
    )
