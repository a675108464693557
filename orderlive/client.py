"""Client for the Delivery Bridge gRPC service."""

import base64
import os
from typing import Any, Optional

import grpc
from grpc_health.v1 import health_pb2, health_pb2_grpc

from . import wire
from .errors import GRPCError
from .models import SKIP_WAITING_MESSAGE, NotificationPayload, OrderUpdateMessage


def create_channel(endpoint: str) -> grpc.Channel:
    """Create a gRPC channel for the given endpoint.

    Supports both TCP (host:port) and Unix Domain Sockets (file paths).
    UDS paths are detected by leading '/' or './' and converted to unix: URIs.
    Note: grpc-python uses unix:path for relative, unix:///path for absolute.
    """
    if endpoint.startswith("./"):
        return grpc.insecure_channel(f"unix:{endpoint}")
    elif endpoint.startswith("/"):
        return grpc.insecure_channel(f"unix://{endpoint}")
    else:
        # host:port, or already a unix: URI
        return grpc.insecure_channel(endpoint)


class BridgeClient:
    """Page-side handle on the background Delivery Bridge."""

    def __init__(self, channel: grpc.Channel, health_timeout: float = 1.0):
        self._channel = channel
        self._health_timeout = health_timeout
        self._health = health_pb2_grpc.HealthStub(channel)
        self._post_message = wire.unary_call(channel, wire.BRIDGE_SERVICE, "PostMessage")
        self._push = wire.unary_call(channel, wire.BRIDGE_SERVICE, "Push")
        self._show = wire.unary_call(channel, wire.BRIDGE_SERVICE, "ShowNotification")
        self._sync = wire.unary_call(channel, wire.BRIDGE_SERVICE, "Sync")
        self._fetch = wire.unary_call(channel, wire.BRIDGE_SERVICE, "Fetch")
        self._enqueue = wire.unary_call(channel, wire.BRIDGE_SERVICE, "Enqueue")

    @classmethod
    def connect(cls, endpoint: str) -> "BridgeClient":
        """Connect to a bridge at the given endpoint."""
        return cls(create_channel(endpoint))

    @classmethod
    def from_env(cls, env_var: str, default: str) -> "BridgeClient":
        """Connect using an environment variable with fallback."""
        endpoint = os.environ.get(env_var, default)
        return cls.connect(endpoint)

    def is_active(self) -> bool:
        """Return True if the bridge is reachable and has an active agent."""
        try:
            response = self._health.Check(
                health_pb2.HealthCheckRequest(service=wire.BRIDGE_SERVICE),
                timeout=self._health_timeout,
            )
        except grpc.RpcError:
            return False
        return response.status == health_pb2.HealthCheckResponse.SERVING

    def _call(self, stub, request: dict[str, Any]) -> dict[str, Any]:
        try:
            return stub(request)
        except grpc.RpcError as e:
            raise GRPCError(e) from e

    def post_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """Post a raw page message to the bridge."""
        return self._call(self._post_message, message)

    def order_update(self, order_id: str, status: str, message: str) -> dict[str, Any]:
        """Post an ORDER_UPDATE so the bridge shows a per-order notification."""
        return self.post_message(OrderUpdateMessage(order_id, status, message).to_dict())

    def skip_waiting(self) -> dict[str, Any]:
        """Tell a newly installed bridge version to take over immediately."""
        return self.post_message(dict(SKIP_WAITING_MESSAGE))

    def show_notification(self, payload: NotificationPayload) -> dict[str, Any]:
        """Display a system notification through the bridge."""
        return self._call(self._show, payload.to_dict())

    def push(self, data: Optional[str]) -> dict[str, Any]:
        """Deliver a raw push body, as the push transport would."""
        return self._call(self._push, {"data": data})

    def sync(self, tag: str) -> dict[str, Any]:
        """Fire a background-sync trigger."""
        return self._call(self._sync, {"tag": tag})

    def fetch(self, url: str, method: str = "GET") -> dict[str, Any]:
        """Fetch through the bridge's shell cache."""
        return self._call(self._fetch, {"url": url, "method": method})

    def enqueue(
        self,
        url: str,
        body: bytes,
        method: str = "POST",
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Queue an order request that could not be sent; it goes out on the next sync."""
        request = {
            "url": url,
            "method": method,
            "body": base64.b64encode(body).decode("ascii"),
            "headers": dict(headers or {}),
        }
        return self._call(self._enqueue, request)

    def close(self) -> None:
        """Close the underlying channel."""
        self._channel.close()
