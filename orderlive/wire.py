"""JSON framing for the orderlive gRPC services.

The bridge and feed services are registered as generic gRPC handlers whose
messages are UTF-8 JSON objects, so no generated stubs are needed on either
side.
"""

import json
from typing import Any, Callable

import grpc

from .errors import InvalidArgumentError

BRIDGE_SERVICE = "orderlive.DeliveryBridge"
FEED_SERVICE = "orderlive.ChangeFeed"


def encode(message: dict[str, Any]) -> bytes:
    """Serialize a message object."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode(data: bytes) -> dict[str, Any]:
    """Deserialize a message object; an empty frame is an empty object.

    Raises:
        InvalidArgumentError: If the frame is not a JSON object.
    """
    if not data:
        return {}
    try:
        message = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidArgumentError(f"malformed frame: {e}") from e
    if not isinstance(message, dict):
        raise InvalidArgumentError("frame must be a JSON object")
    return message


def method_path(service: str, method: str) -> str:
    return f"/{service}/{method}"


def unary(behavior: Callable) -> grpc.RpcMethodHandler:
    return grpc.unary_unary_rpc_method_handler(
        behavior, request_deserializer=decode, response_serializer=encode
    )


def server_stream(behavior: Callable) -> grpc.RpcMethodHandler:
    return grpc.unary_stream_rpc_method_handler(
        behavior, request_deserializer=decode, response_serializer=encode
    )


def unary_call(channel: grpc.Channel, service: str, method: str) -> grpc.UnaryUnaryMultiCallable:
    return channel.unary_unary(
        method_path(service, method),
        request_serializer=encode,
        response_deserializer=decode,
    )


def stream_call(channel: grpc.Channel, service: str, method: str) -> grpc.UnaryStreamMultiCallable:
    return channel.unary_stream(
        method_path(service, method),
        request_serializer=encode,
        response_deserializer=decode,
    )
