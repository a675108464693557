"""Hosting helpers shared by the bridge and the change-feed relay.

Both services listen on TCP by default, or on a Unix domain socket when
TRANSPORT_TYPE=uds.
"""

import os
from concurrent import futures
from typing import Callable, Iterable, Optional

import grpc
import structlog
from grpc_health.v1 import health, health_pb2, health_pb2_grpc

UNIX_PREFIX = "unix:"


def configure_logging(level: int = 0) -> None:
    """JSON lines on stdout, one per event, stamped in ISO time."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


def _socket_path() -> str:
    base = os.environ.get("UDS_BASE_PATH", "/tmp/orderlive")
    name = os.environ.get("SERVICE_NAME", "bridge")
    return os.path.join(base, f"{name}.sock")


def get_transport_config(default_port: str = "50070") -> tuple[str, str]:
    """Resolve where to listen.

    Reads TRANSPORT_TYPE ("tcp" or "uds"), PORT, UDS_BASE_PATH and
    SERVICE_NAME. A leftover socket file from an earlier run is removed so
    the bind succeeds.

    Returns:
        ("tcp", "[::]:<port>") or ("uds", "unix:<path>")
    """
    if os.environ.get("TRANSPORT_TYPE", "tcp").lower() != "uds":
        return ("tcp", f"[::]:{os.environ.get('PORT', default_port)}")

    path = _socket_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    cleanup_socket(path)
    return ("uds", UNIX_PREFIX + path)


def create_server(
    handlers: Iterable[grpc.GenericRpcHandler],
    service_name: str = "",
    default_port: str = "50070",
    max_workers: int = 10,
) -> tuple[grpc.Server, str, health.HealthServicer]:
    """Build a thread-pool server exposing ``handlers`` plus grpc.health.v1.

    The overall health entry and ``service_name`` (when given) both start
    out SERVING. The server is bound but not started.

    Returns:
        (server, bound address, health servicer)
    """
    _, address = get_transport_config(default_port)

    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    server.add_generic_rpc_handlers(tuple(handlers))

    checker = health.HealthServicer()
    health_pb2_grpc.add_HealthServicer_to_server(checker, server)
    for name in {"", service_name}:
        checker.set(name, health_pb2.HealthCheckResponse.SERVING)

    server.add_insecure_port(address)
    return server, address, checker


def run_server(
    handlers: Iterable[grpc.GenericRpcHandler],
    service_name: str,
    default_port: str,
    logger: Optional[structlog.BoundLogger] = None,
    grace: float = 2.0,
    on_started: Optional[Callable[[health.HealthServicer], None]] = None,
) -> None:
    """Serve until interrupted.

    On Ctrl-C health flips to NOT_SERVING before the graceful stop so
    clients fall back to their foreground paths.
    """
    server, address, checker = create_server(handlers, service_name, default_port=default_port)
    log = (logger or structlog.get_logger()).bind(service=service_name)

    server.start()
    if on_started is not None:
        on_started(checker)
    log.info(
        "server_started",
        transport="uds" if address.startswith(UNIX_PREFIX) else "tcp",
        address=address,
    )
    try:
        server.wait_for_termination()
    except KeyboardInterrupt:
        checker.enter_graceful_shutdown()
        server.stop(grace).wait()
        log.info("server_stopped")
        if address.startswith(UNIX_PREFIX):
            cleanup_socket(address[len(UNIX_PREFIX):])


def cleanup_socket(socket_path: str) -> None:
    """Remove a socket file if one is there; a missing path is not an error."""
    if not socket_path or not os.path.exists(socket_path):
        return
    try:
        os.remove(socket_path)
    except OSError as e:
        structlog.get_logger().warning("socket_cleanup_failed", path=socket_path, error=str(e))
