"""Exceptions raised across the orderlive pipeline.

Every error derives from OrderLiveError, so command-line entry points can
catch the whole family in one place.
"""

from typing import Optional

import grpc


class OrderLiveError(Exception):
    """Root of the orderlive error hierarchy."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message if self.cause is None else f"{self.message}: {self.cause}"


class GRPCError(OrderLiveError):
    """A call to the bridge or the change-feed relay failed with a status code."""

    def __init__(self, rpc_error: grpc.RpcError):
        super().__init__("rpc failed", rpc_error)
        self.rpc_error = rpc_error

    @property
    def code(self) -> grpc.StatusCode:
        return self.rpc_error.code()

    @property
    def details(self) -> str:
        return self.rpc_error.details()

    def has_code(self, *codes: grpc.StatusCode) -> bool:
        return self.code in codes

    def is_unavailable(self) -> bool:
        """The server could not be reached at all."""
        return self.has_code(grpc.StatusCode.UNAVAILABLE)

    def is_not_found(self) -> bool:
        return self.has_code(grpc.StatusCode.NOT_FOUND)

    def is_invalid_argument(self) -> bool:
        return self.has_code(grpc.StatusCode.INVALID_ARGUMENT)


class NetworkError(OrderLiveError):
    """A network fetch failed before a response was received."""

    def __init__(self, url: str, cause: Optional[Exception] = None):
        super().__init__(f"network fetch failed for {url}", cause)
        self.url = url


class ResourceUnavailableError(OrderLiveError):
    """Neither the network nor any cached copy could serve a request."""

    def __init__(self, url: str):
        super().__init__(f"resource unavailable: {url}")
        self.url = url


class CacheInstallError(OrderLiveError):
    """Priming a cache generation failed; nothing was installed."""

    def __init__(self, url: str, cause: Optional[Exception] = None):
        super().__init__(f"cache install failed at {url}", cause)
        self.url = url


class InvalidStatusError(OrderLiveError):
    """A status value outside the known order statuses."""

    def __init__(self, value: object):
        super().__init__(f"invalid status: {value!r}")
        self.value = value


class InvalidArgumentError(OrderLiveError):
    """A caller passed something malformed: a frame, a setting, an id."""

    def __init__(self, reason: str):
        super().__init__(f"invalid argument: {reason}")
        self.reason = reason


class InvalidTransitionError(OrderLiveError):
    """A lifecycle transition that the state table does not allow."""

    def __init__(self, current: str, next_state: str):
        super().__init__(f"invalid transition: {current} -> {next_state}")
        self.current = current
        self.next_state = next_state
