"""Tests for error types."""

import grpc

from orderlive.errors import (
    CacheInstallError,
    GRPCError,
    InvalidArgumentError,
    InvalidStatusError,
    InvalidTransitionError,
    NetworkError,
    OrderLiveError,
    ResourceUnavailableError,
)


class MockRpcError(grpc.RpcError):
    """RpcError carrying a code and details, like a real grpc.Call error."""

    def __init__(self, code: grpc.StatusCode, details: str = ""):
        super().__init__()
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class TestOrderLiveError:
    """Tests for the base error."""

    def test_message_only(self) -> None:
        """Without a cause, str() is the message."""
        err = OrderLiveError("boom")
        assert str(err) == "boom"
        assert err.cause is None

    def test_message_with_cause(self) -> None:
        """A cause is appended to the message."""
        err = OrderLiveError("outer", ValueError("inner"))
        assert str(err) == "outer: inner"

    def test_subclasses_share_base(self) -> None:
        """Every pipeline error is an OrderLiveError."""
        for err in (
            NetworkError("/a"),
            ResourceUnavailableError("/a"),
            CacheInstallError("/a"),
            InvalidStatusError("x"),
            InvalidArgumentError("x"),
            InvalidTransitionError("a", "b"),
        ):
            assert isinstance(err, OrderLiveError)


class TestGRPCError:
    """Tests for GRPCError."""

    def test_exposes_code_and_details(self) -> None:
        """Code and details come from the wrapped RpcError."""
        err = GRPCError(MockRpcError(grpc.StatusCode.NOT_FOUND, "no such order"))
        assert err.code == grpc.StatusCode.NOT_FOUND
        assert err.details == "no such order"
        assert err.is_not_found()
        assert not err.is_unavailable()

    def test_unavailable(self) -> None:
        """UNAVAILABLE is recognised."""
        err = GRPCError(MockRpcError(grpc.StatusCode.UNAVAILABLE))
        assert err.is_unavailable()

    def test_invalid_argument(self) -> None:
        """INVALID_ARGUMENT is recognised."""
        err = GRPCError(MockRpcError(grpc.StatusCode.INVALID_ARGUMENT))
        assert err.is_invalid_argument()


class TestMessages:
    """Message formatting of the specific errors."""

    def test_invalid_status(self) -> None:
        assert str(InvalidStatusError("shipped")) == "invalid status: 'shipped'"

    def test_invalid_argument(self) -> None:
        assert str(InvalidArgumentError("bad")) == "invalid argument: bad"

    def test_invalid_transition(self) -> None:
        err = InvalidTransitionError("closed", "subscribed")
        assert str(err) == "invalid transition: closed -> subscribed"
        assert err.current == "closed"
        assert err.next_state == "subscribed"

    def test_resource_unavailable_keeps_url(self) -> None:
        err = ResourceUnavailableError("/menu")
        assert err.url == "/menu"
        assert "/menu" in str(err)

    def test_network_error_includes_cause(self) -> None:
        err = NetworkError("/menu", ConnectionError("refused"))
        assert str(err) == "network fetch failed for /menu: refused"
