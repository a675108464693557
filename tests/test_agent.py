"""Tests for the background agent runtime."""

import pytest

from orderlive.agent import (
    AgentHost,
    AgentState,
    BackgroundAgent,
    ClientRegistry,
    EventKind,
    InstallEvent,
    MessageEvent,
    PushEvent,
    SyncEvent,
    listens,
)
from orderlive.errors import InvalidArgumentError, InvalidTransitionError, OrderLiveError


class RecordingAgent(BackgroundAgent):
    """Agent that records every event it handles."""

    def __init__(self, version: str = "v1", fail_install: bool = False):
        super().__init__(version)
        self.seen: list = []
        self.fail_install = fail_install
        self.closed = 0

    @listens(EventKind.INSTALL)
    def on_install(self, event):
        if self.fail_install:
            raise OrderLiveError("manifest fetch failed")
        self.seen.append(event.kind)

    @listens(EventKind.ACTIVATE)
    def on_activate(self, event):
        self.seen.append(event.kind)

    @listens(EventKind.PUSH)
    def on_push(self, event):
        self.seen.append(event.kind)
        return f"{self.version}:{event.data}"

    @listens(EventKind.MESSAGE)
    def on_message(self, event):
        if event.data.get("type") == "SKIP_WAITING":
            self.skip_waiting()
        self.seen.append(event.kind)

    def close(self):
        self.closed += 1


class TestDispatchTable:
    """Tests for @listens and the class-level dispatch table."""

    def test_table_built_per_class(self) -> None:
        assert RecordingAgent.handled_kinds() == {
            EventKind.INSTALL,
            EventKind.ACTIVATE,
            EventKind.PUSH,
            EventKind.MESSAGE,
        }

    def test_dispatch_returns_handler_result(self) -> None:
        agent = RecordingAgent("v7")
        assert agent.dispatch(PushEvent(data="hi")) == "v7:hi"

    def test_unhandled_kind_is_ignored(self) -> None:
        """An event kind with no handler is a no-op, not an error."""
        assert RecordingAgent().dispatch(SyncEvent(tag="x")) is None

    def test_duplicate_handler_rejected(self) -> None:
        with pytest.raises(TypeError, match="duplicate handler"):

            class Twice(BackgroundAgent):
                @listens(EventKind.PUSH)
                def a(self, event):
                    pass

                @listens(EventKind.PUSH)
                def b(self, event):
                    pass

    def test_handler_must_take_event(self) -> None:
        with pytest.raises(TypeError):

            @listens(EventKind.PUSH)
            def no_event(self):
                pass

    def test_subclass_inherits_and_extends(self) -> None:
        class WithSync(RecordingAgent):
            @listens(EventKind.SYNC)
            def on_sync(self, event):
                return event.tag

        assert EventKind.PUSH in WithSync.handled_kinds()
        assert WithSync().dispatch(SyncEvent(tag="sync-orders")) == "sync-orders"
        assert EventKind.SYNC not in RecordingAgent.handled_kinds()


class TestLifecycle:
    """Tests for install, waiting and activation."""

    def test_first_agent_activates_immediately(self) -> None:
        host = AgentHost()
        agent = RecordingAgent()
        assert host.register(agent)
        assert agent.state == AgentState.ACTIVATED
        assert host.active is agent
        assert agent.seen == [EventKind.INSTALL, EventKind.ACTIVATE]

    def test_install_failure_keeps_previous_version(self) -> None:
        """A failed install leaves nothing half-installed."""
        host = AgentHost()
        old = RecordingAgent("v1")
        host.register(old)
        broken = RecordingAgent("v2", fail_install=True)

        assert host.register(broken) is False
        assert broken.state == AgentState.REDUNDANT
        assert host.active is old
        assert broken.closed == 1
        assert old.closed == 0

    def test_new_version_waits_while_clients_open(self) -> None:
        host = AgentHost()
        host.register(RecordingAgent("v1"))
        host.clients.attach("/customer/home.html")
        new = RecordingAgent("v2")

        host.register(new)
        assert new.state == AgentState.INSTALLED
        assert host.waiting is new
        assert host.dispatch(PushEvent(data="x")) == "v1:x"

    def test_waiting_version_activates_when_clients_close(self) -> None:
        host = AgentHost()
        old = RecordingAgent("v1")
        host.register(old)
        page = host.clients.attach("/customer/home.html")
        new = RecordingAgent("v2")
        host.register(new)

        host.clients.detach(page)
        assert host.active is new
        assert old.state == AgentState.REDUNDANT
        assert old.closed == 1
        assert new.closed == 0

    def test_skip_waiting_message_promotes(self) -> None:
        host = AgentHost()
        host.register(RecordingAgent("v1"))
        host.clients.attach("/customer/home.html")
        new = RecordingAgent("v2")
        host.register(new)

        host.post_to_waiting({"type": "SKIP_WAITING"})
        assert host.active is new
        assert host.dispatch(PushEvent(data="x")) == "v2:x"

    def test_newer_waiting_version_replaces_older(self) -> None:
        host = AgentHost()
        host.register(RecordingAgent("v1"))
        host.clients.attach("/customer/home.html")
        v2, v3 = RecordingAgent("v2"), RecordingAgent("v3")
        host.register(v2)
        host.register(v3)
        assert v2.state == AgentState.REDUNDANT
        assert host.waiting is v3
        assert v2.closed == 1

    def test_lifecycle_events_cannot_be_dispatched(self) -> None:
        host = AgentHost()
        host.register(RecordingAgent())
        with pytest.raises(InvalidArgumentError):
            host.dispatch(InstallEvent())

    def test_events_dropped_without_active_agent(self) -> None:
        assert AgentHost().dispatch(PushEvent()) is None

    def test_agent_cannot_be_registered_twice(self) -> None:
        host = AgentHost()
        agent = RecordingAgent()
        host.register(agent)
        with pytest.raises(InvalidTransitionError):
            host.register(agent)

    def test_clients_requires_host(self) -> None:
        with pytest.raises(OrderLiveError):
            RecordingAgent().clients


class TestClientRegistry:
    """Tests for ClientRegistry."""

    def test_open_window_focuses_and_calls_opener(self) -> None:
        opened = []
        registry = ClientRegistry(opener=opened.append)
        client = registry.open_window("/customer/order-tracking.html?order=1")
        assert client.focused
        assert opened == ["/customer/order-tracking.html?order=1"]
        assert registry.match_all() == [client]

    def test_navigate(self) -> None:
        client = ClientRegistry().attach("/customer/home.html")
        assert client.navigate("/customer/menu.html").url == "/customer/menu.html"

    def test_message_event_default(self) -> None:
        assert MessageEvent().data == {}
