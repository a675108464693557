"""Background agent runtime: event-handler tables, lifecycle, window clients.

A background agent is a class whose methods are registered per event kind
with the @listens decorator. The class-level dispatch table is the testable
unit; AgentHost plays the hosting runtime (install, activate, route
functional events to the active version).

Example usage:
    class Bridge(BackgroundAgent):
        @listens(EventKind.PUSH)
        def on_push(self, event: PushEvent) -> None:
            ...

    host = AgentHost()
    host.register(Bridge())
    host.dispatch(PushEvent(data=b"hello"))
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Optional

import structlog

from .cache import Request
from .errors import InvalidArgumentError, InvalidTransitionError, OrderLiveError

if TYPE_CHECKING:
    from .bridge import SystemNotification

logger = structlog.get_logger()


class EventKind(StrEnum):
    INSTALL = "install"
    ACTIVATE = "activate"
    FETCH = "fetch"
    PUSH = "push"
    NOTIFICATION_CLICK = "notificationclick"
    MESSAGE = "message"
    SYNC = "sync"


LIFECYCLE_EVENTS = frozenset({EventKind.INSTALL, EventKind.ACTIVATE})


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class InstallEvent:
    kind = EventKind.INSTALL


@dataclass(frozen=True)
class ActivateEvent:
    kind = EventKind.ACTIVATE


@dataclass(frozen=True)
class FetchEvent:
    request: Request
    kind = EventKind.FETCH


@dataclass(frozen=True)
class PushEvent:
    data: Optional[bytes | str] = None
    kind = EventKind.PUSH


@dataclass(frozen=True)
class NotificationClickEvent:
    notification: SystemNotification
    action: str = ""
    kind = EventKind.NOTIFICATION_CLICK


@dataclass(frozen=True)
class MessageEvent:
    data: dict[str, Any] = field(default_factory=dict)
    kind = EventKind.MESSAGE


@dataclass(frozen=True)
class SyncEvent:
    tag: str
    kind = EventKind.SYNC


# ============================================================================
# @listens decorator and the agent base class
# ============================================================================


def listens(kind: EventKind):
    """Register a method as the handler for one event kind."""

    def decorator(method: Callable) -> Callable:
        params = list(inspect.signature(method).parameters)
        if len(params) < 2:
            raise TypeError(f"{method.__name__}: must take (self, event)")
        method._listens_to = EventKind(kind)
        return method

    return decorator


class BackgroundAgent:
    """Base class for agents hosted by AgentHost.

    Subclasses decorate handler methods with ``@listens(kind)``; at most one
    handler per kind. Events of a kind with no handler are ignored.
    """

    _dispatch_table: dict[EventKind, str] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        cls._dispatch_table = cls._build_dispatch_table()

    @classmethod
    def _build_dispatch_table(cls) -> dict[EventKind, str]:
        """Scan for @listens methods and build the dispatch table."""
        table: dict[EventKind, str] = {}
        for name in dir(cls):
            attr = getattr(cls, name, None)
            kind = getattr(attr, "_listens_to", None)
            if kind is None or not callable(attr):
                continue
            if kind in table and table[kind] != name:
                raise TypeError(f"{cls.__name__}: duplicate handler for {kind}")
            table[kind] = name
        return table

    def __init__(self, version: str = ""):
        self.version = version
        self.state = AgentState.PARSED
        self.skip_waiting_requested = False
        self._host: Optional[AgentHost] = None

    @classmethod
    def handled_kinds(cls) -> frozenset[EventKind]:
        return frozenset(cls._dispatch_table)

    def dispatch(self, event: Any) -> Any:
        """Route an event to its handler and return the handler's result."""
        name = self._dispatch_table.get(event.kind)
        if name is None:
            logger.debug("agent_event_unhandled", kind=event.kind)
            return None
        return getattr(self, name)(event)

    def skip_waiting(self) -> None:
        """Ask the host to activate this version without waiting for clients."""
        self.skip_waiting_requested = True
        if self._host is not None:
            self._host.promote_waiting(self)

    @property
    def clients(self) -> ClientRegistry:
        if self._host is None:
            raise OrderLiveError("agent is not registered with a host")
        return self._host.clients

    def close(self) -> None:
        """Release resources held by this version; called once it is redundant."""

    def _transition(self, next_state: AgentState) -> None:
        if next_state not in AGENT_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, next_state)
        self.state = next_state


class AgentState(StrEnum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


AGENT_TRANSITIONS: dict[AgentState, set[AgentState]] = {
    AgentState.PARSED: {AgentState.INSTALLING},
    AgentState.INSTALLING: {AgentState.INSTALLED, AgentState.REDUNDANT},
    AgentState.INSTALLED: {AgentState.ACTIVATING, AgentState.REDUNDANT},
    AgentState.ACTIVATING: {AgentState.ACTIVATED, AgentState.REDUNDANT},
    AgentState.ACTIVATED: {AgentState.REDUNDANT},
    AgentState.REDUNDANT: set(),
}


# ============================================================================
# Window clients
# ============================================================================


class WindowClient:
    """An open foreground page controlled by the agent."""

    def __init__(self, url: str, client_id: str = ""):
        self.url = url
        self.id = client_id or url
        self.focused = False

    def focus(self) -> WindowClient:
        self.focused = True
        return self

    def navigate(self, url: str) -> WindowClient:
        self.url = url
        return self

    def __repr__(self) -> str:
        return f"WindowClient(url={self.url!r}, focused={self.focused})"


class ClientRegistry:
    """Open foreground clients, as the background agent sees them."""

    def __init__(self, opener: Optional[Callable[[str], None]] = None):
        self._clients: list[WindowClient] = []
        self._opener = opener
        self._on_empty: list[Callable[[], None]] = []

    def attach(self, url: str) -> WindowClient:
        client = WindowClient(url, client_id=f"client-{len(self._clients) + 1}")
        self._clients.append(client)
        return client

    def detach(self, client: WindowClient) -> None:
        if client in self._clients:
            self._clients.remove(client)
        if not self._clients:
            for callback in list(self._on_empty):
                callback()

    def match_all(self) -> list[WindowClient]:
        return list(self._clients)

    def open_window(self, url: str) -> WindowClient:
        client = self.attach(url)
        client.focus()
        if self._opener is not None:
            self._opener(url)
        logger.info("client_window_opened", url=url)
        return client

    def when_empty(self, callback: Callable[[], None]) -> None:
        self._on_empty.append(callback)

    def __len__(self) -> int:
        return len(self._clients)


# ============================================================================
# Hosting runtime
# ============================================================================


class AgentHost:
    """Hosts agent versions through install, wait and activation.

    Functional events go only to the active version, and only once its
    activate handler has finished.
    """

    def __init__(self, clients: Optional[ClientRegistry] = None):
        self.clients = clients if clients is not None else ClientRegistry()
        self.active: Optional[BackgroundAgent] = None
        self.waiting: Optional[BackgroundAgent] = None
        self.clients.when_empty(self._clients_gone)

    def register(self, agent: BackgroundAgent) -> bool:
        """Install ``agent`` and activate it when allowed.

        Returns False when install failed; the previous version stays active
        and a later register() retries.
        """
        agent._host = self
        agent._transition(AgentState.INSTALLING)
        log = logger.bind(version=agent.version)
        try:
            agent.dispatch(InstallEvent())
        except OrderLiveError as e:
            log.warning("agent_install_failed", error=str(e))
            self._retire(agent)
            return False
        agent._transition(AgentState.INSTALLED)
        log.info("agent_installed")

        if self.waiting is not None and self.waiting is not agent:
            self._retire(self.waiting)
        self.waiting = agent

        if self.active is None or agent.skip_waiting_requested or not len(self.clients):
            self._activate(agent)
        else:
            log.info("agent_waiting", clients=len(self.clients))
        return True

    def promote_waiting(self, agent: BackgroundAgent) -> None:
        if self.waiting is agent and agent.state == AgentState.INSTALLED:
            self._activate(agent)

    def _clients_gone(self) -> None:
        if self.waiting is not None and self.waiting.state == AgentState.INSTALLED:
            self._activate(self.waiting)

    def _activate(self, agent: BackgroundAgent) -> None:
        agent._transition(AgentState.ACTIVATING)
        agent.dispatch(ActivateEvent())
        agent._transition(AgentState.ACTIVATED)

        previous, self.active, self.waiting = self.active, agent, None
        if previous is not None and previous is not agent:
            self._retire(previous)
        logger.info("agent_activated", version=agent.version)

    def _retire(self, agent: BackgroundAgent) -> None:
        agent._transition(AgentState.REDUNDANT)
        agent.close()
        logger.info("agent_redundant", version=agent.version)

    def dispatch(self, event: Any) -> Any:
        """Deliver a functional event to the active agent."""
        if event.kind in LIFECYCLE_EVENTS:
            raise InvalidArgumentError(f"{event.kind} is driven by register()")
        if self.active is None:
            logger.debug("agent_event_dropped", kind=event.kind)
            return None
        return self.active.dispatch(event)

    def post_to_waiting(self, data: dict[str, Any]) -> Any:
        """Deliver a message to the installed-but-waiting version, if any."""
        if self.waiting is None:
            return None
        return self.waiting.dispatch(MessageEvent(data=data))
