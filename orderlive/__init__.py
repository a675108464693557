"""Live order-status updates for the food-court customer app."""

from .agent import (
    AgentHost,
    AgentState,
    BackgroundAgent,
    ClientRegistry,
    EventKind,
    WindowClient,
    listens,
)
from .bridge import DeliveryBridge, NotificationCenter, SystemNotification
from .cache import CacheStorage, OutboundQueue, Request, ResourceCache, Response
from .client import BridgeClient
from .config import Settings
from .errors import (
    CacheInstallError,
    GRPCError,
    InvalidArgumentError,
    InvalidStatusError,
    InvalidTransitionError,
    NetworkError,
    OrderLiveError,
    ResourceUnavailableError,
)
from .feed import ChangeEvent, ChannelStatus, GrpcChangeFeed, LocalChangeFeed, RowFilter
from .fetch import HttpFetcher
from .models import NotificationPayload, OrderUpdateMessage, parse_message, parse_push
from .presenter import NotificationCard, NotificationPermission, NotificationPresenter, QueuedNotification
from .progress import ProgressState, ProgressTracker, render_progress
from .session import OrderTrackingSession
from .sound import SoundPlayer, ToneGenerator
from .status import OrderStatus, parse_status
from .subscription import SubscriptionClient, SubscriptionHandle

__all__ = [
    # Background agent
    "AgentHost",
    "AgentState",
    "BackgroundAgent",
    "ClientRegistry",
    "EventKind",
    "WindowClient",
    "listens",
    "DeliveryBridge",
    "NotificationCenter",
    "SystemNotification",
    "BridgeClient",
    # Caching
    "CacheStorage",
    "OutboundQueue",
    "Request",
    "ResourceCache",
    "Response",
    "HttpFetcher",
    # Config
    "Settings",
    # Errors
    "OrderLiveError",
    "GRPCError",
    "NetworkError",
    "ResourceUnavailableError",
    "CacheInstallError",
    "InvalidStatusError",
    "InvalidArgumentError",
    "InvalidTransitionError",
    # Change feed
    "ChangeEvent",
    "ChannelStatus",
    "GrpcChangeFeed",
    "LocalChangeFeed",
    "RowFilter",
    "SubscriptionClient",
    "SubscriptionHandle",
    # Payloads
    "NotificationPayload",
    "OrderUpdateMessage",
    "parse_message",
    "parse_push",
    "OrderStatus",
    "parse_status",
    # Foreground
    "NotificationCard",
    "NotificationPermission",
    "NotificationPresenter",
    "QueuedNotification",
    "ProgressState",
    "ProgressTracker",
    "render_progress",
    "OrderTrackingSession",
    "SoundPlayer",
    "ToneGenerator",
]
