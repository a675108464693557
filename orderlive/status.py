"""Order status enum and the per-status display tables.

Provides typed status values instead of string literals. Every table keyed by
status lives here so the progress tracker, presenter and sound player agree.
"""

from enum import StrEnum

from .errors import InvalidStatusError


class OrderStatus(StrEnum):
    """Order status values as written by the stall side."""

    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Linear progress scale. CANCELLED is absorbing and sits off the scale.
LINEAR_STEPS: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def parse_status(value: object) -> OrderStatus:
    """Coerce a raw status value into an OrderStatus.

    Raises:
        InvalidStatusError: If the value is not a known status.
    """
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        raise InvalidStatusError(value)
    try:
        return OrderStatus(value.strip().lower())
    except ValueError:
        raise InvalidStatusError(value) from None


def step_index(status: OrderStatus) -> int:
    """Position of a status on the linear scale."""
    return LINEAR_STEPS.index(status)


STATUS_MESSAGES: dict[OrderStatus, tuple[str, str]] = {
    OrderStatus.PENDING: (
        "Order Confirmed!",
        "Your order has been placed successfully",
    ),
    OrderStatus.PREPARING: (
        "Cooking Started!",
        "Your food is being prepared with love",
    ),
    OrderStatus.READY: (
        "Order Ready!",
        "Your delicious food is ready for pickup!",
    ),
    OrderStatus.COMPLETED: (
        "Enjoy Your Meal!",
        "Thank you for your order. Bon appétit!",
    ),
    OrderStatus.CANCELLED: (
        "Order Cancelled",
        "Your order has been cancelled by the stall",
    ),
}

DEFAULT_ICON = "🔔"

STATUS_ICONS: dict[str, str] = {
    OrderStatus.PENDING: "🕐",
    OrderStatus.PREPARING: "👨‍🍳",
    OrderStatus.READY: "✅",
    OrderStatus.COMPLETED: "🎉",
    OrderStatus.CANCELLED: "❌",
}

STEP_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order Placed",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.READY: "Ready",
    OrderStatus.COMPLETED: "Completed",
}

STEP_ICONS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "📝",
    OrderStatus.PREPARING: "👨‍🍳",
    OrderStatus.READY: "✅",
    OrderStatus.COMPLETED: "🎉",
}

DEFAULT_FREQUENCY_HZ = 440.0

TONE_FREQUENCIES: dict[str, float] = {
    OrderStatus.PENDING: 440.0,
    OrderStatus.PREPARING: 523.0,
    OrderStatus.READY: 659.0,
    OrderStatus.COMPLETED: 784.0,
}


def status_icon(status: str) -> str:
    """Icon for a status, falling back to a bell for anything unknown."""
    return STATUS_ICONS.get(status, DEFAULT_ICON)
