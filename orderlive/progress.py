"""Order progress state machine and its renderer.

Statuses advance along pending -> preparing -> ready -> completed; cancelled
is absorbing and sits off the scale. The rendered width only ever grows:
a status behind the current step is treated as a stale event and ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from .status import (
    LINEAR_STEPS,
    STATUS_MESSAGES,
    STEP_ICONS,
    STEP_LABELS,
    TERMINAL_STATUSES,
    OrderStatus,
    parse_status,
    step_index,
)

if TYPE_CHECKING:
    from .presenter import NotificationPresenter

logger = structlog.get_logger()

# ANSI color codes
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"


@dataclass
class ProgressState:
    current_step: Optional[OrderStatus] = None
    rendered_width_percent: float = 0.0
    cancelled: bool = False


@dataclass(frozen=True)
class StepView:
    status: OrderStatus
    label: str
    icon: str
    state: str  # "completed", "active" or "pending"


@dataclass(frozen=True)
class ProgressView:
    steps: tuple[StepView, ...]
    width_percent: float
    cancelled: bool


def width_for(status: OrderStatus) -> float:
    return step_index(status) / (len(LINEAR_STEPS) - 1) * 100.0


def render_progress(state: ProgressState) -> ProgressView:
    """Pure view of a progress state."""
    current = step_index(state.current_step) if state.current_step is not None else -1
    steps = []
    for i, status in enumerate(LINEAR_STEPS):
        if i < current:
            step_state = "completed"
        elif i == current:
            step_state = "active"
        else:
            step_state = "pending"
        steps.append(StepView(status, STEP_LABELS[status], STEP_ICONS[status], step_state))
    return ProgressView(
        steps=tuple(steps),
        width_percent=state.rendered_width_percent,
        cancelled=state.cancelled,
    )


def format_progress(view: ProgressView, bar_width: int = 30) -> str:
    """Terminal rendering of a progress view."""
    if view.cancelled:
        return f"{BOLD}{RED}❌ Order cancelled{RESET}"
    filled = round(bar_width * view.width_percent / 100.0)
    bar = f"{GREEN}{'█' * filled}{RESET}{DIM}{'░' * (bar_width - filled)}{RESET}"
    labels = []
    for step in view.steps:
        if step.state == "completed":
            labels.append(f"{GREEN}{step.icon} {step.label}{RESET}")
        elif step.state == "active":
            labels.append(f"{BOLD}{YELLOW}{step.icon} {step.label}{RESET}")
        else:
            labels.append(f"{DIM}{step.icon} {step.label}{RESET}")
    return f"{bar} {view.width_percent:5.1f}%\n" + "  ".join(labels)


class ProgressTracker:
    """Tracks one order's status and surfaces a message on every transition."""

    def __init__(
        self,
        presenter: Optional[NotificationPresenter] = None,
        order_id: Optional[str] = None,
        on_render: Optional[Callable[[ProgressView], None]] = None,
    ):
        self.state = ProgressState()
        self.order_id = order_id
        self._presenter = presenter
        self._on_render = on_render
        self._log = logger.bind(order_id=order_id)

    @property
    def current_status(self) -> Optional[OrderStatus]:
        if self.state.cancelled:
            return OrderStatus.CANCELLED
        return self.state.current_step

    def view(self) -> ProgressView:
        return render_progress(self.state)

    def update_status(self, new_status: object) -> bool:
        """Apply a status; returns True if it changed anything.

        Raises:
            InvalidStatusError: If ``new_status`` is not a known status. State
                is left untouched.
        """
        status = parse_status(new_status)

        if status == self.current_status:
            return False
        if self.current_status in TERMINAL_STATUSES:
            self._log.info("status_after_terminal_ignored", status=status, current=self.current_status)
            return False

        if status == OrderStatus.CANCELLED:
            self.state.cancelled = True
        else:
            current = self.state.current_step
            if current is not None and step_index(status) < step_index(current):
                self._log.info("stale_status_ignored", status=status, current=current)
                return False
            self.state.current_step = status
            self.state.rendered_width_percent = width_for(status)

        self._log.info("order_status_changed", status=status)
        self.render()
        self._notify(status)
        return True

    def render(self) -> ProgressView:
        view = self.view()
        if self._on_render is not None:
            self._on_render(view)
        return view

    def _notify(self, status: OrderStatus) -> None:
        if self._presenter is None:
            return
        title, message = STATUS_MESSAGES[status]
        self._presenter.show(status, title, message, order_id=self.order_id)
