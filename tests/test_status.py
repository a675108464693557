"""Tests for order status parsing and display tables."""

import pytest

from orderlive.errors import InvalidStatusError
from orderlive.status import (
    DEFAULT_ICON,
    LINEAR_STEPS,
    STATUS_MESSAGES,
    TONE_FREQUENCIES,
    OrderStatus,
    parse_status,
    status_icon,
    step_index,
)


class TestParseStatus:
    """Tests for parse_status."""

    @pytest.mark.parametrize("raw", ["ready", "READY", "  Ready "])
    def test_normalises(self, raw) -> None:
        """Case and surrounding whitespace are ignored."""
        assert parse_status(raw) is OrderStatus.READY

    def test_enum_passes_through(self) -> None:
        assert parse_status(OrderStatus.PENDING) is OrderStatus.PENDING

    @pytest.mark.parametrize("raw", ["shipped", "", None, 3])
    def test_rejects_unknown(self, raw) -> None:
        """Anything outside the five statuses is an InvalidStatusError."""
        with pytest.raises(InvalidStatusError):
            parse_status(raw)


class TestTables:
    """Tests for the per-status tables."""

    def test_linear_scale_excludes_cancelled(self) -> None:
        assert OrderStatus.CANCELLED not in LINEAR_STEPS
        assert [step_index(s) for s in LINEAR_STEPS] == [0, 1, 2, 3]

    def test_every_status_has_a_message(self) -> None:
        for status in OrderStatus:
            title, body = STATUS_MESSAGES[status]
            assert title and body

    def test_ready_message(self) -> None:
        assert STATUS_MESSAGES[OrderStatus.READY] == (
            "Order Ready!",
            "Your delicious food is ready for pickup!",
        )

    def test_unknown_icon_falls_back_to_bell(self) -> None:
        assert status_icon("mystery") == DEFAULT_ICON
        assert status_icon(OrderStatus.READY) == "✅"

    def test_tones_rise_along_the_scale(self) -> None:
        tones = [TONE_FREQUENCIES[s] for s in LINEAR_STEPS]
        assert tones == sorted(tones)
        assert tones[0] == 440.0
