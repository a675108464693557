"""Tests for the command-line entry points."""

from unittest.mock import MagicMock, patch

import pytest

from orderlive.cli import _port_of, build_parser, main


class TestParser:
    """Tests for argument parsing."""

    def test_track(self) -> None:
        args = build_parser().parse_args(["track", "42", "--status", "pending", "--quiet"])
        assert args.order_id == "42"
        assert args.status == "pending"
        assert args.quiet
        assert not args.no_bridge

    def test_publish_items(self) -> None:
        args = build_parser().parse_args(["publish", "42", "ready", "--items"])
        assert args.items

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_port_of(self) -> None:
        assert _port_of("localhost:6001", "50070") == "6001"
        assert _port_of("/tmp/bridge.sock", "50070") == "50070"


class TestCommands:
    """Tests for command execution."""

    @patch("orderlive.cli.GrpcChangeFeed")
    def test_publish(self, mock_feed_cls, capsys) -> None:
        feed = MagicMock()
        feed.publish.return_value = 1
        mock_feed_cls.connect.return_value = feed

        assert main(["publish", "42", "READY", "--items"]) == 0

        feed.publish.assert_called_once_with("order_items", {"order_id": "42", "status": "ready"})
        feed.close.assert_called_once()
        assert "delivered to 1 channel(s)" in capsys.readouterr().out

    @patch("orderlive.cli.GrpcChangeFeed")
    def test_publish_invalid_status(self, mock_feed_cls) -> None:
        """Unknown statuses fail before anything is sent."""
        assert main(["publish", "42", "shipped"]) == 1
        mock_feed_cls.connect.assert_not_called()

    @patch("orderlive.cli.BridgeClient")
    def test_sync_uses_configured_tag(self, mock_client_cls, monkeypatch, capsys) -> None:
        monkeypatch.setenv("ORDERLIVE_SYNC_TAG", "sync-custom")
        client = MagicMock()
        client.sync.return_value = {"recognized": True, "synced": 1, "failed": 0}
        mock_client_cls.connect.return_value = client

        assert main(["sync"]) == 0
        client.sync.assert_called_once_with("sync-custom")
        assert '"synced": 1' in capsys.readouterr().out

    @patch("orderlive.cli.BridgeClient")
    def test_queue(self, mock_client_cls, capsys) -> None:
        client = MagicMock()
        client.enqueue.return_value = {"queued": 2}
        mock_client_cls.connect.return_value = client

        assert main(["queue", "/api/orders", '{"stall": 3}']) == 0

        client.enqueue.assert_called_once_with(
            "/api/orders",
            b'{"stall": 3}',
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        client.close.assert_called_once()
        assert '"queued": 2' in capsys.readouterr().out

    def test_bad_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("ORDERLIVE_MAX_VISIBLE", "0")
        assert main(["publish", "42", "ready"]) == 1
