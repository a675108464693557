"""Tests for environment-driven settings."""

import pytest

from orderlive.config import DEFAULT_MANIFEST, Settings
from orderlive.errors import InvalidArgumentError


class TestSettings:
    """Tests for Settings.from_env."""

    def test_defaults_with_empty_environment(self) -> None:
        """An empty environment gives the deployed defaults."""
        settings = Settings.from_env({})
        assert settings.cache_name == "food-court-shell-v1"
        assert settings.manifest == DEFAULT_MANIFEST
        assert settings.max_visible == 3
        assert settings.duration_ms == 5000
        assert settings.sync_tag == "sync-orders"

    def test_overrides(self) -> None:
        settings = Settings.from_env(
            {
                "ORDERLIVE_CACHE_VERSION": "v2",
                "ORDERLIVE_MAX_VISIBLE": "5",
                "ORDERLIVE_FETCH_TIMEOUT": "2.5",
                "ORDERLIVE_MANIFEST": "/, /menu.html ,",
            }
        )
        assert settings.cache_name == "food-court-shell-v2"
        assert settings.max_visible == 5
        assert settings.fetch_timeout == 2.5
        assert settings.manifest == ("/", "/menu.html")

    def test_bad_integer(self) -> None:
        with pytest.raises(InvalidArgumentError, match="ORDERLIVE_DURATION_MS"):
            Settings.from_env({"ORDERLIVE_DURATION_MS": "soon"})

    def test_bad_float(self) -> None:
        with pytest.raises(InvalidArgumentError):
            Settings.from_env({"ORDERLIVE_FETCH_TIMEOUT": "fast"})

    def test_max_visible_must_be_positive(self) -> None:
        """A queue that can show nothing is a configuration error."""
        with pytest.raises(InvalidArgumentError):
            Settings.from_env({"ORDERLIVE_MAX_VISIBLE": "0"})

    def test_reads_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("ORDERLIVE_ORIGIN", "https://food.example")
        assert Settings.from_env().origin == "https://food.example"
