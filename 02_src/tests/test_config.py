"""Tests for configuration."""

import importlib
from datetime import timedelta

from messenger import config


class TestFixedWindows:
    """Tests for delivery windows that are not tunable."""

    def test_windows_ignore_environment(self, monkeypatch):
        """Test the delete window and online threshold stay at 15 and 5 minutes."""
        monkeypatch.setenv("DELETE_FOR_EVERYONE_MINUTES", "60")
        monkeypatch.setenv("ONLINE_THRESHOLD_MINUTES", "60")
        reloaded = importlib.reload(config)

        assert reloaded.DELETE_FOR_EVERYONE_WINDOW == timedelta(minutes=15)
        assert reloaded.ONLINE_THRESHOLD == timedelta(minutes=5)


class TestResolveDbPath:
    """Tests for resolve_db_path()."""

    def test_memory_passthrough(self):
        """Test that an in-memory database is kept as is."""
        assert config.resolve_db_path(":memory:") == ":memory:"

    def test_relative_path_under_project(self):
        """Test that relative paths resolve against the project root."""
        assert config.resolve_db_path("03_data/x.db") == config.PROJECT_ROOT / "03_data/x.db"

    def test_default(self):
        """Test the default database location."""
        assert config.resolve_db_path(None) == config.DEFAULT_DB_PATH
