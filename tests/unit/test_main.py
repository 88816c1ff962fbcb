"""
Unit tests for main.py entry point.
"""
import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from main import main
from rbs_site.local_disk_kv_store import LocalDiskKVStore
from rbs_site.mirror_store import MirrorStore


class TestMain:
    """Test suite for main function."""

    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory."""
        temp_dir = tempfile.mkdtemp()
        yield temp_dir
        shutil.rmtree(temp_dir)

    @pytest.fixture
    def mock_config(self, temp_dir):
        """Create a mock config pointing at the temporary directory."""
        mock_cfg = Mock()
        mock_cfg.state_dir = os.path.join(temp_dir, "state")
        mock_cfg.kv_storage_type = "local"
        mock_cfg.lesson_status_retention_days = 30
        mock_cfg.mirror_state_dir = os.path.join(temp_dir, "mirror")
        mock_cfg.mirror_version = "3.0"
        mock_cfg.mirror_max_size = 5 * 1024 * 1024
        return mock_cfg

    def test_main_removes_old_history(self, mock_config):
        """Test that history older than the retention window is dropped."""
        today = datetime.now(timezone.utc).date()
        old_date = (today - timedelta(days=40)).isoformat()
        kv_store = LocalDiskKVStore(state_dir=mock_config.state_dir)
        kv_store.put("lesson_status_history", json.dumps({
            old_date: {"date": old_date, "globalStatus": "cancelled"},
            today.isoformat(): {"date": today.isoformat(), "globalStatus": "indoor"},
        }))

        with patch("main.Config", return_value=mock_config):
            result = main()

        assert result["lesson_status"] == 1
        history = json.loads(kv_store.get("lesson_status_history"))
        assert list(history) == [today.isoformat()]

    def test_main_removes_expired_mirror_entries(self, mock_config):
        """Test that expired mirror entries are cleaned up."""
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        mirror = MirrorStore(LocalDiskKVStore(state_dir=mock_config.mirror_state_dir), clock=lambda: past)
        mirror.put("banner", "cancelled", ttl=60)
        mirror.put("articles_metadata", "[]")

        with patch("main.Config", return_value=mock_config):
            result = main()

        assert result["mirror"] == 1
        assert MirrorStore(LocalDiskKVStore(state_dir=mock_config.mirror_state_dir)).keys() == [
            "articles_metadata"
        ]

    def test_main_with_empty_storage(self, mock_config):
        """Test that an empty store needs no cleanup."""
        with patch("main.Config", return_value=mock_config):
            result = main()

        assert result == {"lesson_status": 0, "mirror": 0}
