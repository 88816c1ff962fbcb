"""
Unit tests for the key-value store implementations and factory.
"""
import os

import pytest

from rbs_site.errors import StorageError
from rbs_site.kv_store import KVStore
from rbs_site.local_disk_kv_store import LocalDiskKVStore
from rbs_site.memory_kv_store import MemoryKVStore
from tests.unit.test_kv_store_base import BaseLocalDiskStoreTests, BaseTigrisStoreTests


class TestLocalDiskKVStore(BaseLocalDiskStoreTests):
    """Test suite for LocalDiskKVStore."""

    @pytest.fixture
    def store(self, temp_state_dir):
        """Create a LocalDiskKVStore in a temporary directory."""
        return LocalDiskKVStore(state_dir=temp_state_dir)

    def test_init_creates_directory(self, temp_state_dir):
        """Test that the key directory is created on init."""
        store = LocalDiskKVStore(state_dir=temp_state_dir, namespace="data")
        assert os.path.isdir(os.path.join(temp_state_dir, "data"))
        assert store.root_dir == os.path.join(temp_state_dir, "data")

    def test_get_missing_key_returns_none(self, store):
        """Test that reading an absent key returns None."""
        assert store.get("articles_metadata") is None

    def test_put_then_get(self, store):
        """Test that a stored value is returned unchanged."""
        store.put("article_content_1", "# 春の体験会\n\n本文")
        assert store.get("article_content_1") == "# 春の体験会\n\n本文"

    def test_put_replaces_value(self, store):
        """Test that a second put overwrites the first."""
        store.put("k", "one")
        store.put("k", "two")
        assert store.get("k") == "two"

    def test_put_leaves_no_temp_files(self, store):
        """Test that the atomic write cleans up after itself."""
        store.put("k", "value")
        assert [name for name in os.listdir(store.root_dir) if name.startswith(".tmp-")] == []

    def test_delete_removes_key(self, store):
        """Test that delete makes the key absent."""
        store.put("k", "value")
        store.delete("k")
        assert store.get("k") is None

    def test_delete_missing_key_is_noop(self, store):
        """Test that deleting an absent key does not raise."""
        store.delete("never_written")

    def test_keys_with_path_characters_are_quoted(self, store):
        """Test that keys containing slashes stay inside the store directory."""
        store.put("../escape/attempt", "value")
        assert store.get("../escape/attempt") == "value"
        assert os.listdir(store.root_dir) == ["..%2Fescape%2Fattempt"]

    def test_invalid_key_raises(self, store):
        """Test that empty or dot keys are rejected."""
        with pytest.raises(StorageError):
            store.put("", "value")
        with pytest.raises(StorageError):
            store.get("..")

    def test_list_keys_with_prefix(self, store):
        """Test that list_keys filters by prefix and sorts."""
        store.put("article_content_b", "b")
        store.put("article_content_a", "a")
        store.put("articles_metadata", "[]")

        assert store.list_keys("article_content_") == ["article_content_a", "article_content_b"]
        assert store.list_keys() == ["article_content_a", "article_content_b", "articles_metadata"]


class TestMemoryKVStore:
    """Test suite for MemoryKVStore."""

    def test_is_a_kv_store(self):
        """Test that MemoryKVStore implements the KVStore interface."""
        assert isinstance(MemoryKVStore(), KVStore)

    def test_initial_values(self):
        """Test that initial values are readable and copied."""
        initial = {"a": "1"}
        store = MemoryKVStore(initial)
        initial["b"] = "2"
        assert store.get("a") == "1"
        assert store.get("b") is None

    def test_put_get_delete(self):
        """Test basic operations."""
        store = MemoryKVStore()
        store.put("k", "v")
        assert store.get("k") == "v"
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None

    def test_list_keys(self):
        """Test listing keys by prefix."""
        store = MemoryKVStore({"rbs_b": "", "rbs_a": "", "other": ""})
        assert store.list_keys("rbs_") == ["rbs_a", "rbs_b"]


class TestTigrisKVStore(BaseTigrisStoreTests):
    """Test suite for TigrisKVStore."""

    @pytest.fixture
    def store(self, mock_s3_client, monkeypatch):
        """Create a TigrisKVStore with a mocked S3 client."""
        monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'test_key')
        monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'test_secret')
        monkeypatch.setenv('TIGRIS_BUCKET_NAME', 'test-bucket')
        monkeypatch.delenv('TIGRIS_KEY_PREFIX', raising=False)

        from rbs_site.tigris_kv_store import TigrisKVStore
        store = TigrisKVStore()
        store.s3_client = mock_s3_client
        return store

    def test_init_requires_credentials(self, monkeypatch):
        """Test that missing credentials raise ValueError."""
        monkeypatch.delenv('AWS_ACCESS_KEY_ID', raising=False)
        monkeypatch.delenv('AWS_SECRET_ACCESS_KEY', raising=False)
        monkeypatch.setenv('TIGRIS_BUCKET_NAME', 'test-bucket')

        from rbs_site.tigris_kv_store import TigrisKVStore
        with pytest.raises(ValueError, match="AWS credentials"):
            TigrisKVStore()

    def test_init_requires_bucket(self, monkeypatch):
        """Test that a missing bucket raises ValueError."""
        monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'test_key')
        monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'test_secret')
        monkeypatch.delenv('TIGRIS_BUCKET_NAME', raising=False)

        from rbs_site.tigris_kv_store import TigrisKVStore
        with pytest.raises(ValueError, match="Bucket name"):
            TigrisKVStore()

    def test_get_returns_text(self, store, mock_s3_client):
        """Test reading an existing object."""
        self.setup_mock_get_object(mock_s3_client, '[{"id": "1"}]')

        assert store.get("articles_metadata") == '[{"id": "1"}]'
        mock_s3_client.get_object.assert_called_once_with(
            Bucket='test-bucket',
            Key='state/kv/articles_metadata'
        )

    def test_get_no_such_key_returns_none(self, store, mock_s3_client):
        """Test that NoSuchKey means absent."""
        self.setup_mock_no_such_key(mock_s3_client)
        assert store.get("articles_metadata") is None

    def test_get_other_client_error_raises_storage_error(self, store, mock_s3_client):
        """Test that other S3 errors surface as StorageError."""
        from botocore.exceptions import ClientError
        mock_s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied'}}, 'GetObject'
        )

        with pytest.raises(StorageError):
            store.get("articles_metadata")

    def test_put_writes_utf8_object(self, store, mock_s3_client):
        """Test that put uploads the value as UTF-8 text."""
        store.put("article_content_1", "本文")

        kwargs = mock_s3_client.put_object.call_args.kwargs
        assert kwargs['Bucket'] == 'test-bucket'
        assert kwargs['Key'] == 'state/kv/article_content_1'
        assert kwargs['Body'] == "本文".encode('utf-8')
        assert kwargs['ContentType'] == 'text/plain; charset=utf-8'

    def test_delete_removes_object(self, store, mock_s3_client):
        """Test that delete calls delete_object."""
        store.delete("article_content_1")
        mock_s3_client.delete_object.assert_called_once_with(
            Bucket='test-bucket',
            Key='state/kv/article_content_1'
        )

    def test_list_keys_strips_prefix(self, store, mock_s3_client):
        """Test that list_keys pages through objects and strips the key prefix."""
        paginator = mock_s3_client.get_paginator.return_value
        paginator.paginate.return_value = [
            {'Contents': [{'Key': 'state/kv/article_content_b'}]},
            {'Contents': [{'Key': 'state/kv/article_content_a'}]},
            {},
        ]

        assert store.list_keys("article_content_") == ["article_content_a", "article_content_b"]
        paginator.paginate.assert_called_once_with(
            Bucket='test-bucket',
            Prefix='state/kv/article_content_'
        )


class TestKVStoreFactory:
    """Test suite for create_kv_store."""

    def test_default_is_local_disk(self, tmp_path, monkeypatch):
        """Test that an unset KV_STORAGE_TYPE gives local disk storage."""
        monkeypatch.delenv('KV_STORAGE_TYPE', raising=False)
        from rbs_site.kv_store_factory import create_kv_store

        store = create_kv_store(state_dir=str(tmp_path))
        assert isinstance(store, LocalDiskKVStore)
        assert store.state_dir == str(tmp_path)

    def test_memory_from_env(self, monkeypatch):
        """Test that KV_STORAGE_TYPE=memory gives a MemoryKVStore."""
        monkeypatch.setenv('KV_STORAGE_TYPE', 'MEMORY')
        from rbs_site.kv_store_factory import create_kv_store

        assert isinstance(create_kv_store(), MemoryKVStore)

    def test_tigris_from_env(self, monkeypatch):
        """Test that KV_STORAGE_TYPE=tigris gives a TigrisKVStore."""
        monkeypatch.setenv('KV_STORAGE_TYPE', 'tigris')
        monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'test_key')
        monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'test_secret')
        monkeypatch.setenv('TIGRIS_BUCKET_NAME', 'test-bucket')
        from rbs_site.kv_store_factory import create_kv_store
        from rbs_site.tigris_kv_store import TigrisKVStore

        assert isinstance(create_kv_store(), TigrisKVStore)

    def test_explicit_type_overrides_env(self, tmp_path, monkeypatch):
        """Test that storage_type wins over the environment."""
        monkeypatch.setenv('KV_STORAGE_TYPE', 'tigris')
        from rbs_site.kv_store_factory import create_kv_store

        store = create_kv_store(state_dir=str(tmp_path), storage_type='local')
        assert isinstance(store, LocalDiskKVStore)
