"""
Local disk implementation of key-value storage.

Stores each key as its own file on the local filesystem.
Default location: state/kv/<quoted key>
"""
import os
from typing import List, Optional
from urllib.parse import quote, unquote

from rbs_site.errors import StorageError
from rbs_site.file_utils import load_text_file, save_text_file
from rbs_site.kv_store import KVStore


class LocalDiskKVStore(KVStore):
    """
    Local disk implementation of key-value storage.

    One file per key, written with a whole-file replace.
    """

    def __init__(self, state_dir: str = "state", namespace: str = "kv"):
        """
        Initialize local disk storage.

        Args:
            state_dir: Directory for storing state files (default: "state")
            namespace: Subdirectory holding the key files (default: "kv")
        """
        self.state_dir = state_dir
        self.namespace = namespace
        self.root_dir = os.path.join(state_dir, namespace)
        os.makedirs(self.root_dir, exist_ok=True)

    def _get_filepath(self, key: str) -> str:
        """Get the full file path for a key."""
        if not key or key in (".", ".."):
            raise StorageError(f"Invalid storage key: {key!r}")
        return os.path.join(self.root_dir, quote(key, safe=""))

    def get(self, key: str) -> Optional[str]:
        """
        Get a value from local disk.

        Args:
            key: Storage key.

        Returns:
            The stored string, or None if there is no file for the key.
        """
        try:
            return load_text_file(self._get_filepath(key))
        except OSError as e:
            raise StorageError(f"Failed to read key {key}", details=str(e)) from e

    def put(self, key: str, value: str) -> None:
        """
        Save a value to local disk.

        Args:
            key: Storage key.
            value: String value to store.
        """
        try:
            save_text_file(self._get_filepath(key), value)
        except OSError as e:
            raise StorageError(f"Failed to write key {key}", details=str(e)) from e

    def delete(self, key: str) -> None:
        """
        Delete a key's file from local disk if present.

        Args:
            key: Storage key.
        """
        filepath = self._get_filepath(key)
        try:
            if os.path.exists(filepath):
                os.remove(filepath)
        except OSError as e:
            raise StorageError(f"Failed to delete key {key}", details=str(e)) from e

    def list_keys(self, prefix: str = "") -> List[str]:
        """
        List keys stored on local disk.

        Args:
            prefix: Only return keys starting with this prefix.

        Returns:
            Sorted list of matching keys.
        """
        keys = [
            unquote(name) for name in os.listdir(self.root_dir)
            if not name.startswith(".tmp-")
        ]
        return sorted(k for k in keys if k.startswith(prefix))
