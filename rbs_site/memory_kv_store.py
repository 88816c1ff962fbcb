"""
In-memory implementation of key-value storage.

Nothing is persisted; used for tests and throwaway local runs.
"""
from typing import Dict, List, Optional

from rbs_site.kv_store import KVStore


class MemoryKVStore(KVStore):
    """Key-value store backed by a plain dict."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
