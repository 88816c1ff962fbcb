"""
Factory function for creating key-value stores.
"""
import os
from typing import Optional

from rbs_site.kv_store import KVStore
from rbs_site.local_disk_kv_store import LocalDiskKVStore
from rbs_site.memory_kv_store import MemoryKVStore
from rbs_site.tigris_kv_store import TigrisKVStore


def create_kv_store(state_dir: str = "state", storage_type: Optional[str] = None) -> KVStore:
    """
    Create a key-value store based on environment configuration.

    Reads the KV_STORAGE_TYPE environment variable (unless storage_type is
    given) to determine which implementation to use:
    - 'local' or unset: LocalDiskKVStore (default)
    - 'tigris': TigrisKVStore
    - 'memory': MemoryKVStore

    Args:
        state_dir: Directory for local disk storage (default: "state")
        storage_type: Explicit backend name, overriding the environment

    Returns:
        KVStore: Configured store instance

    Environment Variables:
        KV_STORAGE_TYPE: Storage backend ('local', 'tigris' or 'memory', default: 'local')
        AWS_ACCESS_KEY_ID: Required for Tigris storage
        AWS_SECRET_ACCESS_KEY: Required for Tigris storage
        TIGRIS_BUCKET_NAME: Required for Tigris storage
    """
    storage_type = (storage_type or os.getenv('KV_STORAGE_TYPE', 'local')).lower()

    if storage_type == 'tigris':
        return TigrisKVStore()
    elif storage_type == 'memory':
        return MemoryKVStore()

    # Default to local disk storage
    return LocalDiskKVStore(state_dir=state_dir)
