"""
Abstract interface for key-value storage backends.

Every piece of persisted state (the article metadata collection, article
bodies, the lesson status history) is a single string value under one key.
Implementations can keep values on local disk, in distributed storage
(Tigris/S3), in memory, or in the client-side mirror, so the repositories
work unchanged on top of any of them.
"""
from abc import ABC, abstractmethod
from typing import List, Optional


class KVStore(ABC):
    """Abstract base class for key-value storage backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Get the value stored under a key.

        Args:
            key: Storage key.

        Returns:
            The stored string, or None if the key doesn't exist.
        """

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """
        Store a value, replacing any previous value as a whole.

        Args:
            key: Storage key.
            value: String value to store.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Delete a key. Deleting a missing key is not an error.

        Args:
            key: Storage key.
        """

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """
        List stored keys.

        Args:
            prefix: Only return keys starting with this prefix.

        Returns:
            Sorted list of matching keys.
        """
