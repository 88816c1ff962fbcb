"""
Client-side mirror storage.

A non-authoritative copy of site data kept on the visitor's side, used when
the HTTP API is unreachable and by the legacy pure-static deployment. It is a
KVStore, so ArticleRepository and LessonStatusRepository run on it unchanged.

On top of the backing store it adds:
- a key prefix ("rbs_") separating site data from anything else stored there,
- an envelope {value, timestamp, version, expiry?} around every value,
- optional per-key TTL,
- a size limit checked before each write,
- watch()/unwatch() notifications on key changes,
- a one-time migration when the stored schema version differs.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from rbs_site.errors import (
    MirrorQuotaExceededError,
    SchemaMismatchError,
    ValidationError,
)
from rbs_site.event_bus import EventBus
from rbs_site.file_utils import utc_now
from rbs_site.kv_store import KVStore

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "rbs_"
DEFAULT_VERSION = "3.0"
DEFAULT_MAX_SIZE = 5 * 1024 * 1024
VERSION_KEY = "_version"
INITIAL_VERSION = "1.0"

Migration = Callable[["MirrorStore", str, str], None]


def _version_tuple(version: str):
    parts = []
    for part in str(version).split("."):
        parts.append(int(part) if part.isdigit() else 0)
    return tuple(parts)


def drop_deprecated_keys(mirror: "MirrorStore", from_version: str, to_version: str) -> None:
    """
    Remove keys left behind by data layouts older than 3.0.

    Any key in the backing store starting with "old_" or containing
    "deprecated" is deleted.
    """
    if _version_tuple(from_version) >= (3, 0):
        return
    for key in mirror.backing.list_keys():
        if key.startswith("old_") or "deprecated" in key:
            mirror.backing.delete(key)
            logger.info("Removed deprecated mirror key %s (%s -> %s)", key, from_version, to_version)


class MirrorStore(KVStore):
    """KVStore wrapper adding envelopes, TTL, quota, watches and versioning."""

    def __init__(
        self,
        backing: KVStore,
        prefix: str = DEFAULT_PREFIX,
        version: str = DEFAULT_VERSION,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Optional[Callable[[], datetime]] = None,
        event_bus: Optional[EventBus] = None,
        migrations: Optional[List[Migration]] = None
    ):
        """
        Initialize the mirror.

        Args:
            backing: Store holding the raw envelopes (local disk, memory, ...)
            prefix: Prefix added to every key in the backing store
            version: Current schema version
            max_size: Maximum total bytes of prefixed data
            clock: Returns the current time (defaults to UTC now)
            event_bus: Carries watch notifications
            migrations: Called as migration(mirror, from_version, to_version)
                        when the stored version differs (defaults to
                        [drop_deprecated_keys])
        """
        self.backing = backing
        self.prefix = prefix
        self.version = version
        self.max_size = max_size
        self.clock = clock or utc_now
        self.event_bus = event_bus or EventBus()
        self.migrations = migrations if migrations is not None else [drop_deprecated_keys]
        self._version_checked = False

    # ================== ENVELOPES ==================

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _now_millis(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def _is_expired(self, envelope: Dict[str, Any]) -> bool:
        expiry = envelope.get("expiry")
        return expiry is not None and self._now_millis() > expiry

    def _read_envelope(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.backing.get(self._full_key(key))
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable mirror entry %s", key)
            return None
        if not isinstance(envelope, dict) or "value" not in envelope:
            logger.warning("Ignoring mirror entry %s without envelope", key)
            return None
        return envelope

    def _write_envelope(self, key: str, value: Any, ttl: Optional[float] = None) -> str:
        envelope = {
            "value": value,
            "timestamp": self._now_millis(),
            "version": self.version,
        }
        if ttl is not None:
            envelope["expiry"] = envelope["timestamp"] + int(ttl * 1000)
        serialized = json.dumps(envelope, ensure_ascii=False)
        self._check_size(key, serialized)
        self.backing.put(self._full_key(key), serialized)
        return serialized

    # ================== VERSIONING ==================

    def _check_version(self) -> None:
        envelope = self._read_envelope(VERSION_KEY)
        stored = envelope["value"] if envelope else INITIAL_VERSION
        if stored != self.version:
            raise SchemaMismatchError(stored, self.version)

    def ensure_migrated(self) -> None:
        """Run the migrations once per instance if the stored version is out of date."""
        if self._version_checked:
            return
        self._version_checked = True
        try:
            self._check_version()
        except SchemaMismatchError as e:
            logger.info("Migrating mirror data %s -> %s", e.stored_version, e.expected_version)
            for migration in self.migrations:
                migration(self, e.stored_version, e.expected_version)
            self._write_envelope(VERSION_KEY, self.version)

    # ================== SIZE ==================

    def _check_size(self, key: str, serialized: str) -> None:
        full_key = self._full_key(key)
        used = 0
        for stored_key in self.backing.list_keys(self.prefix):
            if stored_key == full_key:
                continue
            used += len((self.backing.get(stored_key) or "").encode("utf-8"))
        new_size = len(serialized.encode("utf-8"))
        if used + new_size >= self.max_size:
            raise MirrorQuotaExceededError(
                "Mirror storage limit exceeded",
                details=f"{used + new_size} bytes would exceed the {self.max_size} byte limit"
            )

    def usage_stats(self) -> Dict[str, Any]:
        """
        Report how much of the size limit site data uses.

        Returns:
            Dict with app_size (bytes), app_item_count, max_size and
            app_usage_percent.
        """
        app_size = 0
        keys = self.backing.list_keys(self.prefix)
        for stored_key in keys:
            app_size += len((self.backing.get(stored_key) or "").encode("utf-8"))
        return {
            "app_size": app_size,
            "app_item_count": len(keys),
            "max_size": self.max_size,
            "app_usage_percent": round(app_size / self.max_size * 100) if self.max_size else 0,
        }

    # ================== KVStore ==================

    def get(self, key: str) -> Optional[str]:
        """
        Get a value; expired entries are deleted and reported as missing.

        Args:
            key: Key without the mirror prefix.

        Returns:
            The stored value, or None.
        """
        self.ensure_migrated()
        envelope = self._read_envelope(key)
        if envelope is None:
            return None
        if self._is_expired(envelope):
            self.delete(key)
            return None
        return envelope["value"]

    def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        """
        Store a value and notify watchers.

        Args:
            key: Key without the mirror prefix.
            value: Value to store.
            ttl: Seconds until the value expires (no expiry when None).

        Raises:
            MirrorQuotaExceededError: If the write would exceed the size limit.
        """
        self.ensure_migrated()
        self._write_envelope(key, value, ttl)
        self.event_bus.emit(self._watch_event(key), value, "set")

    def delete(self, key: str) -> None:
        """Delete a value and notify watchers."""
        self.ensure_migrated()
        self.backing.delete(self._full_key(key))
        self.event_bus.emit(self._watch_event(key), None, "remove")

    def list_keys(self, prefix: str = "") -> List[str]:
        """List keys (without the mirror prefix), excluding the version marker."""
        keys = []
        for stored_key in self.backing.list_keys(self._full_key(prefix)):
            key = stored_key[len(self.prefix):]
            if key != VERSION_KEY:
                keys.append(key)
        return keys

    def keys(self) -> List[str]:
        """List all site keys."""
        return self.list_keys()

    # ================== WATCH ==================

    @staticmethod
    def _watch_event(key: str) -> str:
        return f"mirror:{key}"

    def watch(self, key: str, callback: Callable[[Optional[str], str], None]) -> Callable[[], None]:
        """
        Call callback(value, action) whenever a key is set or removed.

        Action is "set" or "remove" (value is None on remove).

        Returns:
            A function that stops watching when called
        """
        return self.event_bus.subscribe(self._watch_event(key), callback)

    def unwatch(self, key: str, callback: Callable[[Optional[str], str], None]) -> None:
        """Stop calling a callback for a key."""
        self.event_bus.unsubscribe(self._watch_event(key), callback)

    # ================== MAINTENANCE ==================

    def cleanup_expired(self) -> int:
        """
        Delete every expired entry.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for key in self.keys():
            envelope = self._read_envelope(key)
            if envelope is not None and self._is_expired(envelope):
                self.delete(key)
                removed += 1
        if removed:
            logger.info("Removed %d expired mirror entries", removed)
        return removed

    def clear(self) -> int:
        """
        Delete all site data, including the version marker.

        Returns:
            Number of keys removed.
        """
        keys = self.backing.list_keys(self.prefix)
        for stored_key in keys:
            self.backing.delete(stored_key)
        self._version_checked = False
        logger.info("Cleared %d mirror keys", len(keys))
        return len(keys)

    def backup(self) -> Dict[str, Any]:
        """
        Snapshot all live values.

        Returns:
            {"version", "timestamp", "data": {key: value}}
        """
        data = {}
        for key in self.keys():
            value = self.get(key)
            if value is not None:
                data[key] = value
        return {"version": self.version, "timestamp": self._now_millis(), "data": data}

    def restore(self, backup: Dict[str, Any]) -> int:
        """
        Write every value from a backup() snapshot.

        Returns:
            Number of keys restored.

        Raises:
            ValidationError: If the snapshot has no data mapping.
        """
        if not isinstance(backup, dict) or not isinstance(backup.get("data"), dict):
            raise ValidationError("Invalid mirror backup")
        for key, value in backup["data"].items():
            self.put(key, value)
        logger.info("Restored %d mirror keys", len(backup["data"]))
        return len(backup["data"])
