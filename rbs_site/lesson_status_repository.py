"""
Lesson status storage on top of a key-value store.

Records are kept per calendar date in one JSON object under
"lesson_status_history". Today's record is also copied to "lesson_status"
so a single read answers "what is the status right now". Both values are
replaced as a whole on every write.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from rbs_site.errors import NotFoundError, ValidationError
from rbs_site.event_bus import EventBus
from rbs_site.file_utils import get_date_key, get_utc_timestamp, utc_now
from rbs_site.kv_store import KVStore
from rbs_site.site_rules import (
    copy_record,
    default_status_record,
    is_legacy_shape,
    legacy_to_canonical,
    normalize_status_record,
    validate_date_key,
    validate_status_record,
)

logger = logging.getLogger(__name__)

LESSON_STATUS_HISTORY_KEY = "lesson_status_history"
LESSON_STATUS_CURRENT_KEY = "lesson_status"

STATUS_UPDATED_EVENT = "lessonStatus:updated"
STATUS_DELETED_EVENT = "lessonStatus:deleted"


class LessonStatusRepository:
    """Per-date lesson status records."""

    def __init__(
        self,
        kv_store: KVStore,
        clock: Optional[Callable[[], datetime]] = None,
        event_bus: Optional[EventBus] = None
    ):
        """
        Initialize the repository.

        Args:
            kv_store: Backing key-value store
            clock: Returns the current time (defaults to UTC now)
            event_bus: Receives lessonStatus:updated / lessonStatus:deleted events
        """
        self.kv_store = kv_store
        self.clock = clock or utc_now
        self.event_bus = event_bus or EventBus()

    def today(self) -> str:
        """Today's date key (YYYY-MM-DD, UTC)."""
        return get_date_key(self.clock())

    # ================== STORAGE HELPERS ==================

    def _load_json(self, key: str) -> Any:
        raw = self.kv_store.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt lesson status data under %s", key)
            return None

    def _load_history(self) -> Dict[str, Dict[str, Any]]:
        data = self._load_json(LESSON_STATUS_HISTORY_KEY)
        return data if isinstance(data, dict) else {}

    def _save_history(self, history: Dict[str, Dict[str, Any]]) -> None:
        self.kv_store.put(LESSON_STATUS_HISTORY_KEY, json.dumps(history, ensure_ascii=False))

    def _load_current(self, date_key: str) -> Optional[Dict[str, Any]]:
        """Read the convenience key, accepting records written in the flat legacy shape."""
        data = self._load_json(LESSON_STATUS_CURRENT_KEY)
        if not isinstance(data, dict):
            return None
        if is_legacy_shape(data):
            last_updated = data.get("lastUpdated")
            if not isinstance(last_updated, str) or last_updated[:10] != date_key:
                return None
            try:
                return normalize_status_record(legacy_to_canonical(data), date_key, last_updated)
            except ValidationError as e:
                logger.warning(
                    "Ignoring unreadable lesson status under %s: %s", LESSON_STATUS_CURRENT_KEY, e.details
                )
                return None
        if data.get("date") != date_key:
            return None
        return data

    # ================== OPERATIONS ==================

    def get(self, date: Optional[str] = None) -> Dict[str, Any]:
        """
        Get the lesson status for a date.

        Args:
            date: Date key (YYYY-MM-DD); defaults to today

        Returns:
            The stored record, or an all-scheduled default when nothing is stored.

        Raises:
            ValidationError: If the date is malformed.
        """
        date_key = validate_date_key(date) if date else self.today()

        record = self._load_history().get(date_key)
        if isinstance(record, dict):
            return record

        if date_key == self.today():
            current = self._load_current(date_key)
            if current is not None:
                return current

        return default_status_record(date_key)

    def save(self, record: Dict[str, Any], date: Optional[str] = None) -> Dict[str, Any]:
        """
        Normalize, validate and store the lesson status for a date.

        Subscribers of lessonStatus:updated are notified with the stored record.

        Args:
            record: Status data in the canonical shape (may be partial)
            date: Date key (YYYY-MM-DD); defaults to record["date"], then today

        Returns:
            The normalized record as stored.

        Raises:
            ValidationError: If the date or the status data is invalid.
        """
        target = date or (record.get("date") if isinstance(record, dict) else None)
        date_key = validate_date_key(target) if target else self.today()

        normalized = normalize_status_record(record, date_key, get_utc_timestamp(self.clock()))
        validate_status_record(normalized)

        history = self._load_history()
        history[date_key] = normalized
        self._save_history(history)
        if date_key == self.today():
            self.kv_store.put(LESSON_STATUS_CURRENT_KEY, json.dumps(normalized, ensure_ascii=False))

        logger.info("Saved lesson status for %s: %s", date_key, normalized["globalStatus"])
        self.event_bus.emit(STATUS_UPDATED_EVENT, copy_record(normalized))
        return normalized

    def delete(self, date: str) -> None:
        """
        Delete the lesson status for a date.

        Args:
            date: Date key (YYYY-MM-DD)

        Raises:
            NotFoundError: If nothing is stored for the date.
        """
        date_key = validate_date_key(date)
        history = self._load_history()
        if date_key not in history:
            raise NotFoundError("Lesson status not found", details=date_key)

        deleted = history.pop(date_key)
        self._save_history(history)
        if date_key == self.today():
            self.kv_store.delete(LESSON_STATUS_CURRENT_KEY)

        logger.info("Deleted lesson status for %s", date_key)
        self.event_bus.emit(STATUS_DELETED_EVENT, date_key, deleted)

    def recent(self, days: int = 7) -> List[Dict[str, Any]]:
        """
        Get the status for today and the following days.

        Args:
            days: Number of days to return, starting today

        Returns:
            One record per day, defaults filled in for days with nothing stored.
        """
        history = self._load_history()
        start = self.clock()
        records = []
        for offset in range(max(days, 0)):
            date_key = get_date_key(start + timedelta(days=offset))
            record = history.get(date_key)
            records.append(record if isinstance(record, dict) else default_status_record(date_key))
        return records

    def cleanup_old(self, retention_days: int = 30) -> int:
        """
        Drop history entries older than the retention window.

        Args:
            retention_days: Entries dated before today minus this many days are removed

        Returns:
            Number of entries removed.
        """
        cutoff = get_date_key(self.clock() - timedelta(days=retention_days))
        history = self._load_history()
        kept = {date_key: record for date_key, record in history.items() if date_key >= cutoff}
        removed = len(history) - len(kept)
        if removed:
            self._save_history(kept)
            logger.info("Removed %d lesson status entries older than %s", removed, cutoff)
        return removed
