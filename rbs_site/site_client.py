"""
HTTP client for the RBS content service.

Used by the public pages and the admin tools. When the API cannot be reached
and mirror repositories are configured, reads and writes go to the mirror
instead and the client reports itself as degraded.
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from rbs_site.article_repository import ArticleRepository
from rbs_site.errors import ApiRequestError, StorageError
from rbs_site.lesson_status_repository import LessonStatusRepository
from rbs_site.site_rules import canonical_to_legacy, legacy_to_canonical

# Configure logging
logger = logging.getLogger(__name__)


class SiteApiClient:
    """Client for the article and lesson status endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        mirror_articles: Optional[ArticleRepository] = None,
        mirror_status: Optional[LessonStatusRepository] = None,
        mirror_only: bool = False
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. "http://127.0.0.1:8000"
            timeout: Per-request timeout in seconds
            session: Optional requests session (a new one is created otherwise)
            mirror_articles: Article repository over the mirror, used as fallback
            mirror_status: Lesson status repository over the mirror, used as fallback
            mirror_only: Skip the API entirely and use the mirror repositories
        """
        if mirror_only and mirror_articles is None and mirror_status is None:
            raise ValueError("mirror_only requires at least one mirror repository")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.mirror_articles = mirror_articles
        self.mirror_status = mirror_status
        self.mirror_only = mirror_only
        self.degraded = mirror_only

    def _call(
        self,
        method: str,
        path: str,
        fallback: Optional[Callable[[], Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None
    ) -> Any:
        """
        Send one request, falling back to the mirror when the API is unreachable.

        Args:
            method: HTTP method
            path: Path below base_url
            fallback: Mirror operation to run instead (None when no mirror is configured)
            params: Query parameters
            json_body: JSON request body

        Returns:
            Decoded JSON body, None for empty responses, or the fallback's result

        Raises:
            ApiRequestError: If the API answered with a non-2xx status or a body that is not JSON
            StorageError: If the API is unreachable and there is no fallback
        """
        if self.mirror_only and fallback is not None:
            return fallback()

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, params=params, json=json_body, timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            if fallback is None:
                raise StorageError("API unreachable", details=str(e)) from e
            logger.warning(f"{method} {path} failed ({e.__class__.__name__}), using mirror")
            self.degraded = True
            return fallback()

        self.degraded = False
        if not response.ok:
            error, details = _error_fields(response)
            logger.warning(f"{method} {path} - {response.status_code} {error}")
            raise ApiRequestError(response.status_code, error, details)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"{method} {path} - {response.status_code} Invalid JSON response")
            raise ApiRequestError(response.status_code, "Invalid JSON response", details=str(e)) from e

    # ================== ARTICLES ==================

    def list_articles(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        List article metadata.

        Args:
            status: Only articles with this status ("draft" / "published")
            category: Only articles in this category
            featured: Only featured (True) or non-featured (False) articles
            limit: Maximum number of articles
            offset: Number of matching articles to skip

        Returns:
            List of article metadata dicts
        """
        params: Dict[str, Any] = {}
        if status is not None:
            params["status"] = status
        if category is not None:
            params["category"] = category
        if featured is not None:
            params["featured"] = "true" if featured else "false"
        if limit is not None:
            params["limit"] = limit
        if offset:
            params["offset"] = offset

        fallback = None
        if self.mirror_articles is not None:
            def fallback():
                return self.mirror_articles.list_filtered(
                    status=status, category=category, featured=featured,
                    limit=limit, offset=offset
                )
        return self._call("GET", "/api/articles", fallback, params=params or None)

    def get_article(self, article_id: str) -> Dict[str, Any]:
        """Get one article with its content."""
        fallback = None
        if self.mirror_articles is not None:
            def fallback():
                return self.mirror_articles.get_by_id(article_id)
        return self._call("GET", f"/api/articles/{article_id}", fallback)

    def create_article(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create an article and return it with its id and file name."""
        fallback = None
        if self.mirror_articles is not None:
            def fallback():
                return self.mirror_articles.create(fields)
        return self._call("POST", "/api/articles", fallback, json_body=fields)

    def update_article(self, article_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Update the given fields of an article."""
        fallback = None
        if self.mirror_articles is not None:
            def fallback():
                return self.mirror_articles.update(article_id, fields)
        return self._call("PUT", f"/api/articles/{article_id}", fallback, json_body=fields)

    def delete_article(self, article_id: str) -> None:
        """Delete an article."""
        fallback = None
        if self.mirror_articles is not None:
            def fallback():
                return self.mirror_articles.delete(article_id)
        self._call("DELETE", f"/api/articles/{article_id}", fallback)

    # ================== LESSON STATUS ==================

    def get_status(self) -> Dict[str, Any]:
        """Get today's status in the flat overallStatus/lessons shape."""
        fallback = None
        if self.mirror_status is not None:
            def fallback():
                return canonical_to_legacy(self.mirror_status.get())
        return self._call("GET", "/api/status", fallback)

    def post_status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Save today's status from the flat overallStatus/lessons shape.

        Returns:
            The saved status in the flat shape

        Raises:
            ApiRequestError: If the response carries no data object
        """
        fallback = None
        if self.mirror_status is not None:
            def fallback():
                return {"data": canonical_to_legacy(self.mirror_status.save(legacy_to_canonical(data)))}
        result = self._call("POST", "/api/status", fallback, json_body=data)
        if not isinstance(result, dict) or not isinstance(result.get("data"), dict):
            raise ApiRequestError(200, "Invalid status response", details="response has no data object")
        return result["data"]

    def get_lesson_status(self, date: Optional[str] = None) -> Dict[str, Any]:
        """Get the lesson status for a date (default today)."""
        fallback = None
        if self.mirror_status is not None:
            def fallback():
                return self.mirror_status.get(date)
        params = {"date": date} if date else None
        return self._call("GET", "/api/lesson-status", fallback, params=params)

    def save_lesson_status(self, record: Dict[str, Any], date: Optional[str] = None) -> Dict[str, Any]:
        """Save the lesson status for a date (default: record date, then today)."""
        fallback = None
        if self.mirror_status is not None:
            def fallback():
                return self.mirror_status.save(record, date)
        params = {"date": date} if date else None
        return self._call("PUT", "/api/lesson-status", fallback, params=params, json_body=record)

    def delete_lesson_status(self, date: str) -> None:
        """Delete the lesson status stored for a date."""
        fallback = None
        if self.mirror_status is not None:
            def fallback():
                return self.mirror_status.delete(date)
        self._call("DELETE", f"/api/lesson-status/{date}", fallback)

    def recent_lesson_status(self, days: int = 7) -> List[Dict[str, Any]]:
        """Get the lesson status for today and the following days."""
        fallback = None
        if self.mirror_status is not None:
            def fallback():
                return self.mirror_status.recent(days)
        return self._call("GET", "/api/lesson-status/recent", fallback, params={"days": days})


def _error_fields(response: requests.Response):
    """Pull (error, details) out of a JSON error body, falling back to the status text."""
    try:
        body = response.json()
    except ValueError:
        return response.reason or f"HTTP {response.status_code}", response.text or None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"]), body.get("details")
    return response.reason or f"HTTP {response.status_code}", None


class StatusPoller:
    """Refreshes a value at a fixed interval and reports changes."""

    def __init__(
        self,
        fetch: Callable[[], Any],
        interval: float = 30.0,
        on_update: Optional[Callable[[Any], None]] = None
    ):
        """
        Initialize the poller.

        Args:
            fetch: Returns the current value (e.g. SiteApiClient.get_status)
            interval: Seconds between fetches
            on_update: Called with the new value whenever it differs from the last one
        """
        self.fetch = fetch
        self.interval = interval
        self.on_update = on_update
        self.last_value: Any = None
        self.last_error: Optional[Exception] = None

    def run_once(self) -> Any:
        """
        Fetch once.

        Failures are logged and kept in last_error; the previous value stays.

        Returns:
            The fetched value, or None if the fetch failed
        """
        try:
            value = self.fetch()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning(f"Status refresh failed: {e}")
            self.last_error = e
            return None

        self.last_error = None
        if value != self.last_value:
            self.last_value = value
            if self.on_update:
                self.on_update(value)
        return value

    def run(self, stop_event: threading.Event) -> None:
        """Fetch every interval seconds until stop_event is set."""
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(self.interval)
