"""
API tests for the content service client.
"""
import threading
from datetime import datetime, timezone

import pytest
import requests
import requests_mock

from rbs_site.article_repository import ArticleRepository
from rbs_site.errors import ApiRequestError, StorageError
from rbs_site.lesson_status_repository import LessonStatusRepository
from rbs_site.memory_kv_store import MemoryKVStore
from rbs_site.mirror_store import MirrorStore
from rbs_site.site_client import SiteApiClient, StatusPoller

BASE_URL = "http://rbs.test"
FIXED_NOW = datetime(2024, 4, 1, 8, 30, 0, tzinfo=timezone.utc)


def article_fields(**overrides):
    """Build a valid article payload."""
    fields = {
        "title": "Spring Trial",
        "content": "body",
        "date": "2024-04-01",
        "category": "event",
        "categoryName": "体験会",
        "excerpt": "excerpt",
    }
    fields.update(overrides)
    return fields


class TestSiteApiClient:
    """Test suite for SiteApiClient against a mocked API."""

    @pytest.fixture
    def client(self):
        """Create a client without a mirror."""
        return SiteApiClient(BASE_URL, timeout=5)

    def test_list_articles(self, client):
        """Test GET /api/articles with filters as query parameters."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles", json=[{"id": "a1", "title": "Spring Trial"}])

            articles = client.list_articles(status="published", featured=True, limit=5)

            assert articles == [{"id": "a1", "title": "Spring Trial"}]
            assert m.last_request.qs == {"status": ["published"], "featured": ["true"], "limit": ["5"]}

    def test_list_articles_without_filters_sends_no_query(self, client):
        """Test that no query string is sent without filters."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles", json=[])
            client.list_articles()
            assert m.last_request.query == ""

    def test_create_article(self, client):
        """Test POST /api/articles sends the payload as JSON."""
        with requests_mock.Mocker() as m:
            m.post(f"{BASE_URL}/api/articles", status_code=201, json={"id": "a1", "file": "2024-04-01-spring-trial.md"})

            created = client.create_article(article_fields())

            assert created["file"] == "2024-04-01-spring-trial.md"
            assert m.last_request.json() == article_fields()

    def test_update_article(self, client):
        """Test PUT /api/articles/{id}."""
        with requests_mock.Mocker() as m:
            m.put(f"{BASE_URL}/api/articles/a1", json={"id": "a1", "status": "published"})
            assert client.update_article("a1", {"status": "published"})["status"] == "published"

    def test_delete_article_no_content(self, client):
        """Test DELETE /api/articles/{id} handles 204."""
        with requests_mock.Mocker() as m:
            m.delete(f"{BASE_URL}/api/articles/a1", status_code=204)
            assert client.delete_article("a1") is None

    def test_error_response_raises_api_request_error(self, client):
        """Test that non-2xx responses carry status, error and details."""
        with requests_mock.Mocker() as m:
            m.post(
                f"{BASE_URL}/api/articles",
                status_code=400,
                json={"error": "Missing required fields", "details": "Missing: title"}
            )

            with pytest.raises(ApiRequestError) as exc_info:
                client.create_article({})

            assert exc_info.value.status_code == 400
            assert exc_info.value.message == "Missing required fields"
            assert exc_info.value.details == "Missing: title"

    def test_error_response_without_json_body(self, client):
        """Test that a plain-text error falls back to the HTTP reason."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles/a1", status_code=502, text="Bad gateway", reason="Bad Gateway")

            with pytest.raises(ApiRequestError) as exc_info:
                client.get_article("a1")

            assert exc_info.value.status_code == 502
            assert exc_info.value.message == "Bad Gateway"

    def test_unreachable_without_mirror_raises_storage_error(self, client):
        """Test that a connection error without a mirror raises StorageError."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles", exc=requests.exceptions.ConnectionError)

            with pytest.raises(StorageError, match="API unreachable"):
                client.list_articles()

    def test_timeout_is_passed(self, client):
        """Test that every request uses the configured timeout."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/status", json={"overallStatus": "scheduled", "lessons": []})
            client.get_status()
            assert m.last_request.timeout == 5

    def test_lesson_status_calls(self, client):
        """Test the canonical lesson status calls."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/lesson-status", json={"date": "2024-04-02"})
            m.put(f"{BASE_URL}/api/lesson-status", json={"date": "2024-04-02", "globalStatus": "indoor"})
            m.get(f"{BASE_URL}/api/lesson-status/recent", json=[])
            m.delete(f"{BASE_URL}/api/lesson-status/2024-04-02", status_code=204)

            assert client.get_lesson_status("2024-04-02")["date"] == "2024-04-02"
            assert m.last_request.qs == {"date": ["2024-04-02"]}

            saved = client.save_lesson_status({"globalStatus": "indoor"}, "2024-04-02")
            assert saved["globalStatus"] == "indoor"
            assert m.last_request.json() == {"globalStatus": "indoor"}

            assert client.recent_lesson_status(3) == []
            assert m.last_request.qs == {"days": ["3"]}

            assert client.delete_lesson_status("2024-04-02") is None

    def test_post_status_returns_saved_data(self, client):
        """Test POST /api/status unwraps the saved record."""
        with requests_mock.Mocker() as m:
            m.post(f"{BASE_URL}/api/status", json={
                "success": True,
                "message": "レッスン状況が更新されました",
                "data": {"overallStatus": "cancelled"},
            })
            assert client.post_status({"overallStatus": "cancelled", "lessons": []}) == {
                "overallStatus": "cancelled"
            }

    def test_non_json_success_body_raises_api_request_error(self, client):
        """Test that a 2xx response that isn't JSON is reported as an API error."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles", status_code=200, text="<html>oops</html>")

            with pytest.raises(ApiRequestError) as exc_info:
                client.list_articles()

            assert exc_info.value.status_code == 200
            assert exc_info.value.message == "Invalid JSON response"

    def test_post_status_without_data_raises_api_request_error(self, client):
        """Test that a status response missing its data object is reported as an API error."""
        with requests_mock.Mocker() as m:
            m.post(f"{BASE_URL}/api/status", json={"success": True})

            with pytest.raises(ApiRequestError, match="Invalid status response"):
                client.post_status({"overallStatus": "cancelled", "lessons": []})

    def test_mirror_only_requires_mirror(self):
        """Test that mirror_only without a mirror is rejected."""
        with pytest.raises(ValueError):
            SiteApiClient(BASE_URL, mirror_only=True)


class TestSiteApiClientMirrorFallback:
    """Test suite for degraded mode."""

    @pytest.fixture
    def mirror(self):
        """Create a mirror over an in-memory store."""
        return MirrorStore(MemoryKVStore(), clock=lambda: FIXED_NOW)

    @pytest.fixture
    def client(self, mirror):
        """Create a client with mirror repositories."""
        return SiteApiClient(
            BASE_URL,
            mirror_articles=ArticleRepository(mirror, clock=lambda: FIXED_NOW),
            mirror_status=LessonStatusRepository(mirror, clock=lambda: FIXED_NOW),
        )

    def test_fallback_on_connection_error(self, client):
        """Test that reads and writes go to the mirror when the API is down."""
        with requests_mock.Mocker() as m:
            m.register_uri(requests_mock.ANY, requests_mock.ANY, exc=requests.exceptions.ConnectionError)

            created = client.create_article(article_fields())
            assert client.degraded is True
            assert client.get_article(created["id"])["content"] == "body"
            assert [a["id"] for a in client.list_articles()] == [created["id"]]

            client.delete_article(created["id"])
            assert client.list_articles() == []

    def test_fallback_on_timeout(self, client):
        """Test that a timeout also falls back."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/status", exc=requests.exceptions.Timeout)

            status = client.get_status()

            assert status["overallStatus"] == "scheduled"
            assert status["date"] == "2024-04-01"

    def test_status_fallback_round_trip(self, client):
        """Test saving and reading the flat status shape through the mirror."""
        with requests_mock.Mocker() as m:
            m.register_uri(requests_mock.ANY, requests_mock.ANY, exc=requests.exceptions.ConnectionError)

            saved = client.post_status({
                "overallStatus": "cancelled",
                "overallNote": "雨天中止",
                "lessons": [],
            })

            assert saved["overallStatus"] == "cancelled"
            assert client.get_status()["overallNote"] == "雨天中止"
            assert client.get_lesson_status()["courses"]["basic"]["status"] == "cancelled"
            assert len(client.recent_lesson_status(2)) == 2

    def test_recovers_from_degraded(self, client):
        """Test that a successful call clears the degraded flag."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles", [
                {"exc": requests.exceptions.ConnectionError},
                {"json": []},
            ])

            client.list_articles()
            assert client.degraded is True
            client.list_articles()
            assert client.degraded is False

    def test_http_errors_do_not_fall_back(self, client):
        """Test that an API error is raised, not hidden by the mirror."""
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/api/articles/a1", status_code=404, json={"error": "Article not found"})

            with pytest.raises(ApiRequestError):
                client.get_article("a1")

    def test_mirror_only_skips_http(self, mirror):
        """Test that mirror_only never touches the network."""
        client = SiteApiClient(
            BASE_URL,
            mirror_status=LessonStatusRepository(mirror, clock=lambda: FIXED_NOW),
            mirror_only=True
        )
        with requests_mock.Mocker() as m:
            assert client.get_lesson_status()["date"] == "2024-04-01"
            assert m.call_count == 0
            assert client.degraded is True


class TestStatusPoller:
    """Test suite for StatusPoller."""

    def test_run_once_reports_changes_only(self):
        """Test that on_update fires when the value changes."""
        values = iter([{"overallStatus": "scheduled"}, {"overallStatus": "scheduled"}, {"overallStatus": "cancelled"}])
        updates = []
        poller = StatusPoller(lambda: next(values), interval=30, on_update=updates.append)

        poller.run_once()
        poller.run_once()
        poller.run_once()

        assert updates == [{"overallStatus": "scheduled"}, {"overallStatus": "cancelled"}]

    def test_run_once_keeps_last_value_on_failure(self):
        """Test that a failed fetch is recorded and the last value kept."""
        calls = {"count": 0}

        def fetch():
            calls["count"] += 1
            if calls["count"] == 2:
                raise StorageError("API unreachable")
            return {"overallStatus": "indoor"}

        poller = StatusPoller(fetch, interval=30)

        assert poller.run_once() == {"overallStatus": "indoor"}
        assert poller.run_once() is None
        assert isinstance(poller.last_error, StorageError)
        assert poller.last_value == {"overallStatus": "indoor"}

        poller.run_once()
        assert poller.last_error is None

    def test_run_stops_on_event(self):
        """Test that run fetches until the stop event is set."""
        stop_event = threading.Event()
        fetched = []

        def fetch():
            fetched.append(True)
            if len(fetched) == 3:
                stop_event.set()
            return len(fetched)

        StatusPoller(fetch, interval=0).run(stop_event)

        assert len(fetched) == 3
