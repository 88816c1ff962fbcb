"""
Article storage on top of a key-value store.

Each article is two records: its metadata entry inside one JSON array under
"articles_metadata", and its markdown body under "article_content_<id>".
The metadata array is always read and rewritten as a whole; there is no
locking, so concurrent writers follow last-write-wins.
"""
import json
import logging
import secrets
import string
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from rbs_site.errors import NotFoundError, StorageError, ValidationError
from rbs_site.file_utils import utc_now
from rbs_site.kv_store import KVStore
from rbs_site.site_rules import article_file_name

logger = logging.getLogger(__name__)

ARTICLES_METADATA_KEY = "articles_metadata"
ARTICLE_CONTENT_PREFIX = "article_content_"

REQUIRED_FIELDS = ("title", "content", "date", "category", "categoryName", "excerpt")
EDITABLE_FIELDS = ("title", "date", "category", "categoryName", "excerpt", "featured", "status")

MISSING_FIELDS_MESSAGE = (
    "Missing required fields: title, content, date, category, categoryName, "
    "excerpt are required."
)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def content_key(article_id: str) -> str:
    """Get the storage key for an article body."""
    return f"{ARTICLE_CONTENT_PREFIX}{article_id}"


def make_id_generator(clock: Callable[[], datetime]) -> Callable[[], str]:
    """
    Build the default article id generator.

    Ids are the millisecond timestamp followed by five random base-36
    characters, e.g. "1711929600000k3x9q".
    """
    def generate() -> str:
        millis = int(clock().timestamp() * 1000)
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(5))
        return f"{millis}{suffix}"
    return generate


class ArticleRepository:
    """CRUD over article metadata and content."""

    def __init__(
        self,
        kv_store: KVStore,
        clock: Optional[Callable[[], datetime]] = None,
        id_generator: Optional[Callable[[], str]] = None
    ):
        """
        Initialize the repository.

        Args:
            kv_store: Backing key-value store
            clock: Returns the current time (defaults to UTC now)
            id_generator: Returns a new article id (defaults to timestamp + random suffix)
        """
        self.kv_store = kv_store
        self.clock = clock or utc_now
        self.id_generator = id_generator or make_id_generator(self.clock)

    # ================== STORAGE HELPERS ==================

    def _load_metadata(self) -> List[Dict[str, Any]]:
        raw = self.kv_store.get(ARTICLES_METADATA_KEY)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError("Article metadata is corrupt", details=str(e)) from e
        if not isinstance(data, list):
            raise StorageError("Article metadata is corrupt", details="expected a JSON array")
        return data

    def _save_metadata(self, articles: List[Dict[str, Any]]) -> None:
        self.kv_store.put(ARTICLES_METADATA_KEY, json.dumps(articles, ensure_ascii=False))

    @staticmethod
    def _find_index(articles: List[Dict[str, Any]], article_id: str) -> int:
        for i, article in enumerate(articles):
            if article.get("id") == article_id:
                return i
        return -1

    # ================== READ ==================

    def list_all(self) -> List[Dict[str, Any]]:
        """
        Get all article metadata.

        Returns:
            List of metadata dicts (no content); empty when nothing is stored.
        """
        return self._load_metadata()

    def list_filtered(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Get article metadata filtered by status, category and featured flag.

        A status or category of None or "all" means no filter.

        Args:
            status: "draft" or "published"
            category: Category slug
            featured: Only featured (True) or only non-featured (False) articles
            limit: Maximum number of articles to return
            offset: Number of matching articles to skip

        Returns:
            Matching metadata dicts in stored order.
        """
        articles = self._load_metadata()
        if status and status != "all":
            articles = [a for a in articles if a.get("status") == status]
        if category and category != "all":
            articles = [a for a in articles if a.get("category") == category]
        if featured is not None:
            articles = [a for a in articles if bool(a.get("featured")) == featured]
        offset = max(offset or 0, 0)
        if limit is not None:
            return articles[offset:offset + max(limit, 0)]
        return articles[offset:]

    def get_by_id(self, article_id: str) -> Dict[str, Any]:
        """
        Get one article with its content.

        Missing content is returned as an empty string.

        Args:
            article_id: The unique identifier of the article.

        Returns:
            Metadata dict with an added "content" key.

        Raises:
            NotFoundError: If no metadata entry has this id.
        """
        articles = self._load_metadata()
        index = self._find_index(articles, article_id)
        if index == -1:
            raise NotFoundError("Article not found")
        content = self.kv_store.get(content_key(article_id))
        return {**articles[index], "content": content or ""}

    # ================== WRITE ==================

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an article.

        The content is written first, then the metadata entry is appended and
        the whole collection rewritten.

        Args:
            fields: title, content, date, category, categoryName, excerpt
                    (required) plus optional featured and status.

        Returns:
            The new metadata dict with an added "content" key.

        Raises:
            ValidationError: If a required field is missing or empty, or content is not a string.
        """
        if not isinstance(fields, dict):
            raise ValidationError("Article payload must be a JSON object")

        missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
        if missing:
            raise ValidationError(MISSING_FIELDS_MESSAGE, details=f"Missing: {', '.join(missing)}")
        if not isinstance(fields["content"], str):
            raise ValidationError(
                "Article content must be a string",
                details=f"Got {type(fields['content']).__name__}"
            )

        articles = self._load_metadata()
        article_id = self.id_generator()
        while self._find_index(articles, article_id) != -1:
            article_id = self.id_generator()

        metadata = {
            "id": article_id,
            "title": fields["title"],
            "date": fields["date"],
            "category": fields["category"],
            "categoryName": fields["categoryName"],
            "excerpt": fields["excerpt"],
            "file": article_file_name(str(fields["date"]), str(fields["title"])),
            "featured": fields.get("featured") or False,
            "status": fields.get("status") or "draft",
        }

        self.kv_store.put(content_key(article_id), fields["content"])
        articles.append(metadata)
        self._save_metadata(articles)

        logger.info("Created article %s (%s)", article_id, metadata["file"])
        return {**metadata, "content": fields["content"]}

    def update(self, article_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update an article with only the fields present in the payload.

        The file name is recomputed only when title or date is given. The
        content is replaced only when the "content" key is present, even if
        its value is an empty string.

        Args:
            article_id: The unique identifier of the article.
            fields: Any subset of the article fields and "content".

        Returns:
            The merged metadata dict with an added "content" key.

        Raises:
            ValidationError: If the payload is not an object or content is not a string.
            NotFoundError: If no metadata entry has this id.
        """
        if not isinstance(fields, dict):
            raise ValidationError("Article payload must be a JSON object")
        if fields.get("content") is not None and not isinstance(fields["content"], str):
            raise ValidationError(
                "Article content must be a string",
                details=f"Got {type(fields['content']).__name__}"
            )

        articles = self._load_metadata()
        index = self._find_index(articles, article_id)
        if index == -1:
            raise NotFoundError("Article not found")

        if "content" in fields:
            content = fields["content"]
            self.kv_store.put(content_key(article_id), content if content is not None else "")
        else:
            content = self.kv_store.get(content_key(article_id))

        updated = dict(articles[index])
        for name in EDITABLE_FIELDS:
            if name in fields:
                updated[name] = fields[name]
        if "title" in fields or "date" in fields:
            updated["file"] = article_file_name(
                str(updated.get("date") or ""), str(updated.get("title") or "")
            )

        articles[index] = updated
        self._save_metadata(articles)

        logger.info("Updated article %s", article_id)
        return {**updated, "content": content or ""}

    def delete(self, article_id: str) -> None:
        """
        Delete an article's content and metadata.

        The content key is removed even when there is no metadata entry, so
        orphaned bodies get cleaned up; the call still reports not found.

        Args:
            article_id: The unique identifier of the article.

        Raises:
            NotFoundError: If no metadata entry has this id.
        """
        articles = self._load_metadata()
        index = self._find_index(articles, article_id)

        self.kv_store.delete(content_key(article_id))
        if index == -1:
            raise NotFoundError("Article not found")

        del articles[index]
        self._save_metadata(articles)
        logger.info("Deleted article %s", article_id)
