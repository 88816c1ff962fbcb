"""
HTTP API for the RBS content service.
Exposes article CRUD and lesson status reads/writes as JSON over HTTP.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from rbs_site.article_repository import ArticleRepository
from rbs_site.config import Config
from rbs_site.errors import NotFoundError, StorageError, ValidationError
from rbs_site.event_bus import EventBus
from rbs_site.kv_store_factory import create_kv_store
from rbs_site.lesson_status_repository import LessonStatusRepository
from rbs_site.site_rules import canonical_to_legacy, legacy_to_canonical

# Configure API logger
logger = logging.getLogger('site_api')
logger.setLevel(logging.INFO)

# Add console handler if not already present
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

INTERNAL_ERROR = "Internal Server Error"
ARTICLE_ID_REQUIRED = "Article ID is required"
INVALID_JSON = "Invalid JSON payload"

STATUS_INVALID = "無効なデータ形式です"
STATUS_LOAD_FAILED = "データの取得に失敗しました"
STATUS_SAVE_FAILED = "データの保存に失敗しました"
STATUS_SAVED = "レッスン状況が更新されました"

MAX_RECENT_DAYS = 31


def sanitize_log_input(value: str) -> str:
    """
    Sanitize user input for logging to prevent log injection attacks.
    Removes newlines and other control characters that could be used for log forging.

    Args:
        value: The user input to sanitize

    Returns:
        Sanitized string safe for logging
    """
    if not isinstance(value, str):
        value = str(value)
    # Replace newlines, carriage returns, and other control characters
    sanitized = value.replace('\n', '_').replace('\r', '_').replace('\t', '_')
    # Truncate to reasonable length to prevent log flooding
    return sanitized[:200]


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    """Build the {error, details?} JSON envelope used by every failure."""
    content: Dict[str, Any] = {"error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def map_error(
    request_line: str,
    exc: Exception,
    server_error: str = INTERNAL_ERROR,
    invalid_error: Optional[str] = None
) -> JSONResponse:
    """
    Turn a repository exception into a logged JSON error response.

    Args:
        request_line: "METHOD /path" used as the log prefix
        exc: The exception raised while handling the request
        server_error: "error" text for 500 responses
        invalid_error: "error" text for 400 responses (defaults to the exception message)

    Returns:
        400 for ValidationError, 404 for NotFoundError, 500 for anything else
    """
    if isinstance(exc, ValidationError):
        logger.warning(f"{request_line} - 400 {exc.message}")
        if invalid_error:
            details = f"{exc.message}: {exc.details}" if exc.details else exc.message
            return error_response(400, invalid_error, details)
        return error_response(400, exc.message, exc.details)

    if isinstance(exc, NotFoundError):
        logger.warning(f"{request_line} - 404 {exc.message}")
        return error_response(404, exc.message, exc.details)

    if isinstance(exc, StorageError):
        logger.error(f"{request_line} - 500 {exc.message}")
        details = f"{exc.message}: {exc.details}" if exc.details else exc.message
        return error_response(500, server_error, details)

    logger.exception(f"{request_line} - 500 Unexpected error")
    return error_response(500, server_error, str(exc))


async def read_json_body(request: Request) -> Any:
    """
    Parse the request body as JSON.

    Raises:
        ValidationError: If the body is not valid JSON
    """
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError(INVALID_JSON, details=str(e)) from e


def create_site_app(
    article_repository: Optional[ArticleRepository] = None,
    lesson_status_repository: Optional[LessonStatusRepository] = None,
    config: Optional[Config] = None
) -> FastAPI:
    """
    Create the content service FastAPI application.

    Args:
        article_repository: Optional article repository (defaults to one over the configured store)
        lesson_status_repository: Optional lesson status repository (defaults to one over the configured store)
        config: Optional configuration (defaults to environment-based Config)

    Returns:
        FastAPI application instance
    """
    app = FastAPI(title="RBS content service")

    if article_repository is None or lesson_status_repository is None:
        config = config or Config()
        kv_store = create_kv_store(
            state_dir=config.state_dir,
            storage_type=config.kv_storage_type
        )
        if article_repository is None:
            article_repository = ArticleRepository(kv_store)
        if lesson_status_repository is None:
            lesson_status_repository = LessonStatusRepository(kv_store, event_bus=EventBus())

    app.state.article_repository = article_repository
    app.state.lesson_status_repository = lesson_status_repository

    # ================== ERROR ENVELOPE ==================
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Render framework errors (404 route, 405 method) as {error}."""
        logger.warning(
            f"{request.method} {sanitize_log_input(request.url.path)} - {exc.status_code} {exc.detail}"
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Render bad query/path parameters as 400 {error, details}."""
        logger.warning(f"{request.method} {sanitize_log_input(request.url.path)} - 400 Invalid parameters")
        return error_response(400, "Invalid request parameters", str(exc.errors()))

    # ================== ARTICLES ==================
    @app.get("/api/articles")
    async def list_articles(
        status: Optional[str] = None,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ):
        """List article metadata, optionally filtered."""
        logger.info("GET /api/articles")
        try:
            if status is None and category is None and featured is None and limit is None and not offset:
                articles = article_repository.list_all()
            else:
                articles = article_repository.list_filtered(
                    status=status, category=category, featured=featured,
                    limit=limit, offset=offset
                )
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error("GET /api/articles", e)
        logger.info(f"GET /api/articles - 200 {len(articles)} articles")
        return JSONResponse(status_code=200, content=articles)

    @app.get("/api/articles/{article_id}")
    async def get_article(article_id: str):
        """Get one article with its content."""
        request_line = f"GET /api/articles/{sanitize_log_input(article_id)}"
        logger.info(request_line)
        try:
            article = article_repository.get_by_id(article_id)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e)
        logger.info(f"{request_line} - 200")
        return JSONResponse(status_code=200, content=article)

    @app.post("/api/articles")
    async def create_article(request: Request):
        """Create an article."""
        logger.info("POST /api/articles")
        try:
            body = await read_json_body(request)
            article = article_repository.create(body)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error("POST /api/articles", e)
        logger.info(f"POST /api/articles - 201 {sanitize_log_input(article['id'])}")
        return JSONResponse(status_code=201, content=article)

    @app.put("/api/articles")
    async def update_article_without_id():
        """Reject updates that name no article."""
        logger.warning(f"PUT /api/articles - 400 {ARTICLE_ID_REQUIRED}")
        return error_response(400, ARTICLE_ID_REQUIRED)

    @app.put("/api/articles/{article_id}")
    async def update_article(article_id: str, request: Request):
        """Update the fields present in the payload."""
        request_line = f"PUT /api/articles/{sanitize_log_input(article_id)}"
        logger.info(request_line)
        if not article_id.strip():
            logger.warning(f"{request_line} - 400 {ARTICLE_ID_REQUIRED}")
            return error_response(400, ARTICLE_ID_REQUIRED)
        try:
            body = await read_json_body(request)
            article = article_repository.update(article_id, body)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e)
        logger.info(f"{request_line} - 200")
        return JSONResponse(status_code=200, content=article)

    @app.delete("/api/articles")
    async def delete_article_without_id():
        """Reject deletes that name no article."""
        logger.warning(f"DELETE /api/articles - 400 {ARTICLE_ID_REQUIRED}")
        return error_response(400, ARTICLE_ID_REQUIRED)

    @app.delete("/api/articles/{article_id}")
    async def delete_article(article_id: str):
        """Delete an article's content and metadata."""
        request_line = f"DELETE /api/articles/{sanitize_log_input(article_id)}"
        logger.info(request_line)
        if not article_id.strip():
            logger.warning(f"{request_line} - 400 {ARTICLE_ID_REQUIRED}")
            return error_response(400, ARTICLE_ID_REQUIRED)
        try:
            article_repository.delete(article_id)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e)
        logger.info(f"{request_line} - 204")
        return Response(status_code=204)

    # ================== LESSON STATUS (FLAT SHAPE) ==================
    @app.get("/api/status")
    async def get_status():
        """Get today's lesson status in the flat overallStatus/lessons shape."""
        logger.info("GET /api/status")
        try:
            record = lesson_status_repository.get()
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error("GET /api/status", e, server_error=STATUS_LOAD_FAILED)
        logger.info(f"GET /api/status - 200 {record['globalStatus']}")
        return JSONResponse(status_code=200, content=canonical_to_legacy(record))

    @app.post("/api/status")
    async def post_status(request: Request):
        """Save today's lesson status from the flat overallStatus/lessons shape."""
        logger.info("POST /api/status")
        try:
            body = await read_json_body(request)
            if (
                not isinstance(body, dict)
                or not body.get("overallStatus")
                or not isinstance(body.get("lessons"), list)
            ):
                raise ValidationError(STATUS_INVALID, details="overallStatus and lessons[] are required")
            saved = lesson_status_repository.save(legacy_to_canonical(body))
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(
                "POST /api/status", e,
                server_error=STATUS_SAVE_FAILED, invalid_error=STATUS_INVALID
            )
        logger.info(f"POST /api/status - 200 {saved['globalStatus']}")
        return JSONResponse(status_code=200, content={
            "success": True,
            "message": STATUS_SAVED,
            "data": canonical_to_legacy(saved),
        })

    # ================== LESSON STATUS (CANONICAL SHAPE) ==================
    @app.get("/api/lesson-status")
    async def get_lesson_status(date: Optional[str] = None):
        """Get the lesson status for a date (default today)."""
        request_line = f"GET /api/lesson-status?date={sanitize_log_input(date or '')}"
        logger.info(request_line)
        try:
            record = lesson_status_repository.get(date)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e, server_error=STATUS_LOAD_FAILED)
        logger.info(f"{request_line} - 200")
        return JSONResponse(status_code=200, content=record)

    @app.put("/api/lesson-status")
    async def put_lesson_status(request: Request, date: Optional[str] = None):
        """Save the lesson status for a date (default: the record's date, then today)."""
        request_line = f"PUT /api/lesson-status?date={sanitize_log_input(date or '')}"
        logger.info(request_line)
        try:
            body = await read_json_body(request)
            record = lesson_status_repository.save(body, date)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e, server_error=STATUS_SAVE_FAILED)
        logger.info(f"{request_line} - 200 {record['date']}")
        return JSONResponse(status_code=200, content=record)

    @app.get("/api/lesson-status/recent")
    async def get_recent_lesson_status(days: int = 7):
        """Get the lesson status for today and the following days."""
        request_line = f"GET /api/lesson-status/recent?days={days}"
        logger.info(request_line)
        if days < 1 or days > MAX_RECENT_DAYS:
            logger.warning(f"{request_line} - 400 days out of range")
            return error_response(400, "days must be between 1 and 31")
        try:
            records = lesson_status_repository.recent(days)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e, server_error=STATUS_LOAD_FAILED)
        logger.info(f"{request_line} - 200")
        return JSONResponse(status_code=200, content=records)

    @app.delete("/api/lesson-status/{date}")
    async def delete_lesson_status(date: str):
        """Delete the lesson status stored for a date."""
        request_line = f"DELETE /api/lesson-status/{sanitize_log_input(date)}"
        logger.info(request_line)
        try:
            lesson_status_repository.delete(date)
        except Exception as e:  # pylint: disable=broad-exception-caught
            return map_error(request_line, e, server_error=STATUS_SAVE_FAILED)
        logger.info(f"{request_line} - 204")
        return Response(status_code=204)

    return app
