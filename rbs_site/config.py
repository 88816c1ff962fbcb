"""
Configuration management for the RBS content service.
Loads environment variables and provides access to configuration settings.
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Configure logging
logger = logging.getLogger(__name__)


class Config:
    """Configuration settings loaded from environment variables."""

    def __init__(self):
        """Initialize configuration by loading environment variables."""
        load_dotenv()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return os.getenv(key, default)

    def _get_int(self, key: str, default: int) -> int:
        value = os.getenv(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer for %s: %r, using %s", key, value, default)
            return default

    def _get_float(self, key: str, default: float) -> float:
        value = os.getenv(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid number for %s: %r, using %s", key, value, default)
            return default

    @property
    def kv_storage_type(self) -> str:
        """Get the key-value backend name ('local', 'tigris' or 'memory')."""
        return os.getenv("KV_STORAGE_TYPE", "local").lower()

    @property
    def state_dir(self) -> str:
        """Get the directory used by local disk storage."""
        return os.getenv("STATE_DIR", "state")

    @property
    def api_host(self) -> str:
        """Get API server host."""
        return os.getenv("API_HOST", "0.0.0.0")

    @property
    def api_port(self) -> int:
        """Get API server port."""
        return self._get_int("API_PORT", 8000)

    @property
    def api_base_url(self) -> str:
        """Get the base URL clients use to reach the API."""
        return os.getenv("API_BASE_URL", f"http://127.0.0.1:{self.api_port}").rstrip("/")

    @property
    def api_timeout(self) -> float:
        """Get the client request timeout in seconds."""
        return self._get_float("API_TIMEOUT", 10.0)

    @property
    def status_poll_interval(self) -> float:
        """Get how often the lesson status banner refreshes, in seconds."""
        return self._get_float("STATUS_POLL_INTERVAL", 30.0)

    @property
    def article_poll_interval(self) -> float:
        """Get how often article lists refresh, in seconds."""
        return self._get_float("ARTICLE_POLL_INTERVAL", 300.0)

    @property
    def lesson_status_retention_days(self) -> int:
        """Get how many days of lesson status history are kept."""
        return self._get_int("LESSON_STATUS_RETENTION_DAYS", 30)

    @property
    def mirror_state_dir(self) -> str:
        """Get the directory holding the client-side mirror."""
        return os.getenv("MIRROR_STATE_DIR", os.path.join(self.state_dir, "mirror"))

    @property
    def mirror_max_size(self) -> int:
        """Get the mirror size limit in bytes."""
        return self._get_int("MIRROR_MAX_SIZE", 5 * 1024 * 1024)

    @property
    def mirror_version(self) -> str:
        """Get the mirror schema version."""
        return os.getenv("MIRROR_VERSION", "3.0")

    @property
    def mirror_only(self) -> bool:
        """Check if clients should skip the API and use only the mirror."""
        value = os.getenv("MIRROR_ONLY", "false").lower()
        return value in ["true", "1", "yes"]
