"""
Business rules shared by the HTTP layer, the repositories and the client mirror.

Slug and file name derivation for articles, the lesson status definitions and
their display lookups, lesson status normalization and validation, and the
adapter between the canonical courses-keyed lesson status shape and the flat
legacy shape still accepted on /api/status.
"""
import copy
import re
from datetime import date as date_cls
from typing import Any, Dict, List, Optional

from rbs_site.errors import ValidationError

# ================== ARTICLES ==================

ARTICLE_STATUSES = ("draft", "published")

_SLUG_STRIP = re.compile(r"[^0-9A-Za-z_\s-]")
_SLUG_SPACES = re.compile(r"\s+")
_SLUG_HYPHENS = re.compile(r"-+")


def slugify(title: Optional[str]) -> str:
    """
    Generate a URL slug from a title.

    Lowercase, trim, drop everything except ASCII word characters, whitespace
    and hyphens, turn whitespace runs into one hyphen, then collapse repeated
    hyphens. Non-ASCII letters are dropped, so a Japanese-only title yields "".
    """
    if not title:
        return ""
    slug = title.lower().strip()
    slug = _SLUG_STRIP.sub("", slug)
    slug = _SLUG_SPACES.sub("-", slug)
    return _SLUG_HYPHENS.sub("-", slug)


def article_file_name(article_date: Optional[str], title: Optional[str]) -> str:
    """Derive the markdown file name for an article, e.g. 2024-04-01-spring-trial.md."""
    return f"{(article_date or '')[:10]}-{slugify(title)}.md"


# ================== LESSON STATUS ==================

DEFAULT_STATUS = "scheduled"

STATUS_DEFINITIONS: Dict[str, Dict[str, str]] = {
    "scheduled": {
        "key": "scheduled",
        "displayText": "通常開催",
        "adminText": "開催",
        "color": "#1abc9c",
        "backgroundColor": "var(--primary-teal)",
        "icon": "✅",
        "cssClass": "scheduled",
    },
    "cancelled": {
        "key": "cancelled",
        "displayText": "中止",
        "adminText": "中止",
        "color": "#e74c3c",
        "backgroundColor": "#e74c3c",
        "icon": "❌",
        "cssClass": "cancelled",
    },
    "indoor": {
        "key": "indoor",
        "displayText": "室内開催",
        "adminText": "室内開催",
        "color": "#f39c12",
        "backgroundColor": "var(--secondary-yellow)",
        "icon": "🏠",
        "cssClass": "indoor",
    },
    "postponed": {
        "key": "postponed",
        "displayText": "延期",
        "adminText": "延期",
        "color": "#3498db",
        "backgroundColor": "var(--primary-blue)",
        "icon": "⏰",
        "cssClass": "postponed",
    },
}

UNKNOWN_STATUS_TEXT = "不明"
UNKNOWN_STATUS_COLOR = "#6c757d"
UNKNOWN_STATUS_ICON = "ℹ️"
UNKNOWN_STATUS_CSS_CLASS = "unknown"

# Fixed course slots; name and time are display fields, not user-editable.
COURSE_DEFINITIONS: Dict[str, Dict[str, str]] = {
    "basic": {"name": "ベーシックコース（年長〜小3）", "time": "17:00-17:50"},
    "advance": {"name": "アドバンスコース（小4〜小6）", "time": "18:00-18:50"},
}

MAX_GLOBAL_MESSAGE_LENGTH = 500
MAX_COURSE_MESSAGE_LENGTH = 200

_DATE_KEY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _definition(status: Any) -> Optional[Dict[str, str]]:
    if not isinstance(status, str):
        return None
    return STATUS_DEFINITIONS.get(status)


def status_text(status: Optional[str]) -> str:
    """Get the public display text for a status key."""
    definition = _definition(status)
    return definition["displayText"] if definition else UNKNOWN_STATUS_TEXT


def status_admin_text(status: Optional[str]) -> str:
    """Get the admin form label for a status key."""
    definition = _definition(status)
    return definition["adminText"] if definition else STATUS_DEFINITIONS[DEFAULT_STATUS]["adminText"]


def status_color(status: Optional[str]) -> str:
    """Get the text color for a status key."""
    definition = _definition(status)
    return definition["color"] if definition else UNKNOWN_STATUS_COLOR


def status_background_color(status: Optional[str]) -> str:
    """Get the banner background color for a status key."""
    definition = _definition(status)
    return definition["backgroundColor"] if definition else UNKNOWN_STATUS_COLOR


def status_icon(status: Optional[str]) -> str:
    """Get the icon for a status key."""
    definition = _definition(status)
    return definition["icon"] if definition else UNKNOWN_STATUS_ICON


def status_css_class(status: Optional[str]) -> str:
    """Get the CSS class for a status key."""
    definition = _definition(status)
    return definition["cssClass"] if definition else UNKNOWN_STATUS_CSS_CLASS


def status_from_admin_text(admin_text: Optional[str]) -> str:
    """Map an admin form label back to its status key; unknown labels map to scheduled."""
    for key, definition in STATUS_DEFINITIONS.items():
        if definition["adminText"] == admin_text:
            return key
    return DEFAULT_STATUS


def validate_date_key(value: Any) -> str:
    """
    Check that a value is a real calendar date in YYYY-MM-DD form.

    Raises:
        ValidationError: If the value is not a valid date key
    """
    if not isinstance(value, str) or not _DATE_KEY.match(value):
        raise ValidationError("Invalid date", details=f"Expected YYYY-MM-DD, got {value!r}")
    try:
        date_cls.fromisoformat(value)
    except ValueError as e:
        raise ValidationError("Invalid date", details=str(e)) from e
    return value


def _text(value: Any, field: str) -> str:
    """Read an optional message field: None means empty, anything but a string is rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Invalid lesson status", details=f"{field} must be a string")
    return value


def default_status_record(date_key: str, last_updated: Optional[str] = None) -> Dict[str, Any]:
    """Build the all-scheduled record used when nothing is stored for a date."""
    return {
        "date": date_key,
        "globalStatus": DEFAULT_STATUS,
        "globalMessage": "",
        "courses": {
            course_key: {
                "name": course["name"],
                "time": course["time"],
                "status": DEFAULT_STATUS,
                "message": "",
            }
            for course_key, course in COURSE_DEFINITIONS.items()
        },
        "lastUpdated": last_updated,
    }


def normalize_status_record(data: Dict[str, Any], date_key: str, last_updated: str) -> Dict[str, Any]:
    """
    Normalize lesson status input into the canonical shape.

    Missing global fields default to scheduled / empty message, both course
    slots are always present, a course without a status inherits the global
    status, and the fixed name/time fields are re-asserted. Messages must be
    strings; a missing or null message is stored as empty.

    Args:
        data: Raw status data (canonical shape, possibly partial)
        date_key: Date the record belongs to (YYYY-MM-DD)
        last_updated: Timestamp to stamp on the record

    Returns:
        Normalized status record
    """
    if not isinstance(data, dict):
        raise ValidationError("Lesson status must be a JSON object")

    global_status = data.get("globalStatus") or DEFAULT_STATUS
    courses_in = data.get("courses") if isinstance(data.get("courses"), dict) else {}

    courses = {}
    for course_key, course in COURSE_DEFINITIONS.items():
        course_in = courses_in.get(course_key)
        if not isinstance(course_in, dict):
            course_in = {}
        courses[course_key] = {
            "name": course["name"],
            "time": course["time"],
            "status": course_in.get("status") or global_status,
            "message": _text(course_in.get("message"), f"message for course {course_key}"),
        }

    return {
        "date": date_key,
        "globalStatus": global_status,
        "globalMessage": _text(data.get("globalMessage"), "globalMessage"),
        "courses": courses,
        "lastUpdated": last_updated,
    }


def validate_status_record(record: Dict[str, Any]) -> None:
    """
    Validate a normalized lesson status record.

    Raises:
        ValidationError: With every problem found listed in details
    """
    errors: List[str] = []

    if not record.get("date"):
        errors.append("date is required")
    if _definition(record.get("globalStatus")) is None:
        errors.append(f"unknown globalStatus: {record.get('globalStatus')}")
    if len(record.get("globalMessage", "")) > MAX_GLOBAL_MESSAGE_LENGTH:
        errors.append(f"globalMessage must be at most {MAX_GLOBAL_MESSAGE_LENGTH} characters")

    for course_key, course in record.get("courses", {}).items():
        if _definition(course.get("status")) is None:
            errors.append(f"unknown status for course {course_key}: {course.get('status')}")
        if len(course.get("message", "")) > MAX_COURSE_MESSAGE_LENGTH:
            errors.append(
                f"message for course {course_key} must be at most "
                f"{MAX_COURSE_MESSAGE_LENGTH} characters"
            )

    if errors:
        raise ValidationError("Invalid lesson status", details="; ".join(errors))


def is_normal_status(record: Dict[str, Any]) -> bool:
    """
    Check whether a lesson status needs no banner.

    True only when the global status and both courses are scheduled and none
    of them carries a message.
    """
    if record.get("globalStatus") != DEFAULT_STATUS or record.get("globalMessage"):
        return False
    courses = record.get("courses") or {}
    for course_key in COURSE_DEFINITIONS:
        course = courses.get(course_key) or {}
        if course.get("status") != DEFAULT_STATUS or course.get("message"):
            return False
    return True


def status_summary(record: Dict[str, Any]) -> Dict[str, Any]:
    """Summarize a lesson status for the public banner."""
    if is_normal_status(record):
        return {
            "type": "normal",
            "message": "通常通り開催予定です",
            "hasSpecialNotice": False,
        }
    return {
        "type": "special",
        "message": status_text(record.get("globalStatus")),
        "hasSpecialNotice": True,
        "globalMessage": record.get("globalMessage", ""),
    }


# ================== LEGACY FLAT SHAPE ==================

def _match_course(lesson: Dict[str, Any], position: int, taken: set) -> Optional[str]:
    """Find which course slot a legacy lesson entry belongs to."""
    for course_key, course in COURSE_DEFINITIONS.items():
        if course_key not in taken and lesson.get("timeSlot") == course["time"]:
            return course_key
    for course_key, course in COURSE_DEFINITIONS.items():
        if course_key not in taken and lesson.get("courseName") == course["name"]:
            return course_key
    course_keys = list(COURSE_DEFINITIONS)
    if position < len(course_keys) and course_keys[position] not in taken:
        return course_keys[position]
    return None


def legacy_to_canonical(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert the flat {overallStatus, overallNote, lessons: [...]} shape.

    Lessons are matched to course slots by timeSlot, then courseName, then
    list position. Entries that match no slot are ignored.
    """
    if not isinstance(data, dict):
        raise ValidationError("Lesson status must be a JSON object")

    courses: Dict[str, Dict[str, Any]] = {}
    lessons = data.get("lessons") or []
    for position, lesson in enumerate(lessons):
        if not isinstance(lesson, dict):
            continue
        course_key = _match_course(lesson, position, set(courses))
        if course_key is None:
            continue
        courses[course_key] = {
            "status": lesson.get("status"),
            "message": _text(lesson.get("note"), "note"),
        }

    canonical = {
        "globalStatus": data.get("overallStatus"),
        "globalMessage": _text(data.get("overallNote"), "overallNote"),
        "courses": courses,
    }
    if data.get("lastUpdated"):
        canonical["lastUpdated"] = data["lastUpdated"]
    return canonical


def canonical_to_legacy(record: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a canonical lesson status record to the flat legacy shape."""
    courses = record.get("courses") or {}
    lessons = []
    for course_key, course in COURSE_DEFINITIONS.items():
        entry = courses.get(course_key) or {}
        lessons.append({
            "timeSlot": course["time"],
            "courseName": course["name"],
            "status": entry.get("status", DEFAULT_STATUS),
            "note": entry.get("message", ""),
        })
    return {
        "date": record.get("date"),
        "overallStatus": record.get("globalStatus", DEFAULT_STATUS),
        "overallNote": record.get("globalMessage", ""),
        "lessons": lessons,
        "lastUpdated": record.get("lastUpdated"),
    }


def is_legacy_shape(data: Any) -> bool:
    """Check whether stored status data uses the flat legacy shape."""
    return isinstance(data, dict) and "overallStatus" in data and "courses" not in data


def copy_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy a record so callers can't mutate stored state."""
    return copy.deepcopy(record)
