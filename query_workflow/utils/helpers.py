"""Shared helpers for the service layer.

commit_or_raise:   commit the session, turning store failures into StorageError
storage_guard:     same mapping for statements executed before the commit
bounded_text:      stringify and length-check a request field
parse_bool_arg:    "true"/"1"/"yes" query-string flags
parse_datetime:    ISO date / datetime query-string values
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timezone

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from query_workflow.core.exceptions import StorageError, ValidationError
from query_workflow.models import db

logger = logging.getLogger(__name__)


def commit_or_raise(operation: str) -> None:
    """Commit the current SQLAlchemy session or roll back and raise.

    IntegrityError  → re-raised after rollback (callers decide: replay / conflict)
    OperationalError → StorageError (connection, lock or statement timeout)
    DBAPIError       → StorageError

    Nothing is retried here; a StorageError means the caller cannot know
    whether the write landed and must re-fetch before trying again.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on commit (%s)", operation)
        raise StorageError(f"Storage unavailable during {operation}", operation=operation) from exc
    except DBAPIError as exc:
        db.session.rollback()
        logger.exception("Database error on commit (%s)", operation)
        raise StorageError(f"Storage error during {operation}", operation=operation) from exc


@contextmanager
def storage_guard(operation: str):
    """Roll back and raise StorageError if a statement inside the block fails.

    IntegrityError passes through untouched.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        db.session.rollback()
        logger.exception("Database error (%s)", operation)
        raise StorageError(f"Storage unavailable during {operation}", operation=operation) from exc


def bounded_text(value, field: str, max_length: int) -> str:
    """Stripped text form of ``value``; ValidationError when longer than the column."""
    text = "" if value is None else str(value).strip()
    if len(text) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            details={field: f"at most {max_length} characters"},
        )
    return text


def parse_bool_arg(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def parse_datetime(value, *, end_of_day: bool = False):
    """Parse an ISO date or datetime string into an aware UTC datetime.

    Returns None for empty or invalid input.  A bare date becomes the start
    of that day, or its last instant when ``end_of_day`` is set.
    """
    if not value:
        return None
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if len(text) == 10:
        day = date.fromisoformat(text)
        parsed = datetime.combine(day, time.max if end_of_day else time.min)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
