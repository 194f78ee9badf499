"""Error taxonomy and the two call wrappers used around data access.

must_succeed() is for primary writes and reads: a failure propagates as
DataAccessError. best_effort() is for enrichment steps (bonus XP, stats
recompute, achievements, question logs): a failure is logged and the
supplied default is returned. Neither retries.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PBEError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message or self.__class__.__name__}


class ValidationError(PBEError, ValueError):
    """Malformed input, detected before any data call."""
    status_code = 400


class AuthorizationError(PBEError):
    """Caller lacks the role or ownership the action needs."""
    status_code = 403


class NotFoundError(PBEError):
    status_code = 404


class DataAccessError(PBEError):
    """A store or procedure call failed."""
    status_code = 500


def must_succeed(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a data call whose failure must reach the caller.

    sqlite3 errors are re-raised as DataAccessError; taxonomy errors pass
    through unchanged.
    """
    try:
        return fn(*args, **kwargs)
    except PBEError:
        raise
    except sqlite3.Error as e:
        logger.error("Data call %s failed: %s", getattr(fn, "__name__", fn), e)
        raise DataAccessError(f"Data access failed: {e}") from e


def best_effort(fn: Callable[..., T], default: T, *args: Any, **kwargs: Any) -> T:
    """Run a secondary data call; log and return ``default`` if it raises."""
    try:
        return fn(*args, **kwargs)
    except Exception:
        logger.warning(
            "Best-effort call %s failed, using default %r",
            getattr(fn, "__name__", fn), default, exc_info=True,
        )
        return default


def is_valid_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def require_uuid(value: Any, field_name: str = "id") -> str:
    if not is_valid_uuid(value):
        raise ValidationError(f"Invalid {field_name}: must be a UUID")
    return value


def require_fields(data: dict | None, *names: str) -> dict:
    """Raise ValidationError naming every missing (or blank) field."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [n for n in names if data.get(n) in (None, "", [])]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return data
