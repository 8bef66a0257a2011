"""
Request helpers shared by the API blueprints.

Identity comes from the external auth layer: either an ``IDENTITY_PROVIDER``
callable in app config (``provider(request) -> Identity | None``) or the
``user_id`` / ``username`` / ``role`` keys it stores in the Flask session.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import bleach
from flask import current_app, request, session

from core.exceptions import NotAuthenticatedError, UploadError
from models.order import Identity


MAX_PRINTER_LENGTH = 255
MAX_PAGE_RANGE_LENGTH = 100


def current_identity() -> Identity:
    """
    Identity of the caller.

    Raises:
        NotAuthenticatedError: If the auth layer supplied none
    """
    provider = current_app.config.get("IDENTITY_PROVIDER")
    if provider is not None:
        identity = provider(request)
    else:
        identity = _identity_from_session()

    if identity is None:
        raise NotAuthenticatedError()
    return identity


def _identity_from_session() -> Optional[Identity]:
    user_id = session.get("user_id")
    if user_id is None:
        return None
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return Identity(
        user_id=user_id,
        username=session.get("username") or "",
        role=session.get("role") or "user",
    )


def sanitize_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Strip markup and surrounding whitespace from a user-supplied field.

    Args:
        text: Raw input text
        max_length: Optional maximum length to enforce

    Returns:
        Plain text safe for storage, logs and command arguments
    """
    if not text:
        return ""

    text = bleach.clean(text.strip(), tags=[], strip=True)

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text


def parse_date_range(start: Optional[str], end: Optional[str]) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Parse "YYYY-MM-DD" bounds given in local time.

    The end day is inclusive, so the returned upper bound is the start of
    the following day. Both bounds are returned as aware UTC datetimes.

    Raises:
        UploadError: If a date is malformed
    """
    return _parse_day(start, "start"), _parse_day(end, "end", next_day=True)


def _parse_day(value: Optional[str], field: str, next_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        day = date.fromisoformat(value)
    except ValueError:
        raise UploadError(f"Invalid {field} date: {value!r} (expected YYYY-MM-DD)")
    if next_day:
        day += timedelta(days=1)
    # Naive local midnight, converted to UTC
    return datetime.combine(day, time.min).astimezone(timezone.utc)
