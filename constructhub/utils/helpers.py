"""Shared parsing helpers for services and blueprints.

parse_date:      ISO / DD.MM.YYYY → date (None on empty, ValidationError on garbage)
parse_datetime:  ISO → aware UTC datetime
as_utc:          normalise DB datetimes (SQLite drops tzinfo)
parse_pagination: page/per_page from query args with sane bounds
"""
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from constructhub.core.exceptions import ValidationError

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100


def parse_date(value, field="date"):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (→ .date())
    - DD.MM.YYYY
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {field}: {value!r}", details={field: "invalid date"}) from None


def parse_datetime(value, field="datetime"):
    """Parse an ISO datetime; naive values are taken as UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {field}: {value!r}", details={field: "invalid datetime"}) from None
    return as_utc(parsed)


def as_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_decimal(value, field):
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "not a number"}) from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", details={field: "not a number"})
    return amount


def parse_int(value, field):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "not an integer"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: "not an integer"}) from None


def parse_pagination(args):
    """Return (page, per_page) from a request.args-like mapping."""
    try:
        page = max(int(args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        per_page = int(args.get("limit", args.get("per_page", DEFAULT_PER_PAGE)))
    except (TypeError, ValueError):
        per_page = DEFAULT_PER_PAGE
    return page, min(max(per_page, 1), MAX_PER_PAGE)


def paginate(query, page, per_page):
    """Run ``query`` for one page; returns (items, pagination dict)."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return items, {
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": (total + per_page - 1) // per_page,
    }
