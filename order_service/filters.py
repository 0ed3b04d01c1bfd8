"""
Listing filters: derived status plus a created_at date range.
`to` covers the whole day: the stored bound is (to + 1 day) 00:00, exclusive.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone, tzinfo
from zoneinfo import ZoneInfo

from order_service.errors import ValidationFailedError, Violation
from order_service.order_state import STATUS_CONDITIONS, STATUSES

DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class OrderFilters:
    status: str | None = None
    created_from: datetime | None = None  # inclusive
    created_before: datetime | None = None  # exclusive


def _parse_date(field: str, value: str, violations: list[Violation]) -> date | None:
    try:
        parsed = datetime.strptime(value, DATE_FORMAT)
        if parsed.strftime(DATE_FORMAT) != value:
            raise ValueError(value)
        return parsed.date()
    except ValueError:
        violations.append(Violation(field, f"Expected a date formatted YYYY-MM-DD, got {value!r}"))
        return None


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return dt_timezone.utc
    return ZoneInfo(name)


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def build_filters(
    status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    timezone: str = "UTC",
) -> OrderFilters:
    """Raises ValidationFailedError for an unknown status or a malformed date."""
    tz = resolve_timezone(timezone)
    violations: list[Violation] = []

    if status and status not in STATUSES:
        violations.append(Violation("status", f"Status must be one of: {', '.join(STATUSES)}"))

    created_from = created_before = None
    if date_from:
        day = _parse_date("from", date_from, violations)
        if day is not None:
            created_from = start_of_day(day, tz)
    if date_to:
        day = _parse_date("to", date_to, violations)
        if day is not None:
            created_before = start_of_day(day + timedelta(days=1), tz)

    if violations:
        raise ValidationFailedError(violations)
    return OrderFilters(status=status or None, created_from=created_from, created_before=created_before)


def filter_clauses(filters: OrderFilters, params: list) -> list[str]:
    """
    SQL conditions on the orders table aliased as "o". Bound values are appended
    to `params` and referenced by their asyncpg position ($n).
    """
    clauses: list[str] = []
    if filters.status:
        clauses.append(f"({STATUS_CONDITIONS[filters.status]})")
    if filters.created_from is not None:
        params.append(filters.created_from)
        clauses.append(f"o.created_at >= ${len(params)}")
    if filters.created_before is not None:
        params.append(filters.created_before)
        clauses.append(f"o.created_at < ${len(params)}")
    return clauses
