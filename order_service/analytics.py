"""
Per-restaurant analytics windows. All four figures are computed as of `now`
in the service timezone; invoicedToday sums price of orders created today.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from order_service.filters import resolve_timezone


@dataclass(frozen=True)
class AnalyticsWindow:
    yesterday_start: datetime
    today_start: datetime


def analytics_window(now: datetime) -> AnalyticsWindow:
    """now must be timezone-aware; day boundaries follow its tzinfo."""
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return AnalyticsWindow(yesterday_start=today_start - timedelta(days=1), today_start=today_start)


def current_window(timezone: str) -> AnalyticsWindow:
    return analytics_window(datetime.now(resolve_timezone(timezone)))
