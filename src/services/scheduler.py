from datetime import datetime, timedelta
from typing import Optional

from core.timeutils import utcnow

FREQUENCY_INTERVALS = {
    "realtime": timedelta(minutes=5),
    "hourly": timedelta(hours=1),
    "daily": timedelta(hours=24),
}
DEFAULT_INTERVAL = timedelta(hours=1)
MAX_RETRY_INTERVAL = timedelta(minutes=15)


def interval_for(frequency: Optional[str]) -> timedelta:
    return FREQUENCY_INTERVALS.get(frequency or "", DEFAULT_INTERVAL)


def next_run_time(frequency: Optional[str], now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now + interval_for(frequency)


def retry_time(frequency: Optional[str], now: Optional[datetime] = None) -> datetime:
    """After a scan where every platform failed: retry sooner, but never later than the normal interval."""
    now = now or utcnow()
    return now + min(interval_for(frequency), MAX_RETRY_INTERVAL)
