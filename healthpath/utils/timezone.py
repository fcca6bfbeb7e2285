from datetime import datetime, timezone as dt_timezone, tzinfo
from typing import Optional
import logging

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from healthpath.core.config import settings

logger = logging.getLogger(__name__)


def get_zoneinfo(name: Optional[str] = None) -> tzinfo:
    """Resolve an IANA zone name, falling back to settings.DEFAULT_TIMEZONE and then UTC."""
    tz_name = name or getattr(settings, "DEFAULT_TIMEZONE", None)
    if not tz_name or tz_name.upper() in ("UTC", "Z", "ETC/UTC"):
        return dt_timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"⚠️ [Timezone] Unknown timezone {tz_name!r}, using UTC")
        return dt_timezone.utc


def utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC).
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)


def to_local(dt: datetime, tz: tzinfo) -> datetime:
    """Convert to wall-clock time in ``tz``; naive input is assumed UTC."""
    return to_utc_aware(dt).astimezone(tz)
