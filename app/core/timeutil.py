import pytz
from datetime import datetime

from app.core.config import settings

TZ = pytz.timezone(settings.TZ)


def utcnow() -> datetime:
    # naive UTC, the form every DateTime column stores
    return datetime.now(pytz.utc).replace(tzinfo=None)


def to_naive(dt: datetime) -> datetime:
    if dt.tzinfo:
        return dt.astimezone(pytz.utc).replace(tzinfo=None)
    return dt


def to_local_str(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return pytz.utc.localize(dt).astimezone(TZ).strftime("%Y-%m-%d %H:%M:%S")
