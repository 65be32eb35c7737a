# app/services/clock.py
# UTC 날짜 키 유틸. "오늘", "연속된 날" 판단은 모두 이 모듈을 거친다.
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

DateLike = Union[datetime, date, str]

DAY_KEY_FORMAT = "%Y-%m-%d"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc_datetime(value: DateLike) -> Optional[datetime]:
    if isinstance(value, datetime):
        # naive datetime은 UTC로 간주
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _as_utc_datetime(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """DB에서 돌아온 naive datetime(SQLite)을 UTC aware로 맞춘다."""
    if value is None:
        return None
    return _as_utc_datetime(value)


def to_utc_day_key(value: DateLike) -> Optional[str]:
    """타임스탬프를 UTC 달력 날짜 키(YYYY-MM-DD)로 변환. 해석 불가면 None."""
    dt = _as_utc_datetime(value)
    if dt is None:
        return None
    return dt.strftime(DAY_KEY_FORMAT)


def to_utc_day_start(value: DateLike) -> Optional[datetime]:
    dt = _as_utc_datetime(value)
    if dt is None:
        return None
    return datetime(dt.year, dt.month, dt.day, tzinfo=timezone.utc)


def _parse_day_key(day_key: str) -> Optional[date]:
    try:
        return datetime.strptime(str(day_key or ""), DAY_KEY_FORMAT).date()
    except ValueError:
        return None


def previous_day_key(day_key: str) -> Optional[str]:
    d = _parse_day_key(day_key)
    if d is None:
        return None
    return (d - timedelta(days=1)).strftime(DAY_KEY_FORMAT)


def next_day_key(day_key: str) -> Optional[str]:
    d = _parse_day_key(day_key)
    if d is None:
        return None
    return (d + timedelta(days=1)).strftime(DAY_KEY_FORMAT)
