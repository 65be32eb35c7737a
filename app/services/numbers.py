# app/services/numbers.py
import math
from typing import Optional

from app.services.errors import InvalidParameters


def round_half_up(value: float) -> int:
    # 0.5는 항상 올림 (파이썬 round()는 짝수 반올림)
    return int(math.floor(value + 0.5))


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, round_half_up(value)))


def safe_number(value, fallback: Optional[float] = 0.0) -> Optional[float]:
    """숫자/숫자형 문자열 -> float. 변환 불가나 NaN/inf면 fallback."""
    if isinstance(value, bool):
        return fallback
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(n):
        return fallback
    return n


def require_count(name: str, value) -> int:
    """증분 카운터 검증: 유한한 0 이상 정수만 허용."""
    if value is None:
        return 0
    n = safe_number(value, fallback=None)
    if n is None or n < 0 or n != int(n):
        raise InvalidParameters(f"{name} must be a non-negative integer, got {value!r}")
    return int(n)


def percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return clamp_score(part / whole * 100)
