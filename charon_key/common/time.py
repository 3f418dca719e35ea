from __future__ import annotations

from datetime import datetime, timezone


def getUtcNow() -> datetime:
    """Текущее время в UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


def toIso(value: datetime) -> str:
    """
    Назначение:
        Сериализация момента времени в ISO 8601 (UTC).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parseIso(value: str) -> datetime:
    """
    Назначение:
        Разбор ISO 8601; наивное время трактуется как UTC.

    Ошибки/исключения:
        ValueError/TypeError на некорректной строке.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def getDurationMs(startMonotonic: float, endMonotonic: float) -> int:
    """
    Назначение:
        Считает длительность в миллисекундах по monotonic timestamps.
    """
    return int((endMonotonic - startMonotonic) * 1000)
