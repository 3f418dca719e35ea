from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from charon_key.errors import AppError


@dataclass(frozen=True)
class CacheEntry:
    """
    Назначение:
        Закэшированный набор ключей одной внешней identity.
    Инварианты:
        - fetched_at в UTC (timezone-aware).
    """

    identity: str
    keys: tuple[str, ...]
    fetched_at: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        return self.age(now) <= ttl


@dataclass(frozen=True)
class CacheReadResult:
    """
    Назначение:
        Результат чтения кэша: entry=None означает промах.
        Просроченная запись возвращается (нужна для offline fallback).
    """

    entry: CacheEntry | None
    is_expired: bool = False

    @property
    def hit(self) -> bool:
        return self.entry is not None

    @property
    def fresh(self) -> bool:
        return self.entry is not None and not self.is_expired


@dataclass(frozen=True)
class IdentityFailure:
    """Диагностика: identity, для которой не удалось получить ключи."""

    identity: str
    error: AppError

    def describe(self) -> str:
        return f"{self.identity}: {self.error}"


@dataclass
class ResolutionResult:
    """
    Назначение:
        Итог резолва аккаунта.
    Инварианты/гарантии:
        - keys дедуплицированы, порядок детерминирован (порядок mapping).
        - failures/stale_fallbacks только для диагностики, не ошибка вызова.
    """

    account: str
    identities: tuple[str, ...]
    keys: list[str] = field(default_factory=list)
    failures: list[IdentityFailure] = field(default_factory=list)
    stale_fallbacks: list[str] = field(default_factory=list)
    cache_hits: list[str] = field(default_factory=list)
    fetched: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)
