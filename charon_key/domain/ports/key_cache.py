from __future__ import annotations

from typing import Protocol, Sequence

from charon_key.domain.models import CacheReadResult


class KeyCacheProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт персистентного TTL-кэша ключей по identity.
    Взаимодействия:
        Используется резолвером для cache-or-fetch и offline fallback.
    """

    def read(self, identity: str) -> CacheReadResult:
        """
        Промах -> CacheReadResult(entry=None). Битая запись -> промах.
        Ошибки/исключения: CacheIOError при прочих ошибках ФС.
        """
        ...

    def write(self, identity: str, keys: Sequence[str]) -> None:
        """Атомарная перезапись записи. Ошибки: CacheIOError."""
        ...

    def clear(self, identity: str) -> None:
        """Удаление записи; отсутствие записи ошибкой не является."""
        ...
