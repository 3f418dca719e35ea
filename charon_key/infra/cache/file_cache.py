from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Sequence

from charon_key.common.sanitize import sanitizeFilename
from charon_key.common.time import getUtcNow, parseIso, toIso
from charon_key.domain.keys import is_single_line
from charon_key.domain.models import CacheEntry, CacheReadResult
from charon_key.domain.ports.key_cache import KeyCacheProtocol
from charon_key.errors import CacheIOError
from charon_key.infra.logging.setup import getNullLogger, logEvent

CACHE_SUBDIR = "charon-key"
MIN_TTL = timedelta(minutes=1)


def default_cache_dir() -> Path:
    """Подкаталог charon-key во временном каталоге ОС."""
    return Path(tempfile.gettempdir()) / CACHE_SUBDIR


class FileKeyCache(KeyCacheProtocol):
    """
    Назначение/ответственность:
        Персистентный TTL-кэш ключей: один JSON-файл на identity.
    Инварианты/гарантии:
        - Имя файла: sanitizeFilename(identity) + ".json".
        - Запись атомарна (временный файл в том же каталоге + os.replace),
          читатель никогда не видит полузаписанный файл.
        - Битая/чужая запись при чтении считается промахом, а не ошибкой.
        - Просроченная запись возвращается с is_expired=True.
    Ограничения:
        Межпроцессные блокировки не используются: гонка записи даёт
        last-write-wins, гонка чтения деградирует в промах.
    """

    def __init__(
        self,
        cache_dir: str | Path | None,
        ttl: timedelta,
        clock: Callable[[], datetime] = getUtcNow,
        logger: logging.Logger | None = None,
    ):
        if ttl < MIN_TTL:
            raise ValueError(f"cache ttl must be at least 1 minute, got {ttl}")
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.ttl = ttl
        self._clock = clock
        self.logger = logger or getNullLogger()

    def path_for(self, identity: str) -> Path:
        return self.cache_dir / f"{sanitizeFilename(identity)}.json"

    def _log(self, level: int, message: str) -> None:
        logEvent(self.logger, level, None, "cache", message)

    def read(self, identity: str) -> CacheReadResult:
        """
        Контракт (вход/выход):
            Вход: имя identity.
            Выход: CacheReadResult; entry=None при промахе.
        Ошибки/исключения:
            CacheIOError: ошибка ФС, отличная от отсутствия файла.
        """
        path = self.path_for(identity)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return CacheReadResult(entry=None)
        except OSError as exc:
            raise CacheIOError(f"failed to read cache file: {exc}", identity=identity, path=str(path)) from exc

        entry = self._decode(identity, raw)
        if entry is None:
            self._log(logging.DEBUG, f"cache record unusable, treating as miss identity={identity} path={path}")
            return CacheReadResult(entry=None)

        is_expired = not entry.is_fresh(self._clock(), self.ttl)
        return CacheReadResult(entry=entry, is_expired=is_expired)

    def _decode(self, identity: str, raw: bytes) -> CacheEntry | None:
        """Разбор записи; None для битых, неполных и чужих записей."""
        try:
            data: Any = json.loads(raw.decode("utf-8"))
        except ValueError:
            # UnicodeDecodeError тоже ValueError
            return None
        if not isinstance(data, dict):
            return None
        if data.get("identity") != identity:
            return None
        keys = data.get("keys")
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            return None
        if any(not is_single_line(k) for k in keys):
            return None
        fetched_at = data.get("fetched_at")
        if not isinstance(fetched_at, str):
            return None
        try:
            fetched = parseIso(fetched_at)
        except ValueError:
            return None
        return CacheEntry(identity=identity, keys=tuple(keys), fetched_at=fetched)

    def write(self, identity: str, keys: Sequence[str]) -> None:
        """
        Контракт (вход/выход):
            Вход: identity и свежие ключи.
            Выход: None; запись перезаписывается целиком.
        Ошибки/исключения:
            CacheIOError при любой ошибке ФС (временный файл удаляется).
        """
        path = self.path_for(identity)
        record = {
            "identity": identity,
            "keys": list(keys),
            "fetched_at": toIso(self._clock()),
        }
        tmp_name: str | None = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=self.cache_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise CacheIOError(f"failed to write cache file: {exc}", identity=identity, path=str(path)) from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def clear(self, identity: str) -> None:
        """Удаляет запись; отсутствие файла ошибкой не является."""
        path = self.path_for(identity)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise CacheIOError(f"failed to remove cache file: {exc}", identity=identity, path=str(path)) from exc
