from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from charon_key.domain.error_codes import ErrorCode
from charon_key.errors import ConfigError

WILDCARD = "*"


class IdentityMapping:
    """
    Назначение/ответственность:
        Статическая таблица local-account -> упорядоченный список внешних identity.
    Инварианты/гарантии:
        - Неизменяема после построения.
        - lookup: точное совпадение, затем wildcard "*", иначе пустой кортеж.
        - Порядок identity внутри аккаунта = порядок появления в конфиге,
          повторы сохраняются.
    """

    def __init__(self, entries: Mapping[str, tuple[str, ...]]):
        self._entries = MappingProxyType({local: tuple(ids) for local, ids in entries.items()})

    @classmethod
    def parse(cls, mapping_text: str | None) -> "IdentityMapping":
        """
        Контракт (вход/выход):
            Вход: строка вида "local:external[,local:external...]".
            Выход: IdentityMapping.
        Ошибки/исключения:
            ConfigError: пустой вход, пара без ровно одного ":",
            пустая сторона пары, ни одной валидной пары.
        Алгоритм:
            - Делит по ",", пустые фрагменты (например, хвостовая запятая) пропускает.
            - Каждую пару делит по ":" и обрезает пробелы.
            - Повторные local накапливают список.
        """
        if mapping_text is None or not mapping_text.strip():
            raise ConfigError("user-map cannot be empty", code=ErrorCode.MAPPING_INVALID)

        accumulated: dict[str, list[str]] = {}
        for raw_pair in mapping_text.split(","):
            pair = raw_pair.strip()
            if not pair:
                continue
            parts = pair.split(":")
            if len(parts) != 2:
                raise ConfigError(
                    f"invalid mapping format: {pair!r} (expected local:external)",
                    code=ErrorCode.MAPPING_INVALID,
                )
            local, external = parts[0].strip(), parts[1].strip()
            if not local:
                raise ConfigError(
                    f"local account cannot be empty in mapping: {pair!r}",
                    code=ErrorCode.MAPPING_INVALID,
                )
            if not external:
                raise ConfigError(
                    f"external identity cannot be empty in mapping: {pair!r}",
                    code=ErrorCode.MAPPING_INVALID,
                )
            accumulated.setdefault(local, []).append(external)

        if not accumulated:
            raise ConfigError("no valid mappings found in user-map", code=ErrorCode.MAPPING_INVALID)

        return cls({local: tuple(ids) for local, ids in accumulated.items()})

    def lookup(self, local_account: str) -> tuple[str, ...]:
        if local_account in self._entries:
            return self._entries[local_account]
        return self._entries.get(WILDCARD, ())

    def to_dict(self) -> dict[str, list[str]]:
        return {local: list(ids) for local, ids in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"IdentityMapping({self.to_dict()!r})"
