from __future__ import annotations

from typing import Iterable, Sequence

from charon_key.domain.keys import KeySet, is_valid_key_format
from charon_key.errors import InvalidKeyFormatError


def merge_keys(resolved_keys: Iterable[str], local_entries: Iterable[str]) -> list[str]:
    """
    Назначение:
        Слияние резолвнутых ключей с локальными записями authorized_keys.

    Алгоритм:
        - Сначала локальные записи (их текст и комментарий побеждают при конфликте).
        - Затем резолвнутые ключи, дубли по алгоритм+блоб отбрасываются.
    """
    merged = KeySet(local_entries)
    merged.update(resolved_keys)
    return merged.to_list()


def format_keys(lines: Sequence[str]) -> str:
    """Строки через "\\n" с одним завершающим переводом строки; пустой набор -> ""."""
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def validate_keys(lines: Iterable[str]) -> None:
    """
    Назначение:
        Fail-secure проверка всех строк, предназначенных для вывода.

    Ошибки/исключения:
        InvalidKeyFormatError на первой строке с неизвестным алгоритмом
        или со встроенным переводом строки.
        Наличие валидных строк в том же наборе ничего не меняет.
    """
    for line in lines:
        if not is_valid_key_format(line):
            raise InvalidKeyFormatError(line)


class KeyMerger:
    """
    Назначение/ответственность:
        Финальная сборка вывода для sshd: merge с локальными записями
        и форматирование; validate() выполняет fail-secure шаг перед merge.
    """

    def validate(self, resolved_keys: Iterable[str]) -> None:
        validate_keys(resolved_keys)

    def merge(self, resolved_keys: Sequence[str], local_entries: Sequence[str]) -> str:
        return format_keys(merge_keys(resolved_keys, local_entries))
