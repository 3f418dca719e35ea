from __future__ import annotations

import re

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

DEFAULT_FILENAME_TOKEN = "default"


def sanitizeFilename(name: str) -> str:
    """
    Назначение:
        Безопасное имя файла из имени identity (без path traversal).

    Входные данные:
        name: str
            Имя внешней identity.

    Выходные данные:
        str
            Строка из [A-Za-z0-9_-]; пустое имя -> "default".

    Алгоритм:
        - Каждый символ вне [A-Za-z0-9_-] заменяется на "_".
    """
    result = _UNSAFE_FILENAME_CHARS.sub("_", name or "")
    if not result:
        return DEFAULT_FILENAME_TOKEN
    return result


def truncateText(value: str | None, limit: int = 200) -> str | None:
    """
    Назначение:
        Ограничивает длину текста, чтобы не раздувать логи и details ошибок.

    Выходные данные:
        str | None
            Строка, не длиннее limit символов; None, если вход None.
    """
    if value is None:
        return None
    if len(value) <= limit:
        return value
    suffix = "..." if limit > 3 else ""
    head = limit - len(suffix)
    return value[:head] + suffix
