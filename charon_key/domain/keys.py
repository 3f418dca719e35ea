from __future__ import annotations

from typing import Iterable, Iterator

# Канонический набор алгоритмов, принимаемых в выводе для sshd.
KEY_ALGORITHMS: frozenset[str] = frozenset(
    {
        "ssh-rsa",
        "ssh-ed25519",
        "ecdsa-sha2-nistp256",
        "ecdsa-sha2-nistp384",
        "ecdsa-sha2-nistp521",
        "ssh-dss",
    }
)


def key_algorithm(line: str) -> str | None:
    """Первый токен строки ключа или None для пустой строки."""
    parts = line.split()
    if not parts:
        return None
    return parts[0]


def is_single_line(line: str) -> bool:
    """Ровно одна физическая строка: без \\n, \\r и прочих разделителей str.splitlines()."""
    return line.splitlines() == [line]


def is_valid_key_format(line: str) -> bool:
    """
    Назначение:
        Проверка, что строка ключа однострочная и её ведущий токен является
        известным алгоритмом.
    Контракт:
        - Сравнение по токену целиком: "ssh-rsa-foo" не проходит.
        - Строка со встроенным переводом строки невалидна.
    """
    return is_single_line(line) and key_algorithm(line) in KEY_ALGORITHMS


def normalize_key(line: str) -> str:
    """
    Назначение:
        Ключ дедупликации: алгоритм + base64-блоб, комментарий отбрасывается.

    Алгоритм:
        - Менее двух токенов: строка возвращается как есть (после trim).
        - Иначе: первые два токена через один пробел.
    """
    parts = line.split()
    if len(parts) < 2:
        return line.strip()
    return f"{parts[0]} {parts[1]}"


class KeySet:
    """
    Назначение/ответственность:
        Множество строк ключей с дедупликацией по normalize_key.
    Инварианты/гарантии:
        - Порядок итерации = порядок первого добавления.
        - При конфликте сохраняется текст первой добавленной строки.
        - Пустые строки не добавляются.
    """

    def __init__(self, lines: Iterable[str] = ()):
        self._lines: dict[str, str] = {}
        self.update(lines)

    def add(self, line: str) -> bool:
        """Добавляет строку; возвращает True, если она новая."""
        line = line.strip()
        if not line:
            return False
        normalized = normalize_key(line)
        if normalized in self._lines:
            return False
        self._lines[normalized] = line
        return True

    def update(self, lines: Iterable[str]) -> int:
        added = 0
        for line in lines:
            if self.add(line):
                added += 1
        return added

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    def to_list(self) -> list[str]:
        return list(self._lines.values())
