from __future__ import annotations

import pwd
from pathlib import Path

from charon_key.domain.error_codes import ErrorCode
from charon_key.errors import AccountError

AUTHORIZED_KEYS_RELATIVE = Path(".ssh") / "authorized_keys"


def resolve_home_dir(account: str) -> Path:
    """
    Назначение:
        Home-каталог локального аккаунта по базе пользователей ОС.

    Ошибки/исключения:
        AccountError: пустое имя, аккаунт не найден или home не задан.

    Ограничения:
        HOME процесса не используется: sshd вызывает команду от имени
        другого пользователя (AuthorizedKeysCommandUser).
    """
    if not account:
        raise AccountError("local account cannot be empty", account=account)
    try:
        record = pwd.getpwnam(account)
    except KeyError as exc:
        raise AccountError(
            f"failed to lookup local account {account!r}",
            account=account,
            code=ErrorCode.HOME_DIR_UNRESOLVED,
        ) from exc
    if not record.pw_dir:
        raise AccountError(
            f"local account {account!r} has no home directory",
            account=account,
            code=ErrorCode.HOME_DIR_UNRESOLVED,
        )
    return Path(record.pw_dir)


def authorized_keys_path(account: str) -> Path:
    return resolve_home_dir(account) / AUTHORIZED_KEYS_RELATIVE


def read_authorized_keys(path: str | Path) -> list[str]:
    """
    Назначение:
        Чтение существующих записей authorized_keys.

    Выходные данные:
        list[str]
            Строки без комментариев (#) и пустых строк, в исходном порядке.
            Отсутствующий файл -> пустой список.

    Ошибки/исключения:
        OSError: файл есть, но не читается (решение принимает вызывающий).
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    entries: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        entries.append(line)
    return entries
