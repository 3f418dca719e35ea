from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Sequence

from charon_key.domain.error_codes import ErrorCode, ExitCode

if TYPE_CHECKING:
    from charon_key.domain.models import IdentityFailure


@dataclass
class AppError(Exception):
    """
    Унифицированная ошибка приложения.
    """

    category: str
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.GENERAL_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details or {},
        }


class ConfigError(AppError):
    """
    Назначение:
        Ошибка конфигурации (user-map, TTL, log level, числовые параметры).
        Фатальна до начала любой работы по резолву.
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CONFIG_INVALID, details: dict | None = None):
        super().__init__(category="config", code=code.value, message=message, details=details or {})

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.CONFIG_ERROR


class FetchError(AppError):
    """
    Назначение:
        Базовая ошибка получения ключей одной внешней identity.
    Контракт:
        - retryable=True только для ServerError/TransientError.
        - status_code заполнен для HTTP-ответов, None для сетевых ошибок.
    """

    error_code: ErrorCode = ErrorCode.CLIENT_ERROR
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        identity: str,
        status_code: int | None = None,
        body_snippet: str | None = None,
    ):
        super().__init__(
            category="fetch",
            code=self.error_code.value,
            message=message,
            retryable=self.is_retryable,
            details={"identity": identity, "status_code": status_code, "body_snippet": body_snippet},
        )
        self.identity = identity
        self.status_code = status_code
        self.body_snippet = body_snippet

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.RESOLUTION_ERROR


class NotFoundError(FetchError):
    """404: identity не существует, повторять бессмысленно."""

    error_code = ErrorCode.NOT_FOUND


class ServerError(FetchError):
    """HTTP >= 500, повторяемая."""

    error_code = ErrorCode.SERVER_ERROR
    is_retryable = True


class TransientError(FetchError):
    """Сетевая ошибка/таймаут/отмена, повторяемая."""

    error_code = ErrorCode.NETWORK_ERROR
    is_retryable = True


class ClientError(FetchError):
    """Прочие не-200 статусы (4xx кроме 404), терминальная."""

    error_code = ErrorCode.CLIENT_ERROR


class KeyParseError(FetchError):
    """Ответ 200 не содержит ни одной пригодной строки ключа."""

    error_code = ErrorCode.KEY_PARSE_ERROR


class CacheIOError(AppError):
    """
    Назначение:
        Ошибка файлового кэша. Никогда не фатальна: чтение деградирует
        в промах, запись логируется и отбрасывается.
    """

    def __init__(self, message: str, identity: str, path: str | None = None):
        super().__init__(
            category="cache",
            code=ErrorCode.CACHE_IO_ERROR.value,
            message=message,
            details={"identity": identity, "path": path},
        )
        self.identity = identity
        self.path = path


class ResolutionError(AppError):
    """
    Назначение:
        Агрегированная ошибка резолва аккаунта: не задано ни одной identity
        или все identity завершились ошибкой без fallback.
    """

    def __init__(
        self,
        message: str,
        account: str,
        failures: Sequence["IdentityFailure"] = (),
        code: ErrorCode = ErrorCode.ALL_IDENTITIES_FAILED,
    ):
        super().__init__(
            category="resolve",
            code=code.value,
            message=message,
            details={
                "account": account,
                "failures": {failure.identity: str(failure.error) for failure in failures},
            },
        )
        self.account = account
        self.failures = list(failures)

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.RESOLUTION_ERROR


class AccountError(AppError):
    """
    Назначение:
        Некорректный локальный аккаунт или невозможность определить его home.
    """

    def __init__(self, message: str, account: str, code: ErrorCode = ErrorCode.ACCOUNT_INVALID):
        super().__init__(category="account", code=code.value, message=message, details={"account": account})
        self.account = account

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.ACCOUNT_ERROR


class InvalidKeyFormatError(AppError):
    """
    Назначение:
        Строка, предназначенная для вывода, не является ключом известного
        алгоритма. Единственная безусловно фатальная ошибка (fail-secure).
    """

    def __init__(self, key_line: str):
        super().__init__(
            category="security",
            code=ErrorCode.INVALID_KEY_FORMAT.value,
            message=f"Invalid SSH key format: {key_line[:80]!r}",
            details={"key": key_line},
        )
        self.key_line = key_line

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.INVALID_KEY_FORMAT


__all__ = [
    "AppError",
    "ConfigError",
    "FetchError",
    "NotFoundError",
    "ServerError",
    "TransientError",
    "ClientError",
    "KeyParseError",
    "CacheIOError",
    "ResolutionError",
    "AccountError",
    "InvalidKeyFormatError",
]
