from __future__ import annotations

from enum import Enum, IntEnum


class ErrorCode(str, Enum):
    """
    Назначение:
        Единая таксономия кодов ошибок для AppError и диагностики.
    """

    CONFIG_INVALID = "CONFIG_INVALID"
    MAPPING_INVALID = "MAPPING_INVALID"
    NOT_FOUND = "NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    KEY_PARSE_ERROR = "KEY_PARSE_ERROR"
    CACHE_IO_ERROR = "CACHE_IO_ERROR"
    NO_IDENTITIES_MAPPED = "NO_IDENTITIES_MAPPED"
    ALL_IDENTITIES_FAILED = "ALL_IDENTITIES_FAILED"
    ACCOUNT_INVALID = "ACCOUNT_INVALID"
    HOME_DIR_UNRESOLVED = "HOME_DIR_UNRESOLVED"
    INVALID_KEY_FORMAT = "INVALID_KEY_FORMAT"


class ExitCode(IntEnum):
    """
    Назначение:
        Коды завершения процесса для вызывающего sshd.
    Инварианты:
        - CONFIG_ERROR совпадает с кодом usage-ошибок click (2).
    """

    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFIG_ERROR = 2
    INVALID_KEY_FORMAT = 3
    RESOLUTION_ERROR = 4
    ACCOUNT_ERROR = 5
