from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

DISTRIBUTION_NAME = "charon-key"


def get_version() -> str:
    """Версия установленного дистрибутива; "dev" при запуске из исходников."""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "dev"


def user_agent() -> str:
    return f"{DISTRIBUTION_NAME}/{get_version()}"
