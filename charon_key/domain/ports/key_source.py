from __future__ import annotations

from typing import Protocol

from charon_key.common.cancel import CancellationToken


class KeySourceProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт получения публичных ключей внешней identity из key-listing сервиса.
    Взаимодействия:
        Реализации инкапсулируют HTTP, ретраи и классификацию ошибок;
        резолвер зависит только от протокола.
    """

    def fetch(self, identity: str, cancel: CancellationToken | None = None) -> list[str]:
        """
        Контракт (вход/выход):
            - Вход: непустое имя identity, опциональный токен отмены.
            - Выход: список строк ключей (возможно пустой).
        Ошибки/исключения:
            FetchError и подклассы (NotFoundError, ServerError, TransientError,
            ClientError, KeyParseError).
        """
        ...
