from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from charon_key.common.cancel import CancellationToken
from charon_key.common.time import getDurationMs
from charon_key.domain.merge import KeyMerger
from charon_key.infra.logging.setup import getNullLogger, logEvent
from charon_key.infra.ssh.authorized_keys import authorized_keys_path, read_authorized_keys
from charon_key.usecases.resolve_keys_usecase import ResolveKeysUseCase


class AuthorizedKeysUseCase:
    """
    Назначение/ответственность:
        Полный сценарий одного вызова AuthorizedKeysCommand:
        resolve -> fail-secure validate -> local authorized_keys -> merge -> текст.
    Взаимодействия:
        - ResolveKeysUseCase для ключей внешних identity.
        - KeyMerger для валидации и сборки вывода.
        - locate_authorized_keys (по умолчанию через home аккаунта).
    """

    def __init__(
        self,
        resolver: ResolveKeysUseCase,
        merger: KeyMerger | None = None,
        locate_authorized_keys: Callable[[str], Path] = authorized_keys_path,
    ):
        self.resolver = resolver
        self.merger = merger or KeyMerger()
        self.locate_authorized_keys = locate_authorized_keys

    def run(
        self,
        account: str,
        logger: logging.Logger | None = None,
        run_id: str | None = None,
        authorized_keys_file: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """
        Контракт (вход/выход):
            Вход: локальный аккаунт, опциональный явный путь authorized_keys.
            Выход: текст для stdout ("" если ключей нет).
        Ошибки/исключения:
            AccountError, ResolutionError (из резолвера или поиска home),
            InvalidKeyFormatError (fail-secure, до чтения локальных записей).
        """
        logger = logger or getNullLogger()
        start = time.monotonic()

        result = self.resolver.resolve_for_account(account, logger=logger, run_id=run_id, cancel=cancel)
        self.merger.validate(result.keys)

        path = Path(authorized_keys_file) if authorized_keys_file else self.locate_authorized_keys(account)
        try:
            local_entries = read_authorized_keys(path)
        except OSError as exc:
            logEvent(
                logger,
                logging.WARNING,
                run_id,
                "ssh",
                f"failed to read authorized_keys, using resolved keys only path={path} error={exc}",
            )
            local_entries = []

        output = self.merger.merge(result.keys, local_entries)
        logEvent(
            logger,
            logging.INFO,
            run_id,
            "core",
            f"keys resolved account={account} resolved={len(result.keys)} local={len(local_entries)} "
            f"cache_hits={len(result.cache_hits)} fetched={len(result.fetched)} "
            f"stale={len(result.stale_fallbacks)} failed={len(result.failures)} "
            f"duration_ms={getDurationMs(start, time.monotonic())}",
        )
        return output
