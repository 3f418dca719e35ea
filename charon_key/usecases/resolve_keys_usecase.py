from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum

from charon_key.common.cancel import CancellationToken
from charon_key.domain.error_codes import ErrorCode
from charon_key.domain.keys import KeySet
from charon_key.domain.mapping import IdentityMapping
from charon_key.domain.models import CacheReadResult, IdentityFailure, ResolutionResult
from charon_key.domain.ports.key_cache import KeyCacheProtocol
from charon_key.domain.ports.key_source import KeySourceProtocol
from charon_key.errors import AccountError, AppError, CacheIOError, FetchError, ResolutionError, TransientError
from charon_key.infra.logging.setup import getNullLogger, logEvent

DEFAULT_MAX_WORKERS = 4


class KeyOrigin(str, Enum):
    CACHE = "cache"
    FETCH = "fetch"
    STALE = "stale"


@dataclass
class _IdentityOutcome:
    identity: str
    keys: list[str] = field(default_factory=list)
    origin: KeyOrigin | None = None
    error: AppError | None = None


class ResolveKeysUseCase:
    """
    Назначение/ответственность:
        Резолв ключей локального аккаунта: mapping -> cache/fetch -> union.
        Владеет политикой частичных отказов.
    Взаимодействия:
        - IdentityMapping для списка identity.
        - KeyCacheProtocol для чтения/записи кэша и offline fallback.
        - KeySourceProtocol для сетевого получения ключей.
    Ограничения:
        - Identity резолвятся параллельно (не более max_workers потоков).
        - Общий дедлайн задаётся CancellationToken; по истечении
          незавершённые identity используют просроченный кэш или считаются упавшими.
    """

    def __init__(
        self,
        mapping: IdentityMapping,
        key_source: KeySourceProtocol,
        key_cache: KeyCacheProtocol,
        max_workers: int = DEFAULT_MAX_WORKERS,
        deadline_seconds: float | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.mapping = mapping
        self.key_source = key_source
        self.key_cache = key_cache
        self.max_workers = max_workers
        self.deadline_seconds = deadline_seconds

    def resolve_for_account(
        self,
        account: str,
        logger: logging.Logger | None = None,
        run_id: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> ResolutionResult:
        """
        Контракт (вход/выход):
            Вход: имя локального аккаунта.
            Выход: ResolutionResult с дедуплицированными ключами (порядок mapping).
        Ошибки/исключения:
            AccountError: пустое имя аккаунта.
            ResolutionError: нет identity в mapping или все identity упали без fallback.
        Алгоритм:
            1. identity = mapping.lookup(account), повторы схлопываются.
            2. Каждая identity: свежий кэш -> fetch -> запись в кэш;
               при ошибке fetch используется просроченный кэш, иначе отказ identity.
            3. Union ключей; частичный отказ считается успехом с диагностикой в логе.
        """
        logger = logger or getNullLogger()
        if not account:
            raise AccountError("local account cannot be empty", account=account)

        identities = tuple(dict.fromkeys(self.mapping.lookup(account)))
        if not identities:
            logEvent(logger, logging.ERROR, run_id, "resolve", f"no identities mapped account={account}")
            raise ResolutionError(
                f"no identities mapped for local account {account!r}",
                account=account,
                code=ErrorCode.NO_IDENTITIES_MAPPED,
            )
        logEvent(
            logger,
            logging.DEBUG,
            run_id,
            "resolve",
            f"resolving keys account={account} identities={','.join(identities)}",
        )

        token = cancel if cancel is not None else CancellationToken(self.deadline_seconds)
        outcomes = self._resolve_all(identities, token, logger, run_id)

        result = ResolutionResult(account=account, identities=identities)
        merged = KeySet()
        for identity in identities:
            outcome = outcomes[identity]
            if outcome.error is not None:
                result.failures.append(IdentityFailure(identity=identity, error=outcome.error))
                continue
            merged.update(outcome.keys)
            if outcome.origin == KeyOrigin.CACHE:
                result.cache_hits.append(identity)
            elif outcome.origin == KeyOrigin.STALE:
                result.stale_fallbacks.append(identity)
            else:
                result.fetched.append(identity)
        result.keys = merged.to_list()

        if not result.keys and len(result.failures) == len(identities):
            reasons = "; ".join(failure.describe() for failure in result.failures)
            logEvent(
                logger,
                logging.ERROR,
                run_id,
                "resolve",
                f"failed to resolve keys for all identities account={account} errors={reasons}",
            )
            raise ResolutionError(
                f"failed to resolve keys for all identities: {reasons}",
                account=account,
                failures=result.failures,
            )

        if result.failures:
            reasons = "; ".join(failure.describe() for failure in result.failures)
            logEvent(
                logger,
                logging.WARNING,
                run_id,
                "resolve",
                f"partial failure account={account} keys_resolved={len(result.keys)} errors={reasons}",
            )
        return result

    def _resolve_all(
        self,
        identities: tuple[str, ...],
        token: CancellationToken,
        logger: logging.Logger,
        run_id: str | None,
    ) -> dict[str, _IdentityOutcome]:
        """
        Назначение:
            Параллельный резолв под общим дедлайном.
        Алгоритм:
            - Каждая identity в своём daemon-потоке; одновременно работают
              не более max_workers (BoundedSemaphore).
            - Главный поток ждёт результаты из очереди не дольше token.remaining().
            - По дедлайну токен отменяется, незавершённые identity получают
              deadline-outcome; их потоки не удерживают завершение процесса.
        Ошибки/исключения:
            Непредвиденное исключение воркера пробрасывается вызывающему.
        """
        results: "queue.Queue[tuple[str, _IdentityOutcome | BaseException]]" = queue.Queue()
        slots = threading.BoundedSemaphore(min(self.max_workers, len(identities)))

        def worker(identity: str) -> None:
            with slots:
                try:
                    if token.cancelled:
                        outcome: _IdentityOutcome | BaseException = self._deadline_outcome(identity, logger, run_id)
                    else:
                        outcome = self._resolve_identity(identity, token, logger, run_id)
                except Exception as exc:
                    outcome = exc
            results.put((identity, outcome))

        for identity in identities:
            threading.Thread(target=worker, args=(identity,), name=f"charon-key-{identity}", daemon=True).start()

        outcomes: dict[str, _IdentityOutcome] = {}
        while len(outcomes) < len(identities):
            try:
                identity, outcome = results.get(timeout=token.remaining())
            except queue.Empty:
                break
            if isinstance(outcome, BaseException):
                token.cancel()
                raise outcome
            outcomes[identity] = outcome

        pending = [identity for identity in identities if identity not in outcomes]
        if pending:
            token.cancel()
            for identity in pending:
                outcomes[identity] = self._deadline_outcome(identity, logger, run_id)
        return outcomes

    def _read_cache(self, identity: str, logger: logging.Logger, run_id: str | None) -> CacheReadResult:
        try:
            return self.key_cache.read(identity)
        except CacheIOError as err:
            logEvent(logger, logging.DEBUG, run_id, "cache", f"cache read error identity={identity} error={err}")
            return CacheReadResult(entry=None)

    def _resolve_identity(
        self,
        identity: str,
        token: CancellationToken,
        logger: logging.Logger,
        run_id: str | None,
    ) -> _IdentityOutcome:
        cached = self._read_cache(identity, logger, run_id)
        if cached.fresh:
            keys = list(cached.entry.keys)
            logEvent(logger, logging.DEBUG, run_id, "cache", f"cache hit identity={identity} keys_count={len(keys)}")
            return _IdentityOutcome(identity=identity, keys=keys, origin=KeyOrigin.CACHE)

        state = "expired" if cached.hit else "miss"
        logEvent(logger, logging.DEBUG, run_id, "cache", f"cache {state} identity={identity}")

        logEvent(logger, logging.INFO, run_id, "fetch", f"fetching keys identity={identity}")
        try:
            keys = self.key_source.fetch(identity, cancel=token)
        except FetchError as err:
            logEvent(logger, logging.WARNING, run_id, "fetch", f"failed to fetch keys identity={identity} error={err}")
            return self._fallback(identity, cached, err, logger, run_id)

        logEvent(logger, logging.INFO, run_id, "fetch", f"fetched keys identity={identity} keys_count={len(keys)}")
        try:
            self.key_cache.write(identity, keys)
        except CacheIOError as err:
            logEvent(logger, logging.WARNING, run_id, "cache", f"failed to write cache identity={identity} error={err}")
        else:
            logEvent(logger, logging.DEBUG, run_id, "cache", f"cache updated identity={identity}")
        return _IdentityOutcome(identity=identity, keys=keys, origin=KeyOrigin.FETCH)

    def _fallback(
        self,
        identity: str,
        cached: CacheReadResult,
        err: AppError,
        logger: logging.Logger,
        run_id: str | None,
    ) -> _IdentityOutcome:
        if cached.entry is None:
            return _IdentityOutcome(identity=identity, error=err)
        keys = list(cached.entry.keys)
        logEvent(
            logger,
            logging.INFO,
            run_id,
            "cache",
            f"using expired cache as fallback identity={identity} keys_count={len(keys)}",
        )
        return _IdentityOutcome(identity=identity, keys=keys, origin=KeyOrigin.STALE)

    def _deadline_outcome(self, identity: str, logger: logging.Logger, run_id: str | None) -> _IdentityOutcome:
        err = TransientError("deadline exceeded before keys were resolved", identity=identity)
        logEvent(logger, logging.WARNING, run_id, "resolve", f"deadline exceeded identity={identity}")
        return self._fallback(identity, self._read_cache(identity, logger, run_id), err, logger, run_id)
