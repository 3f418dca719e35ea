from __future__ import annotations

import logging
import threading
import time
from urllib.parse import quote

import httpx

from charon_key.common.cancel import CancellationToken
from charon_key.common.sanitize import truncateText
from charon_key.domain.keys import is_valid_key_format
from charon_key.errors import (
    ClientError,
    FetchError,
    KeyParseError,
    NotFoundError,
    ServerError,
    TransientError,
)
from charon_key.infra.logging.setup import getNullLogger, logEvent

DEFAULT_BASE_URL = "https://github.com"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0


def parse_keys(body: str, identity: str = "") -> list[str]:
    """
    Назначение:
        Разбор тела ответа key-listing сервиса.

    Алгоритм:
        - Делит по строкам, обрезает пробелы, пустые строки пропускает.
        - Оставляет строки с известным алгоритмом; остальное молча отбрасывает.
        - Если строки были, но ни одна не прошла фильтр -> KeyParseError.
    """
    keys: list[str] = []
    invalid_count = 0
    for raw_line in body.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if not is_valid_key_format(line):
            invalid_count += 1
            continue
        keys.append(line)

    if not keys and invalid_count > 0:
        raise KeyParseError(
            f"no valid SSH keys found in response ({invalid_count} invalid lines)",
            identity=identity,
            status_code=200,
            body_snippet=truncateText(body),
        )
    return keys


class KeyListingClient:
    """
    Назначение/ответственность:
        HTTP-клиент конвенции "GET <base>/<identity>.keys" с ретраями
        и классификацией ошибок. Реализует KeySourceProtocol.
    Ограничения:
        - Синхронный; потокобезопасен (httpx.Client разделяется воркерами).
        - Ретраятся только ServerError (>=500) и TransientError (сеть/таймаут).
        - Задержка перед попыткой n равна retryBackoffSeconds * n.
    """

    def __init__(
        self,
        baseUrl: str = DEFAULT_BASE_URL,
        timeoutSeconds: float = DEFAULT_TIMEOUT_SECONDS,
        retries: int = DEFAULT_RETRIES,
        retryBackoffSeconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        userAgent: str = "charon-key",
        logger: logging.Logger | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.baseUrl = baseUrl.rstrip("/")
        self.timeoutSeconds = timeoutSeconds
        self.retries = retries
        self.retryBackoffSeconds = retryBackoffSeconds
        self.logger = logger or getNullLogger()
        self.retry_attempts = 0
        self._lock = threading.Lock()

        self.client = httpx.Client(
            timeout=timeoutSeconds,
            headers={"User-Agent": userAgent, "accept": "text/plain"},
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def getRetryAttempts(self) -> int:
        """Возвращает количество выполненных повторных попыток (по всем identity)."""
        return self.retry_attempts

    def keysUrl(self, identity: str) -> str:
        return f"{self.baseUrl}/{quote(identity, safe='')}.keys"

    def _log(self, level: int, message: str) -> None:
        logEvent(self.logger, level, None, "fetch", message)

    def _count_retry(self) -> None:
        with self._lock:
            self.retry_attempts += 1

    def _classify(self, identity: str, status_code: int, body: str) -> FetchError:
        """Маппит не-200 ответ в класс ошибки."""
        body_snippet = truncateText(body) if body else None
        message = f"HTTP {status_code} for {self.keysUrl(identity)}"
        if status_code == 404:
            return NotFoundError(
                f"identity {identity!r} not found",
                identity=identity,
                status_code=404,
                body_snippet=body_snippet,
            )
        if status_code >= 500:
            return ServerError(message, identity=identity, status_code=status_code, body_snippet=body_snippet)
        return ClientError(message, identity=identity, status_code=status_code, body_snippet=body_snippet)

    def _read_body(self, identity: str, resp: httpx.Response, cancel: CancellationToken | None) -> str:
        """
        Назначение:
            Чтение тела по чанкам с проверкой токена между чанками.
        Ошибки/исключения:
            TransientError: токен отменён до конца тела (медленный сервер
            сбрасывает read-таймаут httpx на каждом чанке).
        """
        chunks: list[bytes] = []
        for chunk in resp.iter_bytes():
            if cancel is not None and cancel.cancelled:
                raise TransientError("deadline exceeded while reading response", identity=identity)
            chunks.append(chunk)
        return b"".join(chunks).decode("utf-8", errors="replace")

    def _fetch_once(self, identity: str, cancel: CancellationToken | None) -> list[str]:
        timeout = self.timeoutSeconds if cancel is None else cancel.clip(self.timeoutSeconds)
        try:
            with self.client.stream("GET", self.keysUrl(identity), timeout=timeout) as resp:
                status_code = resp.status_code
                body = self._read_body(identity, resp, cancel)
        except httpx.TransportError as exc:
            raise TransientError(f"request failed: {exc}", identity=identity) from exc

        if status_code != 200:
            raise self._classify(identity, status_code, body)
        return parse_keys(body, identity=identity)

    def fetch(self, identity: str, cancel: CancellationToken | None = None) -> list[str]:
        """
        Контракт (вход/выход):
            Вход: непустое имя identity, опциональный токен отмены/дедлайна.
            Выход: список строк ключей.
        Ошибки/исключения:
            ValueError: пустое имя.
            NotFoundError/ClientError/KeyParseError: сразу, без ретраев.
            ServerError/TransientError: после исчерпания ретраев (последняя ошибка).
        Алгоритм:
            - attempt 0..retries; перед attempt>0 прерываемая пауза backoff*attempt.
            - Отмена токена прекращает ретраи и возвращает последнюю ошибку.
        """
        if not identity:
            raise ValueError("identity cannot be empty")

        if cancel is not None and cancel.cancelled:
            raise TransientError("fetch cancelled before first attempt", identity=identity)

        last_error: FetchError = TransientError("no attempts made", identity=identity)
        attempts_made = 0
        for attempt in range(self.retries + 1):
            if attempt > 0:
                self._count_retry()
                self._log(logging.DEBUG, f"retrying key fetch identity={identity} attempt={attempt}")
                if self._sleep_backoff(attempt, cancel):
                    self._log(logging.WARNING, f"key fetch cancelled identity={identity} attempt={attempt}")
                    break

            attempts_made += 1
            try:
                keys = self._fetch_once(identity, cancel)
            except FetchError as err:
                last_error = err
                if not err.retryable:
                    if isinstance(err, NotFoundError):
                        self._log(logging.WARNING, f"identity not found identity={identity}")
                    else:
                        self._log(logging.ERROR, f"key fetch failed identity={identity} error={err}")
                    raise
                if attempt < self.retries:
                    self._log(
                        logging.WARNING,
                        f"retryable key fetch error identity={identity} attempt={attempt} error={err}",
                    )
                continue

            self._log(logging.DEBUG, f"fetched keys identity={identity} keys_count={len(keys)} attempt={attempt}")
            return keys

        self._log(
            logging.ERROR,
            f"key fetch failed identity={identity} attempts={attempts_made} error={last_error}",
        )
        raise last_error

    def _sleep_backoff(self, attempt: int, cancel: CancellationToken | None) -> bool:
        """Линейная задержка перед повтором; True, если ожидание прервано отменой."""
        delay = self.retryBackoffSeconds * attempt
        if cancel is not None:
            return cancel.wait(delay)
        if delay > 0:
            time.sleep(delay)
        return False
