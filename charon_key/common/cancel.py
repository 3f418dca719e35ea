from __future__ import annotations

import threading
import time


class CancellationToken:
    """
    Назначение/ответственность:
        Общий для всех воркеров сигнал отмены с опциональным дедлайном.
    Инварианты/гарантии:
        - После cancel() или истечения дедлайна cancelled == True навсегда.
        - wait() прерывается немедленно при отмене, не дожидаясь таймаута.
    """

    def __init__(self, deadline_seconds: float | None = None, clock=time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = None if deadline_seconds is None else clock() + deadline_seconds

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> float | None:
        """Секунды до дедлайна (не меньше 0) или None, если дедлайна нет."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def clip(self, timeout: float) -> float:
        """Ограничивает таймаут оставшимся временем."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def wait(self, seconds: float) -> bool:
        """
        Назначение:
            Прерываемая пауза (backoff между ретраями).
        Выходные данные:
            True, если токен отменён (до или во время ожидания).
        """
        if self.cancelled:
            return True
        if seconds > 0:
            self._event.wait(self.clip(seconds))
        return self.cancelled
