from __future__ import annotations

import uuid


def generate_run_id(length: int = 12) -> str:
    """
    Назначение:
        Короткий идентификатор для корреляции строк лога одного вызова sshd.
        Параллельные логины пишут в один journal, поэтому runId обязателен.
    """
    return uuid.uuid4().hex[:length]
