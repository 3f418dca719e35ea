from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

LOG_LEVELS = ("debug", "info", "warn", "error")

_LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s comp=%(component)s msg=%(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


class EnsureFieldsFilter(logging.Filter):
    """
    Назначение:
        Гарантирует наличие полей runId и component в LogRecord,
        чтобы форматтер не падал KeyError.

    Входные данные:
        runId: str
            Идентификатор запуска.
        defaultComponent: str
            Компонент по умолчанию, если не задан.
    """

    def __init__(self, runId: str, defaultComponent: str = "core"):
        super().__init__()
        self.runId = runId
        self.defaultComponent = defaultComponent

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "runId"):
            record.runId = self.runId
        if not hasattr(record, "component"):
            record.component = self.defaultComponent
        return True


def mapLogLevel(levelName: str) -> int:
    """
    Назначение:
        Преобразует строковый уровень логирования в logging level.

    Входные данные:
        levelName: str
            ERROR|WARN|INFO|DEBUG (регистр не важен, WARNING допускается)

    Ошибки/исключения:
        ValueError на неизвестном уровне.
    """
    value = (levelName or "").strip().upper()
    if value == "ERROR":
        return logging.ERROR
    if value in ("WARN", "WARNING"):
        return logging.WARNING
    if value == "INFO":
        return logging.INFO
    if value == "DEBUG":
        return logging.DEBUG
    raise ValueError(f"Unsupported log level: {levelName} (valid: {', '.join(LOG_LEVELS)})")


def createRunLogger(
    runId: str,
    logLevel: str,
    logFile: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Назначение:
        Создаёт логгер одного вызова. Диагностика идёт только в stderr
        (stdout зарезервирован под ключи для sshd) и, опционально, в файл.

    Входные данные:
        runId: str
        logLevel: str
        logFile: str | None
            Дополнительный файл лога (каталог создаётся).
        stream: TextIO | None
            Поток для диагностики; по умолчанию текущий sys.stderr.

    Выходные данные:
        logging.Logger
    """
    logger = logging.getLogger(f"charonKey.{runId}")
    logger.handlers.clear()
    logger.propagate = False

    level = mapLogLevel(logLevel)
    logger.setLevel(level)

    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)

    streamHandler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    streamHandler.setLevel(level)
    streamHandler.setFormatter(formatter)
    streamHandler.addFilter(EnsureFieldsFilter(runId=runId))
    logger.addHandler(streamHandler)

    if logFile:
        Path(logFile).parent.mkdir(parents=True, exist_ok=True)
        fileHandler = logging.FileHandler(logFile, encoding="utf-8")
        fileHandler.setLevel(level)
        fileHandler.setFormatter(formatter)
        fileHandler.addFilter(EnsureFieldsFilter(runId=runId))
        logger.addHandler(fileHandler)

    return logger


def closeRunLogger(logger: logging.Logger) -> None:
    """Закрывает и снимает хендлеры (важно для FileHandler в тестах)."""
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def getNullLogger() -> logging.Logger:
    """
    Назначение:
        Логгер-пустышка для компонентов, которым логирование не передали.
    Паттерн:
        Null Object.
    """
    logger = logging.getLogger("charonKey.null")
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def logEvent(logger: logging.Logger, level: int, runId: str | None, component: str, message: str) -> None:
    """
    Назначение:
        Унифицированная запись событий с runId/component.
        runId=None оставляет значение, подставляемое EnsureFieldsFilter.
    """
    extra = {"component": component}
    if runId is not None:
        extra["runId"] = runId
    logger.log(level, message, extra=extra)
