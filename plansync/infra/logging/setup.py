from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAMESPACE = "plansync"

LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s plan=%(planId)s comp=%(component)s msg=%(message)s"

_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class RunContextFilter(logging.Filter):
    """
    Назначение:
        Проставляет в LogRecord контекст запуска: runId, planId, component.
    Контракт:
        - поля, переданные через extra, не перезаписываются;
        - planId известен не сразу (после разбора аргументов команды),
          поэтому задаётся позже через bindPlanId(); до этого пишется "-".
    """

    def __init__(self, runId: str, defaultComponent: str = "core"):
        super().__init__()
        self.runId = runId
        self.planId = "-"
        self.defaultComponent = defaultComponent

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in (("runId", self.runId), ("planId", self.planId), ("component", self.defaultComponent)):
            if not hasattr(record, name):
                setattr(record, name, value)
        return True


class StdStreamToLogger:
    """Построчно пишет перехваченный stdout/stderr в лог команды; неполная строка ждёт flush()."""

    def __init__(self, logger: logging.Logger, level: int, runId: str, component: str):
        self.logger = logger
        self.level = level
        self.runId = runId
        self.component = component
        self.pending = ""

    def write(self, s: str) -> int:
        *lines, self.pending = (self.pending + s).split("\n")
        for line in lines:
            self._emit(line)
        return len(s)

    def flush(self) -> None:
        self._emit(self.pending)
        self.pending = ""

    def _emit(self, line: str) -> None:
        if line.strip():
            logEvent(self.logger, self.level, self.runId, self.component, line.rstrip())


class TeeStream:
    """Вывод идёт в терминал (primary) и копией в лог (secondary)."""

    def __init__(self, primary, secondary):
        self.primary = primary
        self.secondary = secondary

    def write(self, s: str) -> int:
        self.secondary.write(s)
        return self.primary.write(s)

    def flush(self) -> None:
        self.primary.flush()
        self.secondary.flush()

    def isatty(self) -> bool:
        return bool(getattr(self.primary, "isatty", lambda: False)())


def mapLogLevel(levelName: str) -> int:
    """ERROR|WARN|WARNING|INFO|DEBUG (без учёта регистра) → уровень logging; иначе ValueError."""
    try:
        return _LEVELS[(levelName or "").strip().upper()]
    except KeyError:
        raise ValueError(f"Unsupported log level: {levelName}") from None


def createCommandLogger(commandName: str, logDir: str, runId: str, logLevel: str) -> tuple[logging.Logger, str]:
    """
    Назначение:
        Отдельный файловый логгер на каждый запуск команды.

    Выходные данные:
        (logger, logFilePath), файл: <logDir>/<commandName>_<runId>.log
    """
    Path(logDir).mkdir(parents=True, exist_ok=True)
    logFilePath = str(Path(logDir) / f"{commandName}_{runId}.log")

    logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{commandName}.{runId}")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(mapLogLevel(logLevel))

    fileHandler = logging.FileHandler(logFilePath, encoding="utf-8")
    fileHandler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    fileHandler.addFilter(RunContextFilter(runId=runId))
    logger.addHandler(fileHandler)

    return logger, logFilePath


def bindPlanId(logger: logging.Logger, planId: str | None) -> None:
    """Привязывает план к последующим записям логгера команды."""
    for handler in logger.handlers:
        for item in handler.filters:
            if isinstance(item, RunContextFilter):
                item.planId = planId or "-"


def closeCommandLogger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)


def getDefaultLogger() -> logging.Logger:
    """Логгер для компонентов, созданных вне CLI (тесты, встраивание)."""
    return logging.getLogger(LOGGER_NAMESPACE)


def logEvent(logger: logging.Logger, level: int, runId: str, component: str, message: str) -> None:
    """Единственная точка записи событий с runId/component."""
    logger.log(level, message, extra={"runId": runId, "component": component})
