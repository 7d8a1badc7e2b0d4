# src/rumcore/producers/console.py
"""Warning and error log capture.

A logging.Handler on the root logger turns WARNING-and-above records into
``console`` events. Records from rumcore's own loggers are skipped, as are
records produced while an event is being emitted, so the pipeline never
reports on itself.
"""

from __future__ import annotations

import logging

from rumcore.producers.base import BaseProducer, truncate

MAX_MESSAGE = 1000
_OWN_LOGGER_PREFIX = "rumcore"


class _ConsoleHandler(logging.Handler):
    def __init__(self, producer: ConsoleProducer, level: int) -> None:
        super().__init__(level)
        self._producer = producer
        self._emitting = False

    def emit(self, record: logging.LogRecord) -> None:
        if self._emitting or record.name.split(".", 1)[0] == _OWN_LOGGER_PREFIX:
            return
        self._emitting = True
        try:
            self._producer.report(record)
        except Exception:
            self.handleError(record)
        finally:
            self._emitting = False


class ConsoleProducer(BaseProducer):
    """Report log records at or above level as ``console`` events."""

    _name = "console"

    def __init__(self, level: int = logging.WARNING, logger_name: str | None = None) -> None:
        super().__init__()
        self._level = level
        self._logger_name = logger_name
        self._handler: _ConsoleHandler | None = None

    def install(self) -> None:
        self._handler = _ConsoleHandler(self, self._level)
        logging.getLogger(self._logger_name).addHandler(self._handler)

    def uninstall(self) -> None:
        if self._handler is not None:
            logging.getLogger(self._logger_name).removeHandler(self._handler)
            self._handler = None

    def report(self, record: logging.LogRecord) -> None:
        self._track(
            {
                "type": "console",
                "level": "error" if record.levelno >= logging.ERROR else "warn",
                "logger": record.name,
                "message": truncate(record.getMessage(), MAX_MESSAGE),
            }
        )
