# src/rumcore/producers/errors.py
"""Uncaught exception capture.

Hooks:
- sys.excepthook: exceptions that end the main thread
- threading.excepthook: exceptions that end other threads
- the running asyncio loop's exception handler: never-retrieved task
  exceptions and callback failures

The previous hooks are always called after reporting. Repeated reports of
the same error within the dedup window are suppressed; the fingerprint
uses the message, file basename, line, column and the top five stack lines,
never the unbounded raw values.
"""

from __future__ import annotations

import asyncio
import sys
import threading
import traceback
from collections.abc import Callable
from typing import Any

import structlog

from rumcore.clock import Clock
from rumcore.dedup import DEFAULT_WINDOW_SECONDS, FingerprintDeduplicator, basename, first_lines, fingerprint
from rumcore.producers.base import BaseProducer, truncate

logger = structlog.get_logger(__name__)

MAX_MESSAGE = 500
MAX_STACK = 2000
MAX_FILENAME = 300


def _format_stack(exc: BaseException) -> str:
    return truncate("".join(traceback.format_exception(exc)), MAX_STACK)


def _to_reason(exc: BaseException) -> str:
    text = str(exc)
    return truncate(f"{type(exc).__name__}: {text}" if text else type(exc).__name__, MAX_MESSAGE)


class ErrorProducer(BaseProducer):
    """Report uncaught exceptions as ``error`` and ``async-error`` events.

    capture_exception() is public so framework integrations (request
    middleware, task runners) can report exceptions they handle themselves.
    """

    _name = "error"

    def __init__(self, *, dedup_window: float = DEFAULT_WINDOW_SECONDS, clock: Clock | None = None) -> None:
        super().__init__()
        self._dedup = FingerprintDeduplicator(dedup_window, clock=clock)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous_loop_handler: Callable[..., Any] | None = None

    def install(self) -> None:
        self._intercept(sys, "excepthook", self._wrap_excepthook)
        self._intercept(threading, "excepthook", self._wrap_thread_excepthook)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._loop = loop
        self._previous_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)

    def uninstall(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._previous_loop_handler)
        self._loop = None
        self._previous_loop_handler = None

    def _wrap_excepthook(self, original: Callable[..., Any]) -> Callable[..., Any]:
        def excepthook(exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
            try:
                self.capture_exception(exc, source="excepthook")
            except Exception as e:
                logger.error("Failed to report uncaught exception", error=str(e))
            original(exc_type, exc, tb)

        return excepthook

    def _wrap_thread_excepthook(self, original: Callable[..., Any]) -> Callable[..., Any]:
        def excepthook(args: Any) -> None:
            if args.exc_value is not None:
                thread_name = args.thread.name if args.thread is not None else None
                try:
                    self.capture_exception(args.exc_value, source="thread", thread=thread_name)
                except Exception as e:
                    logger.error("Failed to report thread exception", error=str(e))
            original(args)

        return excepthook

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if isinstance(exc, BaseException):
            reason = _to_reason(exc)
            stack = _format_stack(exc)
        else:
            reason = truncate(context.get("message", ""), MAX_MESSAGE)
            stack = ""
        if not self._dedup.should_suppress(fingerprint(reason, first_lines(stack, 5))):
            self._track({"type": "async-error", "reason": reason, "stack": stack})

        if self._previous_loop_handler is not None:
            self._previous_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    def capture_exception(self, exc: BaseException, **extra: Any) -> bool:
        """Report exc as an ``error`` event.

        Returns:
            True if an event was tracked, False if suppressed as a duplicate
            or the producer is not set up.
        """
        if not self.active:
            return False
        frames = traceback.extract_tb(exc.__traceback__)
        last = frames[-1] if frames else None
        message = truncate(str(exc), MAX_MESSAGE)
        filename = truncate(last.filename if last else "", MAX_FILENAME)
        lineno = (last.lineno or 0) if last else 0
        colno = (getattr(last, "colno", None) or 0) if last else 0
        stack = _format_stack(exc)

        key = fingerprint(message, basename(filename), lineno, colno, first_lines(stack, 5))
        if self._dedup.should_suppress(key):
            return False
        self._track(
            {
                "type": "error",
                "exc_type": type(exc).__name__,
                "message": message,
                "filename": filename,
                "lineno": lineno,
                "colno": colno,
                "stack": stack,
                **extra,
            }
        )
        return True
