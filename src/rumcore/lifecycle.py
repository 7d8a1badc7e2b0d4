# src/rumcore/lifecycle.py
"""Process lifecycle hooks: the server-side rendition of page-hide.

atexit is always registered. A SIGTERM handler is installed only on
request and only from the main thread (signal.signal raises ValueError
elsewhere). The previous SIGTERM disposition is chained and restored on
uninstall.
"""

from __future__ import annotations

import atexit
import signal
import threading
from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class LifecycleHooks:
    """Call on_hide when the process is about to go away.

    Example:
        hooks = LifecycleHooks(client_flush, install_signal_handlers=True)
        hooks.install()
        ...
        hooks.uninstall()
    """

    def __init__(self, on_hide: Callable[[], None], *, install_signal_handlers: bool = False) -> None:
        self._on_hide = on_hide
        self._install_signal_handlers = install_signal_handlers
        self._installed = False
        self._signal_installed = False
        self._previous_sigterm: Any = None

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def signal_installed(self) -> bool:
        return self._signal_installed

    def install(self) -> None:
        if self._installed:
            return
        atexit.register(self._fire)
        self._installed = True

        if not self._install_signal_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("SIGTERM handler skipped outside main thread")
            return
        self._previous_sigterm = signal.getsignal(signal.SIGTERM)
        signal.signal(signal.SIGTERM, self._on_sigterm)
        self._signal_installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        atexit.unregister(self._fire)
        self._installed = False

        if self._signal_installed:
            # Leave a handler installed by someone else after us in place
            if signal.getsignal(signal.SIGTERM) == self._on_sigterm:
                previous = self._previous_sigterm if self._previous_sigterm is not None else signal.SIG_DFL
                signal.signal(signal.SIGTERM, previous)
            self._signal_installed = False
            self._previous_sigterm = None

    def _fire(self) -> None:
        try:
            self._on_hide()
        except Exception as e:
            logger.error("Lifecycle hook failed", error=str(e), exc_info=True)

    def _on_sigterm(self, signum: int, frame: Any) -> None:
        self._fire()
        previous = self._previous_sigterm
        if callable(previous):
            previous(signum, frame)
            return
        if previous == signal.SIG_IGN:
            return
        raise SystemExit(128 + signum)
