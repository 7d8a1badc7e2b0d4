# src/rumcore/producers/base.py
"""Shared plumbing for the built-in producers.

BaseProducer keeps everything a producer installs on the instance: the
context and transport it was set up with, and the interceptors it must
undo. Subclasses implement install() and, when they hold state beyond
interceptors, uninstall().
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from rumcore.intercept import Interceptor

if TYPE_CHECKING:
    from rumcore.context import RuntimeContext
    from rumcore.transport import Transport


def truncate(value: Any, limit: int) -> str:
    """str() of value cut to at most limit characters; None becomes ''."""
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    return text[:limit]


class BaseProducer:
    """Base class for producers with reversible installation."""

    _name: str = ""

    def __init__(self) -> None:
        self._context: RuntimeContext | None = None
        self._transport: Transport | None = None
        self._interceptors: list[Interceptor] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        """True between setup() and teardown()."""
        return self._transport is not None

    def setup(self, context: RuntimeContext, transport: Transport) -> None:
        self._context = context
        self._transport = transport
        transport.track({"type": "__plugin_loaded", "plugin": self._name})
        self.install()

    def install(self) -> None:
        """Attach hooks. Called by setup() once context and transport are set."""

    def uninstall(self) -> None:
        """Undo state not covered by interceptors. Called by teardown()."""

    def teardown(self) -> None:
        try:
            for interceptor in reversed(self._interceptors):
                if interceptor.installed:
                    interceptor.restore()
            self.uninstall()
        finally:
            self._interceptors.clear()
            self._context = None
            self._transport = None

    def _intercept(self, owner: Any, attribute: str, factory: Callable[[Any], Any]) -> Interceptor:
        interceptor = Interceptor(owner, attribute, factory)
        interceptor.install()
        self._interceptors.append(interceptor)
        return interceptor

    def _track(self, event: dict[str, Any]) -> None:
        """Track event tagged with the current pageId; no-op when inactive."""
        if self._transport is None or self._context is None:
            return
        self._transport.track({**event, "pageId": self._context.page_id})
