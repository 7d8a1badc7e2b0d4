# src/rumcore/intercept.py
"""Reversible interception of functions owned by other code.

Producers observe the runtime by wrapping hooks they do not own
(sys.excepthook, httpx.Client.send, ...). An Interceptor always keeps the
original so teardown can restore it exactly, and holds that state on the
instance so two clients never share it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from rumcore.errors import InterceptorError

logger = structlog.get_logger(__name__)

_MISSING = object()


class Interceptor:
    """Replace ``owner.attribute`` with a wrapper built around the original.

    Example:
        def wrap(original):
            def excepthook(exc_type, exc, tb):
                report(exc)
                original(exc_type, exc, tb)
            return excepthook

        hook = Interceptor(sys, "excepthook", wrap)
        hook.install()
        ...
        hook.restore()  # sys.excepthook is the original object again
    """

    def __init__(self, owner: Any, attribute: str, factory: Callable[[Any], Any]) -> None:
        """Prepare an interception.

        Args:
            owner: Module, class or object holding the attribute
            attribute: Attribute name to replace
            factory: Called with the original value; returns the replacement
        """
        self._owner = owner
        self._attribute = attribute
        self._factory = factory
        self._original: Any = _MISSING
        self._own_attribute = False
        self._wrapper: Any = None
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def original(self) -> Any:
        if self._original is _MISSING:
            raise InterceptorError(f"{self._describe()} is not installed")
        return self._original

    def _describe(self) -> str:
        owner_name = getattr(self._owner, "__name__", type(self._owner).__name__)
        return f"interceptor for {owner_name}.{self._attribute}"

    def install(self) -> None:
        """Install the wrapper.

        Raises:
            InterceptorError: If already installed.
        """
        if self._installed:
            raise InterceptorError(f"{self._describe()} already installed")
        try:
            self._own_attribute = self._attribute in vars(self._owner)
        except TypeError:
            self._own_attribute = True
        self._original = getattr(self._owner, self._attribute)
        self._wrapper = self._factory(self._original)
        setattr(self._owner, self._attribute, self._wrapper)
        self._installed = True

    def restore(self) -> None:
        """Put the original back.

        An attribute that was inherited rather than owned is deleted again,
        so lookups fall through to the parent exactly as before.

        Raises:
            InterceptorError: If not installed.
        """
        if not self._installed:
            raise InterceptorError(f"{self._describe()} is not installed")
        current = getattr(self._owner, self._attribute, _MISSING)
        if current is not self._wrapper:
            logger.warning("Intercepted attribute replaced by someone else, restoring original anyway", target=self._describe())
        if self._own_attribute:
            setattr(self._owner, self._attribute, self._original)
        else:
            delattr(self._owner, self._attribute)
        self._installed = False
        self._wrapper = None
        self._original = _MISSING
