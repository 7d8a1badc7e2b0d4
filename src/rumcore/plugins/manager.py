# src/rumcore/plugins/manager.py
"""PluginManager: registration and lifecycle of producers.

Guarantees:
- at most one registration per producer name (first registration wins)
- setup in registration order, teardown in reverse order
- one producer failing never stops the others
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from rumcore.context import RuntimeContext
    from rumcore.plugins.protocols import ProducerProtocol
    from rumcore.transport import Transport

logger = structlog.get_logger(__name__)


class PluginManager:
    """Ordered registry of producers with failure-isolated lifecycle.

    setup_all/teardown_all are synchronous: if a producer starts async work
    internally, the manager does not wait for it.

    Example:
        manager = PluginManager()
        manager.register(ErrorProducer())
        manager.register(RouteProducer("https://app.example.com/"))
        manager.setup_all(context, transport)
        ...
        manager.teardown_all()  # route first, then error
    """

    def __init__(self) -> None:
        self._producers: list[ProducerProtocol] = []
        self._names: set[str] = set()

    def register(self, producer: Any) -> bool:
        """Append producer to the registration order.

        Producers without a usable name, and names already registered, are
        skipped with a warning.

        Returns:
            True if the producer was registered.
        """
        name = getattr(producer, "name", None)
        if not isinstance(name, str) or not name:
            logger.warning("Invalid producer ignored", producer=repr(producer))
            return False
        if name in self._names:
            logger.warning("Producer already registered, skipping", producer=name)
            return False
        self._producers.append(producer)
        self._names.add(name)
        return True

    def setup_all(self, context: RuntimeContext, transport: Transport) -> list[str]:
        """Set up every registered producer in registration order.

        Returns:
            Names of producers whose setup raised.
        """
        failed: list[str] = []
        for producer in list(self._producers):
            try:
                producer.setup(context, transport)
            except Exception as e:
                failed.append(producer.name)
                logger.error("Producer setup failed", producer=producer.name, error=str(e), exc_info=True)
        return failed

    def teardown_all(self) -> list[str]:
        """Tear producers down newest first, then clear the registry.

        Producers without a teardown hook are skipped. The manager can be
        reused afterwards.

        Returns:
            Names of producers whose teardown raised.
        """
        failed: list[str] = []
        for producer in reversed(self._producers):
            teardown = getattr(producer, "teardown", None)
            if teardown is None:
                continue
            try:
                teardown()
            except Exception as e:
                failed.append(producer.name)
                logger.error("Producer teardown failed", producer=producer.name, error=str(e), exc_info=True)
        self._producers.clear()
        self._names.clear()
        return failed

    def has(self, name: str) -> bool:
        return name in self._names

    def names(self) -> list[str]:
        """Registered producer names, in registration order."""
        return [p.name for p in self._producers]

    def get(self, name: str) -> ProducerProtocol | None:
        for producer in self._producers:
            if producer.name == name:
                return producer
        return None

    def __len__(self) -> int:
        return len(self._producers)
