# src/rumcore/plugins/protocols.py
"""Protocol definitions for event producers.

A producer observes some runtime signal (uncaught exceptions, outgoing HTTP
calls, navigation, log records) and reports what it sees through
``transport.track``.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rumcore.context import RuntimeContext
    from rumcore.transport import Transport


@runtime_checkable
class ProducerProtocol(Protocol):
    """Protocol for producers managed by the PluginManager.

    Lifecycle:
        1. Discovery: rum_get_producers hook returns producer classes
        2. Registration: PluginManager.register(), first name wins
        3. setup(context, transport): attach hooks, start tracking
        4. teardown(): optional; reverse every side effect of setup

    Optional hooks (looked up with getattr, not part of the protocol check):
        teardown() -> None
        on_page_hide() -> None: called just before the lifecycle urgent flush

    Error handling:
        - setup()/teardown() failures are isolated by the PluginManager
        - a producer must keep its install state on the instance, never in
          module globals, so independent clients never share hooks
    """

    @property
    def name(self) -> str:
        """Unique producer name, also its feature switch name."""
        ...

    def setup(self, context: "RuntimeContext", transport: "Transport") -> None:
        """Install hooks and begin calling transport.track()."""
        ...
