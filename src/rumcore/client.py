# src/rumcore/client.py
"""RumClient: the public facade composing context, transport and producers.

Construction is all-or-nothing: settings are validated first, so a client
with missing identity never exists. After construction every enabled
producer is set up, and lifecycle hooks force an urgent flush when the
process is going away.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

import structlog
from pydantic import ValidationError

from rumcore.clock import Clock
from rumcore.config import RumSettings
from rumcore.context import RuntimeContext, create_runtime
from rumcore.errors import RumConfigError
from rumcore.lifecycle import LifecycleHooks
from rumcore.plugins.discovery import create_producers
from rumcore.plugins.manager import PluginManager
from rumcore.plugins.protocols import ProducerProtocol
from rumcore.transport import DeliveryStrategy, KeyValueStorage, Scheduler, Transport, running_loop
from rumcore.transport.wire import Event

logger = structlog.get_logger(__name__)

_CLIENT_OPTIONS = frozenset({"producers", "producer_plugins", "scheduler", "clock", "storage", "strategies"})


class RumClient:
    """Collect events from producers and ship them through one Transport.

    Example:
        >>> client = RumClient(RumSettings(app_id="shop", release="1.4.2", endpoint="https://rum.example.com/c"))
        >>> client.set_user_id("u-42")
        >>> client.track({"type": "custom", "name": "checkout"})
        >>> client.destroy()
    """

    def __init__(
        self,
        settings: RumSettings,
        *,
        producers: Iterable[ProducerProtocol] = (),
        producer_plugins: Iterable[Any] = (),
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        storage: KeyValueStorage | None = None,
        strategies: Sequence[DeliveryStrategy] | None = None,
    ) -> None:
        """Build the pipeline and set up producers.

        Args:
            settings: Validated client settings
            producers: Extra producer instances, registered after the built-ins
            producer_plugins: pluggy plugin objects implementing rum_get_producers
            scheduler: Timer/task scheduler for the transport
            clock: Time source for the transport
            storage: Backlog storage; overrides transport.backlog_dir
            strategies: Delivery chain; overrides the default chain

        Raises:
            ProducerDiscoveryError: If a producer plugin is invalid.
        """
        self._settings = settings
        self._context = create_runtime(settings)
        self._transport = Transport.from_settings(
            settings,
            scheduler=scheduler,
            clock=clock,
            storage=storage,
            strategies=strategies,
        )
        self._plugins = PluginManager()
        for producer in create_producers(settings.features, producer_plugins=producer_plugins):
            self._plugins.register(producer)
        for producer in producers:
            self._plugins.register(producer)
        failed = self._plugins.setup_all(self._context, self._transport)
        if failed:
            logger.warning("Some producers failed to set up", producers=failed)

        self._hooks = LifecycleHooks(self._on_exit, install_signal_handlers=settings.install_signal_handlers)
        self._hooks.install()
        self._destroyed = False
        logger.debug("rum_client_initialized", app_id=settings.app_id, producers=self._plugins.names())

    @property
    def version(self) -> str:
        from rumcore import __version__

        return __version__

    @property
    def context(self) -> RuntimeContext:
        return self._context

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def settings(self) -> RumSettings:
        return self._settings

    def producer(self, name: str) -> ProducerProtocol | None:
        """Return the registered producer called name, if any."""
        return self._plugins.get(name)

    def track(self, event: Mapping[str, Any]) -> Event:
        return self._transport.track(event)

    def flush(self, urgent: bool = False) -> None:
        """Deliver queued events in the background. Never raises delivery errors."""
        self._transport.flush_nowait(urgent=urgent)

    async def flush_async(self, urgent: bool = False) -> bool:
        """Deliver queued events and wait for the outcome.

        Returns:
            True if delivered (or nothing queued), False if persisted offline.
        """
        return await self._transport.flush(urgent=urgent)

    def set_user_id(self, user_id: str | None) -> None:
        self._context.user_id = user_id

    def set_tags(self, tags: Mapping[str, str]) -> None:
        """Merge tags into the context; keys not mentioned are kept."""
        self._context.merge_tags(tags)

    def on_event(self, callback: Callable[[Event], None]) -> Callable[[], None]:
        """Observe every tracked event. Returns an unsubscribe function."""
        return self._transport.subscribe(callback)

    def notify_hidden(self) -> None:
        """Signal that the process is going idle or away (page-hide analog)."""
        self._on_page_hide()

    def _run_hide_hooks(self) -> None:
        for name in self._plugins.names():
            producer = self._plugins.get(name)
            hook = getattr(producer, "on_page_hide", None)
            if hook is None:
                continue
            try:
                hook()
            except Exception as e:
                logger.error("Producer page-hide hook failed", producer=name, error=str(e), exc_info=True)

    def _on_page_hide(self) -> None:
        if self._destroyed:
            return
        self._run_hide_hooks()
        self._transport.flush_nowait(urgent=True)

    def _on_exit(self) -> None:
        """atexit / SIGTERM: ship or persist everything before the process goes.

        Delivery runs on this thread (threads cannot be started from atexit
        handlers), then the strategies are closed so the beacon sender
        drains what it already accepted.
        """
        if self._destroyed:
            return
        self._run_hide_hooks()
        self._transport.flush_blocking(urgent=True)
        self._transport.close()

    def destroy(self) -> None:
        """Unhook lifecycle, tear producers down newest first, flush urgently.

        Inside a running event loop the flush is spawned on that loop;
        otherwise it completes before destroy() returns. Idempotent.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._hooks.uninstall()
        failed = self._plugins.teardown_all()
        if failed:
            logger.warning("Some producers failed to tear down", producers=failed)
        if running_loop() is not None:
            self._transport.flush_nowait(urgent=True)
        else:
            self._transport.flush_blocking(urgent=True)
        self._transport.close()

    @property
    def destroyed(self) -> bool:
        return self._destroyed


def init_rum(settings: RumSettings | None = None, /, **options: Any) -> RumClient:
    """Create a RumClient from settings or from keyword options.

    Keyword options that are not RumSettings fields (producers, scheduler,
    clock, storage, strategies, producer_plugins) are passed to RumClient.

    Raises:
        RumConfigError: If the options do not form valid settings
            (for example app_id or release missing or blank).
    """
    client_kwargs = {key: options.pop(key) for key in list(options) if key in _CLIENT_OPTIONS}
    if settings is None:
        try:
            settings = RumSettings(**options)
        except ValidationError as e:
            raise RumConfigError(f"Invalid RUM configuration: {e}") from e
    elif options:
        raise RumConfigError(f"Unexpected options alongside settings: {sorted(options)}")
    return RumClient(settings, **client_kwargs)

