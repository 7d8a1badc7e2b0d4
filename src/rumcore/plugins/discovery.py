# src/rumcore/plugins/discovery.py
"""Producer discovery via pluggy hooks.

Glue between FeatureSettings and concrete producer instances:
1. Register the built-in producers plus any caller-supplied plugin objects
2. Call ``rum_get_producers`` hooks to build the name -> class registry
3. Instantiate the enabled built-ins and every extra producer
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from rumcore.config import FeatureSettings
from rumcore.errors import ProducerDiscoveryError
from rumcore.plugins.hookspecs import PROJECT_NAME, RumProducerSpec
from rumcore.plugins.protocols import ProducerProtocol
from rumcore.producers import BUILTIN_PRODUCER_NAMES, BuiltinProducersPlugin

logger = structlog.get_logger(__name__)


def _resolve_producer_name(producer_class: type[ProducerProtocol]) -> str:
    """Resolve a producer's name from its class-level ``_name``.

    Raises:
        ProducerDiscoveryError: If ``_name`` is missing or not a non-empty string.
    """
    class_name = getattr(producer_class, "__name__", repr(producer_class))
    name = getattr(producer_class, "_name", None)
    if type(name) is not str or name == "":
        raise ProducerDiscoveryError(
            class_name,
            f"Producer class attribute _name must be a non-empty string, got {name!r}",
        )
    return name


def discover_producer_registry(
    producer_plugins: Iterable[Any] = (),
) -> dict[str, type[ProducerProtocol]]:
    """Discover producer classes via pluggy hooks.

    Args:
        producer_plugins: Optional additional plugin objects implementing
            ``rum_get_producers``.

    Returns:
        Mapping of producer name to producer class, built-ins first.

    Raises:
        ProducerDiscoveryError: If plugin registration fails, a hook returns
            something other than an iterable of classes, or two classes
            declare the same name.
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(RumProducerSpec)

    plugins_to_register: list[Any] = [BuiltinProducersPlugin(), *list(producer_plugins)]
    for plugin in plugins_to_register:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # PluginValidationError: hook spec mismatch; ValueError: duplicate plugin
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise ProducerDiscoveryError(type(plugin).__name__, str(e)) from e

    registry: dict[str, type[ProducerProtocol]] = {}
    # Hook impls are returned in registration order: built-ins come first
    for hook_impl in plugin_manager.hook.rum_get_producers.get_hookimpls():
        hook_plugin: Any = hook_impl.plugin
        plugin_name = type(hook_plugin).__name__
        hook_fn = getattr(hook_plugin, "rum_get_producers", None)
        if not callable(hook_fn):
            raise ProducerDiscoveryError(plugin_name, "missing callable rum_get_producers hook")
        try:
            producers = hook_fn()
        except Exception as e:
            raise ProducerDiscoveryError(plugin_name, f"rum_get_producers failed: {e}") from e

        if producers is None or type(producers) in (str, bytes):
            raise ProducerDiscoveryError(
                plugin_name,
                f"rum_get_producers returned {type(producers).__name__}; expected iterable of producer classes",
            )
        try:
            producer_iter = iter(producers)
        except TypeError as e:
            raise ProducerDiscoveryError(
                plugin_name,
                f"rum_get_producers returned {type(producers).__name__}; expected iterable of producer classes",
            ) from e

        for producer_class in producer_iter:
            name = _resolve_producer_name(producer_class)
            if name in registry:
                raise ProducerDiscoveryError(
                    name,
                    f"Duplicate producer name '{name}' discovered: {registry[name].__name__} and {producer_class.__name__}",
                )
            registry[name] = producer_class

    return registry


def create_producers(
    features: FeatureSettings,
    *,
    producer_plugins: Iterable[Any] = (),
) -> list[ProducerProtocol]:
    """Instantiate the enabled built-in producers and all plugin-provided ones.

    Built-ins follow FeatureSettings order; plugin producers follow in
    discovery order.
    """
    registry = discover_producer_registry(producer_plugins)
    enabled = features.enabled()

    producers: list[ProducerProtocol] = []
    for name in enabled:
        producers.append(registry[name]())
    for name, producer_class in registry.items():
        if name in BUILTIN_PRODUCER_NAMES:
            continue
        producers.append(producer_class())

    logger.debug("producers_created", producers=[p.name for p in producers])
    return producers
