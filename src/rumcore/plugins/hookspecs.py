# src/rumcore/plugins/hookspecs.py
"""pluggy hook specifications for producer plugins.

Usage (shipping a producer from another package):
    from rumcore.plugins.hookspecs import hookimpl

    class MyProducerPlugin:
        @hookimpl
        def rum_get_producers(self):
            return [QueueDepthProducer]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from rumcore.plugins.protocols import ProducerProtocol

PROJECT_NAME = "rumcore"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class RumProducerSpec:
    """Hook specifications for producer plugins."""

    @hookspec
    def rum_get_producers(self) -> list[type["ProducerProtocol"]]:  # type: ignore[empty-body]
        """Return producer classes (not instances).

        Classes must be constructible without arguments. The client
        instantiates the built-ins enabled in FeatureSettings plus every
        producer contributed by additional plugins.
        """
