# src/rumcore/errors.py
"""rumcore exceptions.

Delivery problems are never raised to callers of track/flush; they are
resolved inside the transport. These exceptions cover configuration and
wiring mistakes, which must fail loudly.
"""


class RumError(Exception):
    """Base class for rumcore errors."""


class RumConfigError(RumError, ValueError):
    """Raised when the client cannot be built from the given settings.

    Missing ``app_id`` or ``release`` ends up here. The client is never
    returned in a partially initialized state.
    """


class ProducerDiscoveryError(RumError):
    """Raised when a producer plugin is invalid or declares a duplicate name.

    Attributes:
        plugin_name: Name of the offending plugin or producer
        message: Human-readable error description
    """

    def __init__(self, plugin_name: str, message: str) -> None:
        self.plugin_name = plugin_name
        self.message = message
        super().__init__(f"Producer plugin '{plugin_name}' invalid: {message}")


class InterceptorError(RumError):
    """Raised on double install, or restore without a prior install."""
