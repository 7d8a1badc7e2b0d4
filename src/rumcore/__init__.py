# src/rumcore/__init__.py
"""
rumcore: client-side telemetry collection pipeline.

Producers observe runtime signals and hand discrete events to a single
Transport, which buffers, batches and delivers them to a remote collector
with a durable offline fallback.
"""

__version__ = "0.4.0"

from rumcore.client import RumClient, init_rum
from rumcore.context import RuntimeContext, create_runtime, reset_page
from rumcore.dedup import FingerprintDeduplicator, fingerprint
from rumcore.errors import RumConfigError, RumError
from rumcore.plugins.manager import PluginManager
from rumcore.transport import Transport

__all__ = [
    "FingerprintDeduplicator",
    "PluginManager",
    "RumClient",
    "RumConfigError",
    "RumError",
    "RuntimeContext",
    "Transport",
    "__version__",
    "create_runtime",
    "fingerprint",
    "init_rum",
    "reset_page",
]
