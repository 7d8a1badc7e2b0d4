# src/rumcore/plugins/__init__.py
"""Producer plugin system: protocol, lifecycle manager and pluggy discovery."""

from rumcore.plugins.hookspecs import hookimpl
from rumcore.plugins.manager import PluginManager
from rumcore.plugins.protocols import ProducerProtocol

__all__ = [
    "PluginManager",
    "ProducerProtocol",
    "hookimpl",
]
