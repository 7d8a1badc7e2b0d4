# src/rumcore/producers/__init__.py
"""Built-in producers.

BuiltinProducersPlugin exposes them through the ``rum_get_producers`` hook
so discovery treats built-ins and third-party producers the same way.
"""

from typing import Any

from rumcore.plugins.hookspecs import hookimpl
from rumcore.producers.base import BaseProducer
from rumcore.producers.console import ConsoleProducer
from rumcore.producers.errors import ErrorProducer
from rumcore.producers.http import HttpProducer
from rumcore.producers.route import RouteProducer

BUILTIN_PRODUCER_NAMES: frozenset[str] = frozenset(
    {ErrorProducer._name, HttpProducer._name, RouteProducer._name, ConsoleProducer._name}
)


class BuiltinProducersPlugin:
    """Hook implementer for the producers shipped with rumcore."""

    @hookimpl
    def rum_get_producers(self) -> list[type[Any]]:
        return [ErrorProducer, HttpProducer, RouteProducer, ConsoleProducer]


__all__ = [
    "BUILTIN_PRODUCER_NAMES",
    "BaseProducer",
    "BuiltinProducersPlugin",
    "ConsoleProducer",
    "ErrorProducer",
    "HttpProducer",
    "RouteProducer",
]
