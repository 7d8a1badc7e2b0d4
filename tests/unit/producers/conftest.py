# tests/unit/producers/conftest.py
"""Fixtures for producer tests: a local-mode transport with an event tap."""

import pytest

from rumcore.context import RuntimeContext
from rumcore.transport import Transport


class Pipeline:
    """Context + local-mode transport + list of every tracked event."""

    def __init__(self, context: RuntimeContext, transport: Transport) -> None:
        self.context = context
        self.transport = transport
        self.events: list = []
        transport.subscribe(self.events.append)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e["type"] == event_type]


@pytest.fixture
def make_pipeline(scheduler, clock):
    def _make(**context_kwargs) -> Pipeline:
        context = RuntimeContext("shop", "1.4.2", **context_kwargs)
        transport = Transport(app_id="shop", release="1.4.2", scheduler=scheduler, clock=clock, strategies=[])
        return Pipeline(context, transport)

    return _make


@pytest.fixture
def pipeline(make_pipeline) -> Pipeline:
    return make_pipeline()
