# src/rumcore/producers/http.py
"""Outgoing HTTP call capture for httpx.

Wraps httpx.Client.send and httpx.AsyncClient.send (every request method
funnels through send), measures each call and reports an ``api`` event.
A ``x-trace-id`` header is injected unless the caller already set one, so
client and server logs can be joined. Requests issued by the pipeline
itself carry the internal marker header and are never recorded.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any

import httpx

from rumcore.clock import DEFAULT_CLOCK, Clock
from rumcore.ids import gen_id
from rumcore.producers.base import BaseProducer, truncate
from rumcore.transport.wire import INTERNAL_HEADER
from rumcore.urls import should_capture, strip_url

TRACE_HEADER = "x-trace-id"
MAX_ERROR = 500


class HttpProducer(BaseProducer):
    """Report httpx requests as ``api`` events.

    Only hosts matching the context's allow_domains are captured (all hosts
    when the list is empty). Reported URLs keep only allowed query params.
    Exceptions from the request are reported with status 0 and re-raised
    unchanged; responses are never read or altered.
    """

    _name = "http"

    def __init__(self, *, clock: Clock | None = None) -> None:
        super().__init__()
        self._clock = clock if clock is not None else DEFAULT_CLOCK

    def install(self) -> None:
        self._intercept(httpx.Client, "send", self._wrap_sync)
        self._intercept(httpx.AsyncClient, "send", self._wrap_async)

    def _should_capture(self, request: httpx.Request) -> bool:
        if self._context is None or INTERNAL_HEADER in request.headers:
            return False
        return should_capture(str(request.url), self._context.allow_domains)

    def _prepare(self, request: httpx.Request) -> str:
        trace_id = request.headers.get(TRACE_HEADER)
        if trace_id is None:
            trace_id = gen_id()
            request.headers[TRACE_HEADER] = trace_id
        return trace_id

    def _record(
        self,
        request: httpx.Request,
        trace_id: str,
        started: float,
        *,
        response: httpx.Response | None = None,
        error: BaseException | None = None,
    ) -> None:
        if self._context is None:
            return
        event: dict[str, Any] = {
            "type": "api",
            "url": strip_url(str(request.url), self._context.allow_params),
            "method": request.method.upper(),
            "dur": round((self._clock.monotonic() - started) * 1000, 3),
            "traceId": trace_id,
        }
        if response is not None:
            event["status"] = response.status_code
            event["ok"] = response.is_success
        else:
            event["status"] = 0
            event["error"] = truncate(error, MAX_ERROR)
        self._track(event)

    def _wrap_sync(self, original: Callable[..., httpx.Response]) -> Callable[..., httpx.Response]:
        producer = self

        @functools.wraps(original)
        def send(client: httpx.Client, request: httpx.Request, **kwargs: Any) -> httpx.Response:
            if not producer._should_capture(request):
                return original(client, request, **kwargs)
            trace_id = producer._prepare(request)
            started = producer._clock.monotonic()
            try:
                response = original(client, request, **kwargs)
            except Exception as e:
                producer._record(request, trace_id, started, error=e)
                raise
            producer._record(request, trace_id, started, response=response)
            return response

        return send

    def _wrap_async(self, original: Callable[..., Any]) -> Callable[..., Any]:
        producer = self

        @functools.wraps(original)
        async def send(client: httpx.AsyncClient, request: httpx.Request, **kwargs: Any) -> httpx.Response:
            if not producer._should_capture(request):
                return await original(client, request, **kwargs)
            trace_id = producer._prepare(request)
            started = producer._clock.monotonic()
            try:
                response = await original(client, request, **kwargs)
            except Exception as e:
                producer._record(request, trace_id, started, error=e)
                raise
            producer._record(request, trace_id, started, response=response)
            return response

        return send
