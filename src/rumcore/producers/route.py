# src/rumcore/producers/route.py
"""Logical page (route) tracking.

Python processes have no address bar, so navigation is reported
explicitly: a web app calls navigate() when it starts serving a new
logical page, a CLI when it enters a new screen or phase. Each
navigation closes the current page with ``route-leave``, starts a new
pageId and opens the next page with ``pv``.
"""

from __future__ import annotations

from rumcore.clock import DEFAULT_CLOCK, Clock
from rumcore.context import reset_page
from rumcore.producers.base import BaseProducer, truncate
from rumcore.urls import strip_url

MAX_TITLE = 200


class RouteProducer(BaseProducer):
    """Report page views and page durations.

    URLs keep their fragment; query parameters are filtered by the
    context's allow_params.
    """

    _name = "route"

    def __init__(self, initial_url: str = "", *, title: str = "", referrer: str = "", clock: Clock | None = None) -> None:
        super().__init__()
        self._initial_url = initial_url
        self._initial_title = title
        self._referrer = referrer
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._current_url = ""
        self._started = 0.0
        self._closed = False

    @property
    def current_url(self) -> str:
        return self._current_url

    def _strip(self, url: str) -> str:
        allow = self._context.allow_params if self._context is not None else ()
        return strip_url(url, allow, keep_fragment=True)

    def _elapsed_ms(self) -> float:
        return round((self._clock.monotonic() - self._started) * 1000, 3)

    def install(self) -> None:
        self._current_url = self._strip(self._initial_url)
        self._started = self._clock.monotonic()
        self._closed = False
        self._track(
            {
                "type": "pv",
                "url": self._current_url,
                "referrer": self._strip(self._referrer),
                "title": truncate(self._initial_title, MAX_TITLE),
            }
        )

    def navigate(self, url: str, title: str = "") -> bool:
        """Move to url.

        Returns:
            True if a navigation was recorded; False when inactive, when url
            is empty, or when it equals the current page.
        """
        if not self.active:
            return False
        next_url = self._strip(url)
        if not next_url or next_url == self._current_url:
            return False

        self._track({"type": "route-leave", "url": self._current_url, "dur": self._elapsed_ms()})
        assert self._context is not None
        reset_page(self._context)
        previous = self._current_url
        self._current_url = next_url
        self._started = self._clock.monotonic()
        self._closed = False
        self._track({"type": "pv", "url": next_url, "referrer": previous, "title": truncate(title, MAX_TITLE)})
        return True

    def hide(self) -> None:
        """Close the current page once, ahead of the lifecycle flush."""
        if not self.active or self._closed:
            return
        self._closed = True
        self._track({"type": "route-leave", "url": self._current_url, "dur": self._elapsed_ms(), "reason": "hidden"})

    on_page_hide = hide

    def uninstall(self) -> None:
        self._closed = True
