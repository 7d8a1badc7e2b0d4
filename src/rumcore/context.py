# src/rumcore/context.py
"""Per-session runtime context shared by all producers.

The context identifies one monitored session/page pairing. Identity
(app_id, release, env, session_id) and the URL allow-lists are fixed at
construction; page_id is replaced once per detected navigation, and tags
are merged, never replaced.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from rumcore.ids import gen_id

if TYPE_CHECKING:
    from rumcore.config import RumSettings


class RuntimeContext:
    """Identity and configuration for one monitored session.

    Producers read the context; only the route producer (via reset_page)
    and the client facade (tags, user id) mutate it.
    """

    __slots__ = (
        "_allow_domains",
        "_allow_params",
        "_app_id",
        "_env",
        "_page_id",
        "_release",
        "_sample_rate",
        "_session_id",
        "_tags",
        "user_id",
    )

    def __init__(
        self,
        app_id: str,
        release: str,
        *,
        env: str = "prod",
        sample_rate: float = 1.0,
        allow_domains: Iterable[str] = (),
        allow_params: Iterable[str] = (),
        session_id: str | None = None,
        page_id: str | None = None,
    ) -> None:
        self._app_id = app_id
        self._release = release
        self._env = env
        self._sample_rate = sample_rate
        self._allow_domains = frozenset(allow_domains)
        self._allow_params = frozenset(allow_params)
        self._session_id = session_id or gen_id()
        self._page_id = page_id or gen_id()
        self._tags: dict[str, str] = {}
        self.user_id: str | None = None

    @property
    def app_id(self) -> str:
        return self._app_id

    @property
    def release(self) -> str:
        return self._release

    @property
    def env(self) -> str:
        return self._env

    @property
    def sample_rate(self) -> float:
        return self._sample_rate

    @property
    def session_id(self) -> str:
        """Stable for the lifetime of the process."""
        return self._session_id

    @property
    def page_id(self) -> str:
        return self._page_id

    @property
    def allow_domains(self) -> frozenset[str]:
        """Hosts whose traffic is captured. Empty means capture all."""
        return self._allow_domains

    @property
    def allow_params(self) -> frozenset[str]:
        """Query parameters kept in reported URLs. Empty means strip all."""
        return self._allow_params

    @property
    def tags(self) -> Mapping[str, str]:
        return MappingProxyType(self._tags)

    def merge_tags(self, tags: Mapping[str, str]) -> None:
        """Merge tags into the context; existing keys are overwritten."""
        self._tags.update({str(k): str(v) for k, v in tags.items()})

    def reset_page(self) -> str:
        """Replace page_id with a freshly generated id and return it."""
        self._page_id = gen_id()
        return self._page_id

    def __repr__(self) -> str:
        return (
            f"RuntimeContext(app_id={self._app_id!r}, release={self._release!r}, env={self._env!r}, "
            f"session_id={self._session_id!r}, page_id={self._page_id!r})"
        )


def create_runtime(settings: RumSettings) -> RuntimeContext:
    """Build a RuntimeContext from validated settings.

    Fresh session and page ids are generated; defaults (env="prod",
    sample_rate=1.0) come from the settings model.
    """
    return RuntimeContext(
        settings.app_id,
        settings.release,
        env=settings.env,
        sample_rate=settings.sample_rate,
        allow_domains=settings.allow_domains,
        allow_params=settings.allow_url_params,
    )


def reset_page(ctx: RuntimeContext) -> str:
    """Start a new logical page on ctx. Call once per detected navigation."""
    return ctx.reset_page()
