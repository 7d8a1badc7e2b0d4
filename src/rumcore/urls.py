# src/rumcore/urls.py
"""URL scrubbing for reported events.

Query strings are dropped unless their parameter is explicitly allowed,
so tokens and other PII in URLs never leave the process by default.
"""

from collections.abc import Collection
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def strip_url(url: str, allow_params: Collection[str], *, keep_fragment: bool = False) -> str:
    """Remove query parameters not in allow_params (and the fragment, by default).

    Unparseable input is returned as a string unchanged.

    Example:
        >>> strip_url("https://a.example/p?id=7&token=x#top", {"id"})
        'https://a.example/p?id=7'
    """
    if not url:
        return ""
    try:
        parts = urlsplit(str(url))
    except ValueError:
        return str(url)
    if allow_params:
        kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k in allow_params]
        query = urlencode(kept)
    else:
        query = ""
    fragment = parts.fragment if keep_fragment else ""
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, fragment))


def should_capture(url: str, allow_domains: Collection[str]) -> bool:
    """Whether traffic to url is in scope.

    An empty allow list captures everything; otherwise the URL's host must
    contain one of the allowed domains.
    """
    if not url:
        return False
    if not allow_domains:
        return True
    try:
        host = urlsplit(str(url)).netloc
    except ValueError:
        return False
    return any(domain in host for domain in allow_domains)
