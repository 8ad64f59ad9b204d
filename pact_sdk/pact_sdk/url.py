"""
URL helpers for comparing recorded and live requests.

Recorded urls may be absolute or relative. Before comparison the base url
is stripped so a pact recorded against one host replays against another.
"""

import re
from typing import Any, Dict, Iterable, Optional
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from pact_sdk.errors import PactConfigError


_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


def is_absolute_url(url: Any) -> bool:
    """Check if url is an absolute http(s) url."""
    return isinstance(url, str) and bool(_ABSOLUTE_URL.match(url))


def validate_base_url(base_url: Optional[str]) -> None:
    """
    Raise PactConfigError if base_url is set but not an absolute http(s) url.

    None is accepted and means "no base url configured".
    """
    if base_url is None:
        return
    if not is_absolute_url(base_url):
        raise PactConfigError("base url", base_url)


def relative_url(url: Optional[str]) -> Optional[str]:
    """
    Return path and query of url.

    Examples:
        >>> relative_url("http://example.com/my/path?x=y")
        '/my/path?x=y'
        >>> relative_url("http://example.com")
        '/'
    """
    if not url:
        return None
    if not is_absolute_url(url):
        return url
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        return f"{path}?{parts.query}"
    if url.endswith("?"):
        return f"{path}?"
    return path


def remove_base_url(url: Optional[str], base_url: Optional[str]) -> Optional[str]:
    """
    Strip base_url from the beginning of url.

    Trailing slashes of base_url are ignored. If url equals base_url the
    result is "/". Urls not starting with base_url are returned unchanged.
    """
    if not url or not base_url:
        return url
    base = base_url.rstrip("/")
    if not base:
        return url
    if url.rstrip("/") == base:
        return "/"
    if url.startswith(base):
        rest = url[len(base):]
        if rest.startswith("/") or rest.startswith("?"):
            return rest if rest.startswith("/") else f"/{rest}"
    return url


def url_for_base_url(base_url: Optional[str], url: Optional[str]) -> Optional[str]:
    """
    Build an absolute url from base_url and a relative url.

    Any path of base_url is replaced by the path of url.
    """
    if not base_url:
        return url
    if not url:
        return base_url
    if is_absolute_url(url):
        return url
    parts = urlsplit(base_url)
    relative = url if url.startswith("/") else f"/{url}"
    return f"{parts.scheme}://{parts.netloc}{relative}"


def normalize_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Strip base_url if given, then reduce absolute urls to path and query."""
    if url is None:
        return None
    stripped = remove_base_url(url, base_url)
    if is_absolute_url(stripped):
        return relative_url(stripped)
    return stripped


def strip_url_parameters(url: Optional[str], names: Iterable[str]) -> Optional[str]:
    """
    Remove the query parameters named in names from url.

    Remaining parameters keep their order and encoding.

    Examples:
        >>> strip_url_parameters("/events?dateFrom=1&type=c8y_Test", ["dateFrom"])
        '/events?type=c8y_Test'
    """
    names = set(names or ())
    if not url or not names or "?" not in url:
        return url
    path, _, rest = url.partition("?")
    query, hash_sep, fragment = rest.partition("#")
    kept = [
        part for part in query.split("&")
        if part and unquote_plus(part.split("=", 1)[0]) not in names
    ]
    result = path + "?" + "&".join(kept) if kept else path
    return f"{result}#{fragment}" if hash_sep else result


def tenant_url(base_url: Optional[str], tenant: Optional[str]) -> Optional[str]:
    """
    Return the tenant specific url of base_url.

    The first host label is replaced with the tenant if the host has at least
    three labels, otherwise the tenant is prepended.
    """
    if not base_url or not tenant:
        return None
    parts = urlsplit(base_url)
    labels = parts.hostname.split(".") if parts.hostname else []
    if len(labels) >= 3:
        labels[0] = tenant
    else:
        labels.insert(0, tenant)
    netloc = ".".join(labels)
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, netloc, path, parts.query, ""))


def update_urls(value: str, source: Dict[str, Any], target: Dict[str, Any]) -> str:
    """
    Rewrite urls of the source system in value to urls of the target system.

    source and target are pact info style dicts with "baseUrl" and optional
    "tenant". The tenant url of source is rewritten first, then its base url.
    """
    if not value or not source or not target:
        return value
    source_base = (source.get("baseUrl") or "").rstrip("/")
    target_base = (target.get("baseUrl") or "").rstrip("/")
    if not source_base or not target_base:
        return value

    source_tenant_url = tenant_url(source_base, source.get("tenant"))
    if source_tenant_url:
        replacement = tenant_url(target_base, target.get("tenant")) or target_base
        value = value.replace(source_tenant_url, replacement)
    return value.replace(source_base, target_base)
