"""
Bookmark-container association.

A bookmark URL may carry a reserved query parameter (``silo=<cookieStoreId>``)
that pins it to a container regardless of rule matching. The association is
checked by the caller before the resolver runs; it never takes part in rule
resolution itself.

The legacy parameter ``containerize`` is understood on read and removed on
write.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import SplitResult, quote, unquote_plus, urlsplit, urlunsplit

from .data_models import Container

BOOKMARK_PARAM = "silo"
LEGACY_BOOKMARK_PARAMS: tuple[str, ...] = ("containerize",)


def _split(url: str, param: str) -> tuple[SplitResult, list[str], str | None, bool]:
    """
    Separate the association parameters from the rest of the query.

    Other query segments are kept byte-for-byte so a re-encoded bookmark still
    opens the same page.
    """
    parts = urlsplit(url)
    reserved = (param, *LEGACY_BOOKMARK_PARAMS)
    kept: list[str] = []
    found: dict[str, str] = {}
    removed = False
    for segment in parts.query.split("&") if parts.query else ():
        raw_key, _, raw_value = segment.partition("=")
        key = unquote_plus(raw_key)
        if key in reserved:
            found.setdefault(key, unquote_plus(raw_value))
            removed = True
        else:
            kept.append(segment)
    hint = next((found[k] for k in reserved if found.get(k, "").strip()), None)
    return parts, kept, hint, removed


def _join(parts: SplitResult, segments: list[str]) -> str:
    return urlunsplit(parts._replace(query="&".join(segments)))


def encode(url: str, container_id: str | None, *, param: str = BOOKMARK_PARAM) -> str:
    """
    Add, update or remove the container association on ``url``.

    Parameters
    ----------
    url:
        Bookmark URL.
    container_id:
        cookieStoreId to pin, or None to remove any association.
    param:
        Query parameter name.

    Returns
    -------
    str
        URL with exactly one association parameter (or none). Other query
        segments are kept unchanged and in order.
    """
    parts, segments, _, _ = _split(url, param)
    if container_id is not None and container_id.strip():
        segments.append(f"{quote(param, safe='')}={quote(container_id.strip(), safe='')}")
    return _join(parts, segments)


def decode(url: str, *, param: str = BOOKMARK_PARAM) -> str | None:
    """Return the container id pinned on ``url``, or None."""
    _, _, hint, _ = _split(url, param)
    return hint.strip() if hint else None


def strip(url: str, *, param: str = BOOKMARK_PARAM) -> tuple[str, str | None]:
    """
    Remove the association from ``url``.

    Returns
    -------
    tuple[str, str | None]
        ``(clean_url, hint)``. ``hint`` is the raw value that was pinned, which
        may be a cookieStoreId or a container name.
    """
    parts, segments, hint, removed = _split(url, param)
    if not removed:
        return url, None
    return _join(parts, segments), hint.strip() if hint else None


def resolve_container_hint(hint: str | None, containers: Iterable[Container]) -> Container | None:
    """
    Resolve a bookmark hint to a container.

    The hint is matched against cookieStoreIds first, then against container
    names (case-insensitive).
    """
    if not hint or not hint.strip():
        return None
    wanted = hint.strip()
    candidates = list(containers)
    for container in candidates:
        if container.cookie_store_id == wanted:
            return container
    folded = wanted.casefold()
    for container in candidates:
        if container.name.strip().casefold() == folded:
            return container
    return None


def prune_stale(url: str, live_container_ids: Iterable[str], *, param: str = BOOKMARK_PARAM) -> str:
    """
    Drop the association from ``url`` when its container no longer exists.

    URLs without an association, or pinned to a live container, are returned
    unchanged.
    """
    pinned = decode(url, param=param)
    if pinned is None or pinned in set(live_container_ids):
        return url
    return encode(url, None, param=param)
