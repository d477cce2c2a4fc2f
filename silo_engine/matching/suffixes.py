"""Public-suffix lookups backed by ``tldextract``'s bundled snapshot (no network)."""

from __future__ import annotations

from functools import lru_cache

import tldextract


@lru_cache(maxsize=1)
def _extractor() -> tldextract.TLDExtract:
    # Offline: never fetch the live list and never write a cache directory.
    return tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def public_suffix(host: str) -> str:
    """Return the public suffix of ``host`` (``"co.uk"`` for ``a.b.co.uk``), or ``""``."""
    return _extractor()(host).suffix


def is_public_suffix(host: str) -> bool:
    """True when ``host`` is itself a public suffix such as ``com`` or ``co.uk``."""
    ext = _extractor()(host)
    return bool(ext.suffix) and not ext.domain and not ext.subdomain
