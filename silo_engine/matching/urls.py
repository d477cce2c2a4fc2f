"""
URL parsing and normalization helpers.

Hosts are canonicalized to lowercase ASCII. Internationalized labels are
encoded to punycode with the ``idna`` package so that ``münchen.de`` in a rule
and ``xn--mnchen-3ya.de`` in a navigation URL compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

import idna

DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}


@dataclass(frozen=True, slots=True)
class ParsedUrl:
    """
    A URL split into canonical components.

    Attributes
    ----------
    scheme:
        Lowercased scheme without ``:``.
    host:
        Canonical host (lowercase, punycode, no trailing dot).
    port:
        Explicit port, or ``None`` when absent or equal to the scheme default.
    path, query, fragment:
        Raw, case-preserved components.
    """

    scheme: str
    host: str
    port: int | None
    path: str
    query: str
    fragment: str

    @property
    def authority(self) -> str:
        """Return ``host[:port]`` with IPv6 literals bracketed."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return host if self.port is None else f"{host}:{self.port}"


def canonical_host(raw: str) -> str:
    """
    Canonicalize a hostname.

    Parameters
    ----------
    raw:
        Hostname as found in a URL or pattern.

    Returns
    -------
    str
        Lowercased host with any trailing dot removed. Non-ASCII hosts are
        IDNA-encoded; hosts that IDNA rejects are returned lowercased.
    """
    host = raw.strip().rstrip(".").lower()
    if host.isascii():
        return host
    try:
        return idna.encode(host, uts46=True).decode("ascii")
    except idna.IDNAError:
        return host


def parse_url(url: str) -> ParsedUrl:
    """
    Parse an absolute URL.

    Raises
    ------
    ValueError
        If the URL has no scheme or host, or carries an invalid port.
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Not an absolute URL: {url!r}")
    scheme = parts.scheme.lower()
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(scheme) == port:
        port = None
    return ParsedUrl(
        scheme=scheme,
        host=canonical_host(parts.hostname),
        port=port,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
    )


def is_absolute_url(value: str) -> bool:
    """Return True if ``value`` parses as an absolute URL."""
    try:
        parse_url(value)
    except ValueError:
        return False
    return True


def normalize_url(url: str) -> str:
    """
    Return the comparison form of an absolute URL.

    Scheme and host are lowercased, default ports dropped and trailing slashes
    stripped from the path. Path, query and fragment keep their case.

    Raises
    ------
    ValueError
        If ``url`` is not an absolute URL.
    """
    parsed = parse_url(url)
    out = f"{parsed.scheme}://{parsed.authority}{parsed.path.rstrip('/')}"
    if parsed.query:
        out += f"?{parsed.query}"
    if parsed.fragment:
        out += f"#{parsed.fragment}"
    return out


def hostname_of(url: str) -> str | None:
    """Return the canonical host of ``url``, or None if it cannot be parsed."""
    try:
        return parse_url(url).host
    except ValueError:
        return None
