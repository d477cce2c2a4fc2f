"""
Pattern compilation for the four rule grammars.

Grammars
--------
exact
    An absolute URL. Equality after normalization: scheme and host are
    case-insensitive, default ports and trailing slashes are ignored, path,
    query and fragment are case-sensitive.
domain
    A bare hostname (``example.com``) or a wildcard (``*.example.com``). The bare
    form matches that host only; the wildcard form matches the host itself and
    any subdomain.
glob
    ``*`` matches any run of characters including ``/``, ``?`` exactly one
    character. Everything else is literal. Anchored at both ends, case-insensitive.
regex
    Used verbatim (case-insensitive). Anchored by the engine only when the
    pattern has no ``^``/``$``/``\\A``/``\\Z`` of its own. Unsafe shapes are rejected
    and each evaluation is timed, see :mod:`silo_engine.matching.regex_safety`.

For non-domain rules a leading ``@`` forces regex and a leading ``!`` forces glob.
Domain rules ignore these markers.

Invariants
----------
- Compilation is the only place patterns are validated; it raises
  :class:`InvalidPatternError` with a reason suitable for a rule editor.
- A compiled predicate never raises for an unparsable URL; it returns False.
  Regex predicates may raise :class:`PatternEvaluationTimeout`.
"""

from __future__ import annotations

import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

from ..clock import Clock, SystemClock
from ..data_models import MatchType
from ..errors import InvalidPatternError
from .regex_safety import (
    DEFAULT_MAX_REGEX_LENGTH,
    DEFAULT_TIME_BUDGET_SECONDS,
    screen_regex,
    timed_match,
)
from .suffixes import public_suffix
from .urls import canonical_host, hostname_of, is_absolute_url, normalize_url

Predicate = Callable[[str], bool]

REGEX_PREFIX = "@"
GLOB_PREFIX = "!"

_HOST_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_REGEX_METACHARS = re.compile(r"[+^${}()|\[\]\\]")
_IPV4 = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_GLOBAL_FLAGS = re.compile(r"^(?:\(\?[aiLmsux]+\))+")


@dataclass(frozen=True, slots=True)
class MatcherOptions:
    """
    Tunables for pattern compilation and evaluation.

    Attributes
    ----------
    time_budget:
        Seconds a single regex evaluation may take before it is discarded.
    max_regex_length:
        Longest accepted regex pattern, in characters.
    clock:
        Time source for the regex guard.
    """

    time_budget: float = DEFAULT_TIME_BUDGET_SECONDS
    max_regex_length: int = DEFAULT_MAX_REGEX_LENGTH
    clock: Clock = field(default_factory=SystemClock)


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    """A compiled ``(pattern, match_type)`` pair."""

    pattern: str
    match_type: MatchType
    effective_type: MatchType
    predicate: Predicate

    def __call__(self, url: str) -> bool:
        return self.predicate(url)


def coerce_match_type(value: MatchType | str) -> MatchType:
    """Return ``value`` as a :class:`MatchType`, raising InvalidPatternError if unknown."""
    if isinstance(value, MatchType):
        return value
    try:
        return MatchType(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidPatternError(f"Unknown match type: {value!r}", match_type=str(value)) from exc


def effective_pattern(pattern: str, match_type: MatchType) -> tuple[str, MatchType]:
    """Apply inline ``@``/``!`` overrides and return ``(pattern, match_type)``."""
    text = pattern.strip()
    if match_type is MatchType.DOMAIN:
        if text[:1] in (REGEX_PREFIX, GLOB_PREFIX):
            text = text[1:]
        return text, match_type
    if text.startswith(REGEX_PREFIX):
        return text[1:], MatchType.REGEX
    if text.startswith(GLOB_PREFIX):
        return text[1:], MatchType.GLOB
    return text, match_type


def _fail(reason: str, pattern: str, match_type: MatchType) -> InvalidPatternError:
    return InvalidPatternError(reason, pattern=pattern, match_type=match_type.value)


def parse_domain_pattern(pattern: str) -> tuple[str, bool]:
    """
    Validate a domain pattern.

    Returns
    -------
    tuple[str, bool]
        (canonical base host, wildcard flag).

    Raises
    ------
    InvalidPatternError
        If the pattern has a scheme, path or port, misplaces ``*``, or is not a
        syntactically valid hostname.
    """
    text = pattern.strip()
    if not text:
        raise _fail("Pattern cannot be empty", pattern, MatchType.DOMAIN)
    if _SCHEME.match(text):
        raise _fail("Domain patterns must not include a scheme", pattern, MatchType.DOMAIN)
    if "/" in text:
        raise _fail(
            "Domain patterns must not include a path; use exact or glob matching",
            pattern,
            MatchType.DOMAIN,
        )
    if ":" in text:
        raise _fail("Domain patterns must not include a port", pattern, MatchType.DOMAIN)

    wildcard = text.startswith("*.")
    base = text[2:] if wildcard else text
    if "*" in base:
        raise _fail(
            "Wildcards in domain patterns are only allowed as a leading '*.'",
            pattern,
            MatchType.DOMAIN,
        )

    host = canonical_host(base)
    if not host or len(host) > 253:
        raise _fail("Invalid domain format", pattern, MatchType.DOMAIN)
    if not all(_HOST_LABEL.match(label) for label in host.split(".")):
        raise _fail("Invalid domain format", pattern, MatchType.DOMAIN)
    return host, wildcard


def glob_to_regex(pattern: str) -> str:
    """
    Translate a glob into an unanchored regular expression body.

    Runs of ``*`` collapse into a single ``.*``.
    """
    out: list[str] = []
    for ch in pattern:
        if ch == "*":
            if out and out[-1] == ".*":
                continue
            out.append(".*")
        elif ch == "?":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return "".join(out)


def has_explicit_anchor(pattern: str) -> bool:
    """True when ``pattern`` contains ``^``, ``$``, ``\\A`` or ``\\Z`` outside a class."""
    i = 0
    in_class = False
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\":
            if not in_class and pattern[i + 1 : i + 2] in ("A", "Z"):
                return True
            i += 2
            continue
        if in_class:
            if ch == "]":
                in_class = False
        elif ch == "[":
            in_class = True
            if pattern[i + 1 : i + 2] == "^":
                i += 1
            if pattern[i + 1 : i + 2] == "]":
                i += 1
        elif ch in "^$":
            return True
        i += 1
    return False


def _compile_exact(pattern: str) -> Predicate:
    if not is_absolute_url(pattern):
        raise _fail("Pattern must be a valid absolute URL for exact matching", pattern, MatchType.EXACT)
    target = normalize_url(pattern)

    def predicate(url: str) -> bool:
        try:
            return normalize_url(url) == target
        except ValueError:
            return False

    return predicate


def _compile_domain(pattern: str) -> Predicate:
    base, wildcard = parse_domain_pattern(pattern)
    suffix = "." + base

    def predicate(url: str) -> bool:
        host = hostname_of(url)
        if host is None:
            return False
        if host == base:
            return True
        return wildcard and host.endswith(suffix)

    return predicate


def _compile_glob(pattern: str) -> Predicate:
    if not pattern:
        raise _fail("Glob pattern cannot be empty", pattern, MatchType.GLOB)
    if "***" in pattern:
        raise _fail("Invalid glob pattern: too many consecutive wildcards", pattern, MatchType.GLOB)
    compiled = re.compile(glob_to_regex(pattern), re.IGNORECASE | re.DOTALL)

    def predicate(url: str) -> bool:
        return compiled.fullmatch(url) is not None

    return predicate


def _compile_regex(pattern: str, options: MatcherOptions) -> Predicate:
    if not pattern:
        raise _fail("Regular expression cannot be empty", pattern, MatchType.REGEX)
    try:
        re.compile(pattern)
    except re.error as exc:
        raise _fail(f"Invalid regular expression: {exc}", pattern, MatchType.REGEX) from exc
    hazard = screen_regex(pattern, max_length=options.max_regex_length)
    if hazard is not None:
        raise _fail(f"Unsafe regular expression: {hazard}", pattern, MatchType.REGEX)

    if has_explicit_anchor(pattern):
        source = pattern
    else:
        # Global inline flags must stay at the very start of the expression.
        flags = _GLOBAL_FLAGS.match(pattern)
        head = flags.group(0) if flags else ""
        # In verbose mode a trailing comment would swallow the closing group.
        tail = "\n" if "x" in head else ""
        source = rf"{head}\A(?:{pattern[len(head):]}{tail})\Z"
    try:
        compiled = re.compile(source, re.IGNORECASE)
    except re.error as exc:
        raise _fail(f"Invalid regular expression: {exc}", pattern, MatchType.REGEX) from exc
    clock = options.clock
    budget = options.time_budget

    def predicate(url: str) -> bool:
        return timed_match(compiled, url, clock=clock, budget=budget)

    return predicate


def compile_pattern(
    pattern: str,
    match_type: MatchType | str,
    *,
    options: MatcherOptions | None = None,
) -> CompiledPattern:
    """
    Compile a rule pattern into a URL predicate.

    Parameters
    ----------
    pattern:
        Pattern text. Surrounding whitespace is ignored.
    match_type:
        Declared grammar. Inline ``@``/``!`` prefixes may override it.
    options:
        Regex guard tunables. Defaults apply when omitted.

    Returns
    -------
    CompiledPattern
        Callable predicate over URL strings.

    Raises
    ------
    InvalidPatternError
        If the pattern is malformed for its grammar.
    """
    declared = coerce_match_type(match_type)
    text, effective = effective_pattern(pattern, declared)
    opts = options or MatcherOptions()

    if effective is MatchType.EXACT:
        predicate = _compile_exact(text)
    elif effective is MatchType.DOMAIN:
        predicate = _compile_domain(text)
    elif effective is MatchType.GLOB:
        predicate = _compile_glob(text)
    elif effective is MatchType.REGEX:
        predicate = _compile_regex(text, opts)
    else:
        raise _fail(f"Unknown match type: {effective!r}", pattern, declared)

    return CompiledPattern(
        pattern=pattern,
        match_type=declared,
        effective_type=effective,
        predicate=predicate,
    )


class CompiledPatternCache:
    """
    Thread-safe cache of compiled patterns keyed by ``(pattern, match_type)``.

    Compilation errors are not cached; they propagate on every lookup.

    Parameters
    ----------
    options:
        Matcher options used to compile entries.
    max_entries:
        When set, the least recently used entry is evicted once the cache holds
        this many patterns. Owners that invalidate on edit (the rule store)
        leave it unbounded.
    """

    def __init__(self, options: MatcherOptions | None = None, *, max_entries: int | None = None) -> None:
        self.options = options or MatcherOptions()
        self.max_entries = max_entries
        self._entries: OrderedDict[tuple[str, MatchType], CompiledPattern] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, pattern: str, match_type: MatchType | str) -> CompiledPattern:
        """Return the compiled pattern, compiling it on first use."""
        key = (pattern, coerce_match_type(match_type))
        with self._lock:
            hit = self._entries.get(key)
            if hit is not None:
                self._entries.move_to_end(key)
                return hit
        compiled = compile_pattern(pattern, key[1], options=self.options)
        with self._lock:
            entry = self._entries.setdefault(key, compiled)
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
            return entry

    def invalidate(self, pattern: str, match_type: MatchType | str) -> None:
        """Drop the cached entry for ``(pattern, match_type)`` if present."""
        with self._lock:
            self._entries.pop((pattern, coerce_match_type(match_type)), None)

    def clear(self) -> None:
        """Drop all cached entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries


DEFAULT_CACHE_SIZE = 1024

_default_cache = CompiledPatternCache(max_entries=DEFAULT_CACHE_SIZE)


def test(url: str, pattern: str, match_type: MatchType | str) -> bool:
    """
    Return True if ``url`` matches ``pattern`` under ``match_type``.

    Uses a shared cache bounded to ``DEFAULT_CACHE_SIZE`` patterns.

    Raises
    ------
    InvalidPatternError
        If the pattern does not compile.
    PatternEvaluationTimeout
        If a regex evaluation exceeded its time budget.
    """
    return _default_cache.get(pattern, match_type)(url)


# Keep pytest from collecting the public ``test`` function when it is imported
# into a test module.
test.__test__ = False  # type: ignore[attr-defined]


def _looks_like_hostname(text: str) -> bool:
    try:
        host, _ = parse_domain_pattern(text)
    except InvalidPatternError:
        return False
    if host == "localhost" or _IPV4.match(host):
        return True
    return bool(public_suffix(host)) and "." in host


def suggest_match_type(pattern: str) -> MatchType | None:
    """
    Propose a match type for a pattern typed into a rule editor.

    Advisory only: full URLs suggest ``exact``, strings with ``*``/``?`` and no
    regex metacharacters suggest ``glob``, bare hostnames suggest ``domain`` and
    anything else ``regex``. Returns None for an empty string.
    """
    text = pattern.strip()
    if not text:
        return None
    has_wildcards = "*" in text or "?" in text
    if not has_wildcards and is_absolute_url(text):
        return MatchType.EXACT
    if has_wildcards and not _REGEX_METACHARS.search(text):
        if text.startswith("*.") and _looks_like_hostname(text):
            return MatchType.DOMAIN
        return MatchType.GLOB
    if _looks_like_hostname(text):
        return MatchType.DOMAIN
    return MatchType.REGEX


@dataclass(frozen=True, slots=True)
class PatternValidation:
    """Outcome of validating a pattern for a rule editor preview."""

    valid: bool
    error: str | None = None
    warning: str | None = None
    suggestion: str | None = None


_BROAD_REGEXES = {".*", ".+", ".*?"}


def validate_pattern(pattern: str, match_type: MatchType | str) -> PatternValidation:
    """
    Validate a pattern and attach editor hints.

    Errors come from :func:`compile_pattern`; warnings flag patterns that compile
    but are likely mistakes.
    """
    try:
        compiled = compile_pattern(pattern, match_type)
    except InvalidPatternError as exc:
        suggestion = None
        if exc.match_type == MatchType.DOMAIN.value:
            stripped = _SCHEME.sub("", pattern.strip()).split("/", 1)[0]
            suggestion = stripped if stripped and stripped != pattern.strip() else "example.com or *.example.com"
        elif exc.match_type == MatchType.EXACT.value:
            suggestion = "https://example.com/path"
        return PatternValidation(valid=False, error=exc.reason, suggestion=suggestion)

    text, effective = effective_pattern(pattern, compiled.match_type)
    if effective is MatchType.GLOB:
        if _REGEX_METACHARS.search(text):
            return PatternValidation(
                valid=True,
                warning="Pattern contains regex characters. Consider the regex match type if this is intentional.",
            )
    elif effective is MatchType.REGEX:
        if text in _BROAD_REGEXES:
            return PatternValidation(valid=True, warning="Very broad pattern. This will match almost any URL.")
        if ".*.*" in text or ".+.+" in text:
            return PatternValidation(valid=True, warning="Pattern may be slow. Consider simplifying it.")
    return PatternValidation(valid=True)


_EXAMPLES: dict[MatchType, tuple[str, ...]] = {
    MatchType.EXACT: (
        "https://example.com",
        "https://github.com/user/repo",
        "https://mail.google.com/mail/u/0/",
    ),
    MatchType.DOMAIN: ("example.com", "*.google.com", "github.com"),
    MatchType.GLOB: (
        "https://*.example.com/api/*",
        "https://github.com/*/settings",
        "*://example.com/user/*/profile",
    ),
    MatchType.REGEX: (
        r"https://github\.com/[^/]+/settings",
        r".*\.dev/.*",
        r"^https://([a-z0-9-]+\.)*example\.com/",
    ),
}


def pattern_examples(match_type: MatchType | str) -> tuple[str, ...]:
    """Return example patterns for ``match_type``."""
    return _EXAMPLES[coerce_match_type(match_type)]
