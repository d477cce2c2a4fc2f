"""
Rule identity keys and duplicate detection.

An identity key is a canonical fingerprint of a rule:
``"<normalized pattern>|<matchType>|<ruleType>|<containerId>"``. Two rules with
a common key are functional duplicates.

Normalization
-------------
- Whitespace is trimmed and inline ``@``/``!`` prefixes are resolved first.
- ``exact``: scheme and host lowercased, default port dropped, trailing slash
  stripped. Path, query and fragment keep their case because matching is
  case-sensitive there.
- ``domain``: canonical host (lowercase, punycode), ``*.`` kept.
- ``glob``: lowercased, trailing slash stripped. Glob matching is case-insensitive.
- ``regex``: lowercased. Regex matching is case-insensitive.

Cross-match-type equivalences
-----------------------------
A ``domain`` rule for ``example.com`` also yields the glob key
``*://example.com/*``, and ``*.example.com`` yields ``*://*.example.com/*``. These
are the shapes older preset versions stored for the same site. No other match
types are folded.

Everything here is pure so it can run in bulk before any mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from .data_models import MatchType, Rule, RuleType
from .matching.pattern_matcher import effective_pattern
from .matching.urls import canonical_host, normalize_url


class RuleIdentity(Protocol):
    """The rule fields that determine identity."""

    @property
    def pattern(self) -> str: ...

    @property
    def match_type(self) -> MatchType: ...

    @property
    def rule_type(self) -> RuleType: ...


def normalize_pattern(pattern: str, match_type: MatchType) -> tuple[str, MatchType]:
    """
    Return ``(normalized pattern, effective match type)`` for identity purposes.

    Never raises; patterns that do not parse fall back to trimmed lowercase text.
    """
    text, effective = effective_pattern(pattern, match_type)
    if effective is MatchType.EXACT:
        try:
            return normalize_url(text), effective
        except ValueError:
            return text.lower().rstrip("/"), effective
    if effective is MatchType.DOMAIN:
        wildcard = text.startswith("*.")
        base = canonical_host(text[2:] if wildcard else text).rstrip("/")
        return (f"*.{base}" if wildcard else base), effective
    if effective is MatchType.GLOB:
        return text.lower().rstrip("/"), effective
    return text.lower(), effective


def _key(pattern: str, match_type: MatchType, rule_type: RuleType, container_id: str | None) -> str:
    return f"{pattern}|{match_type.value}|{rule_type.value}|{container_id or ''}"


def identity_key(rule: RuleIdentity, container_id: str | None = None) -> str:
    """
    Return the canonical identity key of ``rule``.

    Parameters
    ----------
    rule:
        Any object with ``pattern``, ``match_type`` and ``rule_type``.
    container_id:
        Container the rule targets. Defaults to ``rule.container_id`` when the
        object has one.
    """
    if container_id is None:
        container_id = getattr(rule, "container_id", None)
    pattern, effective = normalize_pattern(rule.pattern, rule.match_type)
    return _key(pattern, effective, rule.rule_type, container_id)


def identity_keys(rule: RuleIdentity, container_id: str | None = None) -> list[str]:
    """
    Return every identity key of ``rule``, canonical key first.

    Parameters
    ----------
    rule:
        Any object with ``pattern``, ``match_type`` and ``rule_type``.
    container_id:
        Container the rule targets (defaults to ``rule.container_id``).

    Returns
    -------
    list[str]
        Keys without duplicates. Two rules sharing any key are duplicates.
    """
    if container_id is None:
        container_id = getattr(rule, "container_id", None)
    pattern, effective = normalize_pattern(rule.pattern, rule.match_type)
    keys = [_key(pattern, effective, rule.rule_type, container_id)]
    if effective is not MatchType.DOMAIN or not pattern:
        return keys

    keys.append(_key(f"*://{pattern}/*", MatchType.GLOB, rule.rule_type, container_id))
    return keys


def build_identity_set(rules: Iterable[RuleIdentity]) -> set[str]:
    """Return the union of all identity keys of ``rules``."""
    keys: set[str] = set()
    for rule in rules:
        keys.update(identity_keys(rule))
    return keys


def is_duplicate(candidate: RuleIdentity, existing: Iterable[RuleIdentity], container_id: str | None = None) -> bool:
    """True when ``candidate`` shares an identity key with any rule in ``existing``."""
    known = build_identity_set(existing)
    return any(key in known for key in identity_keys(candidate, container_id))


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """Rules that share a canonical identity key."""

    key: str
    rules: tuple[Rule, ...]


def find_duplicate_rules(rules: Sequence[Rule]) -> list[DuplicateGroup]:
    """
    Group rules by canonical identity key and return groups of two or more.

    Groups are returned in order of first appearance.
    """
    groups: dict[str, list[Rule]] = {}
    for rule in rules:
        groups.setdefault(identity_key(rule), []).append(rule)
    return [DuplicateGroup(key=k, rules=tuple(v)) for k, v in groups.items() if len(v) > 1]


def duplicate_count(rules: Sequence[Rule]) -> int:
    """Return how many rules could be removed (all but one per group)."""
    return sum(len(group.rules) - 1 for group in find_duplicate_rules(rules))


@dataclass(frozen=True, slots=True)
class KeepPlan:
    """Which rules to keep and which to remove when collapsing duplicates."""

    keep: tuple[Rule, ...]
    remove: tuple[Rule, ...]


def suggest_rules_to_keep(groups: Sequence[DuplicateGroup]) -> KeepPlan:
    """
    Keep one rule per group: highest priority, then most recently modified.
    """
    keep: list[Rule] = []
    remove: list[Rule] = []
    for group in groups:
        ordered = sorted(group.rules, key=lambda r: (-r.priority, -r.modified))
        keep.append(ordered[0])
        remove.extend(ordered[1:])
    return KeepPlan(keep=tuple(keep), remove=tuple(remove))
