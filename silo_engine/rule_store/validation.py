"""
Rule validation and normalization for the rule store.

This module provides deterministic, syntax-only checks. It performs no I/O and
never consults the container set; the store checks container references.

Invariants
----------
- Patterns are trimmed and must compile for their match type.
- Include and restrict rules name a target container; exclude rules may omit it.
- Priority is an integer (booleans are rejected).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from ..data_models import MatchType, Rule, RuleType
from ..errors import InvalidPatternError, InvalidRuleError
from ..matching.pattern_matcher import (
    MatcherOptions,
    compile_pattern,
    effective_pattern,
    parse_domain_pattern,
)
from ..matching.suffixes import is_public_suffix

PRIORITY_RANGE = (0, 100)


def normalize_rule(rule: Rule, *, options: MatcherOptions | None = None) -> Rule:
    """
    Normalize and validate a rule.

    Parameters
    ----------
    rule:
        Candidate rule from an editor, an import or a preset.
    options:
        Matcher options used to compile the pattern.

    Returns
    -------
    Rule
        The rule with a trimmed pattern and container id.

    Raises
    ------
    InvalidPatternError
        If the pattern does not compile for its match type.
    InvalidRuleError
        If the rule's shape violates invariants.
    """
    if not rule.id.strip():
        raise InvalidRuleError("Rule id must not be empty.")
    if isinstance(rule.priority, bool) or not isinstance(rule.priority, int):
        raise InvalidRuleError(f"Rule priority must be an integer, got {rule.priority!r}.")

    container_id = rule.container_id.strip() if rule.container_id else None
    if container_id is None and rule.rule_type is not RuleType.EXCLUDE:
        raise InvalidRuleError(f"{rule.rule_type.value} rules must target a container.")

    pattern = rule.pattern.strip()
    compile_pattern(pattern, rule.match_type, options=options)
    return replace(rule, pattern=pattern, container_id=container_id)


@dataclass(frozen=True, slots=True)
class RuleLint:
    """Problems found across a rule set."""

    errors: tuple[str, ...]
    warnings: tuple[str, ...]

    @property
    def valid(self) -> bool:
        """True when there are no errors."""
        return not self.errors


def lint_rules(rules: Sequence[Rule]) -> RuleLint:
    """
    Check a rule set for errors and likely mistakes.

    Errors are patterns that do not compile. Warnings cover priorities outside
    0-100, restrict rules with the same pattern confining different containers,
    and domain rules that cover a whole public suffix (``*.com``, ``co.uk``).
    """
    errors: list[str] = []
    warnings: list[str] = []
    low, high = PRIORITY_RANGE

    for rule in rules:
        try:
            compile_pattern(rule.pattern, rule.match_type)
        except InvalidPatternError as exc:
            errors.append(f"Rule {rule.id}: invalid {rule.match_type.value} pattern: {exc.reason}")
            continue

        if not low <= rule.priority <= high:
            warnings.append(f"Rule {rule.id}: priority should be between {low} and {high}")

        if rule.match_type is MatchType.DOMAIN:
            text, _ = effective_pattern(rule.pattern, rule.match_type)
            host, _ = parse_domain_pattern(text)
            if is_public_suffix(host):
                warnings.append(f"Rule {rule.id}: domain pattern covers the whole public suffix {host!r}")

    restrict_owners: dict[str, list[str]] = {}
    for rule in rules:
        if rule.rule_type is RuleType.RESTRICT and rule.enabled and rule.container_id:
            owners = restrict_owners.setdefault(rule.pattern.strip(), [])
            if rule.container_id not in owners:
                owners.append(rule.container_id)
    for pattern, owners in restrict_owners.items():
        if len(owners) > 1:
            warnings.append(
                f"Pattern {pattern!r} has conflicting restrict rules for containers: {', '.join(owners)}"
            )

    return RuleLint(errors=tuple(errors), warnings=tuple(warnings))
