"""
Domain exceptions for Silo.

Notes
-----
Core engine logic raises only the exceptions defined here. Pattern compilation
errors surface synchronously at rule create/update time; resolution never
raises for a single bad rule, it contains the failure and moves on.
"""

from __future__ import annotations


class SiloError(RuntimeError):
    """Base exception for all Silo domain failures."""


class InvalidPatternError(SiloError):
    """
    Raised when a pattern is malformed for its match type.

    Attributes
    ----------
    reason:
        Human-readable explanation suitable for showing in a rule editor.
    pattern:
        The offending pattern as supplied.
    match_type:
        Match type value the pattern was compiled against.
    """

    def __init__(self, reason: str, *, pattern: str = "", match_type: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.pattern = pattern
        self.match_type = match_type


class PatternEvaluationTimeout(SiloError):
    """Raised when evaluating a regex rule exceeded its time budget."""

    def __init__(self, pattern: str, *, elapsed: float, budget: float) -> None:
        super().__init__(
            f"Pattern {pattern!r} took {elapsed * 1000:.1f}ms (budget {budget * 1000:.1f}ms)"
        )
        self.pattern = pattern
        self.elapsed = elapsed
        self.budget = budget


class UnknownContainerReference(SiloError):
    """
    A rule references a container that does not exist.

    Resolution reports this as a warning and treats the rule as inert. The
    store raises it only when a rule is created against an unknown container.
    """

    def __init__(self, rule_id: str, container_id: str) -> None:
        super().__init__(f"Rule {rule_id!r} references unknown container {container_id!r}")
        self.rule_id = rule_id
        self.container_id = container_id


class RuleStoreError(SiloError):
    """Base error for rule store operations."""


class UnknownRuleError(RuleStoreError):
    """Raised when a rule id is not known to the store."""


class InvalidRuleError(RuleStoreError):
    """Raised when a rule's shape violates invariants."""


class DuplicateContainerError(RuleStoreError):
    """Raised when a container with the same cookieStoreId already exists."""


class RuleImportError(SiloError):
    """Raised when a rule export cannot be read or is structurally invalid."""


class SettingsError(SiloError):
    """Raised when engine settings or the data root cannot be resolved."""
