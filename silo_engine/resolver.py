"""
Rule resolution: decide which container a navigation belongs in.

The resolver is a pure function of ``(url, rules snapshot, context)``. It holds
no rule state of its own; the only thing a :class:`Resolver` instance keeps is a
cache of compiled patterns.

Algorithm
---------
1. Drop disabled rules and rules whose container is gone (logged, not raised).
2. Evaluate every remaining rule. A rule that fails to evaluate (bad pattern,
   regex time budget exceeded) counts as not matching for this call only.
3. Partition matches into include, exclude and restrict buckets.
4. Restrict: when the current container owns restrict rules, the URL must match
   one of them, otherwise the result is :class:`Blocked`.
5. Exclude wins ties: an exclude with priority >= the best include gives
   :class:`NoMatch`.
6. The best include wins: priority, then match-type specificity
   (exact > domain > glob > regex), then the smallest rule id.
7. No include left gives :class:`NoMatch`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Sequence, assert_never

from .data_models import Rule, RuleType
from .errors import SiloError, UnknownContainerReference
from .matching.pattern_matcher import DEFAULT_CACHE_SIZE, CompiledPatternCache

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Route:
    """The navigation should happen inside ``container_id``."""

    kind: ClassVar[str] = "route"

    container_id: str
    rule_id: str

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape consumed by the navigation listener."""
        return {"kind": self.kind, "containerId": self.container_id}


@dataclass(frozen=True, slots=True)
class NoMatch:
    """No rule applies; the caller keeps the current or default container."""

    kind: ClassVar[str] = "none"

    reason: str = "No matching rules"

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape consumed by the navigation listener."""
        return {"kind": self.kind}


@dataclass(frozen=True, slots=True)
class Blocked:
    """A restrict rule forbids this navigation from ``container_id``."""

    kind: ClassVar[str] = "blocked"

    container_id: str

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape consumed by the navigation listener."""
        return {"kind": self.kind}


ResolutionResult = Route | NoMatch | Blocked


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    """
    Per-navigation context.

    Attributes
    ----------
    current_container_id:
        cookieStoreId of the tab's container, if known.
    live_container_ids:
        cookieStoreIds of containers that currently exist. When None, container
        references are not checked.
    """

    current_container_id: str | None = None
    live_container_ids: frozenset[str] | None = None


@dataclass(frozen=True, slots=True)
class RuleFailure:
    """A rule that could not be evaluated during one resolution call."""

    rule_id: str
    error: SiloError


@dataclass(frozen=True, slots=True)
class ResolutionTrace:
    """A decision plus the evidence it was based on."""

    result: ResolutionResult
    includes: tuple[Rule, ...] = ()
    excludes: tuple[Rule, ...] = ()
    restricts: tuple[Rule, ...] = ()
    failures: tuple[RuleFailure, ...] = ()
    inert: tuple[UnknownContainerReference, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        return {
            "result": self.result.to_dict(),
            "includes": [r.id for r in self.includes],
            "excludes": [r.id for r in self.excludes],
            "restricts": [r.id for r in self.restricts],
            "failures": [{"ruleId": f.rule_id, "error": str(f.error)} for f in self.failures],
            "inert": [{"ruleId": i.rule_id, "containerId": i.container_id} for i in self.inert],
        }


def _is_live(rule: Rule, live: frozenset[str] | None) -> bool:
    if rule.container_id is None:
        # Only exclude rules may be container-less; they apply everywhere.
        return rule.rule_type is RuleType.EXCLUDE
    return live is None or rule.container_id in live


class Resolver:
    """
    Resolves navigations against rule snapshots.

    Parameters
    ----------
    cache:
        Compiled-pattern cache shared with the rule store so edits invalidate
        stale predicates. A private cache is created when omitted.
    """

    def __init__(self, cache: CompiledPatternCache | None = None) -> None:
        self.cache = cache if cache is not None else CompiledPatternCache()

    def resolve(
        self,
        url: str,
        rules: Iterable[Rule],
        context: ResolutionContext | None = None,
    ) -> ResolutionResult:
        """Return the routing decision for ``url``. Never raises for a bad rule."""
        return self.explain(url, rules, context).result

    def explain(
        self,
        url: str,
        rules: Iterable[Rule],
        context: ResolutionContext | None = None,
    ) -> ResolutionTrace:
        """
        Resolve ``url`` and return the decision with the rules behind it.

        Parameters
        ----------
        url:
            Navigation target.
        rules:
            Current rule snapshot. Order does not affect the result.
        context:
            Current container and live container set.

        Returns
        -------
        ResolutionTrace
            Decision, matched rules per bucket, contained per-rule failures and
            rules made inert by dangling container references.
        """
        ctx = context or ResolutionContext()
        live = ctx.live_container_ids

        active: list[Rule] = []
        inert: list[UnknownContainerReference] = []
        for rule in rules:
            if not rule.enabled:
                continue
            if not _is_live(rule, live):
                ref = UnknownContainerReference(rule.id, rule.container_id or "")
                log.warning("Ignoring rule %s: %s", rule.id, ref)
                inert.append(ref)
                continue
            active.append(rule)

        includes: list[Rule] = []
        excludes: list[Rule] = []
        restricts: list[Rule] = []
        failures: list[RuleFailure] = []
        specificity: dict[str, int] = {}

        for rule in active:
            try:
                compiled = self.cache.get(rule.pattern, rule.match_type)
                matched = compiled(url)
            except SiloError as exc:
                log.warning("Rule %s skipped for %s: %s", rule.id, url, exc)
                failures.append(RuleFailure(rule_id=rule.id, error=exc))
                continue
            if not matched:
                continue
            specificity[rule.id] = compiled.effective_type.specificity

            rule_type = rule.rule_type
            if rule_type is RuleType.INCLUDE:
                includes.append(rule)
            elif rule_type is RuleType.EXCLUDE:
                excludes.append(rule)
            elif rule_type is RuleType.RESTRICT:
                restricts.append(rule)
            else:
                assert_never(rule_type)

        result = self._decide(ctx, active, includes, excludes, restricts, specificity)
        log.debug(
            "Resolved %s -> %s (include=%d exclude=%d restrict=%d failed=%d)",
            url,
            result,
            len(includes),
            len(excludes),
            len(restricts),
            len(failures),
        )
        return ResolutionTrace(
            result=result,
            includes=tuple(includes),
            excludes=tuple(excludes),
            restricts=tuple(restricts),
            failures=tuple(failures),
            inert=tuple(inert),
        )

    @staticmethod
    def _decide(
        ctx: ResolutionContext,
        active: Sequence[Rule],
        includes: Sequence[Rule],
        excludes: Sequence[Rule],
        restricts: Sequence[Rule],
        specificity: dict[str, int],
    ) -> ResolutionResult:
        current = ctx.current_container_id
        if current is not None:
            confined = any(
                r.rule_type is RuleType.RESTRICT and r.container_id == current for r in active
            )
            if confined and not any(r.container_id == current for r in restricts):
                return Blocked(container_id=current)

        if not includes:
            return NoMatch()

        best = min(includes, key=lambda r: (-r.priority, -specificity[r.id], r.id))
        if any(r.priority >= best.priority for r in excludes):
            return NoMatch(reason="Excluded by rule")
        # Include and restrict rules always carry a container (see _is_live).
        assert best.container_id is not None
        return Route(container_id=best.container_id, rule_id=best.id)


_default_resolver = Resolver(CompiledPatternCache(max_entries=DEFAULT_CACHE_SIZE))


def resolve(
    url: str,
    rules: Iterable[Rule],
    context: ResolutionContext | None = None,
) -> ResolutionResult:
    """
    Resolve ``url`` against ``rules`` with a shared compiled-pattern cache.

    The shared cache keeps the ``DEFAULT_CACHE_SIZE`` most recently used
    patterns. Callers that edit rules over a long lifetime should hold their own
    :class:`Resolver` or go through the rule store, which invalidates edited
    patterns.
    """
    return _default_resolver.resolve(url, rules, context)


def explain(
    url: str,
    rules: Iterable[Rule],
    context: ResolutionContext | None = None,
) -> ResolutionTrace:
    """Like :func:`resolve` but return the full :class:`ResolutionTrace`."""
    return _default_resolver.explain(url, rules, context)
