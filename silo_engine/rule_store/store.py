"""
Authoritative in-memory rule store.

Threading
---------
Mutations are serialized by a re-entrant lock. Each mutation builds the next
state, writes it through the persistence collaborator and only then publishes
it by swapping immutable snapshots. Readers take no lock and always see either
the previous or the next state. A container deletion and the rule deletions it
cascades to become visible together.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..data_models import Container, MatchType, Rule, RuleMetadata, RuleSource, RuleType
from ..errors import (
    DuplicateContainerError,
    InvalidRuleError,
    UnknownContainerReference,
    UnknownRuleError,
)
from ..matching.pattern_matcher import CompiledPatternCache, MatcherOptions, compile_pattern
from ..presets import Preset, PresetPlan, new_rule_id, plan_preset_application
from ..resolver import ResolutionContext, ResolutionResult, ResolutionTrace, Resolver
from .api import InMemoryPersistence, RulePersistence
from .validation import normalize_rule

log = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"pattern", "match_type", "rule_type", "container_id", "priority", "enabled", "metadata"}
)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class _Snapshot:
    """Immutable published state."""

    rules: tuple[Rule, ...]
    positions: Mapping[str, int]
    containers: Mapping[str, Container]
    next_position: int

    @property
    def live_ids(self) -> frozenset[str]:
        return frozenset(self.containers)


def _sorted(rules: Iterable[Rule], positions: Mapping[str, int]) -> tuple[Rule, ...]:
    return tuple(sorted(rules, key=lambda r: (-r.priority, positions[r.id])))


class RuleStore:
    """
    CRUD and query surface over rules and containers.

    Parameters
    ----------
    persistence:
        Storage collaborator. Defaults to :class:`InMemoryPersistence`.
    options:
        Matcher options used for validation and resolution.
    now_ms:
        Wall-clock source for ``created``/``modified`` stamps.
    """

    def __init__(
        self,
        persistence: RulePersistence | None = None,
        *,
        options: MatcherOptions | None = None,
        now_ms: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._persistence: RulePersistence = persistence or InMemoryPersistence()
        self._cache = CompiledPatternCache(options)
        self._resolver = Resolver(self._cache)
        self._now_ms = now_ms
        self._lock = threading.RLock()

        containers = {c.cookie_store_id: c for c in self._persistence.load_containers()}
        loaded = list(self._persistence.load_rules())
        positions = {rule.id: position for position, rule in loaded}
        self._snapshot = _Snapshot(
            rules=_sorted((rule for _, rule in loaded), positions),
            positions=positions,
            containers=containers,
            next_position=max(positions.values(), default=-1) + 1,
        )
        log.debug("Rule store loaded %d rules, %d containers", len(positions), len(containers))

    @property
    def options(self) -> MatcherOptions:
        """Matcher options in effect."""
        return self._cache.options

    # -- queries ---------------------------------------------------------

    def list(self) -> list[Rule]:
        """Return all rules, priority descending, ties by insertion order."""
        return list(self._snapshot.rules)

    def get(self, rule_id: str) -> Rule:
        """
        Return the rule with ``rule_id``.

        Raises
        ------
        UnknownRuleError
            If the id is not known.
        """
        for rule in self._snapshot.rules:
            if rule.id == rule_id:
                return rule
        raise UnknownRuleError(f"Unknown rule id: {rule_id}")

    def rules_for_container(self, container_id: str) -> list[Rule]:
        """Return rules targeting ``container_id`` in list order."""
        return [r for r in self._snapshot.rules if r.container_id == container_id]

    def containers(self) -> list[Container]:
        """Return all containers in insertion order."""
        return list(self._snapshot.containers.values())

    def get_container(self, cookie_store_id: str) -> Container | None:
        """Return the container with ``cookie_store_id`` or None."""
        return self._snapshot.containers.get(cookie_store_id)

    def live_container_ids(self) -> frozenset[str]:
        """Return the cookieStoreIds of all existing containers."""
        return self._snapshot.live_ids

    def test_pattern(self, url: str, pattern: str, match_type: MatchType | str) -> bool:
        """
        Preview whether ``url`` matches ``pattern`` without creating a rule.

        Raises
        ------
        InvalidPatternError
            If the pattern does not compile.
        """
        return compile_pattern(pattern, match_type, options=self.options)(url)

    def resolve(self, url: str, current_container_id: str | None = None) -> ResolutionResult:
        """Resolve ``url`` against the current snapshot."""
        return self.explain(url, current_container_id).result

    def explain(self, url: str, current_container_id: str | None = None) -> ResolutionTrace:
        """Resolve ``url`` against the current snapshot and return the trace."""
        snap = self._snapshot
        context = ResolutionContext(
            current_container_id=current_container_id,
            live_container_ids=snap.live_ids,
        )
        return self._resolver.explain(url, snap.rules, context)

    # -- rule mutations --------------------------------------------------

    def _check_container(self, rule: Rule, containers: Mapping[str, Container]) -> None:
        if rule.container_id is not None and rule.container_id not in containers:
            raise UnknownContainerReference(rule.id, rule.container_id)

    def create(
        self,
        *,
        pattern: str,
        match_type: MatchType | str,
        rule_type: RuleType | str = RuleType.INCLUDE,
        container_id: str | None = None,
        priority: int = 1,
        enabled: bool = True,
        description: str | None = None,
        source: RuleSource = RuleSource.USER,
        tags: Sequence[str] = (),
        rule_id: str | None = None,
    ) -> Rule:
        """
        Validate and insert a new rule.

        Raises
        ------
        InvalidPatternError
            If the pattern does not compile for its match type.
        InvalidRuleError
            If the rule shape is invalid or the id is taken.
        UnknownContainerReference
            If ``container_id`` names no existing container.
        """
        now = self._now_ms()
        rule = Rule(
            id=rule_id or new_rule_id(),
            pattern=pattern,
            match_type=MatchType(match_type),
            rule_type=RuleType(rule_type),
            container_id=container_id,
            priority=priority,
            enabled=enabled,
            created=now,
            modified=now,
            metadata=RuleMetadata(description=description, source=source, tags=tuple(tags)),
        )
        return self.add_many([rule])[0]

    def add_many(self, rules: Sequence[Rule]) -> list[Rule]:
        """
        Validate and insert several rules as one atomic step.

        Either every rule is inserted or none is.
        """
        with self._lock:
            snap = self._snapshot
            taken = set(snap.positions)
            normalized: list[Rule] = []
            for rule in rules:
                candidate = normalize_rule(rule, options=self.options)
                if candidate.id in taken:
                    raise InvalidRuleError(f"Rule id already exists: {candidate.id}")
                self._check_container(candidate, snap.containers)
                taken.add(candidate.id)
                normalized.append(candidate)

            positions = dict(snap.positions)
            pairs: list[tuple[int, Rule]] = []
            next_position = snap.next_position
            for rule in normalized:
                positions[rule.id] = next_position
                pairs.append((next_position, rule))
                next_position += 1

            self._persistence.save_rules(pairs)
            self._snapshot = replace(
                snap,
                rules=_sorted([*snap.rules, *normalized], positions),
                positions=positions,
                next_position=next_position,
            )
        for rule in normalized:
            log.info("Rule created: %s %s %r -> %s", rule.id, rule.match_type.value, rule.pattern, rule.container_id)
        return normalized

    def update(self, rule_id: str, **changes: Any) -> Rule:
        """
        Apply ``changes`` to a rule and re-sort if its priority changed.

        Parameters
        ----------
        rule_id:
            Rule to modify.
        **changes:
            Any of ``pattern``, ``match_type``, ``rule_type``, ``container_id``,
            ``priority``, ``enabled``, ``metadata``.

        Raises
        ------
        UnknownRuleError
            If the id is not known.
        InvalidRuleError
            If an unknown field is given or the result is invalid.
        InvalidPatternError
            If the new pattern does not compile.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidRuleError(f"Cannot update rule fields: {', '.join(sorted(unknown))}")
        if "match_type" in changes:
            changes["match_type"] = MatchType(changes["match_type"])
        if "rule_type" in changes:
            changes["rule_type"] = RuleType(changes["rule_type"])

        with self._lock:
            snap = self._snapshot
            current = self.get(rule_id)
            updated = normalize_rule(
                replace(current, modified=self._now_ms(), **changes), options=self.options
            )
            self._check_container(updated, snap.containers)

            self._persistence.save_rules([(snap.positions[rule_id], updated)])
            rules = [updated if r.id == rule_id else r for r in snap.rules]
            self._snapshot = replace(snap, rules=_sorted(rules, snap.positions))

        if (current.pattern, current.match_type) != (updated.pattern, updated.match_type):
            self._cache.invalidate(current.pattern, current.match_type)
        log.info("Rule updated: %s (%s)", rule_id, ", ".join(sorted(changes)))
        return updated

    def delete(self, rule_id: str) -> None:
        """
        Delete a rule.

        Raises
        ------
        UnknownRuleError
            If the id is not known.
        """
        with self._lock:
            snap = self._snapshot
            current = self.get(rule_id)
            self._persistence.delete_rule(rule_id)
            positions = {k: v for k, v in snap.positions.items() if k != rule_id}
            self._snapshot = replace(
                snap,
                rules=tuple(r for r in snap.rules if r.id != rule_id),
                positions=positions,
            )
        self._cache.invalidate(current.pattern, current.match_type)
        log.info("Rule deleted: %s", rule_id)

    # -- containers ------------------------------------------------------

    def add_container(self, container: Container) -> Container:
        """
        Register a container.

        Raises
        ------
        DuplicateContainerError
            If a container with the same cookieStoreId exists.
        """
        with self._lock:
            snap = self._snapshot
            if container.cookie_store_id in snap.containers:
                raise DuplicateContainerError(
                    f"Container already exists: {container.cookie_store_id}"
                )
            self._persistence.save_container(container)
            containers = dict(snap.containers)
            containers[container.cookie_store_id] = container
            self._snapshot = replace(snap, containers=containers)
        log.info("Container added: %s (%s)", container.cookie_store_id, container.name)
        return container

    def remove_container(self, cookie_store_id: str) -> list[Rule]:
        """
        Delete a container and every rule that targets it.

        Returns
        -------
        list[Rule]
            The rules removed with the container.
        """
        with self._lock:
            snap = self._snapshot
            if cookie_store_id not in snap.containers:
                return []
            removed = [r for r in snap.rules if r.container_id == cookie_store_id]
            self._persistence.delete_container(cookie_store_id)
            containers = {k: v for k, v in snap.containers.items() if k != cookie_store_id}
            gone = {r.id for r in removed}
            self._snapshot = replace(
                snap,
                rules=tuple(r for r in snap.rules if r.id not in gone),
                positions={k: v for k, v in snap.positions.items() if k not in gone},
                containers=containers,
            )
        for rule in removed:
            self._cache.invalidate(rule.pattern, rule.match_type)
        log.info("Container removed: %s (%d rules cascaded)", cookie_store_id, len(removed))
        return removed

    # -- presets ---------------------------------------------------------

    def plan_preset(self, preset: Preset, container_id: str) -> PresetPlan:
        """Plan applying ``preset`` to ``container_id`` without mutating anything."""
        return plan_preset_application(
            preset.rules,
            container_id,
            self._snapshot.rules,
            now_ms=self._now_ms(),
        )

    def apply_preset(self, preset: Preset, container_id: str) -> PresetPlan:
        """
        Insert the non-duplicate rules of ``preset`` into ``container_id``.

        Raises
        ------
        UnknownContainerReference
            If the container does not exist.
        """
        with self._lock:
            if container_id not in self._snapshot.containers:
                raise UnknownContainerReference(f"preset:{preset.id}", container_id)
            plan = self.plan_preset(preset, container_id)
            self.add_many(plan.to_create)
        log.info(
            "Preset %s applied to %s: %d created, %d skipped",
            preset.id,
            container_id,
            len(plan.to_create),
            len(plan.to_skip),
        )
        return plan
