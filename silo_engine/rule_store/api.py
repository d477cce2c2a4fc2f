"""
Rule store public API.

The rule store is the single owner of mutable rule and container state. The
resolver never reads it implicitly; callers take a snapshot and pass it in.

Persistence is delegated to a :class:`RulePersistence` collaborator. The store
writes through it before publishing a new in-memory snapshot, so a failed write
leaves the visible state untouched.

Notes
-----
- ``list()`` order is priority descending, ties by insertion order.
- Deleting a container deletes the rules that reference it in the same step.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from ..data_models import Container, Rule


class RulePersistence(Protocol):
    """
    Storage collaborator for containers and rules.

    Implementations must apply each call atomically. ``position`` values carry
    insertion order across restarts.
    """

    def load_containers(self) -> Sequence[Container]:
        """
        Return all persisted containers.

        Returns
        -------
        Sequence[Container]
            Containers in a stable order.
        """
        raise NotImplementedError

    def load_rules(self) -> Sequence[tuple[int, Rule]]:
        """
        Return all persisted rules with their insertion positions.

        Returns
        -------
        Sequence[tuple[int, Rule]]
            ``(position, rule)`` pairs ordered by position.
        """
        raise NotImplementedError

    def save_container(self, container: Container) -> None:
        """Insert or replace a container."""
        raise NotImplementedError

    def delete_container(self, cookie_store_id: str) -> None:
        """Delete a container and every rule that references it."""
        raise NotImplementedError

    def save_rules(self, rules: Sequence[tuple[int, Rule]]) -> None:
        """Insert or replace rules as one transaction."""
        raise NotImplementedError

    def delete_rule(self, rule_id: str) -> None:
        """Delete a rule. Unknown ids are ignored."""
        raise NotImplementedError


class InMemoryPersistence:
    """
    Persistence that keeps nothing beyond the process.

    Used when the store is embedded in a caller that persists elsewhere, and by
    tests.
    """

    def __init__(
        self,
        containers: Sequence[Container] = (),
        rules: Sequence[Rule] = (),
    ) -> None:
        self._containers: dict[str, Container] = {c.cookie_store_id: c for c in containers}
        self._rules: dict[str, tuple[int, Rule]] = {r.id: (i, r) for i, r in enumerate(rules)}

    def load_containers(self) -> Sequence[Container]:
        """See RulePersistence.load_containers."""
        return list(self._containers.values())

    def load_rules(self) -> Sequence[tuple[int, Rule]]:
        """See RulePersistence.load_rules."""
        return sorted(self._rules.values(), key=lambda pair: pair[0])

    def save_container(self, container: Container) -> None:
        """See RulePersistence.save_container."""
        self._containers[container.cookie_store_id] = container

    def delete_container(self, cookie_store_id: str) -> None:
        """See RulePersistence.delete_container."""
        self._containers.pop(cookie_store_id, None)
        self._rules = {
            rid: pair for rid, pair in self._rules.items() if pair[1].container_id != cookie_store_id
        }

    def save_rules(self, rules: Sequence[tuple[int, Rule]]) -> None:
        """See RulePersistence.save_rules."""
        for position, rule in rules:
            self._rules[rule.id] = (position, rule)

    def delete_rule(self, rule_id: str) -> None:
        """See RulePersistence.delete_rule."""
        self._rules.pop(rule_id, None)
