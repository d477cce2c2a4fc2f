"""Data models for Silo.

This module defines the canonical, typed representation of containers and
routing rules, plus their wire (JSON/storage) shapes. Wire keys use camelCase
to stay compatible with the extension's storage records.

The models are standard-library-only (dataclasses) and immutable. Mutation
happens by building a new instance with :func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Self


class MatchType(str, Enum):
    """Grammar used to interpret a rule's pattern."""

    EXACT = "exact"
    DOMAIN = "domain"
    GLOB = "glob"
    REGEX = "regex"

    @property
    def specificity(self) -> int:
        """Tie-break rank; a higher value is more specific."""
        return _SPECIFICITY[self]


_SPECIFICITY: dict[MatchType, int] = {
    MatchType.EXACT: 4,
    MatchType.DOMAIN: 3,
    MatchType.GLOB: 2,
    MatchType.REGEX: 1,
}


class RuleType(str, Enum):
    """Semantic effect of a matching rule."""

    INCLUDE = "include"
    EXCLUDE = "exclude"
    RESTRICT = "restrict"


class RuleSource(str, Enum):
    """Where a rule came from (informational only)."""

    USER = "user"
    PRESET = "preset"
    IMPORT = "import"
    BOOKMARK = "bookmark"


class ContainerLifetime(str, Enum):
    """Lifecycle policy of a container, consumed read-only by the engine."""

    PERMANENT = "permanent"
    UNTIL_LAST_TAB = "untilLastTab"


def _require_keys(payload: Mapping[str, Any], keys: set[str], *, context: str) -> None:
    missing = keys.difference(payload.keys())
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"Missing required keys in {context}: {missing_str}")


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


@dataclass(frozen=True, slots=True)
class RuleMetadata:
    """Informational rule metadata."""

    description: str | None = None
    source: RuleSource = RuleSource.USER
    tags: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> Self:
        """Construct :class:`RuleMetadata` from a mapping (missing keys use defaults)."""

        if not payload:
            return cls()
        tags = payload.get("tags") or ()
        return cls(
            description=_optional_str(payload.get("description")),
            source=RuleSource(str(payload.get("source") or RuleSource.USER.value)),
            tags=tuple(str(t) for t in tags),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert this model to a JSON-serializable dict."""

        payload: dict[str, Any] = {"source": self.source.value}
        if self.description is not None:
            payload["description"] = self.description
        if self.tags:
            payload["tags"] = list(self.tags)
        return payload


@dataclass(frozen=True, slots=True)
class Rule:
    """
    A routing rule.

    Attributes
    ----------
    id:
        Unique, immutable identifier.
    pattern:
        Matching expression; grammar depends on ``match_type``.
    match_type:
        Pattern grammar.
    rule_type:
        Semantic effect (include, exclude, restrict).
    container_id:
        Target container's cookieStoreId. ``None`` is allowed for exclude
        rules, which then apply regardless of container.
    priority:
        Higher value wins. Not required to be unique.
    enabled:
        Disabled rules never participate in resolution.
    created, modified:
        Epoch milliseconds. Used only to pick survivors among duplicates.
    metadata:
        Informational metadata.
    """

    id: str
    pattern: str
    match_type: MatchType
    rule_type: RuleType
    container_id: str | None
    priority: int = 1
    enabled: bool = True
    created: int = 0
    modified: int = 0
    metadata: RuleMetadata = field(default_factory=RuleMetadata)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`Rule` from its wire shape."""

        _require_keys(payload, {"id", "pattern", "matchType"}, context="rule")
        return cls(
            id=str(payload["id"]),
            pattern=str(payload["pattern"]),
            match_type=MatchType(str(payload["matchType"])),
            rule_type=RuleType(str(payload.get("ruleType") or RuleType.INCLUDE.value)),
            container_id=_optional_str(payload.get("containerId")),
            priority=int(payload.get("priority", 1)),
            enabled=bool(payload.get("enabled", True)),
            created=int(payload.get("created", 0)),
            modified=int(payload.get("modified", 0)),
            metadata=RuleMetadata.from_dict(payload.get("metadata")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert this model to its JSON-serializable wire shape."""

        return {
            "id": self.id,
            "pattern": self.pattern,
            "matchType": self.match_type.value,
            "ruleType": self.rule_type.value,
            "containerId": self.container_id,
            "priority": self.priority,
            "enabled": self.enabled,
            "created": self.created,
            "modified": self.modified,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class ContainerMetadata:
    """Container metadata. ``categories`` carries ``preset:<id>`` markers."""

    description: str | None = None
    lifetime: ContainerLifetime = ContainerLifetime.PERMANENT
    notes: str | None = None
    categories: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> Self:
        """Construct :class:`ContainerMetadata` from a mapping."""

        if not payload:
            return cls()
        return cls(
            description=_optional_str(payload.get("description")),
            lifetime=ContainerLifetime(
                str(payload.get("lifetime") or ContainerLifetime.PERMANENT.value)
            ),
            notes=_optional_str(payload.get("notes")),
            categories=tuple(str(c) for c in payload.get("categories") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert this model to a JSON-serializable dict."""

        payload: dict[str, Any] = {"lifetime": self.lifetime.value}
        if self.description is not None:
            payload["description"] = self.description
        if self.notes is not None:
            payload["notes"] = self.notes
        if self.categories:
            payload["categories"] = list(self.categories)
        return payload


@dataclass(frozen=True, slots=True)
class Container:
    """
    An isolated browsing identity.

    ``cookie_store_id`` is the stable external identity used as the foreign key
    from rules and bookmark associations. Everything else is display-only or
    lifecycle context for collaborators.
    """

    cookie_store_id: str
    name: str
    color: str = "blue"
    icon: str = "fingerprint"
    temporary: bool = False
    sync_enabled: bool = False
    metadata: ContainerMetadata = field(default_factory=ContainerMetadata)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`Container` from its wire shape."""

        _require_keys(payload, {"cookieStoreId", "name"}, context="container")
        return cls(
            cookie_store_id=str(payload["cookieStoreId"]),
            name=str(payload["name"]),
            color=str(payload.get("color") or "blue"),
            icon=str(payload.get("icon") or "fingerprint"),
            temporary=bool(payload.get("temporary", False)),
            sync_enabled=bool(payload.get("syncEnabled", False)),
            metadata=ContainerMetadata.from_dict(payload.get("metadata")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert this model to its JSON-serializable wire shape."""

        return {
            "cookieStoreId": self.cookie_store_id,
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "temporary": self.temporary,
            "syncEnabled": self.sync_enabled,
            "metadata": self.metadata.to_dict(),
        }
