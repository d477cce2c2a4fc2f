"""
Container presets: a bundled container plus a set of domain rules.

Applying a preset is planned first and executed second. Planning is pure: every
template is checked against the identity keys of the target container's rules
(and of the templates already accepted) and either scheduled for creation or
reported as a skipped duplicate. Applying the same preset twice therefore
creates nothing the second time.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from .data_models import Container, ContainerMetadata, MatchType, Rule, RuleMetadata, RuleSource, RuleType
from .errors import SiloError
from .identity import build_identity_set, identity_keys

DEFAULT_PRESET_PRIORITY = 50
PRESET_CATEGORY_PREFIX = "preset:"


@dataclass(frozen=True, slots=True)
class RuleTemplate:
    """A rule without a target container."""

    id: str
    pattern: str
    match_type: MatchType
    rule_type: RuleType
    priority: int
    description: str

    def to_rule(self, container_id: str, *, rule_id: str, now_ms: int = 0) -> Rule:
        """Materialize this template as a rule for ``container_id``."""
        return Rule(
            id=rule_id,
            pattern=self.pattern,
            match_type=self.match_type,
            rule_type=self.rule_type,
            container_id=container_id,
            priority=self.priority,
            enabled=True,
            created=now_ms,
            modified=now_ms,
            metadata=RuleMetadata(description=self.description, source=RuleSource.PRESET),
        )


@dataclass(frozen=True, slots=True)
class PresetContainer:
    """Display attributes of the container a preset creates."""

    name: str
    color: str
    icon: str
    description: str


@dataclass(frozen=True, slots=True)
class Preset:
    """A bundled container template and its rule templates."""

    id: str
    label: str
    short_description: str
    container: PresetContainer
    domains: tuple[str, ...]
    rules: tuple[RuleTemplate, ...]

    @property
    def category_marker(self) -> str:
        """Category stored on containers created from this preset."""
        return f"{PRESET_CATEGORY_PREFIX}{self.id}"

    def new_container(self, cookie_store_id: str) -> Container:
        """Build the container record this preset describes."""
        return Container(
            cookie_store_id=cookie_store_id,
            name=self.container.name,
            color=self.container.color,
            icon=self.container.icon,
            metadata=ContainerMetadata(
                description=self.container.description,
                categories=(self.category_marker,),
            ),
        )


class UnknownPresetError(SiloError):
    """Raised when a preset id is not in the catalog."""


def _stable_id(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "rule"


def _build_rules(preset_id: str, label: str, domains: Iterable[str]) -> tuple[RuleTemplate, ...]:
    seen: set[str] = set()
    out: list[RuleTemplate] = []
    for domain in domains:
        normalized = domain.strip().lower()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        out.append(
            RuleTemplate(
                id=_stable_id(f"{preset_id}-{normalized}"),
                pattern=normalized,
                match_type=MatchType.DOMAIN,
                rule_type=RuleType.INCLUDE,
                priority=DEFAULT_PRESET_PRIORITY,
                description=f"{label} web property ({normalized})",
            )
        )
    return tuple(out)


def _preset(
    preset_id: str,
    label: str,
    short_description: str,
    container: PresetContainer,
    domains: Sequence[str],
) -> Preset:
    return Preset(
        id=preset_id,
        label=label,
        short_description=short_description,
        container=container,
        domains=tuple(domains),
        rules=_build_rules(preset_id, label, domains),
    )


PRESETS: tuple[Preset, ...] = (
    _preset(
        "facebook",
        "Facebook",
        "Meta social and messaging properties including Facebook, Instagram, and Threads.",
        PresetContainer("Facebook", "blue", "fingerprint", "Preset container for Meta properties."),
        ["facebook.com", "fb.com", "messenger.com", "instagram.com", "threads.net", "whatsapp.com"],
    ),
    _preset(
        "google",
        "Google",
        "Google Search, account surfaces, and common platform domains.",
        PresetContainer("Google", "red", "tree", "Preset container for Google service domains."),
        [
            "google.com",
            "gmail.com",
            "g.co",
            "googleapis.com",
            "gstatic.com",
            "googleusercontent.com",
            "googletagmanager.com",
            "doubleclick.net",
        ],
    ),
    _preset(
        "discord",
        "Discord",
        "Discord app, invites, CDN, and related domains.",
        PresetContainer("Discord", "purple", "chill", "Preset container for Discord domains."),
        ["discord.com", "discord.gg", "discordapp.com", "discord.media"],
    ),
    _preset(
        "amazon",
        "Amazon",
        "Amazon retail, AWS, and key consumer properties such as Prime Video and Audible.",
        PresetContainer("Amazon", "orange", "cart", "Preset container for Amazon properties."),
        ["amazon.com", "aws.amazon.com", "amazonaws.com", "primevideo.com", "audible.com"],
    ),
    _preset(
        "x-twitter",
        "X / Twitter",
        "Core X and legacy Twitter domains including short links and static assets.",
        PresetContainer("X / Twitter", "turquoise", "fence", "Preset container for X and Twitter."),
        ["x.com", "twitter.com", "t.co", "twimg.com"],
    ),
    _preset(
        "tiktok",
        "TikTok",
        "TikTok app and CDN domains, including legacy musical.ly traffic.",
        PresetContainer("TikTok", "pink", "gift", "Preset container for TikTok domains."),
        ["tiktok.com", "tiktokv.com", "tiktokcdn.com", "musical.ly"],
    ),
    _preset(
        "youtube",
        "YouTube",
        "YouTube watch and embed domains, short links, and static media assets.",
        PresetContainer("YouTube", "red", "vacation", "Preset container for YouTube domains."),
        ["youtube.com", "youtu.be", "ytimg.com", "youtube-nocookie.com"],
    ),
    _preset(
        "microsoft",
        "Microsoft",
        "Microsoft identity, productivity, cloud, and gaming domains.",
        PresetContainer("Microsoft", "green", "briefcase", "Preset container for Microsoft domains."),
        [
            "microsoft.com",
            "live.com",
            "outlook.com",
            "office.com",
            "office365.com",
            "onedrive.com",
            "sharepoint.com",
            "teams.microsoft.com",
            "xbox.com",
        ],
    ),
)


def get_preset(preset_id: str) -> Preset:
    """
    Return the catalog preset with ``preset_id``.

    Raises
    ------
    UnknownPresetError
        If no preset has that id.
    """
    for preset in PRESETS:
        if preset.id == preset_id:
            return preset
    raise UnknownPresetError(f"Unknown preset: {preset_id!r}")


def find_container_for_preset(containers: Iterable[Container], preset: Preset) -> Container | None:
    """Return the container previously created for ``preset`` (by category marker or name)."""
    wanted_name = preset.container.name.strip().lower()
    for container in containers:
        if preset.category_marker in container.metadata.categories:
            return container
        if container.name.strip().lower() == wanted_name:
            return container
    return None


@dataclass(frozen=True, slots=True)
class PresetPlan:
    """
    Result of planning a preset application.

    Attributes
    ----------
    to_create:
        Rules to insert into the target container.
    to_skip:
        Rules not inserted because an equivalent rule already exists.
    """

    to_create: tuple[Rule, ...]
    to_skip: tuple[Rule, ...]


def new_rule_id() -> str:
    """Return a fresh, unique rule id."""
    return f"rule_{uuid.uuid4().hex}"


def plan_preset_application(
    templates: Iterable[RuleTemplate],
    container_id: str,
    existing_rules: Iterable[Rule],
    *,
    id_factory: Callable[[], str] = new_rule_id,
    now_ms: int = 0,
) -> PresetPlan:
    """
    Split preset templates into rules to create and duplicates to skip.

    Parameters
    ----------
    templates:
        Preset rule templates, in the order they should be created.
    container_id:
        Target container's cookieStoreId.
    existing_rules:
        Current rules. Only rules for ``container_id`` are considered.
    id_factory:
        Source of ids for rules that will be created.
    now_ms:
        Timestamp recorded on the planned rules.

    Returns
    -------
    PresetPlan
        ``to_create`` and ``to_skip``; together they cover every template.
    """
    known = build_identity_set(r for r in existing_rules if r.container_id == container_id)
    to_create: list[Rule] = []
    to_skip: list[Rule] = []
    for template in templates:
        keys = identity_keys(template, container_id)
        if any(key in known for key in keys):
            to_skip.append(template.to_rule(container_id, rule_id=template.id, now_ms=now_ms))
            continue
        known.update(keys)
        to_create.append(template.to_rule(container_id, rule_id=id_factory(), now_ms=now_ms))
    return PresetPlan(to_create=tuple(to_create), to_skip=tuple(to_skip))
