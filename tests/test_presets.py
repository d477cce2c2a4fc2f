from __future__ import annotations

import itertools
from typing import Callable

import pytest

from silo_engine.data_models import (
    Container,
    ContainerMetadata,
    MatchType,
    Rule,
    RuleSource,
    RuleType,
)
from silo_engine.presets import (
    DEFAULT_PRESET_PRIORITY,
    PRESETS,
    RuleTemplate,
    UnknownPresetError,
    find_container_for_preset,
    get_preset,
    plan_preset_application,
)


def _ids(prefix: str = "id") -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def test_catalog_presets_are_domain_include_rules_with_stable_ids() -> None:
    expected = {"facebook", "google", "discord", "amazon", "x-twitter", "tiktok", "youtube", "microsoft"}
    assert {p.id for p in PRESETS} == expected
    for preset in PRESETS:
        assert preset.rules
        assert len({t.id for t in preset.rules}) == len(preset.rules)
        for template in preset.rules:
            assert template.match_type is MatchType.DOMAIN
            assert template.rule_type is RuleType.INCLUDE
            assert template.priority == DEFAULT_PRESET_PRIORITY

    assert get_preset("discord").rules[0].id == "discord-discord-com"


def test_get_preset_rejects_unknown_ids() -> None:
    with pytest.raises(UnknownPresetError):
        get_preset("myspace")


def test_first_application_creates_every_template() -> None:
    preset = get_preset("youtube")
    plan = plan_preset_application(preset.rules, "yt", [], id_factory=_ids(), now_ms=42)

    assert [r.pattern for r in plan.to_create] == list(preset.domains)
    assert [r.id for r in plan.to_create] == [f"id-{i}" for i in range(1, len(preset.domains) + 1)]
    assert all(r.container_id == "yt" for r in plan.to_create)
    assert all(r.metadata.source is RuleSource.PRESET for r in plan.to_create)
    assert all(r.created == 42 for r in plan.to_create)
    assert plan.to_skip == ()


def test_second_application_creates_nothing() -> None:
    preset = get_preset("google")
    first = plan_preset_application(preset.rules, "g", [], id_factory=_ids())
    second = plan_preset_application(preset.rules, "g", first.to_create, id_factory=_ids("again"))

    assert second.to_create == ()
    assert [r.pattern for r in second.to_skip] == [t.pattern for t in preset.rules]


def test_existing_rules_in_other_containers_do_not_block_application() -> None:
    preset = get_preset("discord")
    first = plan_preset_application(preset.rules, "one", [], id_factory=_ids())
    plan = plan_preset_application(preset.rules, "two", first.to_create, id_factory=_ids())
    assert len(plan.to_create) == len(preset.rules)


def test_legacy_glob_rules_count_as_existing() -> None:
    legacy = Rule(
        id="legacy",
        pattern="*://discord.com/*",
        match_type=MatchType.GLOB,
        rule_type=RuleType.INCLUDE,
        container_id="d",
    )
    plan = plan_preset_application(get_preset("discord").rules, "d", [legacy], id_factory=_ids())
    assert [r.pattern for r in plan.to_skip] == ["discord.com"]
    assert "discord.com" not in [r.pattern for r in plan.to_create]


def test_duplicate_templates_within_one_batch_are_skipped() -> None:
    template = RuleTemplate(
        id="t",
        pattern="example.com",
        match_type=MatchType.DOMAIN,
        rule_type=RuleType.INCLUDE,
        priority=50,
        description="Example",
    )
    shouted = RuleTemplate(
        id="t2",
        pattern="EXAMPLE.com",
        match_type=MatchType.DOMAIN,
        rule_type=RuleType.INCLUDE,
        priority=50,
        description="Example",
    )
    plan = plan_preset_application([template, shouted], "c", [], id_factory=_ids())
    assert len(plan.to_create) == 1
    assert [r.id for r in plan.to_skip] == ["t2"]


def test_find_container_for_preset_by_marker_or_name() -> None:
    preset = get_preset("amazon")
    marked = Container(
        cookie_store_id="c1",
        name="Shopping",
        metadata=ContainerMetadata(categories=(preset.category_marker,)),
    )
    named = Container(cookie_store_id="c2", name="  amazon ")
    unrelated = Container(cookie_store_id="c3", name="Work")

    assert find_container_for_preset([unrelated, marked], preset) is marked
    assert find_container_for_preset([named], preset) is named
    assert find_container_for_preset([unrelated], preset) is None


def test_new_container_carries_preset_marker() -> None:
    preset = get_preset("tiktok")
    container = preset.new_container("firefox-container-9")
    assert container.name == "TikTok"
    assert preset.category_marker in container.metadata.categories
