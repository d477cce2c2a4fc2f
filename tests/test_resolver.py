from __future__ import annotations

import pytest

from silo_engine.clock import SteppingClock
from silo_engine.data_models import MatchType, Rule, RuleType
from silo_engine.errors import InvalidPatternError, PatternEvaluationTimeout
from silo_engine.matching.pattern_matcher import CompiledPatternCache, MatcherOptions
from silo_engine.resolver import (
    Blocked,
    NoMatch,
    ResolutionContext,
    Resolver,
    Route,
    explain,
    resolve,
)


def _rule(
    rule_id: str,
    pattern: str,
    container_id: str | None = "A",
    *,
    priority: int = 1,
    match_type: MatchType = MatchType.DOMAIN,
    rule_type: RuleType = RuleType.INCLUDE,
    enabled: bool = True,
) -> Rule:
    return Rule(
        id=rule_id,
        pattern=pattern,
        match_type=match_type,
        rule_type=rule_type,
        container_id=container_id,
        priority=priority,
        enabled=enabled,
    )


URL = "https://example.com/page"


def test_higher_priority_include_wins() -> None:
    rules = [
        _rule("low", "example.com", "B", priority=5),
        _rule("high", "example.com", "A", priority=10),
    ]
    assert resolve(URL, rules) == Route(container_id="A", rule_id="high")


def test_no_rules_gives_no_match() -> None:
    result = resolve(URL, [])
    assert isinstance(result, NoMatch)
    assert result.to_dict() == {"kind": "none"}


def test_disabled_rules_are_ignored() -> None:
    rules = [_rule("off", "example.com", enabled=False)]
    assert isinstance(resolve(URL, rules), NoMatch)


def test_exclude_wins_ties_with_best_include() -> None:
    rules = [
        _rule("inc", "example.com", "A", priority=5),
        _rule("exc", "example.com", "A", priority=5, rule_type=RuleType.EXCLUDE),
    ]
    result = resolve(URL, rules)
    assert isinstance(result, NoMatch)
    assert result.reason == "Excluded by rule"


def test_lower_priority_exclude_does_not_block_include() -> None:
    rules = [
        _rule("inc", "example.com", "A", priority=5),
        _rule("exc", "example.com", "A", priority=4, rule_type=RuleType.EXCLUDE),
    ]
    assert resolve(URL, rules) == Route(container_id="A", rule_id="inc")


def test_container_less_exclude_applies_globally() -> None:
    rules = [
        _rule("inc", "example.com", "A", priority=5),
        _rule("exc", "*.example.com", None, priority=50, rule_type=RuleType.EXCLUDE),
    ]
    ctx = ResolutionContext(live_container_ids=frozenset({"A"}))
    assert isinstance(resolve(URL, rules, ctx), NoMatch)


def test_container_less_include_is_inert() -> None:
    trace = explain(URL, [_rule("inc", "example.com", None)])
    assert isinstance(trace.result, NoMatch)
    assert [ref.rule_id for ref in trace.inert] == ["inc"]


def test_specificity_breaks_priority_ties() -> None:
    rules = [
        _rule("regex", r"https://example\.com/.*", "R", match_type=MatchType.REGEX),
        _rule("glob", "https://example.com/*", "G", match_type=MatchType.GLOB),
        _rule("domain", "example.com", "D"),
        _rule("exact", URL, "E", match_type=MatchType.EXACT),
    ]
    assert resolve(URL, rules) == Route(container_id="E", rule_id="exact")
    assert resolve(URL, rules[:3]) == Route(container_id="D", rule_id="domain")
    assert resolve(URL, rules[:2]) == Route(container_id="G", rule_id="glob")


def test_inline_prefix_specificity_uses_effective_type() -> None:
    rules = [
        _rule("forced-regex", r"@https://example\.com/.*", "R", match_type=MatchType.GLOB),
        _rule("glob", "https://example.com/*", "G", match_type=MatchType.GLOB),
    ]
    assert resolve(URL, rules) == Route(container_id="G", rule_id="glob")


def test_smallest_rule_id_breaks_remaining_ties() -> None:
    rules = [_rule("rule-b", "example.com", "B"), _rule("rule-a", "example.com", "A")]
    assert resolve(URL, rules) == Route(container_id="A", rule_id="rule-a")
    assert resolve(URL, list(reversed(rules))) == Route(container_id="A", rule_id="rule-a")


def test_restrict_blocks_navigation_outside_its_patterns() -> None:
    rules = [_rule("r", "*.bank.com", "banking", rule_type=RuleType.RESTRICT)]
    ctx = ResolutionContext(current_container_id="banking")

    result = resolve("https://news.example.org/", rules, ctx)
    assert result == Blocked(container_id="banking")
    assert result.to_dict() == {"kind": "blocked"}


def test_restrict_allows_matching_navigation() -> None:
    rules = [
        _rule("r", "*.bank.com", "banking", rule_type=RuleType.RESTRICT),
        _rule("i", "www.bank.com", "banking", priority=5),
    ]
    ctx = ResolutionContext(current_container_id="banking")
    assert resolve("https://www.bank.com/login", rules, ctx) == Route(container_id="banking", rule_id="i")
    assert isinstance(resolve("https://online.bank.com/", rules, ctx), NoMatch)


def test_restrict_only_confines_its_own_container() -> None:
    rules = [_rule("r", "*.bank.com", "banking", rule_type=RuleType.RESTRICT)]
    assert isinstance(
        resolve("https://news.example.org/", rules, ResolutionContext(current_container_id="personal")),
        NoMatch,
    )
    assert isinstance(resolve("https://news.example.org/", rules), NoMatch)


def test_disabled_restrict_does_not_confine() -> None:
    rules = [_rule("r", "*.bank.com", "banking", rule_type=RuleType.RESTRICT, enabled=False)]
    ctx = ResolutionContext(current_container_id="banking")
    assert isinstance(resolve("https://news.example.org/", rules, ctx), NoMatch)


def test_rules_for_deleted_containers_are_inert() -> None:
    rules = [_rule("stale", "example.com", "gone", priority=100)]
    ctx = ResolutionContext(live_container_ids=frozenset({"A"}))

    trace = explain(URL, rules, ctx)
    assert isinstance(trace.result, NoMatch)
    assert [(ref.rule_id, ref.container_id) for ref in trace.inert] == [("stale", "gone")]


def test_stale_rule_does_not_shadow_live_rule() -> None:
    rules = [
        _rule("stale", "example.com", "gone", priority=100),
        _rule("live", "example.com", "A", priority=1),
    ]
    ctx = ResolutionContext(live_container_ids=frozenset({"A"}))
    assert resolve(URL, rules, ctx) == Route(container_id="A", rule_id="live")


def test_broken_rule_is_contained_per_call() -> None:
    rules = [
        _rule("broken", "(", "X", priority=100, match_type=MatchType.REGEX),
        _rule("good", "example.com", "A"),
    ]
    trace = explain(URL, rules)
    assert trace.result == Route(container_id="A", rule_id="good")
    assert [f.rule_id for f in trace.failures] == ["broken"]
    assert isinstance(trace.failures[0].error, InvalidPatternError)


def test_verbose_regex_rule_does_not_break_resolution() -> None:
    rules = [
        _rule("verbose", r"(?x)example\.com # note", "X", priority=100, match_type=MatchType.REGEX),
        _rule("good", "example.com", "A"),
    ]
    trace = explain(URL, rules)
    assert trace.result == Route(container_id="A", rule_id="good")
    assert trace.failures == ()


def test_overlapping_alternation_rule_is_refused_not_evaluated() -> None:
    rules = [
        _rule("slow", r"https://x\.com/(a|a)*b", "X", priority=100, match_type=MatchType.REGEX),
        _rule("good", "x.com", "A"),
    ]
    trace = explain("https://x.com/" + "a" * 40 + "!", rules)
    assert trace.result == Route(container_id="A", rule_id="good")
    assert isinstance(trace.failures[0].error, InvalidPatternError)


def test_resolver_uses_the_cache_it_is_given() -> None:
    cache = CompiledPatternCache()
    resolver = Resolver(cache)
    assert resolver.cache is cache

    resolver.resolve(URL, [_rule("r", "example.com", "A")])
    assert ("example.com", MatchType.DOMAIN) in cache


def test_timed_out_regex_counts_as_not_matching() -> None:
    options = MatcherOptions(time_budget=0.5, clock=SteppingClock(step=1.0))
    resolver = Resolver(CompiledPatternCache(options))
    rules = [
        _rule("slow", r"https://example\.com/.*", "S", priority=100, match_type=MatchType.REGEX),
        _rule("fast", "example.com", "A"),
    ]
    trace = resolver.explain(URL, rules)
    assert trace.result == Route(container_id="A", rule_id="fast")
    assert isinstance(trace.failures[0].error, PatternEvaluationTimeout)


def test_timed_out_restrict_still_confines() -> None:
    options = MatcherOptions(time_budget=0.5, clock=SteppingClock(step=1.0))
    resolver = Resolver(CompiledPatternCache(options))
    rules = [
        _rule("slow", r"https://bank\.com/.*", "banking", match_type=MatchType.REGEX, rule_type=RuleType.RESTRICT),
    ]
    ctx = ResolutionContext(current_container_id="banking")
    assert resolver.resolve("https://bank.com/login", rules, ctx) == Blocked(container_id="banking")


def test_route_wire_shape() -> None:
    assert Route(container_id="A", rule_id="r").to_dict() == {"kind": "route", "containerId": "A"}


def test_trace_to_dict_lists_matched_rules() -> None:
    rules = [
        _rule("inc", "example.com", "A", priority=5),
        _rule("exc", "example.com", "A", priority=1, rule_type=RuleType.EXCLUDE),
    ]
    payload = explain(URL, rules).to_dict()
    assert payload["result"] == {"kind": "route", "containerId": "A"}
    assert payload["includes"] == ["inc"]
    assert payload["excludes"] == ["exc"]
    assert payload["failures"] == []


@pytest.mark.parametrize("order", [0, 1])
def test_result_is_independent_of_rule_order(order: int) -> None:
    rules = [
        _rule("a", "example.com", "A", priority=3),
        _rule("b", "*.example.com", "B", priority=3),
        _rule("c", "https://example.com/*", "C", priority=2, match_type=MatchType.GLOB),
    ]
    if order:
        rules.reverse()
    assert resolve(URL, rules) == Route(container_id="A", rule_id="a")
