from __future__ import annotations

import pytest

from silo_engine.clock import SteppingClock
from silo_engine.data_models import MatchType
from silo_engine.errors import InvalidPatternError, PatternEvaluationTimeout
from silo_engine.matching.pattern_matcher import (
    CompiledPatternCache,
    MatcherOptions,
    compile_pattern,
    glob_to_regex,
    pattern_examples,
    suggest_match_type,
    test as pattern_test,
    validate_pattern,
)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://example.com/", True),
        ("http://EXAMPLE.com/any/path?q=1", True),
        ("https://example.com.:8443/x", True),
        ("https://sub.example.com/", False),
        ("https://badexample.com/", False),
        ("not a url", False),
    ],
)
def test_bare_domain_matches_host_only(url: str, expected: bool) -> None:
    assert pattern_test(url, "example.com", MatchType.DOMAIN) is expected


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://example.com/", True),
        ("https://a.example.com/", True),
        ("https://a.b.example.com/path", True),
        ("https://badexample.com/", False),
        ("https://example.com.evil.net/", False),
    ],
)
def test_wildcard_domain_matches_base_and_subdomains(url: str, expected: bool) -> None:
    assert pattern_test(url, "*.example.com", MatchType.DOMAIN) is expected


@pytest.mark.parametrize(
    "pattern",
    [
        "https://example.com",
        "example.com/path",
        "example.com:8080",
        "foo.*.com",
        "exa*mple.com",
        "-bad.com",
        "bad-.com",
        "",
    ],
)
def test_domain_rejects_malformed_patterns(pattern: str) -> None:
    with pytest.raises(InvalidPatternError):
        compile_pattern(pattern, MatchType.DOMAIN)


def test_domain_accepts_internationalized_hosts() -> None:
    compiled = compile_pattern("münchen.de", MatchType.DOMAIN)
    assert compiled("https://xn--mnchen-3ya.de/")
    assert compiled("https://MÜNCHEN.de/karte")


def test_domain_ignores_inline_markers() -> None:
    compiled = compile_pattern("@example.com", MatchType.DOMAIN)
    assert compiled.effective_type is MatchType.DOMAIN
    assert compiled("https://example.com/")


def test_glob_question_mark_matches_exactly_one_character() -> None:
    compiled = compile_pattern("https://example.com/?", MatchType.GLOB)
    assert compiled("https://example.com/a")
    assert not compiled("https://example.com/ab")
    assert not compiled("https://example.com/")


def test_glob_star_crosses_path_segments_and_is_anchored() -> None:
    compiled = compile_pattern("*://*.example.com/docs/*", MatchType.GLOB)
    assert compiled("https://www.example.com/docs/a/b/c")
    assert not compiled("https://www.example.com/blog/docs/a")


def test_glob_is_case_insensitive_and_escapes_regex_characters() -> None:
    compiled = compile_pattern("https://EXAMPLE.com/a+b(1)/*", MatchType.GLOB)
    assert compiled("https://example.com/A+B(1)/page")
    assert not compiled("https://example.com/aab1/page")


@pytest.mark.parametrize("pattern", ["", "https://***"])
def test_glob_rejects_empty_and_triple_wildcards(pattern: str) -> None:
    with pytest.raises(InvalidPatternError):
        compile_pattern(pattern, MatchType.GLOB)


def test_glob_to_regex_collapses_star_runs() -> None:
    assert glob_to_regex("a**b?") == "a.*b."


def test_exact_normalizes_scheme_host_port_and_trailing_slash() -> None:
    compiled = compile_pattern("HTTPS://Example.COM:443/Path/", MatchType.EXACT)
    assert compiled("https://example.com/Path")
    assert compiled("https://example.com/Path/")
    assert not compiled("https://example.com/path")
    assert not compiled("https://example.com:8443/Path")


def test_exact_compares_query_and_fragment() -> None:
    compiled = compile_pattern("https://example.com/a?x=1", MatchType.EXACT)
    assert compiled("https://example.com/a?x=1")
    assert not compiled("https://example.com/a?x=2")


def test_exact_requires_absolute_url() -> None:
    with pytest.raises(InvalidPatternError) as excinfo:
        compile_pattern("example.com/page", MatchType.EXACT)
    assert excinfo.value.match_type == "exact"


def test_regex_is_anchored_when_pattern_has_no_anchors() -> None:
    compiled = compile_pattern(r"https://example\.com/.*", MatchType.REGEX)
    assert compiled("https://example.com/x")
    assert not compiled("see https://example.com/x")
    assert not pattern_test("https://example.com", "example", MatchType.REGEX)


def test_regex_with_explicit_anchor_is_used_verbatim() -> None:
    compiled = compile_pattern(r"^https://example\.com", MatchType.REGEX)
    assert compiled("https://example.com/anything")
    assert not compiled("http://example.com/")


def test_regex_is_case_insensitive() -> None:
    assert pattern_test("HTTPS://EXAMPLE.COM/", r"https://example\.com/", MatchType.REGEX)


def test_regex_keeps_leading_inline_flags() -> None:
    compiled = compile_pattern(r"(?s)https://example\.com/.*", MatchType.REGEX)
    assert compiled("https://example.com/a")


def test_verbose_regex_with_trailing_comment_compiles() -> None:
    compiled = compile_pattern(r"(?x) https://example\.com/ .*  # any page", MatchType.REGEX)
    assert compiled("https://EXAMPLE.com/a")
    assert not compiled("https://other.com/")

    bare = compile_pattern(r"(?x)example\.com # note", MatchType.REGEX)
    assert bare("example.com")
    assert not bare("https://example.com/")


def test_regex_compile_errors_raise_invalid_pattern() -> None:
    with pytest.raises(InvalidPatternError) as excinfo:
        compile_pattern("(unclosed", MatchType.REGEX)
    assert "Invalid regular expression" in excinfo.value.reason


@pytest.mark.parametrize(
    "pattern",
    [r"(a+)+", r"(.*)*", r"(\w+\s?)*", r"https://x\.com/(a|a)*b", r"https://x\.com/(a|ab)*c"],
)
def test_regex_rejects_catastrophic_shapes(pattern: str) -> None:
    with pytest.raises(InvalidPatternError) as excinfo:
        compile_pattern(pattern, MatchType.REGEX)
    assert "Unsafe regular expression" in excinfo.value.reason


def test_regex_rejects_overlong_patterns() -> None:
    options = MatcherOptions(max_regex_length=10)
    with pytest.raises(InvalidPatternError):
        compile_pattern("a" * 11, MatchType.REGEX, options=options)


def test_regex_evaluation_over_budget_raises_timeout() -> None:
    options = MatcherOptions(time_budget=0.5, clock=SteppingClock(step=1.0))
    compiled = compile_pattern(r"https://example\.com/.*", MatchType.REGEX, options=options)
    with pytest.raises(PatternEvaluationTimeout) as excinfo:
        compiled("https://example.com/x")
    assert excinfo.value.budget == 0.5


def test_regex_evaluation_within_budget_returns_result() -> None:
    options = MatcherOptions(time_budget=0.5, clock=SteppingClock(step=0.1))
    compiled = compile_pattern(r"https://example\.com/.*", MatchType.REGEX, options=options)
    assert compiled("https://example.com/x")


def test_inline_prefixes_override_declared_type() -> None:
    forced_regex = compile_pattern(r"@^https://example\.com", MatchType.GLOB)
    assert forced_regex.effective_type is MatchType.REGEX
    assert forced_regex("https://example.com/x")

    forced_glob = compile_pattern("!*.pdf", MatchType.EXACT)
    assert forced_glob.effective_type is MatchType.GLOB
    assert forced_glob("https://example.com/file.PDF")


def test_unknown_match_type_is_rejected() -> None:
    with pytest.raises(InvalidPatternError):
        compile_pattern("example.com", "wildcard")


def test_cache_reuses_and_invalidates_entries() -> None:
    cache = CompiledPatternCache()
    first = cache.get("example.com", "domain")
    assert cache.get("example.com", MatchType.DOMAIN) is first
    assert ("example.com", MatchType.DOMAIN) in cache

    cache.invalidate("example.com", MatchType.DOMAIN)
    assert ("example.com", MatchType.DOMAIN) not in cache
    assert len(cache) == 0


def test_cache_does_not_store_failures() -> None:
    cache = CompiledPatternCache()
    with pytest.raises(InvalidPatternError):
        cache.get("(", MatchType.REGEX)
    assert len(cache) == 0


@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("https://example.com/page", MatchType.EXACT),
        ("https://example.com/*", MatchType.GLOB),
        ("*.example.com", MatchType.DOMAIN),
        ("example.com", MatchType.DOMAIN),
        ("localhost", MatchType.DOMAIN),
        (r"^https://.*\.example\.com", MatchType.REGEX),
        ("   ", None),
    ],
)
def test_suggest_match_type(pattern: str, expected: MatchType | None) -> None:
    assert suggest_match_type(pattern) is expected


def test_validate_pattern_suggests_host_for_domain_with_scheme() -> None:
    result = validate_pattern("https://example.com/path", MatchType.DOMAIN)
    assert not result.valid
    assert result.suggestion == "example.com"


def test_validate_pattern_warns_on_broad_regex() -> None:
    result = validate_pattern(".*", MatchType.REGEX)
    assert result.valid
    assert result.warning is not None


@pytest.mark.parametrize("match_type", list(MatchType))
def test_pattern_examples_compile_for_their_type(match_type: MatchType) -> None:
    examples = pattern_examples(match_type)
    assert examples
    for example in examples:
        compile_pattern(example, match_type)


def test_bounded_cache_evicts_least_recently_used() -> None:
    cache = CompiledPatternCache(max_entries=2)
    cache.get("a.com", MatchType.DOMAIN)
    cache.get("b.com", MatchType.DOMAIN)
    cache.get("a.com", MatchType.DOMAIN)
    cache.get("c.com", MatchType.DOMAIN)

    assert len(cache) == 2
    assert ("a.com", MatchType.DOMAIN) in cache
    assert ("b.com", MatchType.DOMAIN) not in cache
    assert ("c.com", MatchType.DOMAIN) in cache
