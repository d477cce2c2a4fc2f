"""
Command-line interface for Silo.

Notes
-----
The CLI is intentionally thin. It parses arguments and delegates to engine modules.

Exit codes
----------
- 0: success (for ``test-pattern``: the URL matched)
- 1: ``test-pattern`` only, the URL did not match
- 2: a domain error; the message is printed as ``ERROR: ...``
"""

from __future__ import annotations

import argparse
import json
import logging
import uuid
from pathlib import Path

from silo_engine import bookmarks
from silo_engine.csv_io import export_rules_csv, parse_rules_csv
from silo_engine.data_models import Container, MatchType, Rule, RuleType
from silo_engine.errors import SiloError
from silo_engine.identity import find_duplicate_rules, is_duplicate, suggest_rules_to_keep
from silo_engine.matching.pattern_matcher import compile_pattern, suggest_match_type, validate_pattern
from silo_engine.presets import PRESETS, find_container_for_preset, get_preset
from silo_engine.rule_io import read_rules_json, write_rules_json_atomic
from silo_engine.rule_store.sqlite_store import open_rule_store
from silo_engine.rule_store.store import RuleStore
from silo_engine.rule_store.validation import lint_rules
from silo_engine.settings import load_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_MATCH_TYPES = [m.value for m in MatchType]
_RULE_TYPES = [r.value for r in RuleType]


def _add_data_root(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--data-root",
        type=Path,
        default=None,
        help="Override Silo data root (primarily for testing). If omitted, defaults are used.",
    )


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="silo",
        description="Silo container routing engine",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    test_p = sub.add_parser("test-pattern", help="Check whether a URL matches a pattern")
    test_p.add_argument("--url", required=True, help="URL to test")
    test_p.add_argument("--pattern", required=True, help="Pattern to test against")
    test_p.add_argument("--match-type", required=True, choices=_MATCH_TYPES)
    _add_data_root(test_p)

    suggest_p = sub.add_parser("suggest", help="Suggest a match type for a pattern")
    suggest_p.add_argument("pattern", help="Pattern to classify")

    validate_p = sub.add_parser("validate", help="Validate a pattern for a match type")
    validate_p.add_argument("pattern", help="Pattern to validate")
    validate_p.add_argument("--match-type", required=True, choices=_MATCH_TYPES)

    for name, help_text in (
        ("resolve", "Resolve a URL against the stored rules"),
        ("explain", "Resolve a URL and show the matching rules"),
    ):
        resolve_p = sub.add_parser(name, help=help_text)
        resolve_p.add_argument("--url", required=True, help="Navigation target")
        resolve_p.add_argument("--current", default=None, help="cookieStoreId of the current tab")
        _add_data_root(resolve_p)

    # containers
    containers_p = sub.add_parser("containers", help="Manage containers")
    containers_sub = containers_p.add_subparsers(dest="containers_command", required=True)
    c_list = containers_sub.add_parser("list", help="List containers")
    _add_data_root(c_list)
    c_add = containers_sub.add_parser("add", help="Add a container")
    c_add.add_argument("--id", required=True, dest="cookie_store_id", help="cookieStoreId")
    c_add.add_argument("--name", required=True)
    c_add.add_argument("--color", default="blue")
    c_add.add_argument("--icon", default="fingerprint")
    _add_data_root(c_add)
    c_remove = containers_sub.add_parser("remove", help="Remove a container and its rules")
    c_remove.add_argument("cookie_store_id")
    _add_data_root(c_remove)

    # rules
    rules_p = sub.add_parser("rules", help="Manage rules")
    rules_sub = rules_p.add_subparsers(dest="rules_command", required=True)
    r_list = rules_sub.add_parser("list", help="List rules in evaluation order")
    _add_data_root(r_list)

    r_add = rules_sub.add_parser("add", help="Add a rule")
    r_add.add_argument("--pattern", required=True)
    r_add.add_argument("--match-type", default=None, choices=_MATCH_TYPES, help="Default: suggested")
    r_add.add_argument("--rule-type", default=RuleType.INCLUDE.value, choices=_RULE_TYPES)
    r_add.add_argument("--container", default=None, help="Target cookieStoreId")
    r_add.add_argument("--priority", type=int, default=None)
    r_add.add_argument("--description", default=None)
    r_add.add_argument("--disabled", action="store_true", help="Create the rule disabled")
    _add_data_root(r_add)

    r_delete = rules_sub.add_parser("delete", help="Delete a rule")
    r_delete.add_argument("rule_id")
    _add_data_root(r_delete)

    r_lint = rules_sub.add_parser("lint", help="Report invalid rules and likely mistakes")
    _add_data_root(r_lint)

    r_dupes = rules_sub.add_parser("duplicates", help="Report duplicate rules")
    r_dupes.add_argument("--remove", action="store_true", help="Delete the suggested duplicates")
    _add_data_root(r_dupes)

    r_import = rules_sub.add_parser("import-csv", help="Import rules from CSV")
    r_import.add_argument("path", type=Path)
    r_import.add_argument(
        "--create-missing",
        action="store_true",
        help="Create containers referenced by name but not found.",
    )
    _add_data_root(r_import)

    r_export = rules_sub.add_parser("export-csv", help="Export rules to CSV")
    r_export.add_argument("path", type=Path)
    r_export.add_argument("--enabled-only", action="store_true")
    _add_data_root(r_export)

    r_export_json = rules_sub.add_parser("export-json", help="Export containers and rules to JSON")
    r_export_json.add_argument("path", type=Path)
    _add_data_root(r_export_json)

    r_import_json = rules_sub.add_parser("import-json", help="Import containers and rules from JSON")
    r_import_json.add_argument("path", type=Path)
    _add_data_root(r_import_json)

    # presets
    preset_p = sub.add_parser("preset", help="Container presets")
    preset_sub = preset_p.add_subparsers(dest="preset_command", required=True)
    preset_sub.add_parser("list", help="List built-in presets")
    p_apply = preset_sub.add_parser("apply", help="Apply a preset to a container")
    p_apply.add_argument("--preset", required=True, help="Preset id")
    p_apply.add_argument(
        "--container",
        default=None,
        help="Target cookieStoreId. Created from the preset if it does not exist.",
    )
    _add_data_root(p_apply)

    # bookmarks
    bm_p = sub.add_parser("bookmark", help="Bookmark container associations")
    bm_sub = bm_p.add_subparsers(dest="bookmark_command", required=True)
    bm_encode = bm_sub.add_parser("encode", help="Pin a bookmark URL to a container")
    bm_encode.add_argument("url")
    bm_encode.add_argument("--container", default=None, help="cookieStoreId; omit to unpin")
    bm_decode = bm_sub.add_parser("decode", help="Show the container a bookmark URL is pinned to")
    bm_decode.add_argument("url")

    return parser


def _format_rule(rule: Rule) -> str:
    state = "" if rule.enabled else " (disabled)"
    target = rule.container_id or "*"
    return (
        f"{rule.id}  {rule.priority:>4}  {rule.rule_type.value:<8} {rule.match_type.value:<6} "
        f"{rule.pattern} -> {target}{state}"
    )


def _run_containers(args: argparse.Namespace, store: RuleStore) -> int:
    if args.containers_command == "list":
        for c in store.containers():
            print(f"{c.cookie_store_id}  {c.name}  ({c.color}/{c.icon})")
        return 0
    if args.containers_command == "add":
        store.add_container(
            Container(
                cookie_store_id=args.cookie_store_id,
                name=args.name,
                color=args.color,
                icon=args.icon,
            )
        )
        print(f"Added container {args.cookie_store_id}")
        return 0
    removed = store.remove_container(args.cookie_store_id)
    print(f"Removed container {args.cookie_store_id} ({len(removed)} rules)")
    return 0


def _run_rules(args: argparse.Namespace, store: RuleStore, default_priority: int) -> int:
    command = args.rules_command

    if command == "list":
        for rule in store.list():
            print(_format_rule(rule))
        return 0

    if command == "add":
        match_type = args.match_type or suggest_match_type(args.pattern)
        if match_type is None:
            print("ERROR: Cannot infer a match type for an empty pattern.")
            return 2
        rule = store.create(
            pattern=args.pattern,
            match_type=match_type,
            rule_type=args.rule_type,
            container_id=args.container,
            priority=default_priority if args.priority is None else args.priority,
            enabled=not args.disabled,
            description=args.description,
        )
        print(rule.id)
        if is_duplicate(rule, [r for r in store.list() if r.id != rule.id]):
            print(f"warning: {rule.pattern} duplicates an existing rule for {rule.container_id or '*'}")
        return 0

    if command == "delete":
        store.delete(args.rule_id)
        print(f"Deleted rule {args.rule_id}")
        return 0

    if command == "lint":
        report = lint_rules(store.list())
        for line in report.errors:
            print(f"error: {line}")
        for line in report.warnings:
            print(f"warning: {line}")
        return 0 if report.valid else 2

    if command == "duplicates":
        groups = find_duplicate_rules(store.list())
        plan = suggest_rules_to_keep(groups)
        for group in groups:
            print(f"{group.key}: {', '.join(r.id for r in group.rules)}")
        if args.remove:
            for rule in plan.remove:
                store.delete(rule.id)
            print(f"Removed {len(plan.remove)} duplicate rules")
        return 0

    if command == "import-csv":
        text = args.path.read_text(encoding="utf-8")
        result = parse_rules_csv(text, store.containers())
        if args.create_missing and result.missing_containers:
            for name in result.missing_containers:
                store.add_container(
                    Container(cookie_store_id=f"silo-{uuid.uuid4().hex[:12]}", name=name)
                )
            result = parse_rules_csv(text, store.containers())
        for issue in result.errors:
            print(f"line {issue.line}: error: {issue.message}")
        for issue in result.warnings:
            print(f"line {issue.line}: warning: {issue.message}")
        created = store.add_many(result.ready)
        print(f"Imported {len(created)} rules ({len(result.rules) - len(created)} not ready)")
        return 0

    if command == "export-csv":
        args.path.write_text(
            export_rules_csv(store.list(), store.containers(), include_disabled=not args.enabled_only),
            encoding="utf-8",
        )
        print(f"Wrote {args.path}")
        return 0

    if command == "export-json":
        write_rules_json_atomic(args.path, store.list(), store.containers())
        print(f"Wrote {args.path}")
        return 0

    if command == "import-json":
        export = read_rules_json(args.path)
        known = store.live_container_ids()
        for container in export.containers:
            if container.cookie_store_id not in known:
                store.add_container(container)
        existing = {r.id for r in store.list()}
        created = store.add_many([r for r in export.rules if r.id not in existing])
        print(f"Imported {len(created)} rules")
        return 0

    raise AssertionError(f"unhandled rules command: {command}")


def _run_preset(args: argparse.Namespace) -> int:
    if args.preset_command == "list":
        for preset in PRESETS:
            print(f"{preset.id}  {preset.label}: {preset.short_description}")
        return 0

    preset = get_preset(args.preset)
    store = open_rule_store(args.data_root)
    if args.container is not None:
        container = store.get_container(args.container)
        if container is None:
            container = store.add_container(preset.new_container(args.container))
    else:
        container = find_container_for_preset(store.containers(), preset)
        if container is None:
            container = store.add_container(preset.new_container(f"silo-{preset.id}"))

    plan = store.apply_preset(preset, container.cookie_store_id)
    print(
        f"Applied {preset.id} to {container.cookie_store_id}: "
        f"{len(plan.to_create)} created, {len(plan.to_skip)} skipped"
    )
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    command = args.command

    if command == "suggest":
        suggestion = suggest_match_type(args.pattern)
        print(suggestion.value if suggestion is not None else "none")
        return 0

    if command == "validate":
        check = validate_pattern(args.pattern, args.match_type)
        if check.valid:
            print("valid")
            if check.warning:
                print(f"warning: {check.warning}")
            return 0
        print(f"ERROR: {check.error}")
        if check.suggestion:
            print(f"suggestion: {check.suggestion}")
        return 2

    if command == "test-pattern":
        options = load_settings(data_root=args.data_root).matcher_options()
        matched = compile_pattern(args.pattern, args.match_type, options=options)(args.url)
        print("match" if matched else "no match")
        return 0 if matched else 1

    if command == "preset":
        return _run_preset(args)

    if command == "bookmark":
        if args.bookmark_command == "encode":
            print(bookmarks.encode(args.url, args.container))
        else:
            print(bookmarks.decode(args.url) or "none")
        return 0

    store = open_rule_store(args.data_root)
    if command == "resolve":
        print(json.dumps(store.resolve(args.url, args.current).to_dict(), sort_keys=True))
        return 0
    if command == "explain":
        print(json.dumps(store.explain(args.url, args.current).to_dict(), indent=2, sort_keys=True))
        return 0
    if command == "containers":
        return _run_containers(args, store)
    if command == "rules":
        settings = load_settings(data_root=args.data_root)
        return _run_rules(args, store, settings.default_priority)

    raise AssertionError(f"unhandled command: {command}")


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Parameters
    ----------
    argv:
        Optional argument vector. If None, argparse uses sys.argv.

    Returns
    -------
    int
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format=LOG_FORMAT)

    try:
        return _dispatch(args)
    except (SiloError, ValueError, OSError) as exc:
        print(f"ERROR: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
