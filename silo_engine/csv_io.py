"""
CSV import and export of rules.

Format
------
One rule per line::

    pattern,container_name,match_type,rule_type,priority,enabled,description

Only the first two columns are required. Lines starting with ``#`` are
comments. Containers are referenced by name (case-insensitive); exclude rules
may leave the container empty.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from .data_models import Container, MatchType, Rule, RuleMetadata, RuleSource, RuleType
from .errors import InvalidPatternError
from .matching.pattern_matcher import compile_pattern
from .presets import new_rule_id

log = logging.getLogger(__name__)

CSV_COLUMNS: tuple[str, ...] = (
    "pattern",
    "container_name",
    "match_type",
    "rule_type",
    "priority",
    "enabled",
    "description",
)
NO_CONTAINER = "No Container"


@dataclass(frozen=True, slots=True)
class CsvIssue:
    """A problem tied to one input line."""

    line: int
    message: str
    data: str = ""


@dataclass(frozen=True, slots=True)
class CsvImportResult:
    """
    Outcome of parsing a CSV document.

    Attributes
    ----------
    rules:
        Parsed rules. Rules whose container is missing have ``container_id``
        None; see :attr:`ready`.
    missing_containers:
        Container names referenced but not found, in first-seen order.
    errors:
        Lines that could not be turned into a rule.
    warnings:
        Lines accepted with a fallback or a missing container.
    skipped:
        Blank, comment and header lines.
    """

    rules: tuple[Rule, ...] = ()
    missing_containers: tuple[str, ...] = ()
    errors: tuple[CsvIssue, ...] = ()
    warnings: tuple[CsvIssue, ...] = ()
    skipped: int = 0

    @property
    def ready(self) -> tuple[Rule, ...]:
        """Rules that can be inserted as-is."""
        return tuple(
            r for r in self.rules if r.container_id is not None or r.rule_type is RuleType.EXCLUDE
        )


@dataclass(slots=True)
class _Accumulator:
    rules: list[Rule] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: list[CsvIssue] = field(default_factory=list)
    warnings: list[CsvIssue] = field(default_factory=list)
    skipped: int = 0


def _read_fields(line: str) -> list[str]:
    return [value.strip() for value in next(csv.reader([line]))]


def _is_header(fields: Sequence[str]) -> bool:
    return [f.lower() for f in fields[:2]] == list(CSV_COLUMNS[:2])


def parse_rules_csv(
    text: str,
    containers: Sequence[Container],
    *,
    id_factory: Callable[[], str] = new_rule_id,
    now_ms: int = 0,
) -> CsvImportResult:
    """
    Parse CSV text into rules.

    Parameters
    ----------
    text:
        CSV document.
    containers:
        Existing containers, used to resolve ``container_name``.
    id_factory:
        Source of ids for parsed rules.
    now_ms:
        Timestamp recorded on the parsed rules.

    Returns
    -------
    CsvImportResult
        Parsed rules plus per-line diagnostics. Parsing never raises for bad
        input lines.
    """
    by_name = {c.name.strip().lower(): c for c in containers}
    acc = _Accumulator()

    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            acc.skipped += 1
            continue

        try:
            fields = _read_fields(line)
        except csv.Error as exc:
            acc.errors.append(CsvIssue(number, f"Malformed CSV line: {exc}", line))
            continue

        if len(fields) < 2 or _is_header(fields):
            acc.skipped += 1
            continue

        fields += [""] * (len(CSV_COLUMNS) - len(fields))
        pattern, container_name, match_raw, rule_raw, priority_raw, enabled_raw, description = fields[
            : len(CSV_COLUMNS)
        ]

        if not pattern:
            acc.errors.append(CsvIssue(number, "Pattern is required", line))
            continue

        match_type = MatchType.DOMAIN
        if match_raw:
            try:
                match_type = MatchType(match_raw.lower())
            except ValueError:
                acc.warnings.append(
                    CsvIssue(number, f'Unknown match type "{match_raw}", using domain', line)
                )

        rule_type = RuleType.INCLUDE
        if rule_raw:
            try:
                rule_type = RuleType(rule_raw.lower())
            except ValueError:
                acc.warnings.append(
                    CsvIssue(number, f'Unknown rule type "{rule_raw}", using include', line)
                )

        container_id: str | None = None
        if container_name and not (rule_type is RuleType.EXCLUDE and container_name == NO_CONTAINER):
            container = by_name.get(container_name.lower())
            if container is None:
                if container_name.lower() not in (m.lower() for m in acc.missing):
                    acc.missing.append(container_name)
                acc.warnings.append(
                    CsvIssue(number, f'Container "{container_name}" does not exist', line)
                )
            else:
                container_id = container.cookie_store_id
        elif rule_type is not RuleType.EXCLUDE:
            acc.errors.append(CsvIssue(number, "Container name is required", line))
            continue

        priority = 1
        if priority_raw:
            try:
                priority = int(priority_raw)
            except ValueError:
                acc.warnings.append(
                    CsvIssue(number, f'Invalid priority "{priority_raw}", using 1', line)
                )

        try:
            compile_pattern(pattern, match_type)
        except InvalidPatternError as exc:
            acc.errors.append(CsvIssue(number, f"Invalid {match_type.value} pattern: {exc.reason}", line))
            continue

        acc.rules.append(
            Rule(
                id=id_factory(),
                pattern=pattern,
                match_type=match_type,
                rule_type=rule_type,
                container_id=container_id,
                priority=priority,
                enabled=enabled_raw.lower() != "false",
                created=now_ms,
                modified=now_ms,
                metadata=RuleMetadata(description=description or None, source=RuleSource.IMPORT),
            )
        )

    log.debug(
        "Parsed CSV: %d rules, %d errors, %d warnings, %d skipped",
        len(acc.rules),
        len(acc.errors),
        len(acc.warnings),
        acc.skipped,
    )
    return CsvImportResult(
        rules=tuple(acc.rules),
        missing_containers=tuple(acc.missing),
        errors=tuple(acc.errors),
        warnings=tuple(acc.warnings),
        skipped=acc.skipped,
    )


def export_rules_csv(
    rules: Sequence[Rule],
    containers: Sequence[Container],
    *,
    include_disabled: bool = True,
    include_comments: bool = True,
    include_headers: bool = True,
    generated_at: datetime | None = None,
) -> str:
    """
    Render rules as CSV text.

    Rules are ordered by container name, then priority (descending), then
    pattern. Exclude rules are written with an empty container name.
    """
    by_id = {c.cookie_store_id: c for c in containers}

    def container_name(rule: Rule) -> str:
        if rule.rule_type is RuleType.EXCLUDE:
            return ""
        container = by_id.get(rule.container_id or "")
        return container.name if container is not None else NO_CONTAINER

    selected = [r for r in rules if include_disabled or r.enabled]
    selected.sort(key=lambda r: (container_name(r), -r.priority, r.pattern))

    buffer = io.StringIO()
    if include_comments:
        stamp = (generated_at or datetime.now(timezone.utc)).isoformat()
        buffer.write("# Silo Rules Export\n")
        buffer.write(f"# Generated on {stamp}\n")
        buffer.write(f"# Format: {', '.join(CSV_COLUMNS)}\n")
        buffer.write("#\n")

    writer = csv.writer(buffer, lineterminator="\n")
    if include_headers:
        writer.writerow(CSV_COLUMNS)
    for rule in selected:
        writer.writerow(
            [
                rule.pattern,
                container_name(rule),
                rule.match_type.value,
                rule.rule_type.value,
                str(rule.priority),
                "true" if rule.enabled else "false",
                rule.metadata.description or "",
            ]
        )
    return buffer.getvalue()
