"""
JSON export and import of rules and containers.

Notes
-----
- Exports are written atomically (temp file + replace).
- The document carries a format version so readers can refuse newer exports.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from .data_models import Container, Rule
from .errors import RuleImportError

EXPORT_FORMAT = "silo.rules"
EXPORT_VERSION = 1


@dataclass(frozen=True, slots=True)
class RuleExport:
    """Rules and containers read from an export document."""

    containers: tuple[Container, ...]
    rules: tuple[Rule, ...]


def export_payload(rules: Sequence[Rule], containers: Sequence[Container]) -> dict[str, Any]:
    """Build the JSON-serializable export document."""
    return {
        "format": EXPORT_FORMAT,
        "version": EXPORT_VERSION,
        "containers": [c.to_dict() for c in containers],
        "rules": [r.to_dict() for r in rules],
    }


def write_json_atomic(json_path: Path, payload: Mapping[str, Any]) -> None:
    """
    Write JSON atomically to disk.

    Raises
    ------
    RuleImportError
        If the file cannot be written.
    """
    json_path = json_path.expanduser()
    json_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = json_path.with_suffix(json_path.suffix + ".tmp")

    try:
        with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True, ensure_ascii=False)
            handle.write("\n")
        os.replace(temp_path, json_path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise RuleImportError(f"Failed to write JSON: {json_path} ({exc!s})") from exc


def write_rules_json_atomic(
    path: Path, rules: Sequence[Rule], containers: Sequence[Container]
) -> None:
    """Export ``rules`` and ``containers`` to ``path``."""
    write_json_atomic(path, export_payload(rules, containers))


def parse_rules_payload(payload: Any) -> RuleExport:
    """
    Validate and decode an export document.

    Raises
    ------
    RuleImportError
        If the document is not a supported export.
    """
    if not isinstance(payload, dict):
        raise RuleImportError("Export document must be a JSON object.")
    if payload.get("format") != EXPORT_FORMAT:
        raise RuleImportError(f"Not a Silo rules export (format={payload.get('format')!r}).")
    version = payload.get("version")
    if not isinstance(version, int) or version > EXPORT_VERSION:
        raise RuleImportError(f"Unsupported export version: {version!r}")

    try:
        containers = tuple(Container.from_dict(c) for c in payload.get("containers") or ())
        rules = tuple(Rule.from_dict(r) for r in payload.get("rules") or ())
    except (ValueError, TypeError, AttributeError) as exc:
        raise RuleImportError(f"Export validation failed: {exc}") from exc
    return RuleExport(containers=containers, rules=rules)


def read_rules_json(path: Path) -> RuleExport:
    """
    Read an export written by :func:`write_rules_json_atomic`.

    Raises
    ------
    RuleImportError
        If the file cannot be read or is not a valid export.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RuleImportError(f"Failed to read export: {path}") from exc
    except json.JSONDecodeError as exc:
        raise RuleImportError(f"Invalid JSON in export: {path}") from exc
    return parse_rules_payload(payload)
