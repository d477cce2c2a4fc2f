from __future__ import annotations

import json
from pathlib import Path

import pytest

import silo.cli as cli_module
from silo_engine.errors import SiloError


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, str]:
    rc = cli_module.main(list(argv))
    return rc, capsys.readouterr().out


def test_cli_help_exits_zero(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["--help"])
    assert excinfo.value.code == 0
    assert "silo" in capsys.readouterr().out


def test_test_pattern_exit_codes(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    root = str(tmp_path)
    rc, out = _run(
        capsys, "test-pattern", "--url", "https://a.example.com/", "--pattern", "*.example.com",
        "--match-type", "domain", "--data-root", root,
    )
    assert (rc, out.strip()) == (0, "match")

    rc, out = _run(
        capsys, "test-pattern", "--url", "https://other.com/", "--pattern", "*.example.com",
        "--match-type", "domain", "--data-root", root,
    )
    assert (rc, out.strip()) == (1, "no match")

    rc, out = _run(
        capsys, "test-pattern", "--url", "https://other.com/", "--pattern", "(a+)+",
        "--match-type", "regex", "--data-root", root,
    )
    assert rc == 2
    assert out.startswith("ERROR:")


def test_suggest_prints_match_type(capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(capsys, "suggest", "*.example.com") == (0, "domain\n")


def test_validate_reports_suggestion(capsys: pytest.CaptureFixture[str]) -> None:
    rc, out = _run(capsys, "validate", "https://example.com/x", "--match-type", "domain")
    assert rc == 2
    assert "suggestion: example.com" in out


def test_rules_workflow_resolves_from_store(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    root = str(tmp_path)
    assert _run(capsys, "containers", "add", "--id", "work", "--name", "Work", "--data-root", root)[0] == 0

    rc, out = _run(capsys, "rules", "add", "--pattern", "example.com", "--container", "work", "--data-root", root)
    assert rc == 0
    rule_id = out.strip()
    assert rule_id.startswith("rule_")

    rc, out = _run(capsys, "resolve", "--url", "https://example.com/a", "--data-root", root)
    assert rc == 0
    assert json.loads(out) == {"kind": "route", "containerId": "work"}

    rc, out = _run(capsys, "rules", "list", "--data-root", root)
    assert rule_id in out

    assert _run(capsys, "rules", "delete", rule_id, "--data-root", root)[0] == 0
    rc, out = _run(capsys, "resolve", "--url", "https://example.com/a", "--data-root", root)
    assert json.loads(out) == {"kind": "none"}


def test_rules_add_rejects_invalid_pattern(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    root = str(tmp_path)
    _run(capsys, "containers", "add", "--id", "work", "--name", "Work", "--data-root", root)
    rc, out = _run(
        capsys, "rules", "add", "--pattern", "example.com/path", "--match-type", "domain",
        "--container", "work", "--data-root", root,
    )
    assert rc == 2
    assert "ERROR:" in out


def test_preset_apply_is_idempotent(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    root = str(tmp_path)
    rc, out = _run(capsys, "preset", "apply", "--preset", "discord", "--data-root", root)
    assert rc == 0
    assert "4 created, 0 skipped" in out

    rc, out = _run(capsys, "preset", "apply", "--preset", "discord", "--data-root", root)
    assert rc == 0
    assert "0 created, 4 skipped" in out

    rc, out = _run(capsys, "resolve", "--url", "https://discord.gg/invite", "--data-root", root)
    assert json.loads(out) == {"kind": "route", "containerId": "silo-discord"}


def test_preset_apply_unknown_preset(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    rc, out = _run(capsys, "preset", "apply", "--preset", "nope", "--data-root", str(tmp_path))
    assert rc == 2
    assert out.startswith("ERROR:")


def test_csv_export_and_import(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    source = str(tmp_path / "source")
    target = str(tmp_path / "target")
    csv_path = tmp_path / "rules.csv"

    _run(capsys, "containers", "add", "--id", "work", "--name", "Work", "--data-root", source)
    _run(capsys, "rules", "add", "--pattern", "example.com", "--container", "work", "--data-root", source)
    assert _run(capsys, "rules", "export-csv", str(csv_path), "--data-root", source)[0] == 0

    rc, out = _run(capsys, "rules", "import-csv", str(csv_path), "--create-missing", "--data-root", target)
    assert rc == 0
    assert "Imported 1 rules" in out

    rc, out = _run(capsys, "rules", "list", "--data-root", target)
    assert "example.com" in out


def test_bookmark_encode_and_decode(capsys: pytest.CaptureFixture[str]) -> None:
    rc, out = _run(capsys, "bookmark", "encode", "https://example.com/?a=1", "--container", "work")
    assert (rc, out.strip()) == (0, "https://example.com/?a=1&silo=work")
    assert _run(capsys, "bookmark", "decode", "https://example.com/?silo=work") == (0, "work\n")


def test_domain_errors_return_2(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def _boom(_data_root: object = None) -> None:
        raise SiloError("nope")

    monkeypatch.setattr(cli_module, "open_rule_store", _boom)

    rc, out = _run(capsys, "resolve", "--url", "https://example.com/")
    assert rc == 2
    assert "ERROR: nope" in out


def test_rules_add_warns_about_duplicates(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    root = str(tmp_path)
    _run(capsys, "containers", "add", "--id", "work", "--name", "Work", "--data-root", root)

    rc, out = _run(capsys, "rules", "add", "--pattern", "example.com", "--container", "work", "--data-root", root)
    assert rc == 0
    assert "warning:" not in out

    rc, out = _run(capsys, "rules", "add", "--pattern", "Example.com ", "--container", "work", "--data-root", root)
    assert rc == 0
    assert "duplicates an existing rule for work" in out
