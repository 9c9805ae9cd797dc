from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from botrange.app import app
from botrange.engine import Registry, SourceResult
from botrange.engine.address import parse
from botrange.orchestrator import RunReport

runner = CliRunner()

SOURCES_YAML = """\
sources:
  - name: Alpha
    id: alpha
    type: text
    url: https://alpha.example/ips.txt
  - name: Beta
    id: beta
    type: file
    file: beta.txt
"""


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("BOTRANGE_HOME", raising=False)
    return tmp_path


def _write_sources(home: Path, text: str = SOURCES_YAML) -> Path:
    path = home / "config" / "sources.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_validate_uses_bundled_template(home: Path) -> None:
    result = runner.invoke(app, ["--home", str(home), "validate"])
    assert result.exit_code == 0, result.output
    assert "9 sources valid." in result.output
    assert (home / "config" / "engine.yaml").exists()


def test_verbose_flag_takes_no_value(home: Path) -> None:
    result = runner.invoke(app, ["--home", str(home), "--verbose", "validate"])
    assert result.exit_code == 0, result.output
    assert "9 sources valid." in result.output


def test_validate_reports_invalid_configuration(home: Path) -> None:
    _write_sources(home, "sources:\n  - name: Broken\n    id: broken\n    type: whois\n")
    result = runner.invoke(app, ["--home", str(home), "validate"])
    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_validate_reports_security_violation(home: Path) -> None:
    _write_sources(
        home, "sources:\n  - name: Sneaky\n    id: sneaky\n    type: file\n    file: ../etc/passwd\n"
    )
    result = runner.invoke(app, ["--home", str(home), "validate"])
    assert result.exit_code == 2


def test_sources_lists_configured_entries(home: Path) -> None:
    _write_sources(home)
    result = runner.invoke(app, ["--home", str(home), "sources"])
    assert result.exit_code == 0, result.output
    assert "Alpha" in result.output
    assert "beta.txt" in result.output


def test_run_rejects_unknown_ids(home: Path) -> None:
    _write_sources(home)
    result = runner.invoke(app, ["--home", str(home), "run", "--only", "gamma"])
    assert result.exit_code == 2
    assert "gamma" in result.output


def _fake_report(sources) -> RunReport:
    registry = Registry()
    results = []
    for source in sources:
        if source.id == "alpha":
            address = parse("203.0.113.0/24")
            result = SourceResult(
                descriptor=source,
                addresses=[address],
                origins={address.text: {"https://alpha.example/ips.txt"}},
            )
            registry.merge(result)
        else:
            result = SourceResult(descriptor=source, error="boom")
        results.append(result)
    registry.freeze()
    return RunReport(registry=registry, results=results)


def test_run_prints_registry_as_json(home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_sources(home)
    seen: list[list[str]] = []

    async def fake_run_sources(config, sources):
        seen.append([source.id for source in sources])
        return _fake_report(sources)

    monkeypatch.setattr("botrange.app.run_sources", fake_run_sources)
    result = runner.invoke(app, ["--home", str(home), "run", "--only", "alpha", "--json"])
    assert result.exit_code == 0, result.output
    assert seen == [["alpha"]]
    assert json.loads(result.stdout) == {
        "203.0.113.0/24": {"names": ["Alpha"], "origins": ["https://alpha.example/ips.txt"]}
    }


def test_run_summary_and_exit_code(home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_sources(home)

    async def fake_run_sources(config, sources):
        return _fake_report(sources)

    monkeypatch.setattr("botrange.app.run_sources", fake_run_sources)
    result = runner.invoke(app, ["--home", str(home), "run"])
    assert result.exit_code == 0, result.output
    assert "1 unique addresses from 1/2 sources." in result.output

    failing = runner.invoke(app, ["--home", str(home), "run", "--only", "beta"])
    assert failing.exit_code == 1
