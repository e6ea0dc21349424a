"""Tests for sqlassess.render — console, JSON, and porcelain output."""

from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING

import pytest
from rich.console import Console

from sqlassess.catalog import Check, ExpectCondition, RowsCondition
from sqlassess.engine import EvaluationEngine
from sqlassess.render import (
    format_json,
    format_porcelain,
    render_categories,
    render_checks,
    render_report,
    report_to_dict,
)
from sqlassess.report import AssessmentReport, collect

if TYPE_CHECKING:
    from sqlassess.target import Target, TargetMetadata


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, width=120, force_terminal=False), buf


@pytest.fixture()
def report(metadata: TargetMetadata) -> AssessmentReport:
    checks = [
        Check(
            id="AutoCloseOff",
            message="Auto-close is on for [{items}]",
            tags=frozenset({"Storage"}),
            condition=RowsCondition("databases", "auto_close", "eq", 0, key="name"),
            help_link="https://example.test/autoclose",
        ),
        Check(
            id="MaxDop",
            message="unused",
            tags=frozenset({"Performance"}),
            condition=ExpectCondition("max_dop", "gt", 0),
        ),
        Check(
            id="Ghost",
            message="unused",
            tags=frozenset({"Performance"}),
            condition=ExpectCondition("ghost", "eq", 1),
            level="error",
        ),
    ]
    results = EvaluationEngine(max_workers=1).evaluate(checks, metadata)
    return collect(results, target=metadata.target, categories=["Storage", "Performance"])


class TestRenderConsole:
    def test_categories(self, target: Target) -> None:
        console, buf = _console()
        render_categories(target, ["Security", "[Odd]", "Performance"], console)
        out = buf.getvalue()
        assert "All categories available for SQL01:" in out
        lines = [line.strip() for line in out.splitlines() if line.strip()]
        assert lines[1:] == ["Performance", "Security", "[Odd]"]

    def test_report_hides_passed_by_default(self, report: AssessmentReport) -> None:
        console, buf = _console()
        render_report(report, console)
        out = buf.getvalue()
        assert "AutoCloseOff" in out
        assert "Auto-close is on for [hr]" in out
        assert "https://example.test/autoclose" in out
        assert "Check skipped" in out
        assert "MaxDop" not in out
        assert "SQL01 - 3 check(s)" in out
        assert "Passed: 1" in out

    def test_report_show_passed(self, report: AssessmentReport) -> None:
        console, buf = _console()
        render_report(report, console, show_passed=True)
        assert "Check 'MaxDop' passed" in buf.getvalue()

    def test_partial_report_title(self, target: Target) -> None:
        console, buf = _console()
        render_report(collect([], target=target, partial=True), console)
        assert "(partial)" in buf.getvalue()

    def test_checks_table(self, report: AssessmentReport) -> None:
        console, buf = _console()
        render_checks([r.check for r in report], console)
        out = buf.getvalue()
        assert "AutoCloseOff" in out
        assert "Performance" in out


class TestFormatters:
    def test_json_shape(self, report: AssessmentReport) -> None:
        data = json.loads(format_json(report))
        assert data["target"] == {
            "name": "SQL01",
            "kind": "Server",
            "version": "15.0.2000.5",
            "edition": "Enterprise",
            "platform": "Windows",
        }
        assert data["categories"] == ["Storage", "Performance"]
        assert [r["status"] for r in data["results"]] == ["Warning", "Passed", "Skipped"]
        assert data["results"][0]["evidence"]["rows"] == [{"name": "hr", "auto_close": 1}]
        assert data["summary"]["total"] == 3
        assert data["summary"]["by_status"]["Warning"] == 1

    def test_report_to_dict_partial_flag(self, target: Target) -> None:
        assert report_to_dict(collect([], target=target, partial=True))["partial"] is True

    def test_porcelain(self, report: AssessmentReport) -> None:
        assert format_porcelain(report).splitlines() == [
            "AutoCloseOff:Warning:https://example.test/autoclose",
            "MaxDop:Passed:",
            "Ghost:Skipped:",
        ]

    def test_porcelain_empty(self, target: Target) -> None:
        assert format_porcelain(collect([], target=target)) == ""
