"""Presentation: rich console output plus JSON and porcelain formatters."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from sqlassess.engine import ResultStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from rich.console import Console

    from sqlassess.catalog import Check
    from sqlassess.report import AssessmentReport
    from sqlassess.target import Target

_STATUS_STYLE: dict[ResultStatus, str] = {
    ResultStatus.PASSED: "green",
    ResultStatus.INFORMATION: "cyan",
    ResultStatus.WARNING: "yellow",
    ResultStatus.ERROR: "bold red",
    ResultStatus.SKIPPED: "dim",
}


def render_categories(target: Target, tags: Iterable[str], console: Console) -> None:
    """Print the categories available for *target*, one per line."""
    from rich.markup import escape

    console.print(f"All categories available for [bold]{escape(target.name)}[/]:")
    console.print()
    for tag in sorted(tags):
        console.print(f"  {tag}", markup=False)
    console.print()


def render_report(report: AssessmentReport, console: Console, *, show_passed: bool = False) -> None:
    """Print each result's message and help link, then a summary panel.

    Passed checks are hidden unless *show_passed* is set.
    """
    from rich.markup import escape
    from rich.panel import Panel

    for result in report.stream():
        if result.status is ResultStatus.PASSED and not show_passed:
            continue
        style = _STATUS_STYLE[result.status]
        console.print("-------")
        console.print(f"  [{style}]{result.status.value}[/] [bold]{escape(result.check_id)}[/]")
        console.print(f"  {result.message}", markup=False)
        if result.help_link:
            console.print(f"  {result.help_link}", markup=False, highlight=False)

    summary = [f"{status.value}: {report.count(status)}" for status in ResultStatus]
    title = f"{escape(report.target.name)} - {report.total} check(s)"
    if report.partial:
        title += " (partial)"
    console.print()
    console.print(Panel("   ".join(summary), title=title, border_style="blue"))


def render_checks(checks: Iterable[Check], console: Console) -> None:
    """Print a table of catalog checks."""
    from rich.table import Table

    table = Table(title="Checks")
    table.add_column("id", style="cyan")
    table.add_column("level")
    table.add_column("tags")
    for check in checks:
        table.add_row(check.id, check.level, ", ".join(sorted(check.tags)))
    console.print(table)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict) or hasattr(value, "items"):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


def report_to_dict(report: AssessmentReport) -> dict[str, object]:
    """Convert a report to a JSON-compatible dict."""
    target = report.target
    return {
        "target": {
            "name": target.name,
            "kind": target.kind.value,
            "version": str(target.version),
            "edition": target.edition.label,
            "platform": target.platform,
        },
        "categories": list(report.categories),
        "partial": report.partial,
        "results": [
            {
                "check_id": r.check_id,
                "status": r.status.value,
                "message": r.message,
                "help_link": r.help_link,
                "tags": sorted(r.check.tags),
                "evidence": _jsonable(r.evidence),
            }
            for r in report.results
        ],
        "summary": {
            "total": report.total,
            "by_status": {status.value: report.count(status) for status in ResultStatus},
            "elapsed_ms": report.elapsed_ms,
        },
    }


def format_json(report: AssessmentReport) -> str:
    return json.dumps(report_to_dict(report), ensure_ascii=False, indent=2)


def format_porcelain(report: AssessmentReport) -> str:
    """One line per result: ``check_id:status:help_link``.

    Returns an empty string when the report has no results.
    """
    return "\n".join(f"{r.check_id}:{r.status.value}:{r.help_link}" for r in report.results)
