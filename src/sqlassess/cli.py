"""sqlassess CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from sqlassess import __version__
from sqlassess.errors import (
    CatalogLoadError,
    TargetConnectionError,
    TargetTimeoutError,
    UnsupportedTargetError,
)

if TYPE_CHECKING:
    from sqlassess.catalog import RuleCatalog
    from sqlassess.config import AssessmentConfig
    from sqlassess.report import AssessmentReport
    from sqlassess.target import TargetMetadata

PROMPT = "Enter category (ENTER for all categories, 'exit' to leave) > "
EXIT_WORD = "exit"

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _configure_logging(level: str) -> None:
    """Route the ``sqlassess`` logger to the current stderr at *level*."""
    logger = logging.getLogger("sqlassess")
    logger.setLevel(level)
    for existing in [h for h in logger.handlers if getattr(h, "_sqlassess", False)]:
        logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler._sqlassess = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


@click.group()
@click.version_option(version=__version__, prog_name="sqlassess")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ./sqlassess.yml if present).",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, config_path: Path | None, verbose: bool, quiet: bool) -> None:
    """sqlassess - rule-based health assessment for SQL Server."""
    from sqlassess.config import load_config

    # Provisional level until the config file has been read.
    _configure_logging("DEBUG" if verbose else "ERROR" if quiet else "WARNING")
    config = load_config(config_path)
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    else:
        level = config.log_level or "WARNING"
    _configure_logging(level)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["quiet"] = quiet


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _connection_options(fn: Any) -> Any:
    fn = click.option(
        "--connection-string",
        default=None,
        help="Raw ODBC connection string (overrides the other connection options).",
    )(fn)
    fn = click.option("--database", "-d", default=None, help="Database to connect to.")(fn)
    fn = click.option("--server", "-S", default=None, help="Server name (default: '.').")(fn)
    fn = click.option(
        "--timeout",
        type=click.FloatRange(min=0, min_open=True),
        default=None,
        help="Seconds to wait for the server (default: 30).",
    )(fn)
    return fn


def _catalog_options(fn: Any) -> Any:
    fn = click.option(
        "--no-default-rules",
        is_flag=True,
        default=False,
        help="Do not load the built-in ruleset.",
    )(fn)
    fn = click.option(
        "--rules",
        "rules",
        multiple=True,
        type=click.Path(exists=True, path_type=Path),
        help="Additional rule file or directory (repeatable).",
    )(fn)
    return fn


def _resolve_config(
    config: AssessmentConfig,
    *,
    server: str | None = None,
    database: str | None = None,
    connection_string: str | None = None,
    timeout: float | None = None,
) -> AssessmentConfig:
    from dataclasses import replace

    connection = replace(
        config.connection,
        **{
            k: v
            for k, v in {
                "server": server,
                "database": database,
                "connection_string": connection_string,
                "timeout": timeout,
            }.items()
            if v is not None
        },
    )
    return config.with_overrides(connection=connection)


def _load_catalog(
    config: AssessmentConfig, rules: tuple[Path, ...], *, no_default: bool
) -> RuleCatalog:
    """Load the catalog or exit 2 with the load error."""
    from sqlassess.catalog import DEFAULT_SOURCE, RuleCatalog

    sources: list[Path | str] = []
    if config.include_default_rules and not no_default:
        sources.append(DEFAULT_SOURCE)
    sources.extend(config.rules)
    sources.extend(rules)

    if not sources:
        click.echo("Error: no rule sources (pass --rules or enable the default rules).", err=True)
        sys.exit(2)

    try:
        catalog = RuleCatalog.load(*sources)
    except CatalogLoadError as exc:
        click.echo(f"Error: invalid rule catalog: {exc}", err=True)
        sys.exit(2)

    log = logging.getLogger(__name__)
    for warning in catalog.validate():
        log.warning(warning)
    return catalog


def _fetch_metadata(config: AssessmentConfig, catalog: RuleCatalog) -> TargetMetadata:
    """Connect, identify the target, and run probes; exit 2 on failure."""
    from sqlassess.assessment import make_provider
    from sqlassess.connection import open_connection

    settings = config.connection
    try:
        handle = open_connection(settings)
    except TargetConnectionError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    provider = make_provider(catalog, config.metadata_query)
    try:
        metadata = provider.fetch(handle, settings.timeout)
    except TargetTimeoutError as exc:
        # The worker may still be using the handle; leave it to the driver timeout.
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    except (TargetConnectionError, UnsupportedTargetError) as exc:
        handle.close()
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    handle.close()
    return metadata


def _prompt_categories(*, err: bool) -> list[str] | None:
    """Read one line of categories; ``None`` means the user typed ``exit``.

    End of input counts as an empty line (all categories).
    """
    from sqlassess.selector import parse_categories

    click.echo(PROMPT, nl=False, err=err)
    line = click.get_text_stream("stdin").readline()
    if line.strip().lower() == EXIT_WORD:
        return None
    return parse_categories(line)


def _run_cancellable(
    catalog: RuleCatalog,
    metadata: TargetMetadata,
    categories: list[str],
    max_workers: int | None,
) -> AssessmentReport:
    """Evaluate in a worker thread so Ctrl-C yields a partial report."""
    from sqlassess.assessment import assess

    cancel = threading.Event()
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="sqlassess-run") as pool:
        future = pool.submit(
            assess,
            catalog,
            metadata,
            categories=categories,
            max_workers=max_workers,
            cancel=cancel,
        )
        try:
            return future.result()
        except KeyboardInterrupt:
            cancel.set()
            click.echo("Cancelling: waiting for running checks to finish...", err=True)
            return future.result()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@main.command()
@_connection_options
@_catalog_options
@click.option(
    "--category",
    "-c",
    "categories",
    multiple=True,
    help="Category to assess (repeatable). Skips the interactive prompt.",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum checks evaluated in parallel (default: one per CPU).",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["rich", "json", "porcelain"]),
    default=None,
    help="Output format (default: rich if TTY, porcelain if piped).",
)
@click.option("--show-passed", is_flag=True, default=False, help="Also list passed checks.")
@click.option("--strict", is_flag=True, default=False, help="Exit 1 if any finding is reported.")
@click.pass_context
def assess(
    ctx: click.Context,
    *,
    server: str | None,
    database: str | None,
    connection_string: str | None,
    timeout: float | None,
    rules: tuple[Path, ...],
    no_default_rules: bool,
    categories: tuple[str, ...],
    workers: int | None,
    fmt: str | None,
    show_passed: bool,
    strict: bool,
) -> None:
    """Assess a server: list categories, prompt for a filter, run checks.

    Exit codes: 0 = done (or left with 'exit'), 1 = findings with --strict,
    2 = connection, target, or catalog error.
    """
    from rich.console import Console

    from sqlassess.assessment import list_categories
    from sqlassess.render import format_json, format_porcelain, render_categories, render_report

    config = _resolve_config(
        ctx.obj["config"],
        server=server,
        database=database,
        connection_string=connection_string,
        timeout=timeout,
    )
    if fmt is None:
        fmt = "rich" if sys.stdout.isatty() else "porcelain"

    catalog = _load_catalog(config, rules, no_default=no_default_rules)
    metadata = _fetch_metadata(config, catalog)

    selected = list(categories)
    if not selected:
        interactive_err = fmt != "rich"
        render_categories(
            metadata.target,
            list_categories(catalog, metadata.target),
            Console(stderr=interactive_err),
        )
        answer = _prompt_categories(err=interactive_err)
        if answer is None:
            return
        selected = answer

    report = _run_cancellable(catalog, metadata, selected, workers or config.max_workers)

    if fmt == "rich":
        render_report(report, Console(), show_passed=show_passed)
    else:
        output = format_json(report) if fmt == "json" else format_porcelain(report)
        if output:
            click.echo(output)

    if strict and report.findings:
        sys.exit(1)


@main.command()
@_connection_options
@_catalog_options
@click.option("--json", "as_json", is_flag=True, help="JSON output.")
@click.pass_context
def categories(
    ctx: click.Context,
    *,
    server: str | None,
    database: str | None,
    connection_string: str | None,
    timeout: float | None,
    rules: tuple[Path, ...],
    no_default_rules: bool,
    as_json: bool,
) -> None:
    """List the categories available for a server."""
    from rich.console import Console

    from sqlassess.assessment import list_categories
    from sqlassess.render import render_categories

    config = _resolve_config(
        ctx.obj["config"],
        server=server,
        database=database,
        connection_string=connection_string,
        timeout=timeout,
    )
    catalog = _load_catalog(config, rules, no_default=no_default_rules)
    metadata = _fetch_metadata(config, catalog)
    tags = list_categories(catalog, metadata.target)

    if as_json:
        click.echo(json.dumps({"target": metadata.target.name, "categories": tags}, indent=2))
    else:
        render_categories(metadata.target, tags, Console())


@main.command("checks")
@_catalog_options
@click.option("--json", "as_json", is_flag=True, help="JSON output.")
@click.pass_context
def checks_cmd(
    ctx: click.Context, *, rules: tuple[Path, ...], no_default_rules: bool, as_json: bool
) -> None:
    """List the checks in the rule catalog (no connection needed)."""
    config: AssessmentConfig = ctx.obj["config"]
    catalog = _load_catalog(config, rules, no_default=no_default_rules)

    if as_json:
        data = [
            {
                "id": c.id,
                "level": c.level,
                "tags": sorted(c.tags),
                "kind": c.condition.kind,
                "help_link": c.help_link,
            }
            for c in catalog.checks
        ]
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return

    from rich.console import Console

    from sqlassess.render import render_checks

    render_checks(catalog.checks, Console())
