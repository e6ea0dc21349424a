"""Assessment orchestrator: fetch metadata, select checks, evaluate, report."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlassess.engine import EvaluationEngine
from sqlassess.report import AssessmentReport, collect
from sqlassess.selector import select
from sqlassess.target import MetadataProvider, TargetKind

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable

    from sqlassess.catalog import RuleCatalog
    from sqlassess.target import Target, TargetMetadata

logger = logging.getLogger(__name__)


def make_provider(catalog: RuleCatalog, query: str | None = None) -> MetadataProvider:
    """Build a provider that runs the catalog's probes after identification."""
    if query:
        return MetadataProvider(query=query, probes=catalog.probes)
    return MetadataProvider(probes=catalog.probes)


def list_categories(catalog: RuleCatalog, target: Target) -> list[str]:
    """Sorted categories available for *target*."""
    return sorted(catalog.tags_for(target))


def assess(
    catalog: RuleCatalog,
    metadata: TargetMetadata,
    *,
    categories: Iterable[str] | None = None,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
) -> AssessmentReport:
    """Select and evaluate checks against an already collected snapshot."""
    wanted = list(categories or ())
    checks = select(catalog, metadata.target, wanted)
    engine = EvaluationEngine(max_workers=max_workers)
    run = engine.run(checks, metadata, cancel=cancel)
    return collect(
        run.results,
        target=metadata.target,
        partial=run.cancelled,
        categories=wanted,
        elapsed_ms=run.elapsed_ms,
    )


def run_assessment(
    handle: Any,
    catalog: RuleCatalog,
    *,
    categories: Iterable[str] | None = None,
    timeout: float | None = None,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
    provider: MetadataProvider | None = None,
    kind: TargetKind = TargetKind.SERVER,
) -> AssessmentReport:
    """Run one full assessment against the target behind *handle*.

    Raises
    ------
    TargetConnectionError
        The target could not be reached, or the fetch timed out.
    UnsupportedTargetError
        The target could not be identified; no check is evaluated.
    """
    if provider is None:
        provider = make_provider(catalog)
    metadata = provider.fetch(handle, timeout, kind=kind)
    report = assess(
        catalog,
        metadata,
        categories=categories,
        max_workers=max_workers,
        cancel=cancel,
    )
    logger.info(
        "Assessment of '%s' finished: %d result(s), %d finding(s)%s",
        report.target.name,
        report.total,
        len(report.findings),
        " (partial)" if report.partial else "",
    )
    return report
