"""Evaluation engine: run selected checks against a metadata snapshot.

Every check is isolated: anything a check raises while evaluating or
rendering its message is turned into a ``Skipped`` result, so one broken
rule never aborts the batch.  Results always come back in input order,
whether checks ran sequentially or on a thread pool.
"""

from __future__ import annotations

import enum
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable, Iterator, Mapping

    from sqlassess.catalog import Check
    from sqlassess.target import Target, TargetMetadata

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ResultStatus(enum.Enum):
    """Outcome of one check against one target."""

    PASSED = "Passed"
    INFORMATION = "Information"
    WARNING = "Warning"
    ERROR = "Error"
    SKIPPED = "Skipped"


_LEVEL_STATUS: dict[str, ResultStatus] = {
    "information": ResultStatus.INFORMATION,
    "warning": ResultStatus.WARNING,
    "error": ResultStatus.ERROR,
}


@dataclass(frozen=True)
class AssessmentResult:
    """Result of evaluating one check against one target."""

    check: Check
    target: Target
    status: ResultStatus
    message: str
    evidence: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "evidence", MappingProxyType(dict(self.evidence)))

    @property
    def check_id(self) -> str:
        return self.check.id

    @property
    def help_link(self) -> str:
        return self.check.help_link

    @property
    def is_finding(self) -> bool:
        """True for results that recommend an action (not passed, not skipped)."""
        return self.status not in (ResultStatus.PASSED, ResultStatus.SKIPPED)


@dataclass(frozen=True)
class EvaluationRun:
    """Results of one engine run and whether it stopped early."""

    results: tuple[AssessmentResult, ...]
    requested: int
    elapsed_ms: float = 0.0

    @property
    def cancelled(self) -> bool:
        return len(self.results) < self.requested


def evaluate_check(check: Check, metadata: TargetMetadata) -> AssessmentResult:
    """Evaluate a single check, converting any fault into a ``Skipped`` result."""
    target = metadata.target
    try:
        outcome = check.evaluate(metadata)
        if outcome.passed:
            return AssessmentResult(
                check=check,
                target=target,
                status=ResultStatus.PASSED,
                message=f"Check '{check.id}' passed",
                evidence=outcome.evidence,
            )
        message = check.render(target, outcome.evidence)
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
        logger.warning("Check '%s' skipped on '%s': %s", check.id, target.name, reason)
        return AssessmentResult(
            check=check,
            target=target,
            status=ResultStatus.SKIPPED,
            message=f"Check skipped: {reason}",
            evidence={"reason": reason, "error": type(exc).__name__},
        )

    return AssessmentResult(
        check=check,
        target=target,
        status=_LEVEL_STATUS[check.level],
        message=message,
        evidence=outcome.evidence,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class EvaluationEngine:
    """Runs checks against an immutable metadata snapshot.

    Parameters
    ----------
    max_workers:
        Upper bound on concurrently evaluated checks.  ``None`` means one
        worker per available CPU; ``1`` evaluates sequentially.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        if max_workers is not None and max_workers < 1:
            msg = f"max_workers must be a positive integer, got {max_workers}"
            raise ValueError(msg)
        self.max_workers = max_workers or os.cpu_count() or 1

    def evaluate(self, checks: Iterable[Check], metadata: TargetMetadata) -> list[AssessmentResult]:
        """Return exactly one result per check, in input order."""
        return list(self.run(checks, metadata).results)

    def run(
        self,
        checks: Iterable[Check],
        metadata: TargetMetadata,
        cancel: threading.Event | None = None,
    ) -> EvaluationRun:
        """Evaluate *checks*, stopping early if *cancel* gets set.

        Once *cancel* is set no further check starts; checks already running
        finish and their results are kept.
        """
        start = time.monotonic()
        check_list = list(checks)
        results = tuple(self.iter_evaluate(check_list, metadata, cancel))
        elapsed = (time.monotonic() - start) * 1000
        run = EvaluationRun(results=results, requested=len(check_list), elapsed_ms=elapsed)

        if run.cancelled:
            logger.info(
                "Evaluation cancelled after %d of %d check(s)", len(results), len(check_list)
            )
        else:
            logger.info("Evaluated %d check(s) in %.1f ms", len(results), elapsed)
        return run

    def iter_evaluate(
        self,
        checks: Iterable[Check],
        metadata: TargetMetadata,
        cancel: threading.Event | None = None,
    ) -> Iterator[AssessmentResult]:
        """Lazily yield results in input order."""
        check_list = list(checks)
        if self.max_workers == 1 or len(check_list) <= 1:
            for check in check_list:
                if cancel is not None and cancel.is_set():
                    return
                yield evaluate_check(check, metadata)
            return

        yield from self._iter_parallel(check_list, metadata, cancel)

    def _iter_parallel(
        self,
        checks: list[Check],
        metadata: TargetMetadata,
        cancel: threading.Event | None,
    ) -> Iterator[AssessmentResult]:
        def _task(check: Check) -> AssessmentResult | None:
            if cancel is not None and cancel.is_set():
                return None
            return evaluate_check(check, metadata)

        pool = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(checks)),
            thread_name_prefix="sqlassess-eval",
        )
        futures: list[Future[AssessmentResult | None]] = [pool.submit(_task, c) for c in checks]
        try:
            for future in futures:
                if cancel is not None and cancel.is_set():
                    for pending in futures:
                        pending.cancel()
                if future.cancelled():
                    continue
                result = future.result()
                if result is not None:
                    yield result
        finally:
            for pending in futures:
                pending.cancel()
            pool.shutdown(wait=True)
