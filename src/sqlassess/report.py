"""Result aggregation: a read-only report over one evaluation run."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlassess.engine import ResultStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from sqlassess.engine import AssessmentResult
    from sqlassess.target import Target


@dataclass(frozen=True)
class AssessmentReport:
    """Ordered results for one target, with per-status counts.

    ``partial`` is set when the run was cancelled before every selected check
    started.  Iterating a report (or calling :meth:`stream`) always starts
    from the first result.
    """

    target: Target
    results: tuple[AssessmentResult, ...] = ()
    partial: bool = False
    categories: tuple[str, ...] = ()
    elapsed_ms: float = 0.0
    counts: dict[ResultStatus, int] = field(init=False)

    def __post_init__(self) -> None:
        tally = Counter(r.status for r in self.results)
        object.__setattr__(self, "counts", {status: tally.get(status, 0) for status in ResultStatus})

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def findings(self) -> list[AssessmentResult]:
        """Results that recommend an action."""
        return [r for r in self.results if r.is_finding]

    def count(self, status: ResultStatus) -> int:
        return self.counts.get(status, 0)

    def stream(self) -> Iterator[AssessmentResult]:
        """Yield results one by one without copying the sequence."""
        yield from self.results

    def __iter__(self) -> Iterator[AssessmentResult]:
        return self.stream()

    def __len__(self) -> int:
        return len(self.results)


def collect(
    results: Iterable[AssessmentResult],
    *,
    target: Target,
    partial: bool = False,
    categories: Iterable[str] = (),
    elapsed_ms: float = 0.0,
) -> AssessmentReport:
    """Assemble a report from *results* without filtering or reordering them."""
    return AssessmentReport(
        target=target,
        results=tuple(results),
        partial=partial,
        categories=tuple(categories),
        elapsed_ms=elapsed_ms,
    )
