"""Check model: applicability, the closed set of condition variants, and Check itself."""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, ClassVar

from sqlassess.target.models import EngineEdition, TargetKind, Version

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlassess.target.models import Target, TargetMetadata

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_LEVELS: frozenset[str] = frozenset({"information", "warning", "error"})

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "le": operator.le,
    "gt": operator.gt,
    "ge": operator.ge,
}


def _coerce(actual: Any, expected: Any) -> tuple[Any, Any]:
    """Bring a fact value and a rule value to comparable types."""
    if isinstance(actual, Version) or isinstance(expected, Version):
        return Version.parse(actual), Version.parse(expected)
    if isinstance(expected, bool):
        return bool(actual), expected
    if isinstance(expected, (int, float)) and isinstance(actual, str):
        return float(actual), expected
    return actual, expected


def _compare(actual: Any, op: str, expected: Any) -> bool:
    left, right = _coerce(actual, expected)
    return bool(OPERATORS[op](left, right))


# ---------------------------------------------------------------------------
# Evaluation outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Outcome:
    """Raw result of a condition: whether it held, and what was observed."""

    passed: bool
    evidence: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "evidence", MappingProxyType(dict(self.evidence)))


# ---------------------------------------------------------------------------
# Condition variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExpectCondition:
    """A fact compared with a fixed value, e.g. ``max_dop gt 0``."""

    kind: ClassVar[str] = "expect"

    fact: str
    op: str
    value: Any

    @property
    def facts(self) -> tuple[str, ...]:
        return (self.fact,)

    def evaluate(self, metadata: TargetMetadata) -> Outcome:
        actual = metadata.get(self.fact)
        passed = _compare(actual, self.op, self.value)
        return Outcome(
            passed=passed,
            evidence={"fact": self.fact, "actual": actual, "op": self.op, "expected": self.value},
        )


@dataclass(frozen=True)
class VersionCondition:
    """A version-valued fact must fall in ``[min, max)``."""

    kind: ClassVar[str] = "version"

    fact: str = "version"
    min: Version | None = None
    max: Version | None = None

    @property
    def facts(self) -> tuple[str, ...]:
        return (self.fact,)

    def evaluate(self, metadata: TargetMetadata) -> Outcome:
        actual = Version.parse(metadata.get(self.fact))
        passed = (self.min is None or actual >= self.min) and (
            self.max is None or actual < self.max
        )
        return Outcome(
            passed=passed,
            evidence={
                "fact": self.fact,
                "actual": str(actual),
                "min": str(self.min) if self.min is not None else "",
                "max": str(self.max) if self.max is not None else "",
            },
        )


@dataclass(frozen=True)
class OneOfCondition:
    """A fact must be one of (or, negated, none of) a list of values."""

    kind: ClassVar[str] = "one_of"

    fact: str
    values: tuple[Any, ...]
    negate: bool = False

    @property
    def facts(self) -> tuple[str, ...]:
        return (self.fact,)

    def evaluate(self, metadata: TargetMetadata) -> Outcome:
        actual = metadata.get(self.fact)
        member = actual in self.values
        return Outcome(
            passed=member != self.negate,
            evidence={
                "fact": self.fact,
                "actual": actual,
                "values": ", ".join(str(v) for v in self.values),
            },
        )


@dataclass(frozen=True)
class RowsCondition:
    """Every row of a row-set probe must satisfy ``column op value``.

    Offending rows are reported as evidence; *key* names the column used to
    list them in messages (``{items}``).
    """

    kind: ClassVar[str] = "rows"

    probe: str
    column: str
    op: str
    value: Any
    key: str | None = None

    @property
    def facts(self) -> tuple[str, ...]:
        return (self.probe,)

    def evaluate(self, metadata: TargetMetadata) -> Outcome:
        rows = metadata.get(self.probe)
        if not isinstance(rows, (tuple, list)):
            msg = f"probe '{self.probe}' did not produce a row set"
            raise TypeError(msg)

        if rows and self.column not in rows[0]:
            msg = f"probe '{self.probe}' has no column '{self.column}'"
            raise LookupError(msg)
        offending = [row for row in rows if not _compare(row[self.column], self.op, self.value)]
        key = self.key or self.column
        return Outcome(
            passed=not offending,
            evidence={
                "probe": self.probe,
                "count": len(offending),
                "total": len(rows),
                "rows": tuple(offending),
                "items": ", ".join(str(row.get(key)) for row in offending),
            },
        )


Condition = ExpectCondition | VersionCondition | OneOfCondition | RowsCondition

CONDITION_KINDS: tuple[str, ...] = ("expect", "version", "one_of", "rows")

# ---------------------------------------------------------------------------
# Applicability and checks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Applicability:
    """Which targets a check applies to.  Empty fields match anything."""

    kinds: frozenset[TargetKind] = frozenset()
    platforms: frozenset[str] = frozenset()
    editions: frozenset[EngineEdition] = frozenset()
    min_version: Version | None = None  # inclusive
    max_version: Version | None = None  # exclusive

    def matches_kind(self, kind: TargetKind) -> bool:
        return not self.kinds or kind in self.kinds

    def matches(self, target: Target) -> bool:
        """Return True if *target* satisfies every constraint set here.

        Platform names compare case-insensitively; the server reports
        ``Windows`` or ``Linux`` while rule files vary.
        """
        if not self.matches_kind(target.kind):
            return False
        if self.platforms and target.platform.lower() not in {
            p.lower() for p in self.platforms
        }:
            return False
        if self.editions and target.edition not in self.editions:
            return False
        if self.min_version is not None and target.version < self.min_version:
            return False
        return not (self.max_version is not None and target.version >= self.max_version)


class _TemplateFields(dict):  # type: ignore[type-arg]
    def __missing__(self, key: str) -> Any:
        msg = f"message placeholder '{{{key}}}' has no value"
        raise ValueError(msg)


@dataclass(frozen=True)
class Check:
    """A named unit of assessment logic, immutable once loaded."""

    id: str
    message: str
    tags: frozenset[str]
    condition: Condition
    help_link: str = ""
    level: str = "warning"
    description: str = ""
    applies_to: Applicability = field(default_factory=Applicability)

    def __post_init__(self) -> None:
        if not self.tags:
            msg = f"Check '{self.id}' must carry at least one tag"
            raise ValueError(msg)
        if any(not isinstance(tag, str) or not tag.strip() for tag in self.tags):
            msg = f"Check '{self.id}' has a blank tag"
            raise ValueError(msg)

    def applies(self, target: Target) -> bool:
        return self.applies_to.matches(target)

    def evaluate(self, metadata: TargetMetadata) -> Outcome:
        return self.condition.evaluate(metadata)

    def render(self, target: Target, evidence: Mapping[str, Any]) -> str:
        """Fill the message template from *evidence* and the target identity."""
        fields = _TemplateFields(
            target=target.name,
            version=str(target.version),
            edition=target.edition.label,
            platform=target.platform,
        )
        fields.update(evidence)
        return self.message.format_map(fields)
