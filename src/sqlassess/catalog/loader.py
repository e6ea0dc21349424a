"""Rule catalog: parse YAML rule documents into immutable checks."""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from sqlassess.catalog.schema import (
    CONDITION_KINDS,
    OPERATORS,
    VALID_LEVELS,
    Applicability,
    Check,
    Condition,
    ExpectCondition,
    OneOfCondition,
    RowsCondition,
    VersionCondition,
)
from sqlassess.errors import CatalogLoadError
from sqlassess.target.models import EngineEdition, Target, TargetKind, Version
from sqlassess.target.provider import Probe

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSIONS: frozenset[int] = frozenset({1})
DEFAULT_SOURCE = "default"
_DEFAULT_RESOURCE = "default_rules.yml"
_BUILTIN_FACTS: frozenset[str] = frozenset({"name", "kind", "version", "platform", "edition"})

# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _str_list(value: object, context: str) -> list[str]:
    """Accept a string or a list of strings."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        return [str(v) for v in value]
    msg = f"{context} must be a string or a list of strings"
    raise ValueError(msg)


def _version(value: object, context: str) -> Version:
    """Parse a quoted version string; YAML reads unquoted ``13.10`` as ``13.1``."""
    if not isinstance(value, str):
        msg = f"{context}: version {value!r} must be a quoted string such as \"13.0\""
        raise ValueError(msg)
    try:
        return Version.parse(value)
    except ValueError as exc:
        msg = f"{context}: {exc}"
        raise ValueError(msg) from exc


def _operator(value: object, context: str) -> str:
    op = str(value)
    if op not in OPERATORS:
        msg = f"{context}: invalid op '{op}', must be one of {sorted(OPERATORS)}"
        raise ValueError(msg)
    return op


def _scalar(value: object, context: str) -> Any:
    if isinstance(value, (dict, list)):
        msg = f"{context} must be a scalar value"
        raise ValueError(msg)
    return value


def _required_str(data: dict[str, object], key: str, context: str) -> str:
    value = data.get(key)
    if value is None or not isinstance(value, str) or not value.strip():
        msg = f"{context}.{key} must be a non-empty string"
        raise ValueError(msg)
    return value.strip()


# ---------------------------------------------------------------------------
# Block parsers
# ---------------------------------------------------------------------------


def _parse_applicability(data: object, context: str) -> Applicability:
    """Parse the optional ``target`` block of a rule."""
    if data is None:
        return Applicability()
    if not isinstance(data, dict):
        msg = f"{context}: 'target' must be a mapping"
        raise ValueError(msg)

    kinds: set[TargetKind] = set()
    for name in _str_list(data.get("kinds", []), f"{context} target.kinds"):
        try:
            kinds.add(TargetKind.from_name(name))
        except ValueError as exc:
            msg = f"{context} target.kinds: {exc}"
            raise ValueError(msg) from exc

    editions: set[EngineEdition] = set()
    for label in _str_list(data.get("editions", []), f"{context} target.editions"):
        try:
            editions.add(EngineEdition.from_label(label))
        except ValueError as exc:
            msg = f"{context} target.editions: {exc}"
            raise ValueError(msg) from exc

    platforms = _str_list(data.get("platforms", []), f"{context} target.platforms")

    min_raw = data.get("min_version")
    max_raw = data.get("max_version")
    min_version = _version(min_raw, f"{context} target.min_version") if min_raw else None
    max_version = _version(max_raw, f"{context} target.max_version") if max_raw else None

    return Applicability(
        kinds=frozenset(kinds),
        platforms=frozenset(platforms),
        editions=frozenset(editions),
        min_version=min_version,
        max_version=max_version,
    )


def _parse_expect(data: dict[str, object], context: str) -> ExpectCondition:
    """Parse an ``expect`` block: ``{fact, op, value}``."""
    fact = _required_str(data, "fact", f"{context} expect")
    op = _operator(data.get("op", "eq"), f"{context} expect")
    if "value" not in data:
        msg = f"{context} expect.value is required"
        raise ValueError(msg)
    return ExpectCondition(fact=fact, op=op, value=_scalar(data["value"], f"{context} expect.value"))


def _parse_version(data: dict[str, object], context: str) -> VersionCondition:
    """Parse a ``version`` block: ``{fact?, min?, max?}``."""
    fact = str(data.get("fact", "version"))
    min_raw = data.get("min")
    max_raw = data.get("max")
    if min_raw is None and max_raw is None:
        msg = f"{context} version must specify at least one of 'min' or 'max'"
        raise ValueError(msg)
    return VersionCondition(
        fact=fact,
        min=_version(min_raw, f"{context} version.min") if min_raw is not None else None,
        max=_version(max_raw, f"{context} version.max") if max_raw is not None else None,
    )


def _parse_one_of(data: dict[str, object], context: str) -> OneOfCondition:
    """Parse a ``one_of`` block: ``{fact, values, negate?}``."""
    fact = _required_str(data, "fact", f"{context} one_of")
    values = data.get("values")
    if not isinstance(values, list) or not values:
        msg = f"{context} one_of.values must be a non-empty list"
        raise ValueError(msg)
    return OneOfCondition(
        fact=fact,
        values=tuple(_scalar(v, f"{context} one_of.values") for v in values),
        negate=bool(data.get("negate", False)),
    )


def _parse_rows(data: dict[str, object], context: str) -> RowsCondition:
    """Parse a ``rows`` block: ``{probe, column, op, value, key?}``."""
    probe = _required_str(data, "probe", f"{context} rows")
    column = _required_str(data, "column", f"{context} rows").lower()
    op = _operator(data.get("op", "eq"), f"{context} rows")
    if "value" not in data:
        msg = f"{context} rows.value is required"
        raise ValueError(msg)
    key_raw = data.get("key")
    return RowsCondition(
        probe=probe,
        column=column,
        op=op,
        value=_scalar(data["value"], f"{context} rows.value"),
        key=str(key_raw).lower() if key_raw is not None else None,
    )


_CONDITION_PARSERS = {
    "expect": _parse_expect,
    "version": _parse_version,
    "one_of": _parse_one_of,
    "rows": _parse_rows,
}


def _parse_check(rule_data: dict[str, object], context: str) -> Check:
    check_id = rule_data.get("id")
    if check_id is None or not isinstance(check_id, str) or not check_id.strip():
        msg = f"{context} missing required 'id' field"
        raise ValueError(msg)
    check_id = check_id.strip()
    context = f"Check '{check_id}':"

    message = _required_str(rule_data, "message", context.rstrip(":"))

    tags = _str_list(rule_data.get("tags", []), f"{context} tags")
    if not tags:
        msg = f"{context} tags must contain at least one category"
        raise ValueError(msg)

    level = str(rule_data.get("level", "warning")).lower()
    if level not in VALID_LEVELS:
        msg = f"{context} invalid level '{level}', must be one of {sorted(VALID_LEVELS)}"
        raise ValueError(msg)

    present = [k for k in CONDITION_KINDS if k in rule_data]
    if len(present) != 1:
        msg = f"{context} must have exactly one of {', '.join(repr(k) for k in CONDITION_KINDS)}"
        raise ValueError(msg)
    kind = present[0]
    block = rule_data[kind]
    if not isinstance(block, dict):
        msg = f"{context} '{kind}' must be a mapping"
        raise ValueError(msg)
    condition: Condition = _CONDITION_PARSERS[kind](block, context)

    return Check(
        id=check_id,
        message=message,
        tags=frozenset(tags),
        condition=condition,
        help_link=str(rule_data.get("help_link", "") or ""),
        level=level,
        description=str(rule_data.get("description", "") or ""),
        applies_to=_parse_applicability(rule_data.get("target"), context),
    )


def _parse_probes(data: object) -> dict[str, Probe]:
    """Parse the ``probes`` block: name -> query string or ``{query, rows}``."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = "'probes' must be a mapping"
        raise ValueError(msg)

    probes: dict[str, Probe] = {}
    for name, entry in data.items():
        name = str(name)
        if isinstance(entry, str):
            probes[name] = Probe(name=name, query=entry)
        elif isinstance(entry, dict):
            query = _required_str(entry, "query", f"probe '{name}'")
            probes[name] = Probe(name=name, query=query, rows=bool(entry.get("rows", False)))
        else:
            msg = f"probe '{name}' must be a query string or a mapping"
            raise ValueError(msg)
    return probes


def parse_document(data: object) -> tuple[list[Check], dict[str, Probe]]:
    """Parse one loaded YAML document.

    Raises ``ValueError`` on document-level schema errors and
    :class:`CatalogLoadError` (also a ``ValueError``) for a bad rule.
    """
    if not isinstance(data, dict):
        msg = "rule document must be a YAML mapping"
        raise ValueError(msg)

    version = data.get("version")
    if version is None:
        msg = "missing required 'version' field"
        raise ValueError(msg)
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        expected = sorted(SUPPORTED_SCHEMA_VERSIONS)
        msg = f"unsupported version {version}, expected one of {expected}"
        raise ValueError(msg)

    rules_data = data.get("rules", [])
    if not isinstance(rules_data, list):
        msg = "'rules' must be a list"
        raise ValueError(msg)

    seen: set[str] = set()
    checks: list[Check] = []
    for idx, rule_data in enumerate(rules_data):
        if not isinstance(rule_data, dict):
            msg = f"rule at index {idx} must be a mapping"
            raise ValueError(msg)
        raw_id = rule_data.get("id")
        try:
            check = _parse_check(rule_data, f"rule at index {idx}")
        except ValueError as exc:
            check_id = str(raw_id).strip() if raw_id is not None else None
            raise CatalogLoadError(str(exc), check_id=check_id or None) from exc
        if check.id in seen:
            msg = f"duplicate check id '{check.id}'"
            raise CatalogLoadError(msg, check_id=check.id)
        seen.add(check.id)
        checks.append(check)

    return checks, _parse_probes(data.get("probes"))


# ---------------------------------------------------------------------------
# Source reading
# ---------------------------------------------------------------------------


def _read_text(source: Path | str) -> list[tuple[str, str]]:
    """Return ``(label, text)`` pairs for a source, expanding directories."""
    if source == DEFAULT_SOURCE:
        text = resources.files("sqlassess.catalog").joinpath(_DEFAULT_RESOURCE).read_text(
            encoding="utf-8"
        )
        return [(f"<{DEFAULT_SOURCE}>", text)]

    path = Path(source)
    if path.is_dir():
        files = sorted(
            p for p in path.iterdir() if p.is_file() and p.suffix in {".yml", ".yaml"}
        )
    elif path.is_file():
        files = [path]
    else:
        msg = f"rule source '{path}' does not exist"
        raise CatalogLoadError(msg, source=str(path))

    pairs: list[tuple[str, str]] = []
    for file in files:
        try:
            pairs.append((str(file), file.read_text(encoding="utf-8")))
        except OSError as exc:
            msg = f"cannot read rule source '{file}': {exc}"
            raise CatalogLoadError(msg, source=str(file)) from exc
    return pairs


def _load_source(label: str, text: str) -> tuple[list[Check], dict[str, Probe]]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"{label}: invalid YAML: {exc}"
        raise CatalogLoadError(msg, source=label) from exc
    try:
        return parse_document(data)
    except CatalogLoadError as exc:
        msg = f"{label}: {exc}"
        raise CatalogLoadError(msg, source=label, check_id=exc.check_id) from exc
    except ValueError as exc:
        msg = f"{label}: {exc}"
        raise CatalogLoadError(msg, source=label) from exc


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class RuleCatalog:
    """An immutable set of checks, deduplicated by identifier.

    Safe to share between threads once constructed: nothing mutates the
    check table after :meth:`load` returns.
    """

    def __init__(
        self,
        checks: Iterable[Check] = (),
        probes: dict[str, Probe] | None = None,
        *,
        sources: tuple[str, ...] = (),
    ) -> None:
        table: dict[str, Check] = {}
        for check in checks:
            table[check.id] = check
        self._checks: dict[str, Check] = dict(sorted(table.items()))
        self._probes: dict[str, Probe] = dict(probes or {})
        self.sources = sources

    @classmethod
    def load(cls, *sources: Path | str) -> RuleCatalog:
        """Load checks from YAML files, directories, or the packaged default.

        Later sources replace checks and probes with the same name from
        earlier ones.  Raises :class:`CatalogLoadError` on any malformed
        definition.
        """
        if not sources:
            sources = (DEFAULT_SOURCE,)

        table: dict[str, Check] = {}
        probes: dict[str, Probe] = {}
        for source in sources:
            for label, text in _read_text(source):
                checks, source_probes = _load_source(label, text)
                for check in checks:
                    if check.id in table:
                        logger.debug("Check '%s' overridden by %s", check.id, label)
                    table[check.id] = check
                probes.update(source_probes)
                logger.debug("Loaded %d check(s) from %s", len(checks), label)

        catalog = cls(table.values(), probes, sources=tuple(str(s) for s in sources))
        logger.info("Rule catalog ready: %d check(s), %d probe(s)", len(catalog), len(probes))
        return catalog

    def reload(self) -> RuleCatalog:
        """Return a freshly loaded catalog from the same sources."""
        if not self.sources:
            return RuleCatalog(self._checks.values(), self._probes)
        return RuleCatalog.load(*self.sources)

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, check_id: object) -> bool:
        return check_id in self._checks

    @property
    def checks(self) -> tuple[Check, ...]:
        """All checks, ordered by identifier."""
        return tuple(self._checks.values())

    @property
    def probes(self) -> dict[str, Probe]:
        return dict(self._probes)

    def get(self, check_id: str) -> Check:
        try:
            return self._checks[check_id]
        except KeyError:
            msg = f"unknown check '{check_id}'"
            raise LookupError(msg) from None

    def applicable(self, target: Target) -> list[Check]:
        return [c for c in self._checks.values() if c.applies(target)]

    def tags_for(self, target: Target | TargetKind) -> frozenset[str]:
        """Union of tags across checks applicable to *target*.

        Given a bare :class:`TargetKind`, only the kind constraint is applied.
        """
        if isinstance(target, TargetKind):
            checks = [c for c in self._checks.values() if c.applies_to.matches_kind(target)]
        else:
            checks = self.applicable(target)
        tags: set[str] = set()
        for check in checks:
            tags.update(check.tags)
        return frozenset(tags)

    def validate(self) -> list[str]:
        """Return warnings for checks that reference undeclared probes."""
        warnings: list[str] = []
        for check in self._checks.values():
            for fact in check.condition.facts:
                if fact not in self._probes and fact not in _BUILTIN_FACTS:
                    warnings.append(f"Check '{check.id}': fact '{fact}' is not declared as a probe")
        return warnings
