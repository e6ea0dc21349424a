"""Catalog domain: check model and YAML rule loading."""

from sqlassess.catalog.loader import DEFAULT_SOURCE, RuleCatalog, parse_document
from sqlassess.catalog.schema import (
    Applicability,
    Check,
    Condition,
    ExpectCondition,
    OneOfCondition,
    Outcome,
    RowsCondition,
    VersionCondition,
)

__all__ = [
    "DEFAULT_SOURCE",
    "Applicability",
    "Check",
    "Condition",
    "ExpectCondition",
    "OneOfCondition",
    "Outcome",
    "RowsCondition",
    "RuleCatalog",
    "VersionCondition",
    "parse_document",
]
