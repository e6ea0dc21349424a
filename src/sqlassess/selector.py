"""Check selection: narrow a catalog to the checks to run against one target."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlassess.catalog import Check, RuleCatalog
    from sqlassess.target import Target

logger = logging.getLogger(__name__)


def parse_categories(line: str | None) -> list[str]:
    """Split a whitespace-separated category line into tokens."""
    if line is None:
        return []
    return line.split()


def select(
    catalog: RuleCatalog,
    target: Target,
    categories: Iterable[str] | None = None,
) -> list[Check]:
    """Return the checks applicable to *target*, optionally filtered by category.

    Categories match tags exactly (case-sensitive).  With no categories, every
    applicable check is returned.  The result is ordered by check id; an empty
    list is a valid outcome.
    """
    applicable = catalog.applicable(target)
    wanted = frozenset(categories or ())

    if wanted:
        selected = [c for c in applicable if c.tags & wanted]
        unknown = wanted - catalog.tags_for(target)
        if unknown:
            logger.info("No applicable checks carry categories: %s", ", ".join(sorted(unknown)))
    else:
        selected = applicable

    selected.sort(key=lambda c: c.id)
    logger.debug(
        "Selected %d of %d applicable check(s) for '%s'",
        len(selected),
        len(applicable),
        target.name,
    )
    return selected
