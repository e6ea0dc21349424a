"""Metadata provider: identify the target and run probe queries against it."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlassess.errors import TargetConnectionError, TargetTimeoutError, UnsupportedTargetError
from sqlassess.target.models import (
    Target,
    TargetKind,
    TargetMetadata,
    Version,
    translate_edition,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY_QUERY = """\
SELECT SERVERPROPERTY('ProductVersion') AS version,
       SERVERPROPERTY('EngineEdition') AS edition,
       SERVERPROPERTY('ServerName') AS name,
       host_platform AS platform
FROM sys.dm_os_host_info"""

_IDENTITY_COLUMNS = ("version", "edition", "name", "platform")


@dataclass(frozen=True)
class Probe:
    """A named query whose result becomes a fact in the metadata snapshot.

    Scalar probes keep the first column of the first row (``None`` when the
    query returns nothing); row probes keep every row as a mapping.
    """

    name: str
    query: str
    rows: bool = False


def _run_query(handle: Any, query: str) -> list[dict[str, Any]]:
    """Execute *query* on a DB-API connection and return rows keyed by column."""
    cursor = handle.cursor()
    try:
        cursor.execute(query)
        description = cursor.description or ()
        columns = [str(col[0]).lower() for col in description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]
    finally:
        cursor.close()


class MetadataProvider:
    """Collects a :class:`TargetMetadata` snapshot from a live connection.

    Parameters
    ----------
    query:
        Identification query returning ``version``, ``edition``, ``name``
        and ``platform`` columns.
    probes:
        Additional named queries, typically declared by the rule catalog.
    """

    def __init__(
        self,
        query: str = DEFAULT_IDENTITY_QUERY,
        probes: Mapping[str, Probe] | None = None,
    ) -> None:
        self.query = query
        self.probes: dict[str, Probe] = dict(probes or {})

    def fetch(
        self,
        handle: Any,
        timeout: float | None = None,
        *,
        kind: TargetKind = TargetKind.SERVER,
    ) -> TargetMetadata:
        """Identify the target behind *handle* and collect probe facts.

        Raises
        ------
        TargetConnectionError
            The handle failed while running the identification query.
        TargetTimeoutError
            Collection did not finish within *timeout* seconds.
        UnsupportedTargetError
            The edition code or version string is not recognized.
        """
        if timeout is None:
            return self._collect(handle, kind)

        # Daemon thread: a query stuck past the timeout must not hold up interpreter exit.
        outcome: dict[str, Any] = {}

        def _worker() -> None:
            try:
                outcome["metadata"] = self._collect(handle, kind)
            except Exception as exc:
                outcome["error"] = exc

        worker = threading.Thread(target=_worker, name="sqlassess-metadata", daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            msg = f"metadata fetch timed out after {timeout:g}s"
            raise TargetTimeoutError(msg)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["metadata"]

    def identify(self, handle: Any, *, kind: TargetKind = TargetKind.SERVER) -> Target:
        """Run the identification query and build a :class:`Target`."""
        try:
            rows = _run_query(handle, self.query)
        except Exception as exc:
            msg = f"failed to query target metadata: {exc}"
            raise TargetConnectionError(msg) from exc

        if not rows:
            msg = "identification query returned no rows"
            raise UnsupportedTargetError(msg)

        row = rows[0]
        missing = [col for col in _IDENTITY_COLUMNS if col not in row]
        if missing:
            msg = f"identification query is missing columns: {', '.join(missing)}"
            raise UnsupportedTargetError(msg)

        name = str(row["name"])
        edition = translate_edition(row["edition"], target=name)
        try:
            version = Version.parse(row["version"])
        except ValueError as exc:
            msg = f"target '{name}' reported an unsupported version: {exc}"
            raise UnsupportedTargetError(msg, target=name) from exc

        return Target(
            kind=kind,
            name=name,
            version=version,
            platform=str(row["platform"]),
            edition=edition,
            handle=handle,
        )

    def _collect(self, handle: Any, kind: TargetKind) -> TargetMetadata:
        target = self.identify(handle, kind=kind)
        logger.info(
            "Identified %s '%s' version %s (%s, %s)",
            target.kind.value,
            target.name,
            target.version,
            target.edition.label,
            target.platform,
        )

        facts: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name in sorted(self.probes):
            probe = self.probes[name]
            try:
                rows = _run_query(handle, probe.query)
            except Exception as exc:
                logger.warning("Probe '%s' failed on '%s': %s", name, target.name, exc)
                errors[name] = str(exc)
                continue
            if probe.rows:
                facts[name] = tuple(rows)
            else:
                facts[name] = next(iter(rows[0].values()), None) if rows else None
            logger.debug("Probe '%s' collected", name)

        return TargetMetadata(target=target, facts=facts, probe_errors=errors)
