"""Shared test fixtures for sqlassess."""

from __future__ import annotations

import sqlite3
import textwrap
from typing import TYPE_CHECKING, Callable

import pytest

from sqlassess.target import EngineEdition, Target, TargetKind, TargetMetadata, Version

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

IDENTITY_QUERY = (
    "SELECT '15.0.2000.5' AS version, 3 AS edition, 'SQL01' AS name, 'Linux' AS platform"
)


@pytest.fixture()
def identity_query() -> str:
    """Identification query answered by the in-memory database."""
    return IDENTITY_QUERY


def make_target(
    *,
    kind: TargetKind = TargetKind.SERVER,
    name: str = "SQL01",
    version: str = "15.0.2000.5",
    platform: str = "Windows",
    edition: EngineEdition = EngineEdition.ENTERPRISE,
) -> Target:
    return Target(
        kind=kind,
        name=name,
        version=Version.parse(version),
        platform=platform,
        edition=edition,
    )


@pytest.fixture()
def target() -> Target:
    """An Enterprise 2019 server on Windows."""
    return make_target()


@pytest.fixture()
def metadata(target: Target) -> TargetMetadata:
    """A snapshot with a few scalar facts and one row-set fact."""
    return TargetMetadata(
        target=target,
        facts={
            "max_dop": 8,
            "xp_cmdshell": 0,
            "databases": (
                {"name": "sales", "auto_close": 0},
                {"name": "hr", "auto_close": 1},
            ),
        },
    )


@pytest.fixture()
def sqlite_conn() -> Iterator[sqlite3.Connection]:
    """In-memory DB-API connection usable from worker threads."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.execute("CREATE TABLE configurations (name TEXT, value_in_use INTEGER)")
    conn.executemany(
        "INSERT INTO configurations VALUES (?, ?)",
        [("max degree of parallelism", 0), ("xp_cmdshell", 1)],
    )
    conn.execute("CREATE TABLE databases (name TEXT, auto_close INTEGER)")
    conn.executemany(
        "INSERT INTO databases VALUES (?, ?)",
        [("sales", 0), ("hr", 1)],
    )
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture()
def write_rules(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a dedented YAML rules document and return its path."""

    def _write(content: str, name: str = "rules.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content), encoding="utf-8")
        return path

    return _write
