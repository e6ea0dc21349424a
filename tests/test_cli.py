"""Tests for the sqlassess CLI: assess, categories, checks."""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING, Callable
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from sqlassess.cli import PROMPT, main
from sqlassess.errors import TargetConnectionError

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Iterator
    from pathlib import Path

RULES = """\
version: 1
probes:
  max_dop: SELECT value_in_use FROM configurations WHERE name = 'max degree of parallelism'
  xp_cmdshell: SELECT value_in_use FROM configurations WHERE name = 'xp_cmdshell'
  databases:
    query: SELECT name, auto_close FROM databases
    rows: true
rules:
  - id: AutoCloseOff
    message: "Auto-close on: {items}"
    help_link: https://example.test/autoclose
    tags: [Performance, Storage]
    rows: {probe: databases, column: auto_close, op: eq, value: 0, key: name}
  - id: SupportedVersion
    message: "{actual} is too old"
    tags: [Security]
    level: error
    version: {min: "13.0"}
  - id: XpCmdShellDisabled
    message: "xp_cmdshell is enabled on {target}"
    help_link: https://example.test/xp
    tags: [Security]
    expect: {fact: xp_cmdshell, op: eq, value: 0}
"""


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def config_file(tmp_path: Path, identity_query: str, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "test-config.yml"
    path.write_text(
        "metadata:\n  query: \"" + identity_query.replace('"', '\\"') + "\"\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def rules_file(write_rules: Callable[..., Path]) -> Path:
    return write_rules(RULES)


@pytest.fixture()
def connected(sqlite_conn: sqlite3.Connection) -> Iterator[MagicMock]:
    with patch("sqlassess.connection.open_connection", return_value=sqlite_conn) as opener:
        yield opener


def _assess(config: Path, rules: Path, *extra: str) -> list[str]:
    return [
        "--config",
        str(config),
        "assess",
        "--no-default-rules",
        "--rules",
        str(rules),
        *extra,
    ]


class TestAssessInteractive:
    def test_prompt_then_category(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(main, _assess(config_file, rules_file), input="Security\n")
        assert result.exit_code == 0, result.output
        assert "All categories available for SQL01:" in result.output
        assert PROMPT in result.output
        assert "XpCmdShellDisabled:Warning:https://example.test/xp" in result.output
        assert "SupportedVersion:Passed:" in result.output
        assert "AutoCloseOff:" not in result.output

    def test_enter_selects_all_categories(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(main, _assess(config_file, rules_file), input="\n")
        assert result.exit_code == 0, result.output
        for check_id in ("AutoCloseOff", "SupportedVersion", "XpCmdShellDisabled"):
            assert f"{check_id}:" in result.output

    def test_end_of_input_selects_all_categories(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(main, _assess(config_file, rules_file), input="")
        assert result.exit_code == 0, result.output
        assert "AutoCloseOff:Warning:" in result.output

    @pytest.mark.parametrize("answer", ["exit\n", "  EXIT \n"])
    def test_exit_leaves_without_running(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock, answer: str
    ) -> None:
        result = runner.invoke(main, _assess(config_file, rules_file), input=answer)
        assert result.exit_code == 0, result.output
        assert ":Warning:" not in result.output
        assert ":Passed:" not in result.output

    def test_rich_output(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main, _assess(config_file, rules_file, "--format", "rich"), input="Storage\n"
        )
        assert result.exit_code == 0, result.output
        assert "Auto-close on: hr" in result.output
        assert "https://example.test/autoclose" in result.output
        assert "SQL01 - 1 check(s)" in result.output


class TestAssessNonInteractive:
    def test_category_option_skips_prompt(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main, _assess(config_file, rules_file, "-c", "Storage", "-c", "Security")
        )
        assert result.exit_code == 0, result.output
        assert PROMPT not in result.output
        assert result.output.splitlines() == [
            "AutoCloseOff:Warning:https://example.test/autoclose",
            "SupportedVersion:Passed:",
            "XpCmdShellDisabled:Warning:https://example.test/xp",
        ]

    def test_json(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        args = ["-q", *_assess(config_file, rules_file, "-c", "Security", "--format", "json")]
        result = runner.invoke(main, args)
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["target"]["name"] == "SQL01"
        assert data["categories"] == ["Security"]
        assert [r["check_id"] for r in data["results"]] == [
            "SupportedVersion",
            "XpCmdShellDisabled",
        ]

    def test_strict_exits_1_on_findings(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main, _assess(config_file, rules_file, "-c", "Security", "--strict")
        )
        assert result.exit_code == 1, result.output

    def test_strict_exits_0_without_findings(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main, _assess(config_file, rules_file, "-c", "Lifecycle", "--strict")
        )
        assert result.exit_code == 0, result.output
        assert result.output == ""


class TestAssessErrors:
    def test_invalid_catalog_exits_2(
        self,
        runner: CliRunner,
        config_file: Path,
        write_rules: Callable[..., Path],
        connected: MagicMock,
    ) -> None:
        bad = write_rules("version: 1\nrules:\n  - id: Broken\n    message: m\n", "bad.yml")
        result = runner.invoke(main, _assess(config_file, bad, "-c", "Security"))
        assert result.exit_code == 2
        assert "Error: invalid rule catalog" in result.output
        assert "Broken" in result.output

    def test_no_rule_sources_exits_2(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(main, ["--config", str(config_file), "assess", "--no-default-rules"])
        assert result.exit_code == 2
        assert "no rule sources" in result.output

    def test_connection_failure_exits_2(
        self, runner: CliRunner, config_file: Path, rules_file: Path
    ) -> None:
        error = TargetConnectionError("cannot connect to 'db01': login failed", target="db01")
        with patch("sqlassess.connection.open_connection", side_effect=error):
            result = runner.invoke(main, _assess(config_file, rules_file, "-S", "db01"))
        assert result.exit_code == 2
        assert "Error: cannot connect to 'db01'" in result.output

    def test_unsupported_target_exits_2(
        self, runner: CliRunner, tmp_path: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        config = tmp_path / "edition.yml"
        config.write_text(
            "metadata:\n  query: \"SELECT '15.0' AS version, 99 AS edition, "
            "'X' AS name, 'Linux' AS platform\"\n",
            encoding="utf-8",
        )
        result = runner.invoke(main, _assess(config, rules_file, "-c", "Security"))
        assert result.exit_code == 2
        assert "unsupported engine edition code 99" in result.output

    def test_server_override_reaches_connection(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main, _assess(config_file, rules_file, "-S", "db07", "-d", "hr", "-c", "Security")
        )
        assert result.exit_code == 0, result.output
        settings = connected.call_args.args[0]
        assert settings.server == "db07"
        assert settings.database == "hr"


    def test_metadata_timeout_exits_2_and_leaves_busy_handle_open(
        self, runner: CliRunner, config_file: Path, rules_file: Path
    ) -> None:
        release = threading.Event()
        cursor = MagicMock()
        cursor.execute.side_effect = lambda _q: release.wait(5)
        handle = MagicMock()
        handle.cursor.return_value = cursor
        try:
            with patch("sqlassess.connection.open_connection", return_value=handle):
                result = runner.invoke(
                    main, _assess(config_file, rules_file, "--timeout", "0.1", "-c", "Security")
                )
        finally:
            release.set()
        assert result.exit_code == 2
        assert "Error: metadata fetch timed out after 0.1s" in result.output
        handle.close.assert_not_called()


class TestCategoriesCommand:
    def test_json(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main,
            ["-q", "--config", str(config_file), "categories", "--no-default-rules",
             "--rules", str(rules_file), "--json"],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {
            "target": "SQL01",
            "categories": ["Performance", "Security", "Storage"],
        }

    def test_rich(
        self, runner: CliRunner, config_file: Path, rules_file: Path, connected: MagicMock
    ) -> None:
        result = runner.invoke(
            main,
            ["--config", str(config_file), "categories", "--no-default-rules",
             "--rules", str(rules_file)],
        )
        assert result.exit_code == 0, result.output
        assert "All categories available for SQL01:" in result.output
        assert "Storage" in result.output


class TestChecksCommand:
    def test_default_catalog_json(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["-q", "checks", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        ids = [c["id"] for c in data]
        assert ids == sorted(ids)
        assert "SupportedVersion" in ids
        version_check = next(c for c in data if c["id"] == "SupportedVersion")
        assert version_check["kind"] == "version"
        assert version_check["level"] == "error"

    def test_extra_rules_table(
        self, runner: CliRunner, config_file: Path, rules_file: Path
    ) -> None:
        result = runner.invoke(
            main, ["--config", str(config_file), "checks", "--rules", str(rules_file)]
        )
        assert result.exit_code == 0, result.output
        assert "XpCmdShellDisabled" in result.output
        assert "PageVerifyChecksum" in result.output

    def test_version_option(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "sqlassess" in result.output


class TestLogging:
    def test_config_warnings_use_cli_log_format(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        config = tmp_path / "bad.yml"
        config.write_text("evaluation:\n  max_workers: 0\n", encoding="utf-8")
        result = runner.invoke(main, ["--config", str(config), "checks", "--json"])
        assert result.exit_code == 0, result.output
        assert (
            "| WARNING  | sqlassess.config | Config value 'max_workers' must be a positive integer"
            in result.output
        )
