"""Configuration: optional ``sqlassess.yml`` with connection, catalog, and run settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "sqlassess.yml"
DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"
DEFAULT_AUTHENTICATION = "ActiveDirectoryIntegrated"
DEFAULT_TIMEOUT = 30.0

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class ConnectionSettings:
    """How to reach the target server.

    ``connection_string`` wins over every other field when set.
    """

    server: str = "."
    database: str | None = None
    driver: str = DEFAULT_DRIVER
    authentication: str | None = DEFAULT_AUTHENTICATION
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    encrypt: bool = True
    trust_server_certificate: bool = False
    connection_string: str | None = field(default=None, repr=False)
    timeout: float | None = DEFAULT_TIMEOUT


@dataclass(frozen=True)
class AssessmentConfig:
    """Top-level settings, merged from the config file and CLI options."""

    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    rules: tuple[Path, ...] = ()
    include_default_rules: bool = True
    max_workers: int | None = None
    metadata_query: str | None = None
    log_level: str | None = None

    def with_overrides(self, **changes: Any) -> AssessmentConfig:
        """Return a copy with non-``None`` values from *changes* applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# ---------------------------------------------------------------------------
# Value helpers (wrong types fall back to the default with a warning)
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning("Config section '%s' must be a mapping, ignoring it", name)
        return {}
    return value


def _opt_str(section: dict[str, Any], key: str, default: str | None) -> str | None:
    value = section.get(key, default)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    logger.warning("Config value '%s' must be a string, using default", key)
    return default


def _bool(section: dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if isinstance(value, bool):
        return value
    logger.warning("Config value '%s' must be true or false, using default", key)
    return default


def _positive_number(section: dict[str, Any], key: str, default: float | None) -> float | None:
    value = section.get(key, default)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    logger.warning("Config value '%s' must be a positive number, using default", key)
    return default


def _parse_connection(section: dict[str, Any]) -> ConnectionSettings:
    defaults = ConnectionSettings()
    return ConnectionSettings(
        server=_opt_str(section, "server", defaults.server) or defaults.server,
        database=_opt_str(section, "database", defaults.database),
        driver=_opt_str(section, "driver", defaults.driver) or defaults.driver,
        authentication=_opt_str(section, "authentication", defaults.authentication),
        username=_opt_str(section, "username", None),
        password=_opt_str(section, "password", None),
        encrypt=_bool(section, "encrypt", defaults.encrypt),
        trust_server_certificate=_bool(
            section, "trust_server_certificate", defaults.trust_server_certificate
        ),
        connection_string=_opt_str(section, "connection_string", None),
        timeout=_positive_number(section, "timeout", defaults.timeout),
    )


def _parse_rules(section: dict[str, Any], base_dir: Path) -> tuple[Path, ...]:
    raw = section.get("rules", [])
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        logger.warning("Config value 'catalog.rules' must be a list of paths, ignoring it")
        return ()
    paths: list[Path] = []
    for entry in raw:
        path = Path(str(entry)).expanduser()
        paths.append(path if path.is_absolute() else base_dir / path)
    return tuple(paths)


def parse_config(data: object, *, base_dir: Path) -> AssessmentConfig:
    """Build an :class:`AssessmentConfig` from a loaded YAML document."""
    if not isinstance(data, dict):
        if data is not None:
            logger.warning("Config file must be a YAML mapping, using defaults")
        return AssessmentConfig()

    catalog = _section(data, "catalog")
    evaluation = _section(data, "evaluation")
    metadata = _section(data, "metadata")
    logging_section = _section(data, "logging")

    max_workers_raw = evaluation.get("max_workers")
    max_workers: int | None = None
    if max_workers_raw is not None:
        if isinstance(max_workers_raw, int) and not isinstance(max_workers_raw, bool) and max_workers_raw > 0:
            max_workers = max_workers_raw
        else:
            logger.warning("Config value 'max_workers' must be a positive integer, using default")

    log_level = _opt_str(logging_section, "level", None)
    if log_level is not None:
        log_level = log_level.upper()
        if log_level not in _LOG_LEVELS:
            logger.warning("Unknown log level '%s', using default", log_level)
            log_level = None

    return AssessmentConfig(
        connection=_parse_connection(_section(data, "connection")),
        rules=_parse_rules(catalog, base_dir),
        include_default_rules=_bool(catalog, "include_default", True),
        max_workers=max_workers,
        metadata_query=_opt_str(metadata, "query", None),
        log_level=log_level,
    )


def load_config(path: Path | None = None, *, cwd: Path | None = None) -> AssessmentConfig:
    """Load configuration from *path*, or ``sqlassess.yml`` in *cwd* if present.

    Falls back to defaults when no file exists or it cannot be parsed.
    """
    if path is None:
        path = (cwd or Path.cwd()) / DEFAULT_CONFIG_NAME
        if not path.is_file():
            return AssessmentConfig()

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s, using default settings", path)
        return AssessmentConfig()

    return parse_config(data, base_dir=path.parent)
