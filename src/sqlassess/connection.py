"""ODBC connection handling for SQL Server targets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlassess.errors import TargetConnectionError

if TYPE_CHECKING:
    from sqlassess.config import ConnectionSettings

logger = logging.getLogger(__name__)

_WINDOWS_AUTH = frozenset({"windows", "trusted", "integrated"})


def _quote(value: str) -> str:
    """Brace-quote an ODBC attribute value when it contains special characters."""
    if any(ch in value for ch in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def build_connection_string(settings: ConnectionSettings) -> str:
    """Compose an ODBC connection string from *settings*.

    ``authentication`` selects the login mode: ``Windows`` (trusted
    connection), ``SqlPassword`` (UID/PWD), or any ``Authentication=`` value
    understood by the driver such as ``ActiveDirectoryIntegrated``.
    """
    if settings.connection_string:
        return settings.connection_string

    parts: list[tuple[str, str]] = [
        ("DRIVER", "{" + settings.driver.replace("}", "}}") + "}"),
        ("SERVER", _quote(settings.server)),
    ]
    if settings.database:
        parts.append(("DATABASE", _quote(settings.database)))

    auth = (settings.authentication or "").strip()
    if auth.lower() in _WINDOWS_AUTH:
        parts.append(("Trusted_Connection", "yes"))
    elif auth:
        parts.append(("Authentication", _quote(auth)))
    if settings.username:
        parts.append(("UID", _quote(settings.username)))
    if settings.password:
        parts.append(("PWD", _quote(settings.password)))

    parts.append(("Encrypt", "yes" if settings.encrypt else "no"))
    parts.append(("TrustServerCertificate", "yes" if settings.trust_server_certificate else "no"))
    return ";".join(f"{key}={value}" for key, value in parts)


def open_connection(settings: ConnectionSettings) -> Any:
    """Open a pyodbc connection, raising :class:`TargetConnectionError` on failure."""
    import pyodbc

    conn_str = build_connection_string(settings)
    login_timeout = int(settings.timeout) if settings.timeout else 0
    logger.debug("Connecting to '%s' (login timeout %ss)", settings.server, login_timeout)
    try:
        conn = pyodbc.connect(conn_str, timeout=login_timeout)
    except pyodbc.Error as exc:
        msg = f"cannot connect to '{settings.server}': {exc}"
        raise TargetConnectionError(msg, target=settings.server) from exc
    # Query timeout: the driver aborts statements running longer than this.
    conn.timeout = login_timeout
    return conn
