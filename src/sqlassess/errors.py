"""Exception hierarchy shared by the metadata, catalog, and evaluation layers."""

from __future__ import annotations


class AssessmentError(Exception):
    """Base class for every error raised by sqlassess."""


class TargetConnectionError(AssessmentError, ConnectionError):
    """Raised when the target cannot be reached through its handle."""

    def __init__(self, message: str, *, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target


class TargetTimeoutError(TargetConnectionError, TimeoutError):
    """Raised when fetching target metadata exceeds the caller's timeout."""


class UnsupportedTargetError(AssessmentError, ValueError):
    """Raised when the target kind, edition, or version is not recognized."""

    def __init__(self, message: str, *, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target


class CatalogLoadError(AssessmentError, ValueError):
    """Raised when a rule source is missing or malformed."""

    def __init__(
        self, message: str, *, source: str | None = None, check_id: str | None = None
    ) -> None:
        super().__init__(message)
        self.source = source
        self.check_id = check_id


class MissingFactError(AssessmentError, LookupError):
    """Raised during evaluation when a check needs a fact the snapshot lacks."""

    def __init__(self, fact: str, reason: str | None = None) -> None:
        msg = f"fact '{fact}' is not available"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.fact = fact
