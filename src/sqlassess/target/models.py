"""Target identity: structured versions, editions, and the metadata snapshot."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from sqlassess.errors import MissingFactError, UnsupportedTargetError

# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class Version:
    """A ``major.minor.build.revision`` version compared component-wise.

    Two to four numeric components are accepted; missing trailing
    components are treated as ``0``.
    """

    major: int
    minor: int = 0
    build: int = 0
    revision: int = 0

    @classmethod
    def parse(cls, text: object) -> Version:
        """Parse a dotted version string, raising ``ValueError`` when malformed."""
        if isinstance(text, Version):
            return text
        raw = str(text).strip()
        parts = raw.split(".")
        if not 2 <= len(parts) <= 4:
            msg = f"invalid version '{raw}': expected 2 to 4 dot-separated numbers"
            raise ValueError(msg)
        numbers: list[int] = []
        for part in parts:
            if not part.isdigit():
                msg = f"invalid version '{raw}': component '{part}' is not a number"
                raise ValueError(msg)
            numbers.append(int(part))
        numbers.extend([0] * (4 - len(numbers)))
        return cls(*numbers)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}.{self.revision}"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TargetKind(enum.Enum):
    """Kind of object under assessment."""

    SERVER = "Server"
    DATABASE = "Database"
    INSTANCE = "Instance"

    @classmethod
    def from_name(cls, name: str) -> TargetKind:
        for member in cls:
            if member.value.lower() == name.strip().lower():
                return member
        valid = sorted(m.value for m in cls)
        msg = f"unknown target kind '{name}', must be one of {valid}"
        raise ValueError(msg)


class EngineEdition(enum.Enum):
    """Database engine edition, keyed by the server's engine-edition code."""

    PERSONAL_OR_DESKTOP_ENGINE = 1
    STANDARD = 2
    ENTERPRISE = 3
    EXPRESS = 4
    AZURE_DATABASE = 5
    DATA_WAREHOUSE = 6
    STRETCH_DATABASE = 7
    MANAGED_INSTANCE = 8

    @property
    def label(self) -> str:
        """CamelCase name used in rule files, e.g. ``ManagedInstance``."""
        return "".join(word.capitalize() for word in self.name.split("_"))

    @classmethod
    def from_label(cls, label: str) -> EngineEdition:
        for member in cls:
            if member.label.lower() == label.strip().lower():
                return member
        valid = [m.label for m in cls]
        msg = f"unknown engine edition '{label}', must be one of {valid}"
        raise ValueError(msg)


def translate_edition(code: object, *, target: str | None = None) -> EngineEdition:
    """Map a raw engine-edition code to :class:`EngineEdition`.

    Every known code is mapped explicitly; anything else raises
    :class:`UnsupportedTargetError` instead of falling back to a default.
    """
    try:
        value = int(code)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        msg = f"engine edition code {code!r} is not an integer"
        raise UnsupportedTargetError(msg, target=target) from None
    try:
        return EngineEdition(value)
    except ValueError:
        msg = f"unsupported engine edition code {value}"
        if target:
            msg += f" reported by '{target}'"
        raise UnsupportedTargetError(msg, target=target) from None


# ---------------------------------------------------------------------------
# Target and metadata snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Target:
    """The object under assessment, identified once at session start."""

    kind: TargetKind
    name: str
    version: Version
    platform: str
    edition: EngineEdition
    handle: Any = field(default=None, compare=False, repr=False)


Fact = Any


@dataclass(frozen=True)
class TargetMetadata:
    """Immutable snapshot of facts collected about a target.

    Facts come from probe queries: a single-cell result is stored as a scalar,
    anything else as a tuple of row mappings.  Target attributes are also
    exposed as facts (``name``, ``kind``, ``version``, ``platform``,
    ``edition``).
    """

    target: Target
    facts: Mapping[str, Fact] = field(default_factory=dict)
    probe_errors: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "facts", MappingProxyType(dict(self.facts)))
        object.__setattr__(self, "probe_errors", MappingProxyType(dict(self.probe_errors)))

    def _builtin_facts(self) -> dict[str, Fact]:
        return {
            "name": self.target.name,
            "kind": self.target.kind.value,
            "version": self.target.version,
            "platform": self.target.platform,
            "edition": self.target.edition.label,
        }

    def has(self, name: str) -> bool:
        return name in self.facts or name in self._builtin_facts()

    def get(self, name: str) -> Fact:
        """Return the named fact, raising :class:`MissingFactError` if absent."""
        if name in self.facts:
            return self.facts[name]
        builtin = self._builtin_facts()
        if name in builtin:
            return builtin[name]
        raise MissingFactError(name, self.probe_errors.get(name))
