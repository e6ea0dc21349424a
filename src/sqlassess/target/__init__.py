"""Target domain: identity model and metadata provider."""

from sqlassess.target.models import (
    EngineEdition,
    Target,
    TargetKind,
    TargetMetadata,
    Version,
    translate_edition,
)
from sqlassess.target.provider import DEFAULT_IDENTITY_QUERY, MetadataProvider, Probe

__all__ = [
    "DEFAULT_IDENTITY_QUERY",
    "EngineEdition",
    "MetadataProvider",
    "Probe",
    "Target",
    "TargetKind",
    "TargetMetadata",
    "Version",
    "translate_edition",
]
