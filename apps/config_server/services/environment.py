"""
apps.config_server.services.environment
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Value objects exchanged between the resolver, the assembler and the facade.

Environments are immutable snapshots built per request.  Their property
sources are ordered by priority: the first source that holds a key wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from apps.config_server.exceptions import InvalidRequest


@dataclass(frozen=True)
class ResolutionRequest:
    """
    Attributes:
        application: Client application name, e.g. ``"config-client"``.
        profile: One profile or a comma-separated list; later entries take
            precedence over earlier ones.
        label: Branch, tag or commit.  ``None`` selects the repository's
            default label.  ``(_)`` stands in for ``/`` so labels survive
            a URL path segment.
    """

    application: str
    profile: str
    label: str | None = None

    def __post_init__(self) -> None:
        if not self.application or not self.application.strip():
            raise InvalidRequest("Application must be non-empty.")
        if not self.profiles:
            raise InvalidRequest("Profile must be non-empty.")
        if self.label is not None:
            label = self.label.replace("(_)", "/").strip()
            object.__setattr__(self, "label", label or None)

    @property
    def profiles(self) -> list[str]:
        return [p.strip() for p in (self.profile or "").split(",") if p.strip()]


@dataclass(frozen=True)
class PropertySource:
    name: str
    source: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", MappingProxyType(dict(self.source)))

    def to_dict(self) -> dict:
        return {"name": self.name, "source": dict(self.source)}


@dataclass(frozen=True)
class Environment:
    """
    The resolved configuration for one (application, profile, label) request.

    ``property_sources`` never contains two sources with the same name.
    """

    name: str
    profiles: tuple[str, ...]
    label: str | None = None
    version: str | None = None
    property_sources: tuple[PropertySource, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [ps.name for ps in self.property_sources]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate property source names: {names}")

    def get(self, key: str, default: str | None = None) -> str | None:
        """First-match lookup across the property sources."""
        for property_source in self.property_sources:
            if key in property_source.source:
                return property_source.source[key]
        return default

    def flattened(self) -> dict[str, str]:
        """Merge all sources into one mapping honouring first-match-wins."""
        merged: dict[str, str] = {}
        for property_source in self.property_sources:
            for key, value in property_source.source.items():
                merged.setdefault(key, value)
        return merged

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "profiles": list(self.profiles),
            "label": self.label,
            "version": self.version,
            "propertySources": [ps.to_dict() for ps in self.property_sources],
        }
