"""
apps.config_server.services.repository_resolver
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Decides which documents of the configuration repository apply to a request,
and in which override order.

Candidate base names, most specific first::

    {application}-{profile}, {application}, application-{profile}, application

With several profiles (``dev,mysql``) the last profile is the most specific.
Each base name is looked up under every search path, nested-mapping
extensions (``.yml``, ``.yaml``) before ``.properties`` unless
``prefer_nested`` is off.  Every existing file becomes its own location.

Only ref listings and ``commit -> existing paths`` are cached; document
content is always read fresh.  :meth:`RepositoryResolver.invalidate` clears
the cache and is driven by the facade's refresh.
"""
from __future__ import annotations

import posixpath
import re
import threading
from dataclasses import dataclass

import structlog

from apps.config_server.exceptions import EmptySourceSet, RevisionNotFound
from .property_documents import DocumentEncoding
from .versioned_source import VersionedSource

logger = structlog.get_logger(__name__)

DEFAULT_APPLICATION = "application"

_COMMIT_PREFIX_RE = re.compile(r"^[0-9a-f]{7,40}$")


@dataclass(frozen=True)
class DocumentLocation:
    path: str
    encoding: DocumentEncoding


@dataclass(frozen=True)
class ResolvedDocuments:
    label: str
    version: str
    locations: tuple[DocumentLocation, ...]


class RepositoryResolver:
    """
    Usage::

        resolver = RepositoryResolver(GitSource(uri, basedir))
        docs = resolver.resolve("config-client", ["development"], None)
        for location in docs.locations:
            raw = source.read_blob(docs.version, location.path)
    """

    def __init__(
        self,
        source: VersionedSource,
        *,
        search_paths: list[str] | tuple[str, ...] = ("",),
        prefer_nested: bool = True,
    ) -> None:
        self.source = source
        self.search_paths = tuple(search_paths) or ("",)
        encodings = [DocumentEncoding.YAML, DocumentEncoding.PROPERTIES]
        if not prefer_nested:
            encodings.reverse()
        self._extensions = [(ext, enc) for enc in encodings for ext in enc.extensions]
        self._lock = threading.Lock()
        self._revisions: dict[str, str] | None = None
        self._paths: dict[str, frozenset[str]] = {}

    def resolve(
        self,
        application: str,
        profiles: list[str],
        label: str | None,
        *,
        timeout: float | None = None,
    ) -> ResolvedDocuments:
        """
        Raises:
            RevisionNotFound: *label* names no branch, tag or known commit.
            EmptySourceSet: No candidate document exists at the revision.
            SourceUnavailable: Propagated from the versioned source.
        """
        label = label or self.source.default_label
        commit = self._commit_for(label, timeout)
        paths = self._paths_at(commit, timeout)

        locations: list[DocumentLocation] = []
        for base_name in candidate_names(application, profiles):
            for search_path in self.search_paths:
                directory = posixpath.normpath(search_path.replace("{application}", application).strip("/"))
                if directory == ".":
                    directory = ""
                for extension, encoding in self._extensions:
                    path = posixpath.join(directory, base_name + extension) if directory else base_name + extension
                    if path in paths:
                        locations.append(DocumentLocation(path=path, encoding=encoding))

        # "config" and "config/" name the same directory.
        locations = list(dict.fromkeys(locations))
        if not locations:
            raise EmptySourceSet(
                f'No documents for application "{application}" and profiles '
                f"{profiles} at label \"{label}\"."
            )

        logger.debug(
            "documents_resolved",
            application=application,
            profiles=profiles,
            label=label,
            version=commit,
            paths=[loc.path for loc in locations],
        )
        return ResolvedDocuments(label=label, version=commit, locations=tuple(locations))

    def invalidate(self) -> None:
        with self._lock:
            self._revisions = None
            self._paths.clear()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _commit_for(self, label: str, timeout: float | None) -> str:
        with self._lock:
            revisions = self._revisions
        if revisions is None:
            revisions = self.source.list_revisions(timeout=timeout)
            with self._lock:
                self._revisions = revisions

        if label in revisions:
            return revisions[label]
        if _COMMIT_PREFIX_RE.match(label):
            matches = {commit for commit in revisions.values() if commit.startswith(label)}
            if len(matches) == 1:
                return matches.pop()
        raise RevisionNotFound(f'Label "{label}" does not exist in {self.source.uri}.')

    def _paths_at(self, commit: str, timeout: float | None) -> frozenset[str]:
        with self._lock:
            paths = self._paths.get(commit)
        if paths is None:
            paths = self.source.list_paths(commit, timeout=timeout)
            with self._lock:
                self._paths[commit] = paths
        return paths


def candidate_names(application: str, profiles: list[str]) -> list[str]:
    """Document base names for *application* and *profiles*, most specific first."""
    names: list[str] = []
    for app in dict.fromkeys([application, DEFAULT_APPLICATION]):
        names.extend(f"{app}-{profile}" for profile in reversed(profiles))
        names.append(app)
    return list(dict.fromkeys(names))
