"""
apps.config_server.services.versioned_source
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Read-only access to a versioned configuration repository.

:class:`VersionedSource` is the collaborator interface the repository
resolver depends on.  :class:`GitSource` implements it on top of the ``git``
command-line client, working from a local mirror clone that is created on
first use and updated by :meth:`GitSource.refresh`.  The clone is made in a
staging directory next to *basedir* and renamed into place only once git
exits cleanly, so a clone in progress, failed or killed on timeout never
looks like a repository without branches.

Every operation takes a timeout in seconds.  A timeout, a missing ``git``
binary, or a failed clone/fetch raises :class:`SourceUnavailable`.
"""
from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Protocol

import structlog

from apps.config_server.exceptions import SourceUnavailable

logger = structlog.get_logger(__name__)


class VersionedSource(Protocol):
    uri: str
    default_label: str

    def list_revisions(self, *, timeout: float | None = None) -> dict[str, str]:
        """Return ``{ref name: commit id}`` for every branch and tag."""

    def list_paths(self, revision: str, *, timeout: float | None = None) -> frozenset[str]:
        """Return every file path present at commit *revision*."""

    def read_blob(self, revision: str, path: str, *, timeout: float | None = None) -> bytes | None:
        """Return the content of *path* at *revision*, or ``None`` if absent."""

    def refresh(self, *, timeout: float | None = None) -> None:
        """Pick up upstream changes."""


class GitSource:
    """
    :class:`VersionedSource` backed by a mirror clone of *uri* in *basedir*.

    Args:
        uri: Anything ``git clone`` accepts (URL or local path).
        basedir: Directory holding the bare mirror clone.
        default_label: Branch used when a request carries no label.
        timeout: Default per-command timeout in seconds.
        git_binary: Name or path of the ``git`` executable.
    """

    def __init__(
        self,
        uri: str,
        basedir: str | Path,
        *,
        default_label: str = "main",
        timeout: float = 10.0,
        git_binary: str = "git",
    ) -> None:
        self.uri = uri
        self.basedir = Path(basedir)
        self.default_label = default_label
        self.timeout = timeout
        self._git = git_binary
        self._clone_lock = threading.Lock()

    # ------------------------------------------------------------------
    # VersionedSource
    # ------------------------------------------------------------------

    def list_revisions(self, *, timeout: float | None = None) -> dict[str, str]:
        self._ensure_clone(timeout)
        output = self._run(
            "for-each-ref",
            "--format=%(refname)%00%(objectname)%00%(*objectname)",
            "refs/heads",
            "refs/tags",
            timeout=timeout,
        )
        revisions: dict[str, str] = {}
        for line in output.decode("utf-8").splitlines():
            refname, objectname, peeled = line.split("\0")
            # Annotated tags point at a tag object; use the commit it peels to.
            commit = peeled or objectname
            for prefix in ("refs/heads/", "refs/tags/"):
                if refname.startswith(prefix):
                    revisions.setdefault(refname[len(prefix):], commit)
        return revisions

    def list_paths(self, revision: str, *, timeout: float | None = None) -> frozenset[str]:
        self._ensure_clone(timeout)
        output = self._run("ls-tree", "-r", "--name-only", "-z", revision, timeout=timeout)
        return frozenset(p for p in output.decode("utf-8").split("\0") if p)

    def read_blob(self, revision: str, path: str, *, timeout: float | None = None) -> bytes | None:
        self._ensure_clone(timeout)
        result = self._exec("cat-file", "blob", f"{revision}:{path}", timeout=timeout)
        if result.returncode != 0:
            return None
        return result.stdout

    def refresh(self, *, timeout: float | None = None) -> None:
        if self._ensure_clone(timeout):
            return
        self._run("remote", "update", "--prune", timeout=timeout)
        logger.info("git_repository_fetched", uri=self.uri)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _ensure_clone(self, timeout: float | None) -> bool:
        """Clone the mirror if missing; return ``True`` if a clone happened."""
        if (self.basedir / "HEAD").is_file():
            return False
        with self._clone_lock:
            if (self.basedir / "HEAD").is_file():
                return False
            self.basedir.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f".{self.basedir.name}-", dir=self.basedir.parent))
            try:
                result = self._invoke(
                    [self._git, "clone", "--mirror", "--quiet", self.uri, str(staging)],
                    timeout,
                )
                if result.returncode != 0:
                    self._fail("clone", result)
                self._install_clone(staging)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
        logger.info("git_repository_cloned", uri=self.uri, basedir=str(self.basedir))
        return True

    def _install_clone(self, staging: Path) -> None:
        if self.basedir.exists() and not (self.basedir / "HEAD").is_file():
            logger.warning("git_stale_basedir_removed", basedir=str(self.basedir))
            shutil.rmtree(self.basedir)
        try:
            os.replace(staging, self.basedir)
        except OSError as exc:
            # Another process may have installed its clone first.
            if not (self.basedir / "HEAD").is_file():
                raise SourceUnavailable(f"Could not install clone into {self.basedir}: {exc}") from exc

    def _run(self, *args: str, timeout: float | None) -> bytes:
        result = self._exec(*args, timeout=timeout)
        if result.returncode != 0:
            self._fail(args[0], result)
        return result.stdout

    def _exec(self, *args: str, timeout: float | None) -> subprocess.CompletedProcess:
        return self._invoke([self._git, f"--git-dir={self.basedir}", *args], timeout)

    def _invoke(self, command: list[str], timeout: float | None) -> subprocess.CompletedProcess:
        effective = self.timeout if timeout is None else timeout
        operation = next((arg for arg in command[1:] if not arg.startswith("-")), command[0])
        try:
            return subprocess.run(
                command,
                capture_output=True,
                timeout=effective,
                check=False,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("git_command_timeout", operation=operation, timeout=effective)
            raise SourceUnavailable(
                f"git {operation} timed out after {effective}s."
            ) from exc
        except OSError as exc:
            logger.error("git_command_failed", operation=operation, error=str(exc))
            raise SourceUnavailable(f"git could not be executed: {exc}") from exc

    def _fail(self, operation: str, result: subprocess.CompletedProcess) -> None:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        logger.error(
            "git_command_failed",
            operation=operation,
            returncode=result.returncode,
            stderr=stderr,
        )
        raise SourceUnavailable(f"git {operation} failed: {stderr or result.returncode}")
