"""
tests.test_git_source
~~~~~~~~~~~~~~~~~~~~~
Integration tests for GitSource against a throwaway local repository.
Skipped when the ``git`` executable is not installed.
"""
from __future__ import annotations

import os
import shutil
import subprocess
import threading
import time

import pytest

from apps.config_server.exceptions import SourceUnavailable
from apps.config_server.services import ResolutionRequest
from apps.config_server.services.config_service import ConfigService
from apps.config_server.services.versioned_source import GitSource

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

GIT_IDENTITY = [
    "-c", "user.name=Config Tests",
    "-c", "user.email=config-tests@example.com",
    "-c", "commit.gpgsign=false",
    "-c", "tag.gpgsign=false",
]


def _git(cwd, *args: str) -> str:
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=cwd,
        capture_output=True,
        check=True,
    )
    return result.stdout.decode("utf-8").strip()


def _commit(repo, files: dict[str, str], message: str) -> str:
    for path, content in files.items():
        target = repo / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    _git(repo, "add", "--all")
    _git(repo, "commit", "-q", "-m", message)
    return _git(repo, "rev-parse", "HEAD")


@pytest.fixture
def upstream(tmp_path):
    """A repository with one commit on ``main`` and an annotated tag ``v1.0``."""
    repo = tmp_path / "upstream"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    _commit(
        repo,
        {
            "application.yml": "server:\n  port: 8080\n",
            "config-client-development.properties": "user.role=Developer\n",
            "nested/dir/extra.properties": "a=b\n",
        },
        "initial",
    )
    _git(repo, "tag", "-a", "v1.0", "-m", "release 1.0")
    return repo


@pytest.fixture
def source(upstream, tmp_path) -> GitSource:
    return GitSource(str(upstream), tmp_path / "mirror", default_label="main", timeout=30.0)


class TestGitSource:
    def test_clone_is_lazy(self, source):
        assert not source.basedir.exists()
        source.list_revisions()
        assert (source.basedir / "HEAD").is_file()

    def test_list_revisions_peels_annotated_tags(self, source, upstream):
        head = _git(upstream, "rev-parse", "HEAD")
        revisions = source.list_revisions()
        assert revisions == {"main": head, "v1.0": head}

    def test_list_paths(self, source, upstream):
        head = _git(upstream, "rev-parse", "HEAD")
        assert source.list_paths(head) == frozenset({
            "application.yml",
            "config-client-development.properties",
            "nested/dir/extra.properties",
        })

    def test_read_blob(self, source, upstream):
        head = _git(upstream, "rev-parse", "HEAD")
        assert source.read_blob(head, "config-client-development.properties") == b"user.role=Developer\n"
        assert source.read_blob(head, "missing.yml") is None

    def test_refresh_fetches_new_commits(self, source, upstream):
        before = source.list_revisions()["main"]
        after = _commit(upstream, {"application.yml": "server:\n  port: 9090\n"}, "bump port")

        assert source.list_revisions()["main"] == before
        source.refresh()
        assert source.list_revisions()["main"] == after
        assert source.read_blob(after, "application.yml") == b"server:\n  port: 9090\n"
        # Old revisions stay readable.
        assert source.read_blob(before, "application.yml") == b"server:\n  port: 8080\n"

    def test_refresh_drops_deleted_branches(self, source, upstream):
        _git(upstream, "branch", "short-lived")
        source.refresh()
        assert "short-lived" in source.list_revisions()
        _git(upstream, "branch", "-D", "short-lived")
        source.refresh()
        assert "short-lived" not in source.list_revisions()

    def test_unreachable_uri(self, tmp_path):
        source = GitSource(str(tmp_path / "does-not-exist"), tmp_path / "mirror")
        with pytest.raises(SourceUnavailable):
            source.list_revisions()

    def test_missing_git_binary(self, upstream, tmp_path):
        source = GitSource(str(upstream), tmp_path / "mirror", git_binary="git-binary-that-does-not-exist")
        with pytest.raises(SourceUnavailable):
            source.list_revisions()


@pytest.fixture
def failing_git(tmp_path):
    """
    A git wrapper whose ``clone`` leaves an empty bare repository at the
    target, stalls, then fails.  Every other command is passed through.
    """
    if os.name != "posix":
        pytest.skip("needs a POSIX shell")
    script = tmp_path / "failing-git"
    script.write_text(
        "#!/bin/sh\n"
        "if [ \"$1\" = clone ]; then\n"
        "  for target; do :; done\n"
        "  git init -q --bare \"$target\"\n"
        "  sleep \"${CLONE_DELAY:-1}\" >/dev/null 2>&1\n"
        "  exit 1\n"
        "fi\n"
        "exec git \"$@\"\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return str(script)


class TestInterruptedClone:
    """A clone that has not finished never reads as an empty repository."""

    def test_request_during_failing_clone(self, upstream, tmp_path, failing_git):
        source = GitSource(str(upstream), tmp_path / "mirror", git_binary=failing_git)
        errors: dict[str, Exception] = {}

        def request(name):
            try:
                source.list_revisions()
            except Exception as exc:  # noqa: BLE001
                errors[name] = exc

        first = threading.Thread(target=request, args=("first",))
        first.start()
        time.sleep(0.3)
        request("second")
        first.join()
        request("third")

        assert {name: type(exc) for name, exc in errors.items()} == {
            "first": SourceUnavailable,
            "second": SourceUnavailable,
            "third": SourceUnavailable,
        }
        assert not source.basedir.exists()

    def test_clone_killed_on_timeout_leaves_nothing_behind(
        self, upstream, tmp_path, failing_git, monkeypatch
    ):
        monkeypatch.setenv("CLONE_DELAY", "5")
        basedir = tmp_path / "mirror"
        killed = GitSource(str(upstream), basedir, git_binary=failing_git, timeout=0.5)
        with pytest.raises(SourceUnavailable):
            killed.list_revisions()
        assert not basedir.exists()

        head = _git(upstream, "rev-parse", "HEAD")
        assert GitSource(str(upstream), basedir).list_revisions()["main"] == head
        assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".mirror-")] == []


class TestGitBackedService:
    """End-to-end resolution through a real repository."""

    def test_environment_from_git(self, source, upstream, symmetric_resolver):
        service = ConfigService(source, key_resolver=symmetric_resolver)
        env = service.get_environment(ResolutionRequest("config-client", "development"))
        assert env.version == _git(upstream, "rev-parse", "HEAD")
        assert env.get("user.role") == "Developer"
        assert env.get("server.port") == "8080"
        assert [ps.name for ps in env.property_sources] == [
            f"{upstream}/config-client-development.properties",
            f"{upstream}/application.yml",
        ]

    def test_refresh_through_service(self, source, upstream, symmetric_resolver):
        service = ConfigService(source, key_resolver=symmetric_resolver)
        request = ResolutionRequest("config-client", "development")
        assert service.get_environment(request).get("user.role") == "Developer"

        _commit(upstream, {"config-client-development.properties": "user.role=Lead\n"}, "promote")
        assert service.get_environment(request).get("user.role") == "Developer"

        service.refresh()
        assert service.get_environment(request).get("user.role") == "Lead"

    def test_tag_label(self, source, upstream, symmetric_resolver):
        service = ConfigService(source, key_resolver=symmetric_resolver)
        _commit(upstream, {"application.yml": "server:\n  port: 9090\n"}, "after tag")
        service.refresh()
        env = service.get_environment(ResolutionRequest("config-client", "development", "v1.0"))
        assert env.get("server.port") == "8080"
        assert env.label == "v1.0"
