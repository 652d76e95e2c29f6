"""
tests.conftest
~~~~~~~~~~~~~~
Shared fixtures: an in-memory versioned source, key material and a
ready-made :class:`ConfigService`.
"""
from __future__ import annotations

import hashlib
from collections import Counter

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from apps.config_server.services.config_service import ConfigService
from apps.config_server.services.key_resolver import (
    AsymmetricKeystoreProvider,
    KeyResolver,
    SymmetricSecretProvider,
)

SYMMETRIC_SECRET = "s3cr3t-master-key"
KEY_PASSWORD = "changeme"


class InMemorySource:
    """
    VersionedSource over dicts.  ``refs`` maps a ref name to the files at
    that ref; ``push`` stages new content that becomes visible on
    ``refresh``, as with a real remote.
    """

    def __init__(self, refs: dict[str, dict[str, str]], *, default_label: str = "main") -> None:
        self.uri = "memory://config-repo"
        self.default_label = default_label
        self.calls: Counter = Counter()
        self._refs: dict[str, str] = {}
        self._trees: dict[str, dict[str, bytes]] = {}
        self._pending: dict[str, dict[str, str]] = {}
        for name, files in refs.items():
            self._commit(name, files)

    def push(self, ref: str, files: dict[str, str]) -> None:
        self._pending[ref] = files

    def list_revisions(self, *, timeout=None) -> dict[str, str]:
        self.calls["list_revisions"] += 1
        return dict(self._refs)

    def list_paths(self, revision, *, timeout=None) -> frozenset[str]:
        self.calls["list_paths"] += 1
        return frozenset(self._trees[revision])

    def read_blob(self, revision, path, *, timeout=None) -> bytes | None:
        self.calls["read_blob"] += 1
        return self._trees.get(revision, {}).get(path)

    def refresh(self, *, timeout=None) -> None:
        self.calls["refresh"] += 1
        for ref, files in self._pending.items():
            self._commit(ref, files)
        self._pending.clear()

    def _commit(self, ref: str, files: dict[str, str]) -> None:
        tree = {path: content.encode("utf-8") for path, content in files.items()}
        digest = hashlib.sha1(repr(sorted(tree.items())).encode("utf-8") + ref.encode("utf-8"))
        commit = digest.hexdigest()
        self._refs[ref] = commit
        self._trees[commit] = tree


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def rsa_keys() -> dict[str, rsa.RSAPrivateKey]:
    """Two independent RSA keys, generated once per session."""
    return {
        "alias-a": rsa.generate_private_key(public_exponent=65537, key_size=2048),
        "alias-b": rsa.generate_private_key(public_exponent=65537, key_size=2048),
    }


@pytest.fixture
def keystore_dir(tmp_path, rsa_keys):
    """
    Keystore directory: ``alias-a.pem`` (password-protected PEM) and
    ``alias-b.p12`` (PKCS#12 bundle, same password).
    """
    directory = tmp_path / "keystore"
    directory.mkdir()
    encryption = serialization.BestAvailableEncryption(KEY_PASSWORD.encode())
    (directory / "alias-a.pem").write_bytes(
        rsa_keys["alias-a"].private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            encryption,
        )
    )
    (directory / "alias-b.p12").write_bytes(
        pkcs12.serialize_key_and_certificates(b"alias-b", rsa_keys["alias-b"], None, None, encryption)
    )
    return directory


@pytest.fixture
def symmetric_resolver() -> KeyResolver:
    return KeyResolver(SymmetricSecretProvider(SYMMETRIC_SECRET))


@pytest.fixture
def keystore_resolver(keystore_dir) -> KeyResolver:
    return KeyResolver(
        AsymmetricKeystoreProvider(
            keystore_dir,
            store_password=KEY_PASSWORD,
            default_alias="alias-a",
        )
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@pytest.fixture
def make_service():
    """Factory: ``make_service(files_or_refs, key_resolver=..., **kwargs)``."""

    def _make(refs, *, key_resolver=None, **kwargs) -> ConfigService:
        if refs and all(isinstance(v, str) for v in refs.values()):
            refs = {"main": refs}
        source = InMemorySource(refs)
        return ConfigService(
            source,
            key_resolver=key_resolver or KeyResolver(SymmetricSecretProvider(SYMMETRIC_SECRET)),
            **kwargs,
        )

    return _make
