"""
apps.config_server.services.key_resolver
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Maps a cipher value's key-selector annotation to key material.

Key material comes from a :class:`KeyMaterialProvider`.  Three variants are
available:

``SymmetricSecretProvider``
    One symmetric secret (``ENCRYPT_KEY``); no aliases.
``AsymmetricKeystoreProvider``
    RSA keys from a PEM/PKCS#12 file or a directory of per-alias key files.
Custom
    Any object with ``default_key()`` and ``key_for_alias(alias)``, selected
    by dotted path in ``ENCRYPT_KEY_PROVIDER``.

The resolver itself is a pure mapping; the only state it touches is the
keystore handle cache inside the asymmetric provider.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from django.utils.module_loading import import_string

from apps.config_server.exceptions import NoDefaultKeyConfigured, UnknownKeyAlias
from .cipher_value import CipherAnnotation, KeyAlias, Secret

logger = structlog.get_logger(__name__)

DEFAULT_SALT = "deadbeef"

_ALIAS_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_KEY_FILE_SUFFIXES = (".pem", ".p12", ".pfx")


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SymmetricKey:
    secret: bytes
    salt: bytes = field(repr=False, default=b"")

    def __repr__(self) -> str:
        return "SymmetricKey(<redacted>)"


@dataclass(frozen=True)
class AsymmetricKey:
    alias: str
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey | None = field(default=None, repr=False)


KeyMaterial = SymmetricKey | AsymmetricKey


def salt_bytes(salt: str) -> bytes:
    """Hex-decode *salt*, falling back to its UTF-8 bytes."""
    try:
        return bytes.fromhex(salt)
    except ValueError:
        return salt.encode("utf-8")


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class KeyMaterialProvider(Protocol):
    def default_key(self) -> KeyMaterial | None: ...

    def key_for_alias(self, alias: str) -> KeyMaterial | None: ...


class SymmetricSecretProvider:
    """Serves one process-wide symmetric secret."""

    def __init__(self, secret: str, salt: str = DEFAULT_SALT) -> None:
        self._key = SymmetricKey(secret=secret.encode("utf-8"), salt=salt_bytes(salt))

    def default_key(self) -> KeyMaterial:
        return self._key

    def key_for_alias(self, alias: str) -> KeyMaterial | None:
        return None


class PemKeyProvider:
    """Serves a single RSA key given inline as PEM text."""

    def __init__(self, pem: str, *, alias: str = "default", password: str = "") -> None:
        self._key = _load_pem(pem.encode("utf-8"), alias, password)

    def default_key(self) -> KeyMaterial:
        return self._key

    def key_for_alias(self, alias: str) -> KeyMaterial | None:
        return self._key if alias == self._key.alias else None


class AsymmetricKeystoreProvider:
    """
    Loads RSA keys on demand from a keystore location.

    *location* is either one key file (PEM, PKCS#12) whose alias is
    *default_alias*, or a directory holding ``<alias>.pem``, ``<alias>.p12``
    or ``<alias>.pfx`` files.  PEM keys are unlocked with *key_password*
    (falling back to *store_password*); PKCS#12 bundles with
    *store_password*.  Loaded keys are cached until :meth:`reload`.
    """

    def __init__(
        self,
        location: str | Path,
        *,
        store_password: str = "",
        default_alias: str = "",
        key_password: str = "",
    ) -> None:
        self.location = Path(location)
        self.default_alias = default_alias
        self._store_password = store_password
        self._key_password = key_password or store_password
        self._cache: dict[str, AsymmetricKey] = {}
        self._lock = threading.Lock()

    def default_key(self) -> KeyMaterial | None:
        if not self.default_alias:
            return None
        return self.key_for_alias(self.default_alias)

    def key_for_alias(self, alias: str) -> KeyMaterial | None:
        with self._lock:
            cached = self._cache.get(alias)
            if cached is not None:
                return cached
            path = self._path_for(alias)
            if path is None:
                return None
            key = self._load(path, alias)
            self._cache[alias] = key
        logger.info("keystore_entry_loaded", alias=alias, path=str(path))
        return key

    def reload(self) -> None:
        with self._lock:
            self._cache.clear()

    def _path_for(self, alias: str) -> Path | None:
        if not _ALIAS_RE.match(alias):
            return None
        if self.location.is_file():
            return self.location if alias == self.default_alias else None
        for suffix in _KEY_FILE_SUFFIXES:
            candidate = self.location / f"{alias}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def _load(self, path: Path, alias: str) -> AsymmetricKey:
        data = path.read_bytes()
        if path.suffix.lower() in (".p12", ".pfx"):
            try:
                private_key, _cert, _extra = pkcs12.load_key_and_certificates(
                    data, self._store_password.encode("utf-8") or None
                )
            except ValueError as exc:
                raise UnknownKeyAlias(
                    f'Keystore entry "{alias}" could not be unlocked.'
                ) from exc
            if not isinstance(private_key, rsa.RSAPrivateKey):
                raise UnknownKeyAlias(f'Keystore entry "{alias}" holds no RSA private key.')
            return AsymmetricKey(alias=alias, public_key=private_key.public_key(), private_key=private_key)
        return _load_pem(data, alias, self._key_password)


def _load_pem(data: bytes, alias: str, password: str) -> AsymmetricKey:
    if b"PRIVATE KEY" not in data:
        try:
            public_key = serialization.load_pem_public_key(data)
        except ValueError as exc:
            raise UnknownKeyAlias(f'Key "{alias}" is not a valid PEM key.') from exc
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise UnknownKeyAlias(f'Key "{alias}" is not an RSA key.')
        return AsymmetricKey(alias=alias, public_key=public_key)

    try:
        private_key = serialization.load_pem_private_key(
            data, password.encode("utf-8") if password else None
        )
    except (TypeError, ValueError) as exc:
        raise UnknownKeyAlias(f'Key "{alias}" could not be unlocked.') from exc
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise UnknownKeyAlias(f'Key "{alias}" is not an RSA key.')
    return AsymmetricKey(alias=alias, public_key=private_key.public_key(), private_key=private_key)


def build_key_provider(settings) -> KeyMaterialProvider | None:
    """
    Build the provider described by Django *settings*, or ``None`` when no
    key material is configured.

    Precedence: ``ENCRYPT_KEY_PROVIDER`` (custom class path), then
    ``ENCRYPT_KEY_STORE_LOCATION``, then ``ENCRYPT_KEY`` (PEM text selects
    RSA, anything else is a symmetric secret).
    """
    provider_path = getattr(settings, "ENCRYPT_KEY_PROVIDER", "")
    if provider_path:
        return import_string(provider_path)()

    location = getattr(settings, "ENCRYPT_KEY_STORE_LOCATION", "")
    if location:
        return AsymmetricKeystoreProvider(
            location,
            store_password=getattr(settings, "ENCRYPT_KEY_STORE_PASSWORD", ""),
            default_alias=getattr(settings, "ENCRYPT_KEY_STORE_ALIAS", ""),
            key_password=getattr(settings, "ENCRYPT_KEY_STORE_SECRET", ""),
        )

    key = getattr(settings, "ENCRYPT_KEY", "")
    if key.lstrip().startswith("-----BEGIN"):
        return PemKeyProvider(key)
    if key:
        return SymmetricSecretProvider(key, getattr(settings, "ENCRYPT_SALT", DEFAULT_SALT))
    return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class KeyResolver:
    """
    Resolves a :data:`CipherAnnotation` to key material.

    Usage::

        resolver = KeyResolver(SymmetricSecretProvider("s3cr3t"))
        key = resolver.resolve(None)            # default key
        key = resolver.resolve(Secret("adhoc")) # one-off symmetric key
        key = resolver.resolve(KeyAlias("dev")) # keystore lookup
    """

    def __init__(self, provider: KeyMaterialProvider | None, salt: str = DEFAULT_SALT) -> None:
        self.provider = provider
        self._salt = salt_bytes(salt)

    def resolve(self, selector: CipherAnnotation) -> KeyMaterial:
        if selector is None:
            key = self.provider.default_key() if self.provider is not None else None
            if key is None:
                raise NoDefaultKeyConfigured()
            return key

        if isinstance(selector, Secret):
            return SymmetricKey(secret=selector.value.encode("utf-8"), salt=self._salt)

        if isinstance(selector, KeyAlias):
            key = self.provider.key_for_alias(selector.alias) if self.provider is not None else None
            if key is None:
                raise UnknownKeyAlias(f'Key alias "{selector.alias}" is not configured.')
            return key

        raise TypeError(f"Unsupported key selector: {selector!r}")
