"""
apps.config_server.services.config_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Facade of the configuration server.  Views must call only this class.

Responsibilities
----------------
- Resolving environments: repository resolver → document parser →
  environment assembler.
- The encrypt/decrypt utility operations, which bypass resolution and go
  straight to the key resolver and text cipher.
- ``refresh()``: fetches the repository and drops the resolver cache under
  the write side of a reader-writer lock, so an environment is never built
  from a mix of old and new repository state.

The service is built once per process by :func:`build_config_service` and
handed to the views through the app config.
"""
from __future__ import annotations

import time

import structlog
from cryptography.hazmat.primitives import serialization

from apps.config_server.exceptions import EmptySourceSet, SourceUnavailable
from common.exceptions import NotFoundError
from . import property_documents, text_cipher
from .cipher_value import CipherAnnotation, KeyAlias, format_cipher_value, parse_cipher_value
from .environment import Environment, ResolutionRequest
from .environment_assembler import EnvironmentAssembler
from .key_resolver import DEFAULT_SALT, AsymmetricKey, KeyResolver, build_key_provider
from .locks import ReadWriteLock
from .property_documents import DocumentEncoding
from .repository_resolver import RepositoryResolver
from .versioned_source import GitSource, VersionedSource

logger = structlog.get_logger(__name__)


class ConfigService:
    """
    Usage::

        service = ConfigService(GitSource(uri, basedir), key_resolver=KeyResolver(provider))
        env = service.get_environment(ResolutionRequest("config-client", "development"))
        env.get("user.role")
        token = service.encrypt_value("s3cr3t")          # "{cipher}..."
        service.decrypt_value(token)                      # "s3cr3t"
        service.refresh()
    """

    def __init__(
        self,
        source: VersionedSource | None,
        *,
        key_resolver: KeyResolver,
        search_paths: list[str] | tuple[str, ...] = ("",),
        prefer_nested: bool = True,
        decrypt_enabled: bool = True,
        client_keys: dict[str, str] | None = None,
        default_timeout: float | None = None,
    ) -> None:
        self.source = source
        self.key_resolver = key_resolver
        self.decrypt_enabled = decrypt_enabled
        self.client_keys = dict(client_keys or {})
        self.default_timeout = default_timeout
        self.resolver = (
            RepositoryResolver(source, search_paths=search_paths, prefer_nested=prefer_nested)
            if source is not None
            else None
        )
        self.assembler = EnvironmentAssembler(key_resolver)
        self._lock = ReadWriteLock()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get_environment(self, request: ResolutionRequest, *, timeout: float | None = None) -> Environment:
        """
        Resolve the environment for *request*.

        An application without matching documents gets an environment with
        no property sources rather than an error.

        Raises:
            RevisionNotFound: The label does not exist.
            SourceUnavailable: The repository could not be read in time.
            MalformedDocument: A matching document could not be parsed.
        """
        source, resolver = self._require_source()
        deadline = _Deadline(self.default_timeout if timeout is None else timeout)
        profiles = request.profiles

        with self._lock.read():
            try:
                resolved = resolver.resolve(
                    request.application,
                    profiles,
                    request.label,
                    timeout=deadline.remaining(),
                )
            except EmptySourceSet:
                logger.info(
                    "environment_empty",
                    application=request.application,
                    profiles=profiles,
                    label=request.label,
                )
                return Environment(
                    name=request.application,
                    profiles=tuple(profiles),
                    label=request.label or source.default_label,
                )

            documents = []
            for location in resolved.locations:
                name = f"{source.uri}/{location.path}"
                raw = source.read_blob(resolved.version, location.path, timeout=deadline.remaining())
                if raw is None:
                    raise SourceUnavailable(f"{name} disappeared while it was being read.")
                documents.append((name, property_documents.parse(raw, location.encoding, name=name)))

            environment = self.assembler.assemble(
                documents,
                self.decrypt_enabled,
                application=request.application,
                profiles=profiles,
                label=resolved.label,
                version=resolved.version,
            )

        logger.info(
            "environment_resolved",
            application=request.application,
            profiles=profiles,
            label=resolved.label,
            version=resolved.version,
            sources=len(environment.property_sources),
        )
        return environment

    def render(self, environment: Environment, encoding: DocumentEncoding) -> str:
        """Flatten *environment* (first match wins) into one document."""
        return property_documents.serialize(environment.flattened(), encoding)

    def refresh(self, *, timeout: float | None = None) -> None:
        """
        Fetch upstream changes and drop cached revision lookups.

        Waits for in-flight resolutions to finish.  Environments already
        returned are unaffected.
        """
        source, resolver = self._require_source()
        with self._lock.write():
            try:
                source.refresh(timeout=self.default_timeout if timeout is None else timeout)
            finally:
                resolver.invalidate()
        logger.info("config_refreshed", uri=source.uri)

    def health(self, *, timeout: float | None = None) -> dict:
        source, _resolver = self._require_source()
        with self._lock.read():
            revisions = source.list_revisions(timeout=self.default_timeout if timeout is None else timeout)
        return {"uri": source.uri, "revisions": len(revisions)}

    # ------------------------------------------------------------------
    # Cryptography utilities
    # ------------------------------------------------------------------

    def encrypt_value(self, plaintext: str, selector: CipherAnnotation = None) -> str:
        """
        Encrypt *plaintext* into a ``{cipher}`` value.

        The selector annotation is kept in the result unless it is the
        default key.

        Raises:
            NoDefaultKeyConfigured: No selector and no default key.
            UnknownKeyAlias: The selected alias is not configured.
        """
        key = self.key_resolver.resolve(selector)
        value = format_cipher_value(text_cipher.encrypt(plaintext, key), selector)
        logger.info("value_encrypted", selector=_describe(selector))
        return value

    def decrypt_value(self, ciphertext: str, selector: CipherAnnotation = None) -> str:
        """
        Decrypt a value produced by :meth:`encrypt_value`.

        The ``{cipher}`` marker is optional.  An annotation embedded in
        *ciphertext* takes precedence over *selector*.

        Raises:
            DecryptionFailed: Malformed or tampered ciphertext, or wrong key.
            NoDefaultKeyConfigured / UnknownKeyAlias: No usable key.
        """
        parsed = parse_cipher_value(ciphertext, require_marker=False)
        annotation = parsed.annotation if parsed.annotation is not None else selector
        key = self.key_resolver.resolve(annotation)
        plaintext = text_cipher.decrypt(parsed.payload, key)
        logger.info("value_decrypted", selector=_describe(annotation))
        return plaintext

    def encryption_status(self) -> str:
        """Return ``"OK"`` when a default key is usable."""
        self.key_resolver.resolve(None)
        return "OK"

    def public_key_pem(self) -> str:
        key = self.key_resolver.resolve(None)
        if not isinstance(key, AsymmetricKey):
            raise NotFoundError("The default key is symmetric; there is no public key.", code="no_public_key")
        return key.public_key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def selector_for_client(self, application: str, profile: str) -> CipherAnnotation:
        """
        Key selector for a client, from ``ENCRYPT_CLIENT_KEYS``.

        ``app/profile`` entries win over ``app`` entries; with several
        profiles the last one is checked first.  Unmapped clients use the
        default key.
        """
        profiles = [p.strip() for p in profile.split(",") if p.strip()]
        for candidate in [f"{application}/{p}" for p in reversed(profiles)] + [application]:
            alias = self.client_keys.get(candidate)
            if alias:
                return KeyAlias(alias)
        return None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_source(self) -> tuple[VersionedSource, RepositoryResolver]:
        if self.source is None or self.resolver is None:
            raise SourceUnavailable("No configuration repository is configured (CONFIG_GIT_URI).")
        return self.source, self.resolver


class _Deadline:
    """Splits one caller timeout across several repository calls."""

    def __init__(self, timeout: float | None) -> None:
        self._expires = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        left = self._expires - time.monotonic()
        if left <= 0:
            raise SourceUnavailable("Timed out reading the configuration repository.")
        return left


def _describe(selector: CipherAnnotation) -> str:
    # Never log the inline secret itself.
    if selector is None:
        return "default"
    if isinstance(selector, KeyAlias):
        return f"key:{selector.alias}"
    return "secret"


def parse_client_keys(entries: list[str]) -> dict[str, str]:
    """Parse ``["app/profile=alias", "app=alias"]`` into a lookup dict."""
    client_keys: dict[str, str] = {}
    for entry in entries:
        client, sep, alias = entry.partition("=")
        if sep and client.strip() and alias.strip() and "}" not in alias:
            client_keys[client.strip()] = alias.strip()
        else:
            logger.warning("client_key_entry_ignored", entry=entry)
    return client_keys


def build_config_service(settings) -> ConfigService:
    """Build the process-wide :class:`ConfigService` from Django *settings*."""
    uri = getattr(settings, "CONFIG_GIT_URI", "")
    timeout = getattr(settings, "CONFIG_GIT_TIMEOUT", 10.0)
    source = None
    if uri:
        source = GitSource(
            uri,
            getattr(settings, "CONFIG_GIT_BASEDIR", "") or "config-repo",
            default_label=getattr(settings, "CONFIG_GIT_DEFAULT_LABEL", "main"),
            timeout=timeout,
        )
    else:
        logger.warning("config_repository_not_configured")

    encrypt_enabled = getattr(settings, "ENCRYPT_ENABLED", True)
    provider = build_key_provider(settings) if encrypt_enabled else None
    key_resolver = KeyResolver(provider, getattr(settings, "ENCRYPT_SALT", DEFAULT_SALT))

    logger.info(
        "config_service_built",
        uri=uri,
        decrypt_enabled=encrypt_enabled,
        key_provider=type(provider).__name__ if provider is not None else None,
    )
    return ConfigService(
        source,
        key_resolver=key_resolver,
        search_paths=getattr(settings, "CONFIG_GIT_SEARCH_PATHS", None) or ("",),
        prefer_nested=getattr(settings, "CONFIG_PREFER_NESTED", True),
        decrypt_enabled=encrypt_enabled,
        client_keys=parse_client_keys(getattr(settings, "ENCRYPT_CLIENT_KEYS", [])),
        default_timeout=timeout,
    )
