"""
apps.config_server.services.environment_assembler
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Turns parsed documents into ordered property sources and decrypts cipher
values on the way.

Decryption degrades per key: a value that cannot be decrypted (unknown
alias, no default key, corrupt or tampered ciphertext) is published under
``invalid.<key>`` with its raw cipher text, and ``<key>`` itself is left
out so an unresolved secret is never served as a live credential.  Such a
failure never aborts the environment.

This module is **pure Python**: no Django view, serializer or ORM imports.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping

import structlog

from apps.config_server.exceptions import KEY_ERRORS
from . import text_cipher
from .cipher_value import is_cipher_value, parse_cipher_value
from .environment import Environment, PropertySource
from .key_resolver import KeyResolver

logger = structlog.get_logger(__name__)

INVALID_PREFIX = "invalid."


class EnvironmentAssembler:
    """
    Example::

        assembler = EnvironmentAssembler(KeyResolver(provider))
        environment = assembler.assemble(
            [("repo/app-dev.yml", {"db.password": "{cipher}..."}),
             ("repo/application.yml", {"db.url": "jdbc:..."})],
            decrypt_enabled=True,
        )
    """

    def __init__(self, key_resolver: KeyResolver) -> None:
        self.key_resolver = key_resolver

    def assemble(
        self,
        documents: Iterable[tuple[str, Mapping[str, str]]],
        decrypt_enabled: bool,
        *,
        application: str = "",
        profiles: Iterable[str] = (),
        label: str | None = None,
        version: str | None = None,
    ) -> Environment:
        """
        Build an :class:`Environment` with one :class:`PropertySource` per
        document, preserving order (first = highest priority).

        Args:
            documents: ``(name, mapping)`` pairs in override order.
            decrypt_enabled: Decrypt cipher values server-side.  When
                ``False`` they are passed through untouched.
            application, profiles, label, version: Metadata copied onto the
                returned environment.
        """
        property_sources: list[PropertySource] = []
        for name, mapping in documents:
            if decrypt_enabled:
                mapping = self._decrypt_mapping(name, mapping)
            property_sources.append(PropertySource(name=name, source=mapping))
        return Environment(
            name=application,
            profiles=tuple(profiles),
            label=label,
            version=version,
            property_sources=tuple(property_sources),
        )

    def decrypt_property(self, key: str, value: str) -> tuple[str, str]:
        """
        Return the ``(key, value)`` pair to publish for one property.

        Non-cipher values are returned unchanged.  Undecryptable values are
        returned as ``("invalid." + key, value)``.
        """
        if not is_cipher_value(value):
            return key, value
        try:
            parsed = parse_cipher_value(value)
            material = self.key_resolver.resolve(parsed.annotation)
            return key, text_cipher.decrypt(parsed.payload, material)
        except KEY_ERRORS as exc:
            logger.warning(
                "property_decryption_failed",
                key=key,
                code=exc.code,
                detail=exc.detail,
            )
            return INVALID_PREFIX + key, value

    def _decrypt_mapping(self, name: str, mapping: Mapping[str, str]) -> dict[str, str]:
        decrypted: dict[str, str] = {}
        failures = 0
        for key, value in mapping.items():
            new_key, new_value = self.decrypt_property(key, value)
            failures += new_key != key
            decrypted[new_key] = new_value
        if failures:
            logger.info("property_source_has_invalid_values", source=name, count=failures)
        return decrypted
