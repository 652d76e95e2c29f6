"""
apps.config_server.services.cipher_value
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Parser for the textual cipher value grammar::

    {cipher}[{secret:<value>} | {key:<alias>}]<base64 payload>

The ``{cipher}`` marker is case-sensitive and must open the raw value.  At
most one key-selector annotation may follow it.

Public API
----------
Secret, KeyAlias        – annotation variants (``None`` means "default key")
CipherValue             – parsed value
is_cipher_value(raw)    – marker test
parse_cipher_value(raw) – raw text → CipherValue
format_cipher_value(payload, annotation) – CipherValue → raw text
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from apps.config_server.exceptions import DecryptionFailed, InvalidRequest

CIPHER_MARKER = "{cipher}"


def _check_annotation_value(kind: str, value: str) -> None:
    # The annotation ends at the first "}".
    if not value or "}" in value:
        raise InvalidRequest(f'A {kind} must be non-empty and must not contain "}}".')


@dataclass(frozen=True)
class Secret:
    """Ad hoc symmetric key given inline as ``{secret:<value>}``."""

    value: str

    def __post_init__(self) -> None:
        _check_annotation_value("secret", self.value)

    def render(self) -> str:
        return f"{{secret:{self.value}}}"


@dataclass(frozen=True)
class KeyAlias:
    """Keystore entry selected with ``{key:<alias>}``."""

    alias: str

    def __post_init__(self) -> None:
        _check_annotation_value("key", self.alias)

    def render(self) -> str:
        return f"{{key:{self.alias}}}"


#: ``None`` selects the process-wide default key.
CipherAnnotation = Union[Secret, KeyAlias, None]

_ANNOTATION_TYPES = {
    "secret": Secret,
    "key": KeyAlias,
}


@dataclass(frozen=True)
class CipherValue:
    annotation: CipherAnnotation
    payload: str


def is_cipher_value(raw: object) -> bool:
    """Return ``True`` if *raw* is a string starting with the cipher marker."""
    return isinstance(raw, str) and raw.startswith(CIPHER_MARKER)


def parse_cipher_value(raw: str, *, require_marker: bool = True) -> CipherValue:
    """
    Split *raw* into its key-selector annotation and base64 payload.

    Args:
        raw: The property value as stored in the document.
        require_marker: When ``False`` a missing ``{cipher}`` prefix is
            tolerated; the manual decrypt endpoint accepts bare payloads.

    Raises:
        DecryptionFailed: On a missing marker, an unknown or unterminated
            annotation, or more than one annotation.
    """
    text = raw
    if text.startswith(CIPHER_MARKER):
        text = text[len(CIPHER_MARKER):]
    elif require_marker:
        raise DecryptionFailed("Value does not start with {cipher}.", code="malformed_cipher_value")

    annotation: CipherAnnotation = None
    if text.startswith("{"):
        end = text.find("}")
        if end < 0:
            raise DecryptionFailed("Unterminated key annotation.", code="malformed_cipher_value")
        name, sep, value = text[1:end].partition(":")
        annotation_type = _ANNOTATION_TYPES.get(name)
        if not sep or annotation_type is None or not value:
            raise DecryptionFailed(
                f'Unsupported key annotation "{text[:end + 1]}".',
                code="malformed_cipher_value",
            )
        annotation = annotation_type(value)
        text = text[end + 1:]
        if text.startswith("{"):
            raise DecryptionFailed(
                "At most one key annotation is permitted.", code="malformed_cipher_value"
            )

    return CipherValue(annotation=annotation, payload=text)


def format_cipher_value(payload: str, annotation: CipherAnnotation = None) -> str:
    """Build the stored text for *payload*; the default key adds no annotation."""
    prefix = annotation.render() if annotation is not None else ""
    return f"{CIPHER_MARKER}{prefix}{payload}"
