"""
apps.config_server.services.property_documents
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Parses and serializes flat property documents.

Two encodings are supported:

``PROPERTIES``
    Line-oriented ``key=value`` documents (``.properties``).  ``#`` and
    ``!`` start comment lines, a trailing backslash continues a line, and a
    later duplicate key overrides an earlier one.
``YAML``
    Nested mappings (``.yml`` / ``.yaml``) flattened to dot-separated keys.
    Sequences flatten to ``key[0]``, ``key[1]``...  Duplicate keys at the same
    path are rejected.

Values are always strings; no type inference happens here.

Public API
----------
DocumentEncoding            – encoding enum
encoding_for_path(path)     – pick the encoding from a file extension
parse(raw, encoding)        – bytes → ordered ``dict[str, str]``
serialize(mapping, encoding) – ``dict[str, str]`` → text
"""
from __future__ import annotations

import base64
import datetime
import enum
from collections.abc import Hashable, Mapping

import yaml

from apps.config_server.exceptions import MalformedDocument


class DocumentEncoding(enum.Enum):
    PROPERTIES = "properties"
    YAML = "yaml"

    @property
    def extensions(self) -> tuple[str, ...]:
        if self is DocumentEncoding.YAML:
            return (".yml", ".yaml")
        return (".properties",)


def encoding_for_path(path: str) -> DocumentEncoding | None:
    """Return the encoding matching *path*'s extension, or ``None``."""
    lowered = path.lower()
    for encoding in DocumentEncoding:
        if lowered.endswith(encoding.extensions):
            return encoding
    return None


def parse(raw: bytes, encoding: DocumentEncoding, *, name: str = "<document>") -> dict[str, str]:
    """
    Parse *raw* into an insertion-ordered mapping of string keys to strings.

    Raises:
        MalformedDocument: If the bytes are not UTF-8 or the document is
            structurally invalid for *encoding*.
    """
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise MalformedDocument(f"{name}: not valid UTF-8 ({exc.reason}).") from exc

    if encoding is DocumentEncoding.PROPERTIES:
        return _parse_properties(text, name)
    return _parse_yaml(text, name)


def serialize(mapping: Mapping[str, str], encoding: DocumentEncoding) -> str:
    """Render *mapping* so that :func:`parse` reads the same pairs back."""
    if encoding is DocumentEncoding.PROPERTIES:
        return "".join(
            f"{_escape(key, is_key=True)}={_escape(value, is_key=False)}\n"
            for key, value in mapping.items()
        )
    if not mapping:
        return ""
    return yaml.safe_dump(
        _unflatten(mapping),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


# ---------------------------------------------------------------------------
# Line-oriented encoding
# ---------------------------------------------------------------------------

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SEPARATORS = "=:"


def _parse_properties(text: str, name: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for line_no, line in _logical_lines(text):
        key, value = _split_property(line)
        result[_unescape(key, name, line_no)] = _unescape(value, name, line_no)
    return result


def _logical_lines(text: str):
    """Yield ``(line_no, line)`` with comments dropped and continuations joined."""
    pending: list[str] = []
    start = 0
    for line_no, natural in enumerate(text.splitlines(), start=1):
        stripped = natural.lstrip(" \t\f")
        if not pending:
            if not stripped or stripped[0] in "#!":
                continue
            start = line_no
        trailing = len(stripped) - len(stripped.rstrip("\\"))
        if trailing % 2 == 1:
            pending.append(stripped[:-1])
            continue
        pending.append(stripped)
        yield start, "".join(pending)
        pending = []
    if pending:
        yield start, "".join(pending)


def _split_property(line: str) -> tuple[str, str]:
    i = 0
    length = len(line)
    while i < length:
        char = line[i]
        if char == "\\":
            i += 2
            continue
        if char in _SEPARATORS or char in " \t\f":
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip(" \t\f")
    if rest[:1] and rest[0] in _SEPARATORS:
        rest = rest[1:].lstrip(" \t\f")
    return key, rest


def _unescape(text: str, name: str, line_no: int) -> str:
    if "\\" not in text:
        return text
    out: list[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char != "\\":
            out.append(char)
            i += 1
            continue
        if i + 1 >= len(text):
            break
        code = text[i + 1]
        if code == "u":
            digits = text[i + 2:i + 6]
            if len(digits) != 4 or any(c not in "0123456789abcdefABCDEF" for c in digits):
                raise MalformedDocument(f"{name}:{line_no}: malformed \\uXXXX escape.")
            out.append(chr(int(digits, 16)))
            i += 6
            continue
        out.append(_ESCAPES.get(code, code))
        i += 2
    return "".join(out)


def _escape(text: str, *, is_key: bool) -> str:
    out: list[str] = []
    for index, char in enumerate(text):
        if char == "\\":
            out.append("\\\\")
        elif char == "\t":
            out.append("\\t")
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\f":
            out.append("\\f")
        elif char == " " and (is_key or index == 0):
            out.append("\\ ")
        elif is_key and char in "=:":
            out.append("\\" + char)
        elif index == 0 and char in "#!":
            out.append("\\" + char)
        else:
            out.append(char)
    return "".join(out)


# ---------------------------------------------------------------------------
# Nested-mapping encoding
# ---------------------------------------------------------------------------

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate keys within one mapping."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            for key_node, _value_node in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                if not isinstance(key, Hashable):
                    continue
                if key in seen:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping",
                        node.start_mark,
                        f"found duplicate key {key!r}",
                        key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _parse_yaml(text: str, name: str) -> dict[str, str]:
    result: dict[str, str] = {}
    try:
        documents = list(yaml.load_all(text, Loader=_UniqueKeyLoader))
    except yaml.YAMLError as exc:
        raise MalformedDocument(f"{name}: {exc}") from exc

    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise MalformedDocument(
                f"{name}: root must be a mapping, got {type(document).__name__}."
            )
        flat: dict[str, str] = {}
        _flatten(document, "", flat, name)
        result.update(flat)
    return result


def _flatten(value: object, prefix: str, out: dict[str, str], name: str) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            segment = _scalar(key)
            _flatten(child, f"{prefix}.{segment}" if prefix else segment, out, name)
    elif isinstance(value, list):
        if not value:
            _put(out, prefix, "", name)
        for index, item in enumerate(value):
            _flatten(item, f"{prefix}[{index}]", out, name)
    else:
        _put(out, prefix, _scalar(value), name)


def _put(out: dict[str, str], key: str, value: str, name: str) -> None:
    # "a: {b: 1}" and "a.b: 2" flatten to the same key within one document.
    if key in out:
        raise MalformedDocument(f'{name}: duplicate key "{key}" after flattening.')
    out[key] = value


def _scalar(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return str(value)


def _unflatten(mapping: Mapping[str, str]) -> dict:
    # Any colliding path (``a`` and ``a.b``) keeps the whole mapping flat.
    root: dict = {}
    for key, value in mapping.items():
        parts = key.split(".")
        if not all(parts):
            return dict(mapping)
        node = root
        for part in parts[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                return dict(mapping)
        if parts[-1] in node:
            return dict(mapping)
        node[parts[-1]] = value
    return root
