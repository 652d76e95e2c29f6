"""
apps.config_server.services.text_cipher
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Encrypts and decrypts property values with resolved key material.

Symmetric keys use AES-256-GCM with a key derived by PBKDF2-HMAC-SHA256
from the secret and salt::

    base64( nonce[12] || ciphertext || tag[16] )

Asymmetric keys wrap a random AES-256 key with RSA-OAEP (SHA-256)::

    base64( len(wrapped)[2, big-endian] || wrapped || nonce[12] || ciphertext || tag[16] )

Every decryption failure surfaces as :class:`DecryptionFailed`.
"""
from __future__ import annotations

import base64
import binascii
import functools
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from apps.config_server.exceptions import DecryptionFailed
from .key_resolver import AsymmetricKey, KeyMaterial, SymmetricKey

NONCE_SIZE = 12
TAG_SIZE = 16
AES_KEY_SIZE = 32
PBKDF2_ITERATIONS = 100_000

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


@functools.lru_cache(maxsize=256)
def derive_key(secret: bytes, salt: bytes) -> bytes:
    """Derive the AES key for a symmetric secret.  Deterministic per input."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret)


def encrypt(plaintext: str, key: KeyMaterial) -> str:
    """Encrypt *plaintext* and return the base64 payload."""
    data = plaintext.encode("utf-8")
    if isinstance(key, SymmetricKey):
        payload = _seal(derive_key(key.secret, key.salt), data)
    elif isinstance(key, AsymmetricKey):
        session_key = AESGCM.generate_key(bit_length=AES_KEY_SIZE * 8)
        wrapped = key.public_key.encrypt(session_key, _OAEP)
        payload = len(wrapped).to_bytes(2, "big") + wrapped + _seal(session_key, data)
    else:
        raise TypeError(f"Unsupported key material: {type(key).__name__}")
    return base64.b64encode(payload).decode("ascii")


def decrypt(ciphertext: str, key: KeyMaterial) -> str:
    """
    Decrypt a base64 payload produced by :func:`encrypt`.

    Raises:
        DecryptionFailed: On corrupt or non-canonical base64, a truncated
            payload, an integrity-check failure, a missing private key, or
            plaintext that is not UTF-8.
    """
    payload = _b64decode(ciphertext)

    if isinstance(key, SymmetricKey):
        data = _open(derive_key(key.secret, key.salt), payload)
    elif isinstance(key, AsymmetricKey):
        if key.private_key is None:
            raise DecryptionFailed(f'Key "{key.alias}" has no private key for decryption.')
        if len(payload) < 2:
            raise DecryptionFailed("Ciphertext is too short.")
        wrapped_len = int.from_bytes(payload[:2], "big")
        wrapped = payload[2:2 + wrapped_len]
        if len(wrapped) != wrapped_len:
            raise DecryptionFailed("Ciphertext is too short.")
        try:
            session_key = key.private_key.decrypt(wrapped, _OAEP)
        except ValueError as exc:
            raise DecryptionFailed("Session key could not be unwrapped.") from exc
        data = _open(session_key, payload[2 + wrapped_len:])
    else:
        raise DecryptionFailed(f"Unsupported key material: {type(key).__name__}")

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionFailed("Decrypted value is not valid UTF-8.") from exc


def _seal(aes_key: bytes, data: bytes) -> bytes:
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(aes_key).encrypt(nonce, data, None)


def _open(aes_key: bytes, sealed: bytes) -> bytes:
    if len(sealed) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionFailed("Ciphertext is too short.")
    nonce, body = sealed[:NONCE_SIZE], sealed[NONCE_SIZE:]
    try:
        return AESGCM(aes_key).decrypt(nonce, body, None)
    except (InvalidTag, ValueError) as exc:
        raise DecryptionFailed("Ciphertext failed the integrity check.") from exc


def _b64decode(text: str) -> bytes:
    # Non-canonical encodings are rejected so an edited payload never decodes
    # to the original bytes.
    try:
        payload = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionFailed("Ciphertext is not valid base64.") from exc
    if base64.b64encode(payload).decode("ascii") != text:
        raise DecryptionFailed("Ciphertext is not canonical base64.")
    return payload
