"""Minimal encryption utilities for protecting CJ credentials at rest.

:func:`encrypt` and :func:`decrypt` wrap AES-GCM encryption with a key derived
from the application secret.

- Ciphertexts are versioned and prefixed so they can be told apart from
  plain-text values already stored in the database.
- ``decrypt`` returns values that do not carry the prefix unchanged.

The format is:

    ENC:v1:<base64(nonce || ciphertext || tag)>
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from louiemae.config import settings


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12  # 96-bit nonce recommended for AES-GCM
_KEY_SIZE = 32    # 256-bit AES key


def _get_key() -> bytes:
    """Derive a stable AES-GCM key from ``settings.secret_key`` via HKDF-SHA256."""

    base = settings.secret_key.encode("utf-8")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"cj-token-encryption",
    )
    return hkdf.derive(base)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a string value using AES-GCM. ``None`` passes through."""

    if plaintext is None:
        return None
    if not isinstance(plaintext, str):
        plaintext = str(plaintext)

    aesgcm = AESGCM(_get_key())
    nonce = os.urandom(_NONCE_SIZE)
    ct = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)

    blob = base64.b64encode(nonce + ct).decode("ascii")
    return _PREFIX + blob


def decrypt(value: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by :func:`encrypt`.

    - ``None`` returns ``None``.
    - Values without the ``ENC:v1:`` prefix are returned unchanged.
    - If decryption fails the original value is returned and the failure logged.
    """

    if value is None:
        return None
    if not isinstance(value, str):
        return value
    if not value.startswith(_PREFIX):
        return value

    try:
        raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
        if len(raw) <= _NONCE_SIZE:
            return value
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        aesgcm = AESGCM(_get_key())
        return aesgcm.decrypt(nonce, ct, associated_data=None).decode("utf-8")
    except Exception as e:
        from louiemae.utils.logger import logger
        logger.error(f"Crypto decryption failed: {type(e).__name__}: {e}")
        return value


def is_encrypted(value: Optional[str]) -> bool:
    """True when ``value`` still carries the ciphertext prefix (e.g. after a failed decrypt)."""

    return isinstance(value, str) and value.startswith(_PREFIX)
