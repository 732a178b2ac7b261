# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Reversible encryption of SMTP passwords stored at rest.

Passwords must be recoverable to authenticate against the SMTP server, so
they are sealed with AES-256-GCM rather than hashed. The key is the SHA-256
digest of a configured master secret.

Stored format: ``base64(nonce || ciphertext || tag)`` with a 12-byte nonce.

Databases written before encryption was introduced hold plaintext
passwords. :meth:`SecretCodec.decrypt` recognises such values and returns
them unchanged (the legacy plaintext path) instead of failing.

Security note:
    When no master secret is configured the codec falls back to a built-in
    default key. Anyone with the source can decrypt secrets sealed with it.
    The codec logs a warning and exposes ``uses_default_key`` so operators
    and health checks can flag the condition.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .logger import get_logger

DEFAULT_MASTER_SECRET = "default-secret-key-change-in-production"
NONCE_SIZE = 12

logger = get_logger("SecretCodec")


def derive_key(master_secret: str) -> bytes:
    """Derive the 32-byte AES key from the master secret."""
    return hashlib.sha256(master_secret.encode("utf-8")).digest()


class SecretCodec:
    """Encrypt and decrypt stored SMTP secrets.

    Attributes:
        uses_default_key: True when the built-in default master secret is in
            use. Secrets are then only obfuscated, not protected.
    """

    def __init__(self, master_secret: str | None = None):
        self.uses_default_key = not master_secret
        if self.uses_default_key:
            logger.warning(
                "No master secret configured: stored SMTP passwords are encrypted with the "
                "built-in default key. Set SMTP_MAIL_MASTER_SECRET in production."
            )
            master_secret = DEFAULT_MASTER_SECRET
        self._aead = AESGCM(derive_key(master_secret))

    def encrypt(self, plaintext: str) -> str:
        """Seal ``plaintext``; an empty string stays empty."""
        if not plaintext:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, stored: str) -> str:
        """Open a stored secret. Never raises.

        Values that cannot be opened are treated as legacy plaintext and
        returned as-is, see :meth:`_legacy_plaintext`.
        """
        if not stored:
            return ""
        try:
            data = base64.b64decode(stored, validate=True)
        except (binascii.Error, ValueError):
            return self._legacy_plaintext(stored, "value is not base64")
        if len(data) < NONCE_SIZE:
            return self._legacy_plaintext(stored, "decoded value shorter than nonce")
        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag:
            return self._legacy_plaintext(stored, "authentication failed")
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return self._legacy_plaintext(stored, "plaintext is not UTF-8")

    @staticmethod
    def _legacy_plaintext(stored: str, reason: str) -> str:
        # Compatibility with rows stored before encryption; not a security guarantee.
        logger.info("Stored secret is not sealed (%s); using it as plaintext", reason)
        return stored


__all__ = ["DEFAULT_MASTER_SECRET", "NONCE_SIZE", "SecretCodec", "derive_key"]
