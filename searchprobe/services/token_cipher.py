"""Symmetric encryption utilities for protecting stored tokens."""

from __future__ import annotations

import base64
import hashlib
import os
import secrets
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Encrypt and decrypt token payloads using a derived Fernet key."""

    KEY_FILE_NAME = ".credential.key"

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest)
        self._fernet = Fernet(key)

    @classmethod
    def from_key_file(cls, directory: Path) -> "TokenCipherService":
        """Load the per-user secret from ``directory``, creating it on first use.

        The file is created with mode 0600 so only the owning account can read
        it; that is what scopes stored credentials to the current user.
        """
        directory.mkdir(parents=True, exist_ok=True)
        key_path = directory / cls.KEY_FILE_NAME
        if not key_path.exists():
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(secrets.token_urlsafe(32))
        return cls(secret=key_path.read_text(encoding="utf-8").strip())

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt raw bytes and return the Fernet token."""
        return self._fernet.encrypt(plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt a Fernet token and return the raw bytes."""
        try:
            return self._fernet.decrypt(ciphertext)
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; invalid ciphertext provided."
            ) from exc


__all__ = ["TokenCipherService"]
