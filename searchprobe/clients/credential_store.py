"""Encrypted at-rest persistence for per-principal token records."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

from searchprobe.models.token import TokenRecord

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from searchprobe.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")
# Names in the credential directory that never hold a token record.
_RESERVED_NAMES = frozenset({".", "..", ".credential.key"})


class CredentialStore(Protocol):
    """Swappable backend holding one token record per credential key."""

    def save(self, key: str, record: TokenRecord) -> None:
        ...

    def load(self, key: str) -> Optional[TokenRecord]:
        ...


class EncryptedFileCredentialStore:
    """Store each record as a Fernet-encrypted file inside ``directory``."""

    def __init__(self, directory: Path, cipher: TokenCipherService) -> None:
        self._directory = Path(directory)
        self._cipher = cipher

    def path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("Credential key must not be empty")
        safe = _UNSAFE_KEY_CHARS.sub("_", key)
        if safe in _RESERVED_NAMES:
            raise ValueError(f"Invalid credential key {key!r}")
        return self._directory / safe

    def save(self, key: str, record: TokenRecord) -> None:
        target = self.path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self._cipher.encrypt(record.model_dump_json().encode("utf-8"))

        # Readers see either the previous file or the complete new one.
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self, key: str) -> Optional[TokenRecord]:
        try:
            target = self.path_for(key)
            encrypted = target.read_bytes()
            plaintext = self._cipher.decrypt(encrypted)
            return TokenRecord.model_validate_json(plaintext)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            # Corrupt, foreign or outdated files read as "no credential".
            logger.warning("Ignoring unreadable credential %s: %s", key, exc)
            return None


__all__ = ["CredentialStore", "EncryptedFileCredentialStore"]
