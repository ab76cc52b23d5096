"""Encrypted file-backed secret store for persisting the OAuth2 session."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import threading
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from kflow.core.config import Settings, get_settings
from kflow.core.interfaces import SecretStore

logger = logging.getLogger(__name__)


class EncryptedFileSecretStore(SecretStore):
    """Secret store that keeps all values in one Fernet-encrypted JSON file.

    The Fernet key is derived with PBKDF2 from ``settings.secret_key`` and a
    random salt kept next to the secrets file.

    Example:
        ```python
        store = EncryptedFileSecretStore(settings)
        await store.store("kflow.accessToken", token)
        token = await store.get("kflow.accessToken")
        ```
    """

    SECRETS_FILE = "session.enc"
    SALT_FILE = ".salt"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._dir = self.settings.data_dir
        self._secrets_file = self._dir / self.SECRETS_FILE
        self._lock = threading.RLock()
        self._fernet: Fernet | None = None

    def _get_encryption_key(self) -> bytes:
        """Derive the Fernet key from the secret key and the stored salt."""
        salt_file = self._dir / self.SALT_FILE

        if salt_file.exists():
            salt = salt_file.read_bytes()
        else:
            self._dir.mkdir(parents=True, exist_ok=True)
            salt = os.urandom(16)
            salt_file.write_bytes(salt)
            salt_file.chmod(0o600)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=480000,
        )
        return base64.urlsafe_b64encode(kdf.derive(self.settings.secret_key.encode()))

    @property
    def fernet(self) -> Fernet:
        """Get the Fernet encryption instance."""
        if self._fernet is None:
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def _read_all(self) -> dict[str, str]:
        if not self._secrets_file.exists():
            return {}
        try:
            plaintext = self.fernet.decrypt(self._secrets_file.read_bytes())
        except InvalidToken:
            # Written with a different secret key; start over rather than fail login.
            logger.warning(f"Discarding unreadable secrets file {self._secrets_file}")
            return {}
        return json.loads(plaintext.decode())

    def _write_all(self, data: dict[str, str]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        temp_path = self._secrets_file.with_suffix(".tmp")
        temp_path.write_bytes(self.fernet.encrypt(json.dumps(data).encode()))
        temp_path.chmod(0o600)
        temp_path.replace(self._secrets_file)

    def _get_sync(self, key: str) -> str | None:
        with self._lock:
            return self._read_all().get(key)

    def _store_sync(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def _delete_sync(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def store(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._store_sync, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    @property
    def path(self) -> Path:
        return self._secrets_file


# Global store instance
_secret_store: EncryptedFileSecretStore | None = None


def get_secret_store() -> EncryptedFileSecretStore:
    """Get the global EncryptedFileSecretStore instance."""
    global _secret_store
    if _secret_store is None:
        _secret_store = EncryptedFileSecretStore()
    return _secret_store
