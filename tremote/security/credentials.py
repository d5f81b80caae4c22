"""Keyed secret storage for server passwords.

Every load, save and delete is reported to the :class:`AuditLogger` with the
endpoint and a masked username. Passwords never reach the audit trail.
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from cryptography.fernet import Fernet, InvalidToken

from tremote.observability.audit import AuditEventType, AuditLogger
from tremote.security.trust_models import ServerIdentity
from tremote.utils.exceptions import CredentialStoreError
from tremote.utils.logging_config import get_logger

logger = get_logger(__name__)

CREDENTIALS_VERSION = 1


@dataclass(frozen=True)
class ServerCredentialsKey:
    """Identifies one account on one server."""

    identity: ServerIdentity
    username: str

    @property
    def account(self) -> str:
        """Stable account identifier: ``username/host:port/scheme``."""
        identity = self.identity
        return f"{self.username}/{identity.host.lower()}:{identity.port}/{identity.scheme}"


@dataclass(frozen=True)
class ServerCredentials:
    key: ServerCredentialsKey
    password: str = field(repr=False)


@runtime_checkable
class CredentialStore(Protocol):
    """Async keyed secret store."""

    async def load(self, key: ServerCredentialsKey) -> ServerCredentials | None: ...

    async def save(self, credentials: ServerCredentials) -> None: ...

    async def delete(self, key: ServerCredentialsKey) -> None: ...


class AuditedCredentialStore(ABC):
    """Base class adding audit events around the concrete storage calls."""

    def __init__(self, audit: AuditLogger | None = None):
        self.audit = audit or AuditLogger()

    @abstractmethod
    async def _load(self, key: ServerCredentialsKey) -> str | None: ...

    @abstractmethod
    async def _save(self, credentials: ServerCredentials) -> None: ...

    @abstractmethod
    async def _delete(self, key: ServerCredentialsKey) -> None: ...

    async def load(self, key: ServerCredentialsKey) -> ServerCredentials | None:
        try:
            password = await self._load(key)
        except CredentialStoreError as e:
            self.audit.credentials(AuditEventType.CREDENTIALS_LOAD_FAILED, key, e.message)
            raise
        if password is None:
            self.audit.credentials(AuditEventType.CREDENTIALS_LOAD_MISSING, key)
            return None
        self.audit.credentials(AuditEventType.CREDENTIALS_LOAD_SUCCEEDED, key)
        return ServerCredentials(key, password)

    async def save(self, credentials: ServerCredentials) -> None:
        try:
            await self._save(credentials)
        except CredentialStoreError as e:
            self.audit.credentials(
                AuditEventType.CREDENTIALS_SAVE_FAILED, credentials.key, e.message
            )
            raise
        self.audit.credentials(AuditEventType.CREDENTIALS_SAVE_SUCCEEDED, credentials.key)

    async def delete(self, key: ServerCredentialsKey) -> None:
        try:
            await self._delete(key)
        except CredentialStoreError as e:
            self.audit.credentials(AuditEventType.CREDENTIALS_DELETE_FAILED, key, e.message)
            raise
        self.audit.credentials(AuditEventType.CREDENTIALS_DELETE_SUCCEEDED, key)


class InMemoryCredentialStore(AuditedCredentialStore):
    """Credential store kept in a dict."""

    def __init__(
        self,
        passwords: dict[ServerCredentialsKey, str] | None = None,
        audit: AuditLogger | None = None,
    ):
        super().__init__(audit)
        self._passwords: dict[str, str] = {
            key.account: value for key, value in (passwords or {}).items()
        }

    async def _load(self, key: ServerCredentialsKey) -> str | None:
        return self._passwords.get(key.account)

    async def _save(self, credentials: ServerCredentials) -> None:
        self._passwords[credentials.key.account] = credentials.password

    async def _delete(self, key: ServerCredentialsKey) -> None:
        self._passwords.pop(key.account, None)


class EncryptedFileCredentialStore(AuditedCredentialStore):
    """Fernet-encrypted passwords in a JSON file.

    The key lives next to the data file in ``.credentials_key`` with owner-only
    permissions and is generated on first use.
    """

    def __init__(
        self,
        path: str | Path,
        key_file: str | Path | None = None,
        audit: AuditLogger | None = None,
    ):
        super().__init__(audit)
        self.path = Path(path).expanduser()
        self.key_file = (
            Path(key_file).expanduser()
            if key_file
            else self.path.parent / ".credentials_key"
        )
        self._lock = threading.Lock()
        self._encryption_key: bytes | None = None

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key.

        Raises:
            CredentialStoreError: If the key cannot be read or written

        """
        if self._encryption_key is not None:
            return self._encryption_key

        try:
            if self.key_file.exists():
                self._encryption_key = self.key_file.read_bytes().strip()
                return self._encryption_key

            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            key = Fernet.generate_key()
            self.key_file.write_bytes(key)
            self.key_file.chmod(0o600)  # Read/write for owner only
            logger.info("Generated new credential encryption key")
        except OSError as e:
            msg = f"Cannot access credential key file {self.key_file}: {e}"
            raise CredentialStoreError(msg) from e

        self._encryption_key = key
        return key

    def _cipher(self) -> Fernet:
        try:
            return Fernet(self._get_encryption_key())
        except ValueError as e:
            msg = f"Invalid credential key in {self.key_file}"
            raise CredentialStoreError(msg) from e

    def _read_accounts(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            msg = f"Failed to read credentials file {self.path}: {e}"
            raise CredentialStoreError(msg) from e
        if not isinstance(data, dict) or data.get("version") != CREDENTIALS_VERSION:
            msg = f"Unsupported credentials file format in {self.path}"
            raise CredentialStoreError(msg)
        accounts = data.get("accounts") or {}
        return {str(k): str(v) for k, v in accounts.items()}

    def _write_accounts(self, accounts: dict[str, str]) -> None:
        document = {"version": CREDENTIALS_VERSION, "accounts": dict(sorted(accounts.items()))}
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.chmod(temp_file, 0o600)
            temp_file.replace(self.path)
        except OSError as e:
            msg = f"Failed to write credentials file {self.path}: {e}"
            raise CredentialStoreError(msg) from e

    def _load_sync(self, key: ServerCredentialsKey) -> str | None:
        with self._lock:
            token = self._read_accounts().get(key.account)
            if token is None:
                return None
            try:
                return self._cipher().decrypt(token.encode("ascii")).decode("utf-8")
            except (InvalidToken, UnicodeError) as e:
                msg = f"Stored password for {key.identity} could not be decrypted"
                raise CredentialStoreError(msg) from e

    def _save_sync(self, credentials: ServerCredentials) -> None:
        with self._lock:
            accounts = self._read_accounts()
            cipher = self._cipher()
            accounts[credentials.key.account] = cipher.encrypt(
                credentials.password.encode("utf-8")
            ).decode("ascii")
            self._write_accounts(accounts)

    def _delete_sync(self, key: ServerCredentialsKey) -> None:
        with self._lock:
            accounts = self._read_accounts()
            if accounts.pop(key.account, None) is not None:
                self._write_accounts(accounts)

    async def _load(self, key: ServerCredentialsKey) -> str | None:
        return await asyncio.get_running_loop().run_in_executor(None, self._load_sync, key)

    async def _save(self, credentials: ServerCredentials) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._save_sync, credentials)

    async def _delete(self, key: ServerCredentialsKey) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._delete_sync, key)
