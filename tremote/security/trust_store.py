"""Persistence of accepted certificate fingerprints.

The store maps a :class:`ServerIdentity` to at most one accepted fingerprint.
Writes are last-write-wins per identity. Entries stay until :meth:`delete`
is called for the identity.

On disk the store is a JSON document::

    {"version": 1,
     "entries": {"nas.local:9091:true": {"fingerprint": "ab12...",
                                         "common_name": "nas.local",
                                         "stored_at": 1700000000.0}}}
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, TypeVar

from tremote.security.trust_models import CertificateInfo, ServerIdentity
from tremote.utils.exceptions import TrustStoreError
from tremote.utils.logging_config import get_logger

logger = get_logger(__name__)

TRUST_STORE_VERSION = 1

T = TypeVar("T")


@dataclass(frozen=True)
class TrustEntry:
    """An accepted certificate for one identity."""

    fingerprint: str
    common_name: str | None = None
    stored_at: float = 0.0

    def matches(self, fingerprint: bytes) -> bool:
        return self.fingerprint.lower() == fingerprint.hex()


class TrustStore(ABC):
    """Thread-safe fingerprint store with async accessors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, TrustEntry] | None = None

    @abstractmethod
    def _read(self) -> dict[str, TrustEntry]:
        """Load all entries from the backing medium."""

    @abstractmethod
    def _write(self, entries: dict[str, TrustEntry]) -> None:
        """Persist all entries to the backing medium."""

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return func(*args)

    def _loaded(self) -> dict[str, TrustEntry]:
        if self._entries is None:
            self._entries = self._read()
        return self._entries

    # Synchronous API

    def lookup(self, identity: ServerIdentity) -> TrustEntry | None:
        with self._lock:
            return self._loaded().get(identity.storage_key)

    def store(self, identity: ServerIdentity, certificate: CertificateInfo) -> TrustEntry:
        entry = TrustEntry(
            fingerprint=certificate.fingerprint_hex,
            common_name=certificate.common_name,
            stored_at=time.time(),
        )
        with self._lock:
            entries = dict(self._loaded())
            entries[identity.storage_key] = entry
            self._write(entries)
            self._entries = entries
        logger.info("Stored certificate %s for %s", entry.fingerprint[:16], identity)
        return entry

    def remove(self, identity: ServerIdentity) -> bool:
        with self._lock:
            entries = dict(self._loaded())
            if entries.pop(identity.storage_key, None) is None:
                return False
            self._write(entries)
            self._entries = entries
        logger.info("Removed stored certificate for %s", identity)
        return True

    def list_entries(self) -> dict[ServerIdentity, TrustEntry]:
        with self._lock:
            snapshot = dict(self._loaded())
        return {ServerIdentity.from_storage_key(k): v for k, v in snapshot.items()}

    # Async API

    async def get(self, identity: ServerIdentity) -> TrustEntry | None:
        return await self._run(self.lookup, identity)

    async def is_trusted(self, identity: ServerIdentity, fingerprint: bytes) -> bool:
        entry = await self.get(identity)
        return entry is not None and entry.matches(fingerprint)

    async def accept(
        self, identity: ServerIdentity, certificate: CertificateInfo
    ) -> TrustEntry:
        return await self._run(self.store, identity, certificate)

    async def delete(self, identity: ServerIdentity) -> bool:
        return await self._run(self.remove, identity)

    async def entries(self) -> dict[ServerIdentity, TrustEntry]:
        return await self._run(self.list_entries)


class InMemoryTrustStore(TrustStore):
    """Store that lives only as long as the process."""

    def _read(self) -> dict[str, TrustEntry]:
        return {}

    def _write(self, entries: dict[str, TrustEntry]) -> None:
        pass


class FileTrustStore(TrustStore):
    """JSON-file backed store with atomic replace-on-write."""

    def __init__(self, path: str | Path):
        """Initialize file trust store.

        Args:
            path: Location of the JSON document (``~`` is expanded)

        """
        super().__init__()
        self.path = Path(path).expanduser()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    def _read(self) -> dict[str, TrustEntry]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            msg = f"Failed to read trust store {self.path}: {e}"
            raise TrustStoreError(msg) from e

        if not isinstance(data, dict) or data.get("version") != TRUST_STORE_VERSION:
            msg = f"Unsupported trust store format in {self.path}"
            raise TrustStoreError(msg)

        entries: dict[str, TrustEntry] = {}
        for key, raw in (data.get("entries") or {}).items():
            try:
                ServerIdentity.from_storage_key(key)
                entries[key] = TrustEntry(
                    fingerprint=str(raw["fingerprint"]).lower(),
                    common_name=raw.get("common_name"),
                    stored_at=float(raw.get("stored_at", 0.0)),
                )
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning("Skipping malformed trust entry %r", key)
        return entries

    def _write(self, entries: dict[str, TrustEntry]) -> None:
        document = {
            "version": TRUST_STORE_VERSION,
            "entries": {key: asdict(entry) for key, entry in sorted(entries.items())},
        }
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.chmod(temp_file, 0o600)
            temp_file.replace(self.path)
        except OSError as e:
            msg = f"Failed to write trust store {self.path}: {e}"
            raise TrustStoreError(msg) from e
