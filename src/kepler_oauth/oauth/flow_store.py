"""Storage for suspended authorization flows.

A flow waiting for the user to come back from the authorization server
can be snapshotted and kept here, then restored by another process.
Snapshots contain the PKCE verifier in cleartext, so the file-based
store encrypts them at rest.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from kepler_oauth.logging_config import get_logger

logger = get_logger(__name__)

FlowSnapshot = dict[str, Any]


class FlowStoreError(Exception):
    """Error during flow storage operations."""


class FlowStore(ABC):
    """Abstract base class for suspended flow storage."""

    @abstractmethod
    async def save(self, flow_id: str, snapshot: FlowSnapshot) -> None:
        """Store a flow snapshot.

        Args:
            flow_id: Caller-chosen flow identifier
            snapshot: Value returned by AuthorizationCodeFlow.snapshot()
        """

    @abstractmethod
    async def load(self, flow_id: str) -> FlowSnapshot | None:
        """Retrieve a flow snapshot.

        Args:
            flow_id: Flow identifier

        Returns:
            The snapshot if found, None otherwise
        """

    @abstractmethod
    async def delete(self, flow_id: str) -> None:
        """Remove a flow snapshot.

        Args:
            flow_id: Flow identifier
        """

    async def pop(self, flow_id: str) -> FlowSnapshot | None:
        """Retrieve and remove a snapshot, so it can be resumed only once.

        Args:
            flow_id: Flow identifier

        Returns:
            The snapshot if found, None otherwise
        """
        snapshot = await self.load(flow_id)
        if snapshot is not None:
            await self.delete(flow_id)
        return snapshot


class InMemoryFlowStore(FlowStore):
    """In-memory flow storage.

    Snapshots are lost when the process exits. Suitable when the flow
    is suspended and resumed by the same long-running process.
    """

    def __init__(self) -> None:
        self._flows: dict[str, FlowSnapshot] = {}
        self._lock = asyncio.Lock()

    async def save(self, flow_id: str, snapshot: FlowSnapshot) -> None:
        async with self._lock:
            self._flows[flow_id] = dict(snapshot)
            logger.debug("Stored flow %s in memory", flow_id)

    async def load(self, flow_id: str) -> FlowSnapshot | None:
        async with self._lock:
            snapshot = self._flows.get(flow_id)
            return dict(snapshot) if snapshot is not None else None

    async def delete(self, flow_id: str) -> None:
        async with self._lock:
            if flow_id in self._flows:
                del self._flows[flow_id]
                logger.debug("Deleted flow %s", flow_id)

    def clear(self) -> None:
        """Clear all stored flows."""
        self._flows.clear()


class EncryptedFileFlowStore(FlowStore):
    """Encrypted file-based flow storage.

    Snapshots are encrypted using Fernet symmetric encryption
    and stored in a single JSON document. Uses atomic writes to prevent
    corruption.
    """

    def __init__(self, encryption_key: str, file_path: str | Path) -> None:
        """Initialize encrypted file store.

        Args:
            encryption_key: Fernet-compatible encryption key
            file_path: Path to the flow storage file

        Raises:
            FlowStoreError: If encryption key is invalid
        """
        try:
            self._fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            raise FlowStoreError(f"Invalid encryption key: {e}") from e

        self._file_path = Path(file_path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, FlowSnapshot]:
        """Load and decrypt every stored snapshot."""
        if not self._file_path.exists():
            return {}

        try:
            decrypted = self._fernet.decrypt(self._file_path.read_bytes())
            data = json.loads(decrypted.decode())
        except InvalidToken:
            logger.error("Failed to decrypt flow store %s - wrong key?", self._file_path)
            raise FlowStoreError("Failed to decrypt flow store") from None
        except ValueError as e:
            logger.error("Failed to parse flow store: %s", e)
            raise FlowStoreError(f"Failed to parse flow store: {e}") from e

        if not isinstance(data, dict):
            raise FlowStoreError("Flow store does not contain a JSON object")
        return data

    def _write(self, data: dict[str, FlowSnapshot]) -> None:
        """Encrypt and save all snapshots atomically."""
        encrypted = self._fernet.encrypt(json.dumps(data).encode())

        dir_path = self._file_path.parent
        dir_path.mkdir(parents=True, exist_ok=True)

        fd, temp_path_str = tempfile.mkstemp(dir=dir_path)
        temp_path = Path(temp_path_str)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(encrypted)
            temp_path.replace(self._file_path)
            logger.debug("Saved flows to %s", self._file_path)
        except BaseException:
            if temp_path.exists():
                temp_path.unlink()
            raise

    async def save(self, flow_id: str, snapshot: FlowSnapshot) -> None:
        async with self._lock:
            data = self._read()
            data[flow_id] = dict(snapshot)
            self._write(data)
            logger.debug("Stored encrypted flow %s", flow_id)

    async def load(self, flow_id: str) -> FlowSnapshot | None:
        async with self._lock:
            return self._read().get(flow_id)

    async def delete(self, flow_id: str) -> None:
        async with self._lock:
            data = self._read()
            if flow_id in data:
                del data[flow_id]
                self._write(data)
                logger.debug("Deleted encrypted flow %s", flow_id)


def create_flow_store(
    encryption_key: str | None = None,
    file_path: str | Path | None = None,
) -> FlowStore:
    """Create appropriate flow store based on configuration.

    Args:
        encryption_key: Optional Fernet encryption key
        file_path: Optional path for persistent storage

    Returns:
        Configured FlowStore instance
    """
    if file_path and encryption_key:
        return EncryptedFileFlowStore(encryption_key, file_path)
    return InMemoryFlowStore()
