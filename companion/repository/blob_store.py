"""Single-document persistence backends for the network cache."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from threading import RLock
from typing import Optional, Protocol

from companion.utils.logger import get_logger


logger = get_logger(__name__)


class BlobStore(Protocol):
    def load(self) -> Optional[bytes]: ...

    def save(self, data: bytes) -> None: ...

    def clear(self) -> None: ...


class FileBlobStore:
    """Stores one blob on disk, replacing it atomically on every save."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def load(self) -> Optional[bytes]:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None

    def save(self, data: bytes) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        try:
            with os.fdopen(descriptor, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, self._path)
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise
        logger.debug("Persisted %d bytes to %s", len(data), self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
        logger.debug("Removed %s", self._path)


class InMemoryBlobStore:
    def __init__(self, data: Optional[bytes] = None) -> None:
        self._data = data
        self._lock = RLock()
        self.save_count = 0

    def load(self) -> Optional[bytes]:
        with self._lock:
            return self._data

    def save(self, data: bytes) -> None:
        with self._lock:
            self._data = data
            self.save_count += 1

    def clear(self) -> None:
        with self._lock:
            self._data = None
