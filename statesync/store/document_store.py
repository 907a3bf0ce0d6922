"""JSON-file backed store for the single shared state document.

The current document is held in memory and mirrored to disk on every write.
Each write replaces the whole file through a temporary sibling and
``os.replace`` so a reader never sees a partial document.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Sequence

from ..exceptions import StorageUnavailable
from .document import StateDocument
from .signature import SignatureGenerator

logger = logging.getLogger(__name__)


class DocumentStore:
    """Owner of the current StateDocument.

    Writes are last-writer-wins: ``replace`` takes no prior signature and
    performs no compare-and-swap. Writers are serialized on a lock, so the
    last one to persist is the one subsequent reads observe.
    """

    def __init__(
        self,
        path: str | Path,
        signatures: SignatureGenerator | None = None,
    ):
        """Initialize the store.

        Args:
            path: Location of the JSON state file.
            signatures: Token source for new versions.
        """
        self.path = Path(path).expanduser()
        self._signatures = signatures or SignatureGenerator()
        self._current: StateDocument | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> StateDocument | None:
        """The in-memory document, or None before the first load."""
        return self._current

    async def load(self) -> StateDocument:
        """Return the current document, creating the file on first use.

        Raises:
            StorageUnavailable: If the file cannot be read, parsed or created.
        """
        if self._current is not None:
            return self._current

        async with self._lock:
            if self._current is None:
                self._current = await asyncio.to_thread(self._read_or_init)
            return self._current

    async def replace(
        self,
        clients: Sequence[Any],
        bookings: Sequence[Any],
    ) -> StateDocument:
        """Persist a new document with a fresh signature and make it current.

        Raises:
            StorageUnavailable: If the file cannot be written. The in-memory
                document is left as it was.
        """
        async with self._lock:
            doc = StateDocument.create(clients, bookings, self._signatures.next())
            await asyncio.to_thread(self._write, doc)
            self._current = doc

        logger.info(
            f"State replaced: sig={doc.sig}, "
            f"clients={len(doc.clients)}, bookings={len(doc.bookings)}"
        )
        return doc

    def _read_or_init(self) -> StateDocument:
        if not self.path.exists():
            doc = StateDocument.create([], [], self._signatures.next())
            logger.info(f"Creating new state file at {self.path}")
            self._write(doc)
            return doc

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise StorageUnavailable(
                f"Cannot read {self.path}: {e}", operation="read", path=str(self.path)
            ) from e
        except json.JSONDecodeError as e:
            raise StorageUnavailable(
                f"Corrupt state file {self.path}: {e}",
                operation="read",
                path=str(self.path),
            ) from e

        if not isinstance(data, dict):
            raise StorageUnavailable(
                f"State file {self.path} does not hold an object",
                operation="read",
                path=str(self.path),
            )

        try:
            doc = StateDocument.from_dict(data)
        except ValueError as e:
            raise StorageUnavailable(
                f"Malformed state file {self.path}: {e}",
                operation="read",
                path=str(self.path),
            ) from e
        logger.info(f"Loaded state from {self.path}, sig={doc.sig}")
        return doc

    def _write(self, doc: StateDocument) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageUnavailable(
                f"Cannot write {self.path}: {e}", operation="write", path=str(self.path)
            ) from e

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with path, signature and record counts.
        """
        stats: dict[str, Any] = {
            "path": str(self.path),
            "sig": self._current.sig if self._current else None,
            "clients_count": len(self._current.clients) if self._current else 0,
            "bookings_count": len(self._current.bookings) if self._current else 0,
        }

        if self.path.exists():
            stats["file_size_kb"] = round(self.path.stat().st_size / 1024, 2)

        return stats
