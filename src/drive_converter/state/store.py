"""Durable linear stores — ordered string records with a reserved header.

A store is a list of records. Positions below ``origin`` hold the header and
are never treated as data; the first data record lives at ``origin``. Every
mutating call persists the full record list before returning, so a process
killed after a successful call sees the post-state on the next run.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobClient, BlobServiceClient

logger = logging.getLogger(__name__)

DEFAULT_ORIGIN = 1


def _clean(value: str) -> str:
    """Records are line-delimited on disk, so a value can never span lines."""
    return " ".join(str(value).splitlines()).strip()


class LinearStore(ABC):
    """Queue/stack building block over a persisted list of string records."""

    def __init__(self, origin: int = DEFAULT_ORIGIN) -> None:
        if origin < 0:
            raise ValueError(f"origin must be >= 0, got {origin}")
        self._origin = origin

    @property
    def origin(self) -> int:
        return self._origin

    @abstractmethod
    def _load(self) -> list[str]:
        """Read every record, header included."""

    @abstractmethod
    def _save(self, records: list[str]) -> None:
        """Persist every record, header included."""

    def _padded(self) -> list[str]:
        records = self._load()
        if len(records) < self._origin:
            records.extend([""] * (self._origin - len(records)))
        return records

    def ensure_header(self, header: str) -> None:
        """Write ``header`` into the first header position unless already there.

        Data records are left untouched, so this is safe to call on every run.
        """
        if self._origin == 0:
            return
        records = self._load()
        if len(records) >= self._origin and records[0] == header:
            return
        if len(records) < self._origin:
            records.extend([""] * (self._origin - len(records)))
        records[0] = header
        self._save(records)

    def values(self) -> list[str]:
        """Snapshot of the data records in order."""
        return self._load()[self._origin :]

    def append(self, value: str) -> None:
        records = self._padded()
        records.append(_clean(value))
        self._save(records)

    def insert_after_origin(self, value: str) -> None:
        records = self._padded()
        records.insert(self._origin, _clean(value))
        self._save(records)

    def head_value(self) -> str | None:
        """First data value, or None when there is no data."""
        records = self._load()
        return records[self._origin] if len(records) > self._origin else None

    def tail_value(self) -> str | None:
        """Last data value, or None when there is no data."""
        records = self._load()
        return records[-1] if len(records) > self._origin else None

    def remove_head(self) -> str | None:
        """Delete the first data record, shifting the rest toward the origin."""
        records = self._load()
        if len(records) <= self._origin:
            return None
        value = records.pop(self._origin)
        self._save(records)
        return value

    def remove_tail(self) -> str | None:
        """Delete the last data record."""
        records = self._load()
        if len(records) <= self._origin:
            return None
        value = records.pop()
        self._save(records)
        return value

    def replace_tail(self, value: str) -> str | None:
        """Overwrite the last data record in a single write; None when empty."""
        records = self._load()
        if len(records) <= self._origin:
            return None
        previous = records[-1]
        records[-1] = _clean(value)
        self._save(records)
        return previous

    def splice_after_origin(self, values: Sequence[str], offset: int = 0) -> None:
        """Insert ``values`` in order, ``offset`` records past the origin, in one write."""
        if not values:
            return
        records = self._padded()
        position = min(self._origin + offset, len(records))
        records[position:position] = [_clean(v) for v in values]
        self._save(records)

    def clear(self) -> None:
        """Drop every data record, keeping the header."""
        records = self._padded()
        if len(records) == self._origin:
            return
        self._save(records[: self._origin])

    def is_empty_at_head(self) -> bool:
        return self.head_value() is None

    def is_empty_at_tail(self) -> bool:
        return self.tail_value() is None


class MemoryLinearStore(LinearStore):
    """Process-local store for dry runs and tests; not durable across restarts."""

    def __init__(self, records: list[str] | None = None, origin: int = DEFAULT_ORIGIN) -> None:
        super().__init__(origin)
        self._records = list(records or [])

    def _load(self) -> list[str]:
        return list(self._records)

    def _save(self, records: list[str]) -> None:
        self._records = list(records)


class BlobLinearStore(LinearStore):
    """Store persisted as a newline-delimited UTF-8 block blob in Azure Storage.

    Each store owns its own blob, so the queue and the stack never share a
    storage region and their lengths cannot be conflated.
    """

    def __init__(
        self,
        storage_connection_string: str,
        container: str,
        blob: str,
        origin: int = DEFAULT_ORIGIN,
    ) -> None:
        """Initialise the store.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container name.
            blob: Blob path of this store.
            origin: Number of reserved header records.
        """
        super().__init__(origin)
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container
        self._blob = blob
        self._container_ready = False

    def _blob_client(self) -> BlobClient:
        container_client = self._blob_service.get_container_client(self._container)
        return container_client.get_blob_client(self._blob)

    def _load(self) -> list[str]:
        try:
            data = self._blob_client().download_blob().readall()
        except ResourceNotFoundError:
            logger.debug("[_load] blob not found — treating as empty; blob:%s", self._blob)
            return []
        return data.decode("utf-8").splitlines()

    def _save(self, records: list[str]) -> None:
        if not self._container_ready:
            container_client = self._blob_service.get_container_client(self._container)
            try:
                container_client.create_container()
                logger.info("[_save] created blob container; container:%s", self._container)
            except ResourceExistsError:
                pass
            self._container_ready = True

        payload = "".join(f"{record}\n" for record in records)
        self._blob_client().upload_blob(payload.encode("utf-8"), overwrite=True)
        logger.debug("[_save] persisted store; blob:%s;records:%d", self._blob, len(records))
