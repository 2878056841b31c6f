"""Folder queue — durable FIFO of folder locators awaiting processing.

The head of the queue is the folder currently in flight. It must only be
removed (``commit_done``) once every side effect of processing it has been
committed; otherwise a run killed in between would silently drop the folder.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from drive_converter.graph.client import GraphApiError
from drive_converter.graph.locator import extract_folder_id

if TYPE_CHECKING:
    from drive_converter.graph.drive import DriveProvider
    from drive_converter.graph.models import DriveFolder
    from drive_converter.state.store import LinearStore

logger = logging.getLogger(__name__)

QUEUE_HEADER = "Put folder URLs or IDs below this line"


class FolderQueue:
    """FIFO of folder locators backed by a LinearStore."""

    def __init__(self, store: LinearStore, drive: DriveProvider) -> None:
        """Initialise the queue.

        Args:
            store: Durable store holding the queue records.
            drive: Provider used to resolve locators into folders.
        """
        self._store = store
        self._drive = drive
        self.skipped = 0

    def insert_header(self) -> None:
        self._store.ensure_header(QUEUE_HEADER)

    def enqueue(self, folder_ref: str) -> None:
        """Append a locator; duplicates are kept."""
        self._store.append(folder_ref)

    def push_to_front(self, folder_ref: str) -> None:
        """Insert a locator ahead of every queued entry."""
        self._store.insert_after_origin(folder_ref)

    def restore(self, folder_refs: Sequence[str], behind_head: bool = False) -> None:
        """Splice locators in order at the front of the queue in one write.

        Args:
            folder_refs: Locators to insert, first to be processed first.
            behind_head: Insert just after the head instead of ahead of it.
        """
        self._store.splice_after_origin(folder_refs, offset=1 if behind_head else 0)

    def is_empty(self) -> bool:
        return self._store.is_empty_at_head()

    def peek_raw(self) -> str | None:
        """Return the head locator exactly as stored."""
        return self._store.head_value()

    def peek_next_folder(self) -> DriveFolder | None:
        """Resolve the head into a folder, dropping entries that cannot be resolved.

        Stale, deleted or inaccessible folders are logged and removed, and the
        next entry is tried until one resolves. Authentication failures are not
        a property of the entry and propagate.

        Returns:
            The folder at the head of the queue, or None once the queue is empty.
        """
        while not self.is_empty():
            folder = self.resolve_head()
            if folder is not None:
                return folder
        return None

    def resolve_head(self) -> DriveFolder | None:
        """Try once to resolve the head; drop it if it cannot be resolved.

        Returns:
            The folder at the head, or None if the queue was empty or the head
            entry was dropped.
        """
        locator = self._store.head_value()
        if locator is None:
            return None

        folder_id = extract_folder_id(locator)
        if not folder_id:
            reason = "empty locator"
        else:
            try:
                folder = self._drive.get_folder(folder_id)
            except GraphApiError as exc:
                reason = str(exc)
            else:
                if folder is not None:
                    return folder
                reason = "folder not found"

        logger.error(
            "[resolve_head] could not resolve folder — dropping entry; locator:%s;reason:%s",
            locator,
            reason,
        )
        self._store.remove_head()
        self.skipped += 1
        return None

    def commit_done(self) -> str | None:
        """Remove the head once its folder has been fully committed.

        Returns:
            The removed locator, or None if the queue was empty.
        """
        return self._store.remove_head()

    def values(self) -> list[str]:
        return self._store.values()
