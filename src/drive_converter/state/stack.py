"""Folder stack — durable staging area for children of the folders in flight.

Each folder being processed owns one segment of the stack: a marker record
naming the folder, followed by the children it staged that have not yet been
promoted to the queue. Segments nest as the traversal descends, so after an
interruption the stack says which folder was in flight and which staged
entries are still owed to the queue. The stack is empty between top-level
steps.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from drive_converter.state.store import LinearStore

logger = logging.getLogger(__name__)

STACK_HEADER = "Folders staged for processing"
IN_PROGRESS_PREFIX = "in progress: "


def in_progress_marker(folder_ref: str) -> str:
    return f"{IN_PROGRESS_PREFIX}{folder_ref}"


def marked_folder(record: str) -> str | None:
    """Return the folder named by a marker record, or None for a staged child."""
    if record.startswith(IN_PROGRESS_PREFIX):
        return record[len(IN_PROGRESS_PREFIX) :]
    return None


class FolderStack:
    """LIFO of folder IDs backed by a LinearStore."""

    def __init__(self, store: LinearStore) -> None:
        self._store = store

    def insert_header(self) -> None:
        self._store.ensure_header(STACK_HEADER)

    def push(self, folder_ref: str) -> None:
        self._store.append(folder_ref)

    def peek_top(self) -> str | None:
        return self._store.tail_value()

    def pop(self) -> str | None:
        return self._store.remove_tail()

    def is_empty(self) -> bool:
        return self._store.is_empty_at_tail()

    def open_folder(self, folder_ref: str) -> None:
        """Start the segment of a folder taken straight from the queue."""
        self._store.append(in_progress_marker(folder_ref))

    def mark_top_in_progress(self) -> str | None:
        """Turn the staged child on top into the marker of its own segment.

        The child must already be at the front of the queue. The swap is one
        write, so the stack never shows the child as both staged and promoted
        for longer than that.

        Returns:
            The promoted child, or None if the top is not a staged child.
        """
        top = self._store.tail_value()
        if top is None or marked_folder(top) is not None:
            return None
        self._store.replace_tail(in_progress_marker(top))
        return top

    def close_folder(self) -> str | None:
        """End the segment on top once its folder and descendants are done.

        Returns:
            The folder whose segment was closed, or None if the top is not a
            marker.
        """
        top = self._store.tail_value()
        folder_ref = marked_folder(top) if top is not None else None
        if folder_ref is None:
            logger.warning("[close_folder] top of stack is not a folder marker; top:%s", top)
            return None
        self._store.remove_tail()
        return folder_ref

    def clear(self) -> None:
        self._store.clear()

    def values(self) -> list[str]:
        """Staged IDs and folder markers, bottom first."""
        return self._store.values()
