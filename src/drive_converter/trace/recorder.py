"""Traversal trace — an indented Markdown outline of visited folders and files.

The recorder owns the traversal cursor: depth goes up when a folder is
entered and down only when that folder, descendants included, is finished.
Each event is rendered as one Markdown list item indented by depth.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import BlobServiceClient

if TYPE_CHECKING:
    from drive_converter.config import AppConfig

logger = logging.getLogger(__name__)

INDENT = "  "
CONVERSION_ARROW = "--->"


class TraceEventKind(str, Enum):
    ENTER_FOLDER = "enter_folder"
    EXIT_FOLDER = "exit_folder"
    VISIT_FILE = "visit_file"
    CONVERSION = "conversion"
    FAILURE = "failure"


@dataclass(frozen=True)
class TraceEvent:
    """One recorded traversal event.

    Attributes:
        kind: What happened.
        depth: Cursor depth the event was recorded at (before any change it causes).
        name: Folder or file name ("" for exit events).
        url: Web URL of the folder or file.
        converted_name: Name of the converted file (conversion events only).
        converted_url: Web URL of the converted file (conversion events only).
        reason: Failure message (failure events only).
    """

    kind: TraceEventKind
    depth: int
    name: str = ""
    url: str = ""
    converted_name: str = ""
    converted_url: str = ""
    reason: str = ""


def _link(name: str, url: str) -> str:
    label = name.replace("[", r"\[").replace("]", r"\]")
    return f"[{label}]({url})" if url else label


def render_event(event: TraceEvent) -> str | None:
    """Render an event as a Markdown line; exit events produce no line."""
    indent = INDENT * event.depth
    if event.kind is TraceEventKind.ENTER_FOLDER:
        return f"{indent}- {_link(event.name, event.url)}/"
    if event.kind is TraceEventKind.VISIT_FILE:
        return f"{indent}- {_link(event.name, event.url)}"
    if event.kind is TraceEventKind.CONVERSION:
        original = _link(event.name, event.url)
        converted = _link(event.converted_name, event.converted_url)
        return f"{indent}- {original} {CONVERSION_ARROW} {converted}"
    if event.kind is TraceEventKind.FAILURE:
        return f"{indent}- {_link(event.name, event.url)} (conversion failed: {event.reason})"
    return None


class TraceRecorder(ABC):
    """Append-only recorder of traversal events."""

    def __init__(self) -> None:
        self.depth = 0
        self.events: list[TraceEvent] = []

    @abstractmethod
    def _write(self, line: str) -> None:
        """Persist one rendered line."""

    def _record(self, event: TraceEvent) -> None:
        self.events.append(event)
        line = render_event(event)
        if line is not None:
            self._write(line)

    def enter_folder(self, name: str, url: str) -> None:
        self._record(TraceEvent(TraceEventKind.ENTER_FOLDER, self.depth, name=name, url=url))
        self.depth += 1

    def exit_folder(self) -> None:
        if self.depth == 0:
            logger.warning("[exit_folder] exit without a matching enter — ignoring")
            return
        self.depth -= 1
        self._record(TraceEvent(TraceEventKind.EXIT_FOLDER, self.depth))

    def visit_file(self, name: str, url: str) -> None:
        self._record(TraceEvent(TraceEventKind.VISIT_FILE, self.depth, name=name, url=url))

    def record_conversion(
        self,
        original_name: str,
        original_url: str,
        converted_name: str,
        converted_url: str,
    ) -> None:
        self._record(
            TraceEvent(
                TraceEventKind.CONVERSION,
                self.depth,
                name=original_name,
                url=original_url,
                converted_name=converted_name,
                converted_url=converted_url,
            )
        )

    def record_failure(self, name: str, url: str, reason: str) -> None:
        self._record(
            TraceEvent(TraceEventKind.FAILURE, self.depth, name=name, url=url, reason=reason)
        )


class MemoryTraceRecorder(TraceRecorder):
    """Keeps rendered lines in process; used for dry runs and tests."""

    def __init__(self) -> None:
        super().__init__()
        self.lines: list[str] = []

    def _write(self, line: str) -> None:
        self.lines.append(line)

    def to_markdown(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)


class BlobTraceRecorder(TraceRecorder):
    """Appends every rendered line to an Azure append blob.

    Lines are written as they are recorded so the trace of a run that is
    terminated mid-way is kept up to the last completed event.
    """

    def __init__(self, storage_connection_string: str, container: str, blob: str) -> None:
        """Initialise the recorder.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container name.
            blob: Blob path of this run's trace.
        """
        super().__init__()
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container
        self.blob = blob
        self._created = False

    def _write(self, line: str) -> None:
        container_client = self._blob_service.get_container_client(self._container)
        blob_client = container_client.get_blob_client(self.blob)
        if not self._created:
            with contextlib.suppress(ResourceExistsError):
                container_client.create_container()
            blob_client.create_append_blob()
            self._created = True
            logger.info("[_write] created trace blob; blob:%s", self.blob)
        blob_client.append_block(f"{line}\n".encode())


def trace_blob_name(
    prefix: str, started_at: datetime | None = None, run_id: str | None = None
) -> str:
    """Per-run trace blob path, e.g. ``traces/20260101T120000Z-1a2b3c4d.md``.

    The run ID keeps runs started within the same second, such as a manual
    trigger racing the timer, from overwriting each other's trace.
    """
    started_at = started_at or datetime.now(tz=UTC)
    run_id = run_id or uuid.uuid4().hex[:8]
    return f"{prefix}{started_at.strftime('%Y%m%dT%H%M%SZ')}-{run_id}.md"


def trace_recorder_from_config(config: AppConfig) -> BlobTraceRecorder:
    """Construct a BlobTraceRecorder for a new run from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured BlobTraceRecorder writing to a fresh per-run blob.
    """
    return BlobTraceRecorder(
        storage_connection_string=config.storage_connection_string,
        container=config.state_container,
        blob=trace_blob_name(config.trace_blob_prefix),
    )
