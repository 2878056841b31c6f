"""Traversal engine — resumable pre-order walk over the durable folder queue.

Recursion over the folder tree is simulated with two durable structures so
that a run can be killed at any point and resumed by the next invocation:

1. resolve the folder at the head of the queue
2. process its files
3. stage its subfolders on the stack
4. mark the folder done, removing it from the queue
5. move each staged child to the front of the queue and descend into it
   before promoting the next one

Step 4 only happens after steps 2-3 are persisted, so an interrupted run
repeats at most the enumeration of one folder and never loses a subfolder.
Every folder in flight keeps an in-progress marker on the stack below the
children it staged; on restart the markers tell apart a folder that must be
enumerated again from children that are still owed to the queue.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from drive_converter.config import DEFAULT_CONVERTIBLE_EXTENSIONS
from drive_converter.conversion.converter import (
    ConversionError,
    GraphConverter,
    graph_converter_from_config,
    is_convertible,
)
from drive_converter.graph.client import graph_client_from_config
from drive_converter.graph.drive import DriveProvider, drive_provider_from_config
from drive_converter.state.provisioning import state_stores_from_config
from drive_converter.state.queue import FolderQueue
from drive_converter.state.stack import FolderStack, marked_folder
from drive_converter.trace.recorder import TraceRecorder, trace_recorder_from_config

if TYPE_CHECKING:
    from drive_converter.config import AppConfig
    from drive_converter.graph.models import DriveFile, DriveFolder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraversalSettings:
    """Behaviour switches fixed for the lifetime of an engine.

    Attributes:
        conversion_enabled: Convert matching files; when False the run only traces.
        trace_all_files: Record every visited file, not only conversions.
        convertible_extensions: Extensions (no dot) eligible for conversion.
        max_run_seconds: Soft budget checked between top-level steps; None
            disables it.
    """

    conversion_enabled: bool = False
    trace_all_files: bool = True
    convertible_extensions: tuple[str, ...] = DEFAULT_CONVERTIBLE_EXTENSIONS
    max_run_seconds: float | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> TraversalSettings:
        return cls(
            conversion_enabled=config.conversion_enabled,
            trace_all_files=config.trace_all_files,
            convertible_extensions=tuple(config.convertible_extensions),
            max_run_seconds=config.max_run_seconds,
        )


@dataclass
class RunSummary:
    """Counters for one engine run."""

    folders_processed: int = 0
    folders_skipped: int = 0
    staged_restored: int = 0
    files_visited: int = 0
    files_converted: int = 0
    conversion_failures: int = 0
    completed: bool = False


class TraversalEngine:
    """Drains the folder queue in pre-order, converting and tracing as it goes."""

    def __init__(
        self,
        queue: FolderQueue,
        stack: FolderStack,
        drive: DriveProvider,
        recorder: TraceRecorder,
        converter: GraphConverter | None = None,
        settings: TraversalSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise the engine.

        Args:
            queue: Durable queue of folders awaiting processing.
            stack: Durable staging stack for children of the folder in flight.
            drive: Provider used to enumerate folders.
            recorder: Trace recorder receiving folder and file events.
            converter: Conversion client; required when conversion is enabled.
            settings: Behaviour switches; defaults to a trace-only run.
            clock: Monotonic clock used for the run budget.

        Raises:
            ValueError: If conversion is enabled without a converter.
        """
        self._queue = queue
        self._stack = stack
        self._drive = drive
        self._recorder = recorder
        self._converter = converter
        self._settings = settings or TraversalSettings()
        self._clock = clock
        self._extensions = frozenset(e.lower() for e in self._settings.convertible_extensions)
        self.summary = RunSummary()

        if self._settings.conversion_enabled and converter is None:
            raise ValueError("conversion is enabled but no converter was supplied")

    @property
    def recorder(self) -> TraceRecorder:
        return self._recorder

    def run(self) -> RunSummary:
        """Process queued folders until the queue is empty or the budget is spent.

        Returns:
            Counters for this run; ``completed`` is True when the queue drained.
        """
        self.summary = RunSummary()
        self._queue.skipped = 0
        self._queue.insert_header()
        self._stack.insert_header()
        self.summary.staged_restored = self.restore_staged()

        started = self._clock()
        budget = self._settings.max_run_seconds
        logger.info(
            "[run] starting traversal; conversion_enabled:%s", self._settings.conversion_enabled
        )
        while not self._queue.is_empty():
            if budget is not None and self._clock() - started >= budget:
                logger.warning(
                    "[run] time budget spent — stopping; max_run_seconds:%s;remaining:%d",
                    budget,
                    len(self._queue.values()),
                )
                break
            self.process_next()

        self.summary.folders_skipped = self._queue.skipped
        self.summary.completed = self._queue.is_empty()
        logger.info(
            "[run] traversal finished; completed:%s;folders:%d;converted:%d;failures:%d",
            self.summary.completed,
            self.summary.folders_processed,
            self.summary.files_converted,
            self.summary.conversion_failures,
        )
        return self.summary

    def restore_staged(self) -> int:
        """Hand entries left on the stack by an interrupted run back to the queue.

        If the queue head is the folder that was in flight, it was never
        committed: the children it had staged are discarded, since it will
        stage them again, and it stays at the head. The children still owed
        by its ancestors are spliced in behind it, nearest ancestor first, so
        pre-order is preserved. When no folder was in flight, the owed
        children go ahead of the head. The stack is cleared only after the
        queue has been written, so a crash here can duplicate an entry but
        never lose one.

        Returns:
            Number of entries restored to the queue.
        """
        records = self._stack.values()
        if not records:
            return 0

        head = self._queue.peek_raw()
        top_first = list(reversed(records))
        resume_from = discarded = 0
        in_flight = False
        if marked_folder(top_first[0]) is None and top_first[0] == head:
            # promoted to the queue head before its marker was written
            resume_from, in_flight = 1, True
        else:
            for index, record in enumerate(top_first):
                folder_ref = marked_folder(record)
                if folder_ref is None:
                    continue
                if folder_ref == head:
                    resume_from, in_flight, discarded = index + 1, True, index
                break

        owed = [r for r in top_first[resume_from:] if marked_folder(r) is None]
        self._queue.restore(owed, behind_head=in_flight)
        self._stack.clear()
        logger.warning(
            "[restore_staged] resumed from an interrupted run; "
            "restored:%d;discarded:%d;head_in_flight:%s",
            len(owed),
            discarded,
            in_flight,
        )
        return len(owed)

    def process_next(self) -> None:
        """Process the next resolvable folder at the head of the queue, subtree included."""
        folder = self._queue.peek_next_folder()
        if folder is None:
            return
        self._stack.open_folder(self._queue.peek_raw() or folder.id)
        self._process_folder(folder)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _process_folder(self, folder: DriveFolder) -> None:
        self._recorder.enter_folder(folder.name, folder.web_url)
        self.summary.folders_processed += 1
        logger.info(
            "[process_folder] processing folder; folder_id:%s;name:%s", folder.id, folder.name
        )

        for file in self._drive.list_files(folder.id):
            self._process_file(file)

        staged = self._stage(self._drive.list_subfolders(folder.id))
        self._queue.commit_done()

        while staged > 0:
            child_ref = self._stack.peek_top()
            if child_ref is None or marked_folder(child_ref) is not None:
                logger.warning(
                    "[process_folder] staged child missing from stack; folder_id:%s;missing:%d",
                    folder.id,
                    staged,
                )
                break
            self._queue.push_to_front(child_ref)
            self._stack.mark_top_in_progress()
            staged -= 1
            child = self._queue.resolve_head()
            if child is None:
                self._stack.close_folder()
                continue
            self._process_folder(child)

        self._recorder.exit_folder()
        self._stack.close_folder()

    def _stage(self, subfolders: Iterable[DriveFolder]) -> int:
        """Push children so the first one in enumeration order ends on top."""
        children = list(subfolders)
        for child in reversed(children):
            self._stack.push(child.id)
        return len(children)

    def _process_file(self, file: DriveFile) -> None:
        if file.is_trashed:
            return
        self.summary.files_visited += 1

        converter = self._converter if self._settings.conversion_enabled else None
        if converter is not None and is_convertible(file.name, self._extensions):
            try:
                converted = converter.convert(file)
            except ConversionError as exc:
                logger.error(
                    "[process_file] skipping file after failed conversion; file_id:%s;reason:%s",
                    file.id,
                    exc.reason,
                )
                self._recorder.record_failure(file.name, file.web_url, exc.reason)
                self.summary.conversion_failures += 1
                return
            self._recorder.record_conversion(
                file.name, file.web_url, converted.name, converted.web_url
            )
            self.summary.files_converted += 1
        elif self._settings.trace_all_files:
            self._recorder.visit_file(file.name, file.web_url)


def traversal_engine_from_config(
    config: AppConfig, recorder: TraceRecorder | None = None
) -> TraversalEngine:
    """Construct a TraversalEngine from application configuration.

    Wires a GraphClient, DriveProvider, blob-backed queue and stack, a
    GraphConverter and, unless one is supplied, a per-run BlobTraceRecorder.

    Args:
        config: Application configuration instance.
        recorder: Optional recorder overriding the blob trace.

    Returns:
        Configured TraversalEngine instance.
    """
    client = graph_client_from_config(config)
    drive = drive_provider_from_config(client, config)
    queue_store, stack_store = state_stores_from_config(config)
    return TraversalEngine(
        queue=FolderQueue(queue_store, drive),
        stack=FolderStack(stack_store),
        drive=drive,
        recorder=recorder if recorder is not None else trace_recorder_from_config(config),
        converter=graph_converter_from_config(drive, config),
        settings=TraversalSettings.from_config(config),
    )
