"""Unit tests for orchestration/engine.py — resumable pre-order traversal."""

from unittest.mock import MagicMock, patch

import pytest

from drive_converter.conversion.converter import ConversionError
from drive_converter.graph.models import DriveFile, DriveFolder
from drive_converter.orchestration.engine import (
    TraversalEngine,
    TraversalSettings,
    traversal_engine_from_config,
)
from drive_converter.state.queue import QUEUE_HEADER, FolderQueue
from drive_converter.state.stack import STACK_HEADER, FolderStack, in_progress_marker
from drive_converter.state.store import MemoryLinearStore
from drive_converter.trace.recorder import MemoryTraceRecorder, TraceEventKind

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# folder id -> (file names, child folder ids)
Tree = dict[str, tuple[list[str], list[str]]]


class _Killed(Exception):
    """Stands in for the host terminating the process."""


class _FakeDrive:
    """In-memory drive tree; folder names equal their IDs."""

    def __init__(self, tree: Tree, log: list[tuple[str, str]] | None = None) -> None:
        self.tree = tree
        self.log = log if log is not None else []
        self.trashed: set[str] = set()
        self.kill_on_files: set[str] = set()
        self.kill_on_subfolders: set[str] = set()

    def get_folder(self, folder_id: str) -> DriveFolder | None:
        self.log.append(("get_folder", folder_id))
        if folder_id not in self.tree:
            return None
        return DriveFolder(id=folder_id, name=folder_id, web_url=f"https://x/{folder_id}")

    def list_files(self, folder_id: str) -> list[DriveFile]:
        self.log.append(("list_files", folder_id))
        if folder_id in self.kill_on_files:
            raise _Killed(folder_id)
        return [
            DriveFile(
                id=f"{folder_id}/{name}",
                name=name,
                parent_id=folder_id,
                web_url=f"https://x/{folder_id}/{name}",
                is_trashed=name in self.trashed,
            )
            for name in self.tree[folder_id][0]
        ]

    def list_subfolders(self, folder_id: str) -> list[DriveFolder]:
        self.log.append(("list_subfolders", folder_id))
        if folder_id in self.kill_on_subfolders:
            raise _Killed(folder_id)
        return [DriveFolder(id=child, name=child) for child in self.tree[folder_id][1]]


class _LoggingStore(MemoryLinearStore):
    """Memory store that reports mutations to a shared log."""

    def __init__(self, name: str, records: list[str], log: list[tuple[str, str]]) -> None:
        super().__init__(records)
        self._name = name
        self._log = log

    def append(self, value: str) -> None:
        self._log.append((f"{self._name}.append", value))
        super().append(value)

    def remove_head(self) -> str | None:
        value = super().remove_head()
        self._log.append((f"{self._name}.remove_head", value or ""))
        return value


class _KillingStore(MemoryLinearStore):
    """Memory store that dies once, before the first matching mutation is saved."""

    def __init__(self, records: list[str], kill_on: tuple[str, str] | None = None) -> None:
        super().__init__(records)
        self.kill_on = kill_on

    def _check(self, method: str, value: str | None) -> None:
        if self.kill_on == (method, value):
            self.kill_on = None
            raise _Killed(f"{method}:{value}")

    def remove_head(self) -> str | None:
        self._check("remove_head", self.head_value())
        return super().remove_head()

    def replace_tail(self, value: str) -> str | None:
        self._check("replace_tail", self.tail_value())
        return super().replace_tail(value)


def _converted(file: DriveFile) -> DriveFile:
    return DriveFile(
        id=f"conv-{file.id}",
        name=file.base_name,
        parent_id=file.parent_id,
        web_url=f"https://x/conv/{file.base_name}",
    )


def _make_engine(
    tree: Tree,
    roots: list[str],
    *,
    staged: list[str] | None = None,
    settings: TraversalSettings | None = None,
    converter: MagicMock | None = None,
    drive: _FakeDrive | None = None,
    queue_store: MemoryLinearStore | None = None,
    stack_store: MemoryLinearStore | None = None,
    clock: object = None,
) -> tuple[TraversalEngine, MemoryLinearStore, MemoryLinearStore, MemoryTraceRecorder]:
    """Return (engine, queue_store, stack_store, recorder) over an in-memory tree."""
    if drive is None:
        drive = _FakeDrive(tree)
    if queue_store is None:
        queue_store = MemoryLinearStore([QUEUE_HEADER, *roots])
    if stack_store is None:
        stack_store = MemoryLinearStore([STACK_HEADER, *(staged or [])])
    recorder = MemoryTraceRecorder()
    kwargs = {"clock": clock} if clock is not None else {}
    engine = TraversalEngine(
        queue=FolderQueue(queue_store, drive),  # type: ignore[arg-type]
        stack=FolderStack(stack_store),
        drive=drive,  # type: ignore[arg-type]
        recorder=recorder,
        converter=converter,
        settings=settings,
        **kwargs,  # type: ignore[arg-type]
    )
    return engine, queue_store, stack_store, recorder


def _entered(recorder: MemoryTraceRecorder) -> list[str]:
    return [e.name for e in recorder.events if e.kind is TraceEventKind.ENTER_FOLDER]


def _entered_at(recorder: MemoryTraceRecorder) -> list[tuple[str, int]]:
    return [(e.name, e.depth) for e in recorder.events if e.kind is TraceEventKind.ENTER_FOLDER]


def _converting_settings(**overrides: object) -> TraversalSettings:
    values: dict[str, object] = {"conversion_enabled": True}
    values.update(overrides)
    return TraversalSettings(**values)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Ordering and nesting
# ---------------------------------------------------------------------------


class TestPreOrder:
    def test_children_subtree_completes_before_next_sibling(self) -> None:
        tree: Tree = {"A": ([], ["B", "C"]), "B": ([], ["D"]), "C": ([], []), "D": ([], [])}
        engine, _, _, recorder = _make_engine(tree, ["A"])

        engine.run()

        assert _entered(recorder) == ["A", "B", "D", "C"]

    def test_depth_at_enter_is_parent_depth_plus_one(self) -> None:
        tree: Tree = {
            "R": ([], ["A", "B"]),
            "A": ([], ["A1", "A2"]),
            "A1": ([], []),
            "A2": ([], ["A2x"]),
            "A2x": ([], []),
            "B": ([], []),
        }
        engine, _, _, recorder = _make_engine(tree, ["R"])

        engine.run()

        depths = {e.name: e.depth for e in recorder.events if e.kind is TraceEventKind.ENTER_FOLDER}
        assert depths == {"R": 0, "A": 1, "A1": 2, "A2": 2, "A2x": 3, "B": 1}

    def test_every_folder_entered_and_exited_exactly_once(self) -> None:
        tree: Tree = {
            "R1": (["x.txt"], ["S1", "S2"]),
            "S1": ([], ["T1"]),
            "S2": (["y.doc"], []),
            "T1": ([], []),
            "R2": ([], []),
        }
        engine, queue_store, stack_store, recorder = _make_engine(tree, ["R1", "R2"])

        summary = engine.run()

        kinds = [e.kind for e in recorder.events]
        assert kinds.count(TraceEventKind.ENTER_FOLDER) == 5
        assert kinds.count(TraceEventKind.EXIT_FOLDER) == 5
        assert sorted(_entered(recorder)) == sorted(tree)
        assert recorder.depth == 0
        assert summary.folders_processed == 5
        assert summary.completed is True
        assert queue_store.values() == []
        assert stack_store.values() == []

    def test_empty_folder_emits_only_enter_and_exit(self) -> None:
        engine, _, _, recorder = _make_engine({"E": ([], [])}, ["E"])

        engine.run()

        assert [e.kind for e in recorder.events] == [
            TraceEventKind.ENTER_FOLDER,
            TraceEventKind.EXIT_FOLDER,
        ]

    def test_folder_linked_from_two_parents_is_processed_twice(self) -> None:
        tree: Tree = {"A": ([], ["S"]), "B": ([], ["S"]), "S": ([], [])}
        engine, _, _, recorder = _make_engine(tree, ["A", "B"])

        engine.run()

        assert _entered(recorder) == ["A", "S", "B", "S"]


# ---------------------------------------------------------------------------
# File handling and conversion
# ---------------------------------------------------------------------------


class TestFileProcessing:
    def test_example_scenario_with_conversion(self) -> None:
        tree: Tree = {"R": (["a.docx"], ["S"]), "S": (["b.txt"], [])}
        converter = MagicMock()
        converter.convert.side_effect = _converted
        engine, _, _, recorder = _make_engine(
            tree, ["R"], settings=_converting_settings(), converter=converter
        )

        summary = engine.run()

        assert [(e.kind, e.name) for e in recorder.events] == [
            (TraceEventKind.ENTER_FOLDER, "R"),
            (TraceEventKind.CONVERSION, "a.docx"),
            (TraceEventKind.ENTER_FOLDER, "S"),
            (TraceEventKind.VISIT_FILE, "b.txt"),
            (TraceEventKind.EXIT_FOLDER, ""),
            (TraceEventKind.EXIT_FOLDER, ""),
        ]
        converter.convert.assert_called_once()
        assert recorder.events[1].converted_name == "a"
        assert summary.files_converted == 1
        assert summary.files_visited == 2

    def test_conversion_disabled_only_visits(self) -> None:
        converter = MagicMock()
        engine, _, _, recorder = _make_engine(
            {"R": (["a.docx"], [])}, ["R"], converter=converter
        )

        engine.run()

        converter.convert.assert_not_called()
        assert recorder.lines == ["- [R](https://x/R)/", "  - [a.docx](https://x/R/a.docx)"]

    def test_trace_all_files_off_records_only_conversions(self) -> None:
        converter = MagicMock()
        converter.convert.side_effect = _converted
        engine, _, _, recorder = _make_engine(
            {"R": (["a.docx", "notes.txt", "noext"], [])},
            ["R"],
            settings=_converting_settings(trace_all_files=False),
            converter=converter,
        )

        engine.run()

        assert [e.kind for e in recorder.events] == [
            TraceEventKind.ENTER_FOLDER,
            TraceEventKind.CONVERSION,
            TraceEventKind.EXIT_FOLDER,
        ]

    def test_predicate_is_case_insensitive_and_uses_last_extension(self) -> None:
        converter = MagicMock()
        converter.convert.side_effect = _converted
        engine, _, _, _ = _make_engine(
            {"R": (["report.DOCX", "archive.tar.gz", "noext", "draft."], [])},
            ["R"],
            settings=_converting_settings(),
            converter=converter,
        )

        engine.run()

        converted = [c[0][0].name for c in converter.convert.call_args_list]
        assert converted == ["report.DOCX"]

    def test_trashed_files_are_skipped(self) -> None:
        drive = _FakeDrive({"R": (["old.doc", "new.doc"], [])})
        drive.trashed.add("old.doc")
        converter = MagicMock()
        converter.convert.side_effect = _converted
        engine, _, _, recorder = _make_engine(
            drive.tree, ["R"], settings=_converting_settings(), converter=converter, drive=drive
        )

        summary = engine.run()

        assert [c[0][0].name for c in converter.convert.call_args_list] == ["new.doc"]
        assert summary.files_visited == 1
        assert all(e.name != "old.doc" for e in recorder.events)

    def test_failed_conversion_is_recorded_and_siblings_continue(self) -> None:
        converter = MagicMock()

        def convert(file: DriveFile) -> DriveFile:
            if file.name == "bad.xls":
                raise ConversionError(file.name, "Graph API error 500: boom")
            return _converted(file)

        converter.convert.side_effect = convert
        engine, _, _, recorder = _make_engine(
            {"R": (["bad.xls", "good.ppt"], ["S"]), "S": ([], [])},
            ["R"],
            settings=_converting_settings(),
            converter=converter,
        )

        summary = engine.run()

        assert [(e.kind, e.name) for e in recorder.events[1:3]] == [
            (TraceEventKind.FAILURE, "bad.xls"),
            (TraceEventKind.CONVERSION, "good.ppt"),
        ]
        assert "boom" in recorder.events[1].reason
        assert summary.conversion_failures == 1
        assert summary.files_converted == 1
        assert _entered(recorder) == ["R", "S"]

    def test_conversion_enabled_without_converter_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            _make_engine({}, [], settings=_converting_settings())


# ---------------------------------------------------------------------------
# Durability ordering and self-healing
# ---------------------------------------------------------------------------


class TestCommitOrdering:
    def test_folder_is_committed_only_after_children_are_staged(self) -> None:
        log: list[tuple[str, str]] = []
        tree: Tree = {"A": (["f.txt"], ["B", "C"]), "B": ([], []), "C": ([], [])}
        drive = _FakeDrive(tree, log)
        queue_store = _LoggingStore("queue", [QUEUE_HEADER, "A"], log)
        stack_store = _LoggingStore("stack", [STACK_HEADER], log)
        engine, _, _, _ = _make_engine(
            tree, [], drive=drive, queue_store=queue_store, stack_store=stack_store
        )

        engine.run()

        commit = log.index(("queue.remove_head", "A"))
        assert log.index(("list_files", "A")) < commit
        assert log.index(("list_subfolders", "A")) < commit
        assert log.index(("stack.append", "B")) < commit
        assert log.index(("stack.append", "C")) < commit

    def test_unresolvable_roots_are_dropped_and_counted(self) -> None:
        engine, queue_store, _, recorder = _make_engine(
            {"ok": ([], [])}, ["missing", "https://drive.google.com/drive/folders/ok"]
        )

        summary = engine.run()

        assert _entered(recorder) == ["ok"]
        assert summary.folders_skipped == 1
        assert queue_store.values() == []

    def test_unresolvable_child_does_not_pull_in_unrelated_entries(self) -> None:
        tree: Tree = {"A": ([], ["gone", "B"]), "B": ([], []), "X": ([], [])}
        engine, _, _, recorder = _make_engine(tree, ["A", "X"])

        engine.run()

        depths = [
            (e.name, e.depth) for e in recorder.events if e.kind is TraceEventKind.ENTER_FOLDER
        ]
        assert depths == [("A", 0), ("B", 1), ("X", 0)]


# ---------------------------------------------------------------------------
# Resumability
# ---------------------------------------------------------------------------


class TestResumability:
    def test_resumes_with_staged_children_after_parent_commit(self) -> None:
        """Halted after A was committed, before any of its children ran."""
        tree: Tree = {
            "A": ([], ["B", "C"]),
            "B": ([], ["D"]),
            "C": ([], []),
            "D": ([], []),
            "X": ([], []),
        }
        drive = _FakeDrive(tree)
        # Children are staged in reverse so the first one (B) is on top.
        engine, queue_store, stack_store, recorder = _make_engine(
            tree, ["X"], staged=[in_progress_marker("A"), "C", "B"], drive=drive
        )

        summary = engine.run()

        assert _entered(recorder) == ["B", "D", "C", "X"]
        assert ("get_folder", "A") not in drive.log
        assert summary.staged_restored == 2
        assert stack_store.values() == []
        assert queue_store.values() == []

    def test_killed_mid_folder_resumes_without_reprocessing_completed_folders(self) -> None:
        tree: Tree = {
            "A": ([], ["B", "C"]),
            "B": ([], ["D"]),
            "C": (["c.txt"], ["E"]),
            "D": ([], []),
            "E": ([], []),
            "X": ([], []),
        }
        drive = _FakeDrive(tree)
        drive.kill_on_files.add("C")
        engine, queue_store, stack_store, first = _make_engine(tree, ["A", "X"], drive=drive)

        with pytest.raises(_Killed):
            engine.run()

        assert _entered(first) == ["A", "B", "D", "C"]
        assert queue_store.values() == ["C", "X"]

        drive.kill_on_files.clear()
        resumed, _, _, second = _make_engine(
            tree, [], drive=drive, queue_store=queue_store, stack_store=stack_store
        )
        summary = resumed.run()

        assert _entered(second) == ["C", "E", "X"]
        assert summary.completed is True

    def test_killed_while_staging_loses_no_folder(self) -> None:
        tree: Tree = {
            "A": ([], ["B", "C"]),
            "B": ([], ["D"]),
            "C": ([], []),
            "D": ([], []),
        }
        drive = _FakeDrive(tree)
        drive.kill_on_subfolders.add("B")
        engine, queue_store, stack_store, first = _make_engine(tree, ["A"], drive=drive)

        with pytest.raises(_Killed):
            engine.run()

        drive.kill_on_subfolders.clear()
        resumed, _, _, second = _make_engine(
            tree, [], drive=drive, queue_store=queue_store, stack_store=stack_store
        )
        summary = resumed.run()

        # B was in flight: it is enumerated again, then its sibling C follows.
        assert _entered_at(second) == [("B", 0), ("D", 1), ("C", 0)]
        assert summary.staged_restored == 1
        assert queue_store.values() == []
        assert stack_store.values() == []

    def test_killed_before_parent_commit_reprocesses_only_the_parent(self) -> None:
        tree: Tree = {"A": ([], ["B", "C"]), "B": ([], ["D"]), "C": ([], []), "D": ([], [])}
        drive = _FakeDrive(tree)
        queue_store = _KillingStore([QUEUE_HEADER, "A"], kill_on=("remove_head", "A"))
        engine, _, stack_store, first = _make_engine(
            tree, [], drive=drive, queue_store=queue_store
        )

        with pytest.raises(_Killed):
            engine.run()

        assert queue_store.values() == ["A"]
        assert stack_store.values() == [in_progress_marker("A"), "C", "B"]

        resumed, _, _, second = _make_engine(
            tree, [], drive=drive, queue_store=queue_store, stack_store=stack_store
        )
        summary = resumed.run()

        assert _entered_at(second) == [("A", 0), ("B", 1), ("D", 2), ("C", 1)]
        assert summary.staged_restored == 0
        assert queue_store.values() == []
        assert stack_store.values() == []

    def test_killed_between_promotion_and_marker_keeps_child_first(self) -> None:
        tree: Tree = {
            "A": ([], ["B", "C"]),
            "B": ([], ["D"]),
            "C": ([], []),
            "D": ([], []),
            "X": ([], []),
        }
        drive = _FakeDrive(tree)
        stack_store = _KillingStore([STACK_HEADER], kill_on=("replace_tail", "B"))
        engine, queue_store, _, _ = _make_engine(
            tree, ["A", "X"], drive=drive, stack_store=stack_store
        )

        with pytest.raises(_Killed):
            engine.run()

        assert queue_store.values() == ["B", "X"]

        resumed, _, _, second = _make_engine(
            tree, [], drive=drive, queue_store=queue_store, stack_store=stack_store
        )
        resumed.run()

        assert _entered(second) == ["B", "D", "C", "X"]

    def test_restore_splices_owed_children_behind_the_folder_in_flight(self) -> None:
        """R committed, R/C1 committed, R/C1/D1 in flight with a partial staging."""
        engine, queue_store, stack_store, _ = _make_engine(
            {},
            ["D1", "next-root"],
            staged=[
                in_progress_marker("R"),
                "C2",
                in_progress_marker("C1"),
                "D3",
                "D2",
                in_progress_marker("D1"),
                "stale-E",
            ],
        )

        restored = engine.restore_staged()

        assert restored == 3
        assert queue_store.values() == ["D1", "D2", "D3", "C2", "next-root"]
        assert stack_store.values() == []

    def test_stops_between_top_level_steps_when_budget_is_spent(self) -> None:
        tree: Tree = {"A": ([], ["A1"]), "A1": ([], []), "X": ([], [])}
        ticks = iter([0.0, 0.0, 100.0])
        engine, queue_store, _, recorder = _make_engine(
            tree,
            ["A", "X"],
            settings=TraversalSettings(max_run_seconds=10.0),
            clock=lambda: next(ticks),
        )

        summary = engine.run()

        assert _entered(recorder) == ["A", "A1"]
        assert summary.completed is False
        assert queue_store.values() == ["X"]


# ---------------------------------------------------------------------------
# traversal_engine_from_config tests
# ---------------------------------------------------------------------------


class TestTraversalEngineFromConfig:
    @patch("drive_converter.orchestration.engine.trace_recorder_from_config")
    @patch("drive_converter.orchestration.engine.state_stores_from_config")
    @patch("drive_converter.orchestration.engine.graph_client_from_config")
    def test_wires_settings_from_config(
        self, mock_gcfc: MagicMock, mock_ssfc: MagicMock, mock_trfc: MagicMock
    ) -> None:
        mock_ssfc.return_value = (MemoryLinearStore(), MemoryLinearStore())
        config = MagicMock()
        config.conversion_enabled = True
        config.trace_all_files = False
        config.convertible_extensions = ("doc",)
        config.max_run_seconds = 60.0

        engine = traversal_engine_from_config(config)

        assert engine._settings == TraversalSettings(
            conversion_enabled=True,
            trace_all_files=False,
            convertible_extensions=("doc",),
            max_run_seconds=60.0,
        )
        assert engine.recorder is mock_trfc.return_value
        assert engine._converter is not None

    @patch("drive_converter.orchestration.engine.state_stores_from_config")
    @patch("drive_converter.orchestration.engine.graph_client_from_config")
    def test_supplied_recorder_overrides_blob_trace(
        self, mock_gcfc: MagicMock, mock_ssfc: MagicMock
    ) -> None:
        mock_ssfc.return_value = (MemoryLinearStore(), MemoryLinearStore())
        recorder = MemoryTraceRecorder()

        engine = traversal_engine_from_config(MagicMock(), recorder=recorder)

        assert engine.recorder is recorder
