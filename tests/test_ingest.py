"""Tests for event ingestion and the watchdog adapter."""

import logging
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from mirror_sync import (
    ChangeKind,
    ChangeRecord,
    EventIngestor,
    IgnoreMatcher,
    MirrorEventHandler,
)


class TestIngest:
    def test_appends_one_record_per_event(self, source, ingestor, changes):
        ingestor.ingest(ChangeKind.CHANGED, source / "notes.txt", is_dir=False)
        ingestor.ingest(ChangeKind.DELETED, source / "notes.txt", is_dir=False)

        assert changes.snapshot() == [
            ChangeRecord(ChangeKind.CHANGED, Path("notes.txt"), is_dir=False),
            ChangeRecord(ChangeKind.DELETED, Path("notes.txt"), is_dir=False),
        ]

    def test_accepts_relative_paths(self, ingestor, changes):
        record = ingestor.ingest(ChangeKind.CREATED, "docs/new.txt")

        assert record.path == Path("docs/new.txt")
        assert changes.snapshot() == [record]

    def test_rename_keeps_old_path(self, source, ingestor, changes):
        ingestor.ingest(ChangeKind.RENAMED, source / "B", old_path=source / "A")

        (record,) = changes.snapshot()
        assert record.kind is ChangeKind.RENAMED
        assert record.path == Path("B")
        assert record.old_path == Path("A")

    def test_rename_without_old_path_is_dropped(self, ingestor, changes):
        assert ingestor.ingest(ChangeKind.RENAMED, "B") is None
        assert len(changes) == 0

    def test_outside_root_is_dropped(self, tmp_path, ingestor, changes):
        assert ingestor.ingest(ChangeKind.CREATED, tmp_path / "elsewhere" / "x.txt") is None
        assert ingestor.ingest(ChangeKind.DELETED, ingestor.source_root) is None
        assert len(changes) == 0

    def test_logs_kind_and_path(self, source, ingestor, caplog):
        with caplog.at_level(logging.INFO, logger=ingestor.logger.name):
            ingestor.ingest(ChangeKind.DELETED, source / "docs" / "readme.md")

        assert f"DELETED | {Path('docs/readme.md')}" in caplog.text


class TestEagerDirectoryCreation:
    def test_directory_is_created_now_and_not_queued(self, source, mirror, ingestor, changes):
        assert ingestor.ingest(ChangeKind.CREATED, source / "docs" / "images", is_dir=True) is None

        assert (mirror / "docs" / "images").is_dir()
        assert len(changes) == 0

    def test_name_without_extension_is_a_directory_without_hint(self, mirror, ingestor, changes):
        ingestor.ingest(ChangeKind.CREATED, "New folder")

        assert (mirror / "New folder").is_dir()
        assert len(changes) == 0

    def test_file_hint_wins_over_missing_extension(self, mirror, ingestor, changes):
        ingestor.ingest(ChangeKind.CREATED, "Makefile", is_dir=False)

        assert not (mirror / "Makefile").exists()
        assert len(changes) == 1

    def test_mkdir_failure_does_not_raise(self, mirror, ingestor, changes, caplog):
        (mirror / "blocker").write_text("a file where a folder should go")

        with caplog.at_level(logging.ERROR, logger=ingestor.logger.name):
            ingestor.ingest(ChangeKind.CREATED, "blocker/sub", is_dir=True)

        assert "ERROR mkdir" in caplog.text
        assert len(changes) == 0


class TestIgnore:
    @pytest.fixture
    def ingestor(self, source, mirror, changes, logger):
        return EventIngestor(source, mirror, changes, logger, ignore=IgnoreMatcher(["*.tmp", "cache/"]))

    def test_ignored_paths_are_dropped(self, source, mirror, ingestor, changes):
        ingestor.ingest(ChangeKind.CREATED, source / "scratch.tmp", is_dir=False)
        ingestor.ingest(ChangeKind.CREATED, source / "cache", is_dir=True)

        assert len(changes) == 0
        assert not (mirror / "cache").exists()

    def test_rename_into_ignored_name_deletes_old(self, source, ingestor, changes):
        ingestor.ingest(ChangeKind.RENAMED, source / "notes.tmp", old_path=source / "notes.txt", is_dir=False)

        assert changes.snapshot() == [ChangeRecord(ChangeKind.DELETED, Path("notes.txt"), is_dir=False)]

    def test_rename_between_ignored_names_is_dropped(self, ingestor, changes):
        ingestor.ingest(ChangeKind.RENAMED, "b.tmp", old_path="a.tmp", is_dir=False)

        assert len(changes) == 0

    def test_matcher_without_patterns_ignores_nothing(self):
        assert IgnoreMatcher([]).is_ignored(Path("anything.tmp")) is False

    def test_directory_patterns_need_dir_hint(self):
        matcher = IgnoreMatcher(["cache/"])
        assert matcher.is_ignored(Path("cache"), is_dir=True) is True
        assert matcher.is_ignored(Path("cache/data.bin"), is_dir=False) is True


class TestMirrorEventHandler:
    @pytest.fixture
    def handler(self, ingestor):
        return MirrorEventHandler(ingestor)

    def test_file_events_map_to_kinds(self, source, handler, changes):
        handler.dispatch(FileCreatedEvent(str(source / "a.txt")))
        handler.dispatch(FileModifiedEvent(str(source / "a.txt")))
        handler.dispatch(FileMovedEvent(str(source / "a.txt"), str(source / "b.txt")))
        handler.dispatch(FileDeletedEvent(str(source / "b.txt")))

        assert changes.snapshot() == [
            ChangeRecord(ChangeKind.CREATED, Path("a.txt"), is_dir=False),
            ChangeRecord(ChangeKind.CHANGED, Path("a.txt"), is_dir=False),
            ChangeRecord(ChangeKind.RENAMED, Path("b.txt"), old_path=Path("a.txt"), is_dir=False),
            ChangeRecord(ChangeKind.DELETED, Path("b.txt"), is_dir=False),
        ]

    def test_directory_events(self, source, mirror, handler, changes):
        handler.dispatch(DirCreatedEvent(str(source / "v2.0")))
        handler.dispatch(DirModifiedEvent(str(source / "docs")))
        handler.dispatch(DirMovedEvent(str(source / "docs"), str(source / "manual")))
        handler.dispatch(DirDeletedEvent(str(source / "empty")))

        assert (mirror / "v2.0").is_dir()
        assert changes.snapshot() == [
            ChangeRecord(ChangeKind.RENAMED, Path("manual"), old_path=Path("docs"), is_dir=True),
            ChangeRecord(ChangeKind.DELETED, Path("empty"), is_dir=True),
        ]
