"""Shared fixtures for mirror_sync tests."""

import logging

import pytest

import mirror_sync


@pytest.fixture
def logger():
    log = logging.getLogger("mirror_sync_tests")
    log.setLevel(logging.DEBUG)
    log.propagate = True
    return log


@pytest.fixture
def source(tmp_path):
    """Source tree:

        notes.txt, docs/readme.md, docs/deep/a.bin, empty/
    """
    root = tmp_path / "source"
    (root / "docs" / "deep").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "notes.txt").write_text("notes v1")
    (root / "docs" / "readme.md").write_text("readme")
    (root / "docs" / "deep" / "a.bin").write_bytes(b"\x00\x01\x02")
    return root


@pytest.fixture
def mirror(tmp_path):
    root = tmp_path / "mirror"
    root.mkdir()
    return root


@pytest.fixture
def built_mirror(source, mirror, logger):
    mirror_sync.build_mirror(source, mirror, logger)
    return mirror


@pytest.fixture
def reconciler(source, mirror, logger):
    return mirror_sync.Reconciler(source, mirror, logger)


@pytest.fixture
def changes():
    return mirror_sync.PendingChangeSet()


@pytest.fixture
def ingestor(source, mirror, changes, logger):
    return mirror_sync.EventIngestor(source, mirror, changes, logger)


@pytest.fixture
def saved_config_path(tmp_path, monkeypatch):
    path = tmp_path / "home" / ".mirror_sync" / "config.json"
    monkeypatch.setattr(mirror_sync, "CONFIG_PATH", path)
    return path


def tree(root):
    """Map of relative posix path -> bytes (files) or None (folders)."""
    result = {}
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root).as_posix()
        result[rel] = p.read_bytes() if p.is_file() else None
    return result


@pytest.fixture
def read_tree():
    return tree
