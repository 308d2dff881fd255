# /mirror_sync.py
"""
Mirror Sync
- Copies a source folder into a mirror folder on startup (mirror is wiped first).
- Watches the source folder and queues every change into a pending changeset.
- Every --interval seconds the pending changes are replayed onto the mirror, in arrival order.
- Directory creation is mirrored immediately; file content waits for the next pass
  so half-written files are not copied.
- Remembers last folders across restarts via ~/.mirror_sync/config.json
- Ignores paths via gitignore-style rules (--ignore, repeatable).
- Styled console output:
  - COPY green
  - DELETE / RMDIR orange
  - errors red
  - file paths white
  - folder paths light brown
- Log file is always plain (no color codes) and is truncated at startup.
- Locked files are skipped (never retried) and listed in locked.log next to the log file.

Usage
  pip install watchdog pathspec colorama
  python mirror_sync.py
  python mirror_sync.py --source "/src" --mirror "/dst" --log-file sync.log --interval 2
"""

from __future__ import annotations

import argparse
import datetime as dt
import errno
import json
import logging
import shutil
import signal
import sys
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from colorama import just_fix_windows_console
from pathspec import PathSpec
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

APP_DIR = Path.home() / ".mirror_sync"
CONFIG_PATH = APP_DIR / "config.json"

DEFAULT_INTERVAL_SEC = 2.0
DEFAULT_LOG_FILE = Path("mirror_sync.log")
LOCKED_LOG_NAME = "locked.log"


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    CYAN = "\x1b[36m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    "COPY": Ansi.GREEN,
    "DELETE": Ansi.ORANGE,
    "RMDIR": Ansi.ORANGE,
    "MKDIR": Ansi.LIGHT_BROWN,
    "MOVE": Ansi.LIGHT_BROWN,
    "SKIP": Ansi.LIGHT_BROWN,
    "CREATED": Ansi.CYAN,
    "CHANGED": Ansi.CYAN,
    "DELETED": Ansi.CYAN,
    "RENAMED": Ansi.CYAN,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        if action:
            action_color = ACTION_COLORS.get(action, "")
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


def setup_logger(log_file: Path, name: str = "mirror_sync") -> logging.Logger:
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    just_fix_windows_console()

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    # mode="w": every run starts with an empty log
    fh = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=fmt, datefmt=datefmt))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("Logging to: %s", log_file)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else (path.exists() and path.is_dir())
    logger.log(level, f"{action} | {message}", extra=extra)


# -------------------------
# Copy primitive + locked files
# -------------------------

def _is_win_locked_error(exc: Exception) -> bool:
    winerror = getattr(exc, "winerror", None)
    if winerror == 32:  # ERROR_SHARING_VIOLATION
        return True
    err = getattr(exc, "errno", None)
    return err in {errno.EACCES, errno.EPERM}


@dataclass(frozen=True)
class CopyResult:
    ok: bool
    reason: Optional[str] = None
    locked: bool = False

    @classmethod
    def success(cls) -> "CopyResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, exc: OSError) -> "CopyResult":
        return cls(ok=False, reason=str(exc), locked=_is_win_locked_error(exc))


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def copy_file(src: Path, dst: Path) -> CopyResult:
    """Copy bytes + metadata from src to dst, overwriting dst.

    I/O failures (missing, locked or unreadable source, unwritable mirror)
    come back as a failed CopyResult instead of an exception.
    """
    try:
        ensure_parent(dst)
        shutil.copy2(src, dst)
    except OSError as e:
        return CopyResult.failure(e)
    return CopyResult.success()


class LockedFileLog:
    """
    Appends one line per skipped locked file to locked.log so the path can be
    fixed by hand later. Skipped files are not retried.
    """

    def __init__(self, locked_log_path: Path):
        self.locked_log_path = locked_log_path
        self._guard = threading.Lock()
        self.locked_log_path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, path: Path, reason: str, error: str) -> None:
        ts = dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{ts} | {reason} | {path} | {error}\n"
        with self._guard:
            with self.locked_log_path.open("a", encoding="utf-8") as f:
                f.write(line)


def report_copy_failure(
    logger: logging.Logger,
    locked: Optional[LockedFileLog],
    result: CopyResult,
    src: Path,
    dst: Path,
    reason: str,
) -> None:
    if result.locked:
        log_action(logger, "SKIP", f"locked ({reason}) {src} | {result.reason}", path=src, is_dir=False, level=logging.WARNING)
        if locked is not None:
            try:
                locked.write(src, reason, result.reason or "")
            except OSError as e:
                logger.error("Could not write %s: %s", locked.locked_log_path, e)
        return
    log_action(logger, "COPY", f"ERROR ({reason}) {src} -> {dst} | {result.reason}", path=dst, is_dir=False, level=logging.ERROR)


def copy_logged(
    logger: logging.Logger,
    locked: Optional[LockedFileLog],
    src: Path,
    dst: Path,
    reason: str,
) -> bool:
    result = copy_file(src, dst)
    if result.ok:
        log_action(logger, "COPY", f"({reason}) {src} -> {dst}", path=dst, is_dir=False)
        return True
    report_copy_failure(logger, locked, result, src, dst, reason)
    return False


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class AppConfig:
    source_dir: Path
    mirror_dir: Path
    log_file: Path
    interval_sec: float
    ignore_patterns: tuple[str, ...] = ()


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Keep a mirror folder in sync with a source folder.")
    p.add_argument("--source", type=str, default=None, help="Folder to watch (source).")
    p.add_argument("--mirror", type=str, default=None, help="Folder to keep in sync (mirror).")
    p.add_argument("--log-file", type=str, default=None, help="Log file (truncated at startup).")
    p.add_argument("--interval", type=float, default=None, help="Seconds between reconciliation passes.")
    p.add_argument(
        "--ignore",
        action="append",
        default=None,
        metavar="PATTERN",
        help="gitignore-style pattern to skip (repeatable).",
    )
    return p.parse_args(argv)


def prompt_for_path(label: str, default: Optional[Path] = None) -> Path:
    while True:
        hint = f" [{default}]" if default else ""
        raw = input(f"{label}{hint}: ").strip().strip('"')
        if not raw and default:
            return default
        if raw:
            return Path(raw)
        print("Please enter a non-empty path.")


def load_config_file() -> dict:
    try:
        if CONFIG_PATH.exists():
            data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
    except (OSError, ValueError):
        pass
    return {}


def save_config_file(cfg: AppConfig) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "source": str(cfg.source_dir),
        "mirror": str(cfg.mirror_dir),
        "log_file": str(cfg.log_file),
        "interval_sec": cfg.interval_sec,
        "ignore": list(cfg.ignore_patterns),
    }
    CONFIG_PATH.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_paths(source: Path, mirror: Path, interval_sec: float) -> tuple[Path, Path]:
    source = source.expanduser().resolve()
    mirror = mirror.expanduser().resolve()

    if interval_sec <= 0:
        raise ValueError(f"Sync interval must be positive, got {interval_sec}")
    if not source.exists() or not source.is_dir():
        raise ValueError(f"Source folder does not exist or is not a folder: {source}")
    if source == mirror:
        raise ValueError("Source and mirror folders must be different.")
    if _is_subpath(mirror, source):
        raise ValueError("Mirror folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, mirror):
        raise ValueError("Source folder must NOT be inside mirror folder (it would be wiped).")

    mirror.mkdir(parents=True, exist_ok=True)
    return source, mirror


def build_effective_config(args: argparse.Namespace) -> AppConfig:
    saved = load_config_file()

    saved_source = Path(saved["source"]) if "source" in saved else None
    saved_mirror = Path(saved["mirror"]) if "mirror" in saved else None
    saved_log = Path(saved["log_file"]) if "log_file" in saved else None
    saved_interval = float(saved.get("interval_sec", DEFAULT_INTERVAL_SEC))
    saved_ignore = [str(p) for p in saved.get("ignore", [])]

    source = Path(args.source) if args.source else saved_source
    mirror = Path(args.mirror) if args.mirror else saved_mirror
    log_file = Path(args.log_file) if args.log_file else (saved_log or DEFAULT_LOG_FILE)
    interval = float(args.interval) if args.interval is not None else saved_interval
    ignore = args.ignore if args.ignore is not None else saved_ignore

    if source is None:
        source = prompt_for_path("Source folder", saved_source)
    if mirror is None:
        mirror = prompt_for_path("Mirror folder", saved_mirror)

    return AppConfig(
        source_dir=source,
        mirror_dir=mirror,
        log_file=log_file,
        interval_sec=interval,
        ignore_patterns=tuple(ignore),
    )


# -------------------------
# Ignore rules
# -------------------------

class IgnoreMatcher:
    def __init__(self, patterns: Iterable[str]):
        self.patterns = list(patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def is_ignored(self, rel: Path, is_dir: Optional[bool] = None) -> bool:
        if not self.patterns:
            return False
        rel_posix = rel.as_posix()
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)


# -------------------------
# Pending changeset
# -------------------------

class ChangeKind(str, Enum):
    CREATED = "created"
    CHANGED = "changed"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class ChangeRecord:
    """One captured, not yet applied change. Paths are relative to the source root."""

    kind: ChangeKind
    path: Path
    old_path: Optional[Path] = None
    is_dir: Optional[bool] = None

    def looks_like_dir(self) -> bool:
        # no hint from the watcher: a name without an extension is taken as a folder
        if self.is_dir is not None:
            return self.is_dir
        return not self.path.suffix

    def describe(self) -> str:
        if self.kind is ChangeKind.RENAMED:
            return f"{self.kind.value} {self.old_path} -> {self.path}"
        return f"{self.kind.value} {self.path}"


class PendingChangeSet:
    """Arrival-ordered, lock-guarded list of ChangeRecords waiting for the next pass."""

    def __init__(self):
        self._records: list[ChangeRecord] = []
        self._guard = threading.Lock()

    def append(self, record: ChangeRecord) -> None:
        with self._guard:
            self._records.append(record)

    def drain(self) -> list[ChangeRecord]:
        with self._guard:
            records, self._records = self._records, []
        return records

    def snapshot(self) -> list[ChangeRecord]:
        with self._guard:
            return list(self._records)

    def __len__(self) -> int:
        with self._guard:
            return len(self._records)


# -------------------------
# Initial mirror build
# -------------------------

@dataclass
class BuildStats:
    directories: int = 0
    files: int = 0
    failed: int = 0


def _clear_mirror(mirror_root: Path, logger: logging.Logger) -> None:
    for entry in mirror_root.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
            log_action(logger, "RMDIR", f"(build) {entry}", path=entry, is_dir=True)
        else:
            entry.unlink()
            log_action(logger, "DELETE", f"(build) {entry}", path=entry, is_dir=False)


def _create_skeleton(
    source_dir: Path,
    mirror_dir: Path,
    source_root: Path,
    ignore: IgnoreMatcher,
    stats: BuildStats,
) -> None:
    if not source_dir.is_dir():
        return
    for sub in sorted(p for p in source_dir.iterdir() if p.is_dir()):
        if ignore.is_ignored(sub.relative_to(source_root), is_dir=True):
            continue
        target = mirror_dir / sub.name
        target.mkdir(parents=True, exist_ok=True)
        stats.directories += 1
        _create_skeleton(sub, target, source_root, ignore, stats)


def build_mirror(
    source_root: Path,
    mirror_root: Path,
    logger: logging.Logger,
    ignore: Optional[IgnoreMatcher] = None,
    locked: Optional[LockedFileLog] = None,
) -> BuildStats:
    """Wipe the mirror and rebuild it as a full copy of the source tree.

    This is the only full tree walk; everything after it is incremental.
    """
    ignore = ignore or IgnoreMatcher([])
    stats = BuildStats()

    mirror_root.mkdir(parents=True, exist_ok=True)
    _clear_mirror(mirror_root, logger)

    _create_skeleton(source_root, mirror_root, source_root, ignore, stats)

    if source_root.is_dir():
        for src in sorted(source_root.rglob("*")):
            if not src.is_file():
                continue
            rel = src.relative_to(source_root)
            if any(ignore.is_ignored(parent, is_dir=True) for parent in rel.parents if parent != Path(".")):
                continue
            if ignore.is_ignored(rel, is_dir=False):
                continue
            result = copy_file(src, mirror_root / rel)
            if result.ok:
                stats.files += 1
            else:
                stats.failed += 1
                report_copy_failure(logger, locked, result, src, mirror_root / rel, "build")

    log_action(
        logger,
        "BUILD",
        f"Copied {source_root} to {mirror_root} ({stats.directories} dirs, {stats.files} files, {stats.failed} failed)",
    )
    return stats


# -------------------------
# Reconciliation
# -------------------------

class InvalidChangeRecord(RuntimeError):
    """A ChangeRecord that ingestion can never produce. Fatal."""


class UnknownChangeKind(InvalidChangeRecord):
    pass


@dataclass
class ApplyStats:
    applied: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class Reconciler:
    def __init__(
        self,
        source_root: Path,
        mirror_root: Path,
        logger: logging.Logger,
        locked: Optional[LockedFileLog] = None,
    ):
        self.source_root = source_root
        self.mirror_root = mirror_root
        self.logger = logger
        self.locked = locked
        self._handlers: dict[ChangeKind, Callable[[ChangeRecord], None]] = {
            ChangeKind.RENAMED: self._apply_renamed,
            ChangeKind.DELETED: self._apply_deleted,
            ChangeKind.CREATED: self._apply_created,
            ChangeKind.CHANGED: self._apply_changed,
        }
        missing = set(ChangeKind) - set(self._handlers)
        if missing:
            raise UnknownChangeKind(f"no handler for change kinds: {sorted(k.value for k in missing)}")

    def apply(self, record: ChangeRecord) -> None:
        handler = self._handlers.get(record.kind)
        if handler is None:
            raise UnknownChangeKind(f"unrecognized change kind {record.kind!r} for {record.path}")
        handler(record)

    def apply_batch(self, records: Iterable[ChangeRecord]) -> ApplyStats:
        stats = ApplyStats()
        for record in records:
            try:
                self.apply(record)
                stats.applied += 1
            except OSError as e:
                stats.failed += 1
                stats.errors.append(f"{record.describe()}: {e}")
                mirror_path = self.mirror_root / record.path
                log_action(
                    self.logger,
                    "SKIP",
                    f"ERROR applying {record.describe()} | {e}",
                    path=mirror_path,
                    is_dir=record.looks_like_dir(),
                    level=logging.ERROR,
                )
        return stats

    def _copy(self, rel: Path, reason: str) -> bool:
        return copy_logged(self.logger, self.locked, self.source_root / rel, self.mirror_root / rel, reason)

    def _source_gone(self, rel: Path, reason: str) -> bool:
        if (self.source_root / rel).is_file():
            return False
        log_action(self.logger, "SKIP", f"({reason}) {rel} no longer in source", path=self.mirror_root / rel, is_dir=False)
        return True

    def _apply_renamed(self, record: ChangeRecord) -> None:
        if record.old_path is None:
            raise InvalidChangeRecord(f"renamed record without old path: {record.path}")
        if record.looks_like_dir():
            self._rename_dir(record.old_path, record.path)
            return

        if self._source_gone(record.path, "renamed"):
            return

        old_dst = self.mirror_root / record.old_path
        if old_dst.is_file():
            old_dst.unlink()
            log_action(self.logger, "DELETE", f"(renamed) {old_dst}", path=old_dst, is_dir=False)
        self._copy(record.path, "renamed")

    def _rename_dir(self, old_rel: Path, new_rel: Path) -> None:
        old_dst = self.mirror_root / old_rel
        new_dst = self.mirror_root / new_rel

        if old_dst.is_dir():
            if new_dst.is_dir():
                shutil.rmtree(new_dst)
            elif new_dst.exists():
                new_dst.unlink()
            ensure_parent(new_dst)
            old_dst.rename(new_dst)
            log_action(self.logger, "MOVE", f"{old_dst} -> {new_dst}", path=new_dst, is_dir=True)
            return

        if new_dst.is_dir():
            return

        new_src = self.source_root / new_rel
        if not new_src.is_dir():
            return

        # the old mirror folder never existed: copy the renamed subtree instead
        new_dst.mkdir(parents=True, exist_ok=True)
        log_action(self.logger, "MKDIR", f"(renamed) {new_dst}", path=new_dst, is_dir=True)
        for src in sorted(new_src.rglob("*")):
            rel = src.relative_to(self.source_root)
            if src.is_dir():
                (self.mirror_root / rel).mkdir(parents=True, exist_ok=True)
            elif src.is_file():
                self._copy(rel, "renamed folder")

    def _apply_deleted(self, record: ChangeRecord) -> None:
        dst = self.mirror_root / record.path
        if dst.is_dir() and not dst.is_symlink():
            shutil.rmtree(dst)
            log_action(self.logger, "RMDIR", f"(deleted) {dst}", path=dst, is_dir=True)
            return
        if dst.exists() or dst.is_symlink():
            dst.unlink()
            log_action(self.logger, "DELETE", f"(deleted) {dst}", path=dst, is_dir=False)

    def _apply_created(self, record: ChangeRecord) -> None:
        if record.is_dir:
            dst = self.mirror_root / record.path
            dst.mkdir(parents=True, exist_ok=True)
            log_action(self.logger, "MKDIR", f"(created) {dst}", path=dst, is_dir=True)
            return
        if self._source_gone(record.path, "created"):
            return
        self._copy(record.path, "created")

    def _apply_changed(self, record: ChangeRecord) -> None:
        dst = self.mirror_root / record.path
        if not dst.is_file():
            return
        if self._source_gone(record.path, "changed"):
            return
        # overwrite in place; a failed copy leaves the previous mirror file
        self._copy(record.path, "changed")


# -------------------------
# Event ingestion
# -------------------------

PathLike = Union[str, Path]


class EventIngestor:
    """The only write path into the PendingChangeSet. Called from watchdog threads."""

    def __init__(
        self,
        source_root: Path,
        mirror_root: Path,
        changes: PendingChangeSet,
        logger: logging.Logger,
        ignore: Optional[IgnoreMatcher] = None,
    ):
        self.source_root = source_root
        self.mirror_root = mirror_root
        self.changes = changes
        self.logger = logger
        self.ignore = ignore or IgnoreMatcher([])

    def _relative(self, path: PathLike) -> Optional[Path]:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.relative_to(self.source_root)
            except ValueError:
                return None
        if p == Path("."):
            return None
        return p

    def ingest(
        self,
        kind: ChangeKind,
        path: PathLike,
        old_path: Optional[PathLike] = None,
        is_dir: Optional[bool] = None,
    ) -> Optional[ChangeRecord]:
        rel = self._relative(path)
        if rel is None:
            self.logger.debug("Ignoring %s event outside %s: %s", kind.value, self.source_root, path)
            return None

        old_rel = self._relative(old_path) if old_path is not None else None
        if kind is ChangeKind.RENAMED and old_rel is None:
            self.logger.debug("Ignoring rename without a usable old path: %s", path)
            return None

        if self.ignore.is_ignored(rel, is_dir=is_dir):
            if kind is ChangeKind.RENAMED and not self.ignore.is_ignored(old_rel, is_dir=is_dir):
                # moved into an ignored name: drop the old item from the mirror
                return self._enqueue(ChangeRecord(ChangeKind.DELETED, old_rel, is_dir=is_dir))
            return None

        record = ChangeRecord(kind, rel, old_path=old_rel if kind is ChangeKind.RENAMED else None, is_dir=is_dir)

        if kind is ChangeKind.CREATED and record.looks_like_dir():
            self._make_dir_now(rel)
            return None

        return self._enqueue(record)

    def _enqueue(self, record: ChangeRecord) -> ChangeRecord:
        self.changes.append(record)
        action = record.kind.name
        if record.kind is ChangeKind.RENAMED:
            message = f"{record.old_path} -> {record.path}"
        else:
            message = str(record.path)
        log_action(self.logger, action, message, path=record.path, is_dir=bool(record.is_dir))
        return record

    def _make_dir_now(self, rel: Path) -> None:
        dst = self.mirror_root / rel
        try:
            dst.mkdir(parents=True, exist_ok=True)
            log_action(self.logger, "MKDIR", f"(created) {dst}", path=dst, is_dir=True)
        except OSError as e:
            log_action(self.logger, "MKDIR", f"ERROR mkdir: {dst} | {e}", path=dst, is_dir=True, level=logging.ERROR)


class MirrorEventHandler(FileSystemEventHandler):
    def __init__(self, ingestor: EventIngestor):
        super().__init__()
        self.ingestor = ingestor

    def on_created(self, event):
        self.ingestor.ingest(ChangeKind.CREATED, event.src_path, is_dir=bool(event.is_directory))

    def on_modified(self, event):
        if event.is_directory:
            return
        self.ingestor.ingest(ChangeKind.CHANGED, event.src_path, is_dir=False)

    def on_deleted(self, event):
        self.ingestor.ingest(ChangeKind.DELETED, event.src_path, is_dir=bool(event.is_directory))

    def on_moved(self, event):
        self.ingestor.ingest(
            ChangeKind.RENAMED,
            event.dest_path,
            old_path=event.src_path,
            is_dir=bool(event.is_directory),
        )


# -------------------------
# Reconciliation scheduler thread
# -------------------------

class ReconcileScheduler(threading.Thread):
    def __init__(
        self,
        changes: PendingChangeSet,
        reconciler: Reconciler,
        interval_sec: float,
        logger: logging.Logger,
        stop_event: threading.Event,
    ):
        super().__init__(name="reconcile", daemon=True)
        if interval_sec <= 0:
            raise ValueError(f"interval must be positive, got {interval_sec}")
        self.changes = changes
        self.reconciler = reconciler
        self.interval_sec = float(interval_sec)
        self.logger = logger
        self.stop_event = stop_event
        self.fatal_error: Optional[BaseException] = None
        self.passes = 0
        self._gate = threading.Lock()

    @property
    def apply_in_progress(self) -> bool:
        return self._gate.locked()

    def tick(self) -> bool:
        """Run one reconciliation pass. Returns False when the tick was a no-op."""
        if len(self.changes) == 0:
            return False
        if not self._gate.acquire(blocking=False):
            self.logger.debug("Previous pass still running; tick dropped")
            return False
        try:
            records = self.changes.drain()
            if not records:
                return False
            started = time.monotonic()
            stats = self.reconciler.apply_batch(records)
            self.passes += 1
            log_action(
                self.logger,
                "PASS",
                f"{len(records)} changes, {stats.applied} applied, {stats.failed} failed in {time.monotonic() - started:.2f}s",
            )
            return True
        finally:
            self._gate.release()

    def run(self) -> None:
        self.logger.info("RECONCILE: started (interval=%.1fs)", self.interval_sec)
        while not self.stop_event.is_set():
            start = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                self.fatal_error = e
                self.logger.critical("RECONCILE: fatal error, stopping: %s", e, exc_info=True)
                self.stop_event.set()
                break

            elapsed = time.monotonic() - start
            self.stop_event.wait(max(0.0, self.interval_sec - elapsed))
        self.logger.info("RECONCILE: stopped after %s passes", self.passes)


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    cfg = build_effective_config(args)

    log_file = cfg.log_file.expanduser().resolve()
    logger = setup_logger(log_file)

    try:
        source, mirror = validate_paths(cfg.source_dir, cfg.mirror_dir, cfg.interval_sec)
        if _is_subpath(log_file, source):
            raise ValueError("Log file must NOT be inside source folder (would cause loops).")
        if _is_subpath(log_file, mirror):
            raise ValueError("Log file must NOT be inside mirror folder (it would be wiped).")
        logger.info("Source: %s", source)
        logger.info("Mirror: %s", mirror)
    except ValueError as e:
        logger.error("Config error: %s", e)
        return 2

    cfg = replace(cfg, source_dir=source, mirror_dir=mirror, log_file=log_file)
    try:
        save_config_file(cfg)
        logger.info("Saved config: %s", CONFIG_PATH)
    except OSError as e:
        logger.error("Could not save config: %s", e)

    locked = LockedFileLog(log_file.parent / LOCKED_LOG_NAME)
    ignore = IgnoreMatcher(cfg.ignore_patterns)

    build_mirror(source, mirror, logger, ignore=ignore, locked=locked)

    changes = PendingChangeSet()
    ingestor = EventIngestor(source, mirror, changes, logger, ignore=ignore)
    reconciler = Reconciler(source, mirror, logger, locked=locked)

    observer = Observer()
    observer.schedule(MirrorEventHandler(ingestor), str(source), recursive=True)

    stop_event = threading.Event()
    scheduler = ReconcileScheduler(changes, reconciler, cfg.interval_sec, logger, stop_event)

    def _on_sigterm(signum, frame):
        logger.info("Received signal %s", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _on_sigterm)

    logger.info("Watching... (Ctrl+C to stop)")
    observer.start()
    scheduler.start()

    try:
        while not stop_event.wait(0.5):
            pass
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        observer.stop()
        observer.join(timeout=10)
        stop_event.set()
        # no timeout: an in-flight pass is allowed to finish
        scheduler.join()
        logger.info("Stopped.")

    if scheduler.fatal_error is not None:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
