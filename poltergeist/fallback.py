"""Directory watching on the operating system's own notifications, used when Watchman is absent."""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from poltergeist.protocol import EventType, FileEvent
from poltergeist.targets import WatchmanConfig

FileEventCallback = Callable[[FileEvent], None]

_COMMON_EXCLUSIONS = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".bzr",
        "node_modules",
        "vendor",
        ".idea",
        ".vscode",
        "__pycache__",
        ".pytest_cache",
        "target",
        "build",
        "dist",
        "out",
    }
)

_DEFAULT_SETTLING = 0.1


class _Handler(FileSystemEventHandler):
    def __init__(self, owner: FileSystemWatcher) -> None:
        super().__init__()
        self._owner = owner

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._owner._on_raw_event(event)


class FileSystemWatcher:
    """Watches directories one by one and reports settled changes to callbacks."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._patterns: list[str] = []
        self._exclusions: list[str] = []
        self._callbacks: dict[str, FileEventCallback] = {}
        self._settling = _DEFAULT_SETTLING
        self._pending: dict[str, object] = {}
        self._watches: dict[str, Any] = {}
        self._closed = False
        self._handler = _Handler(self)
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.start()

    def __enter__(self) -> FileSystemWatcher:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Stop watching and drop any changes still settling."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._pending.clear()
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join(timeout=5)

    def set_patterns(self, patterns: Iterable[str]) -> None:
        """Report only paths matching one of these globs; none means everything."""
        with self._lock:
            self._patterns = list(patterns)

    def set_exclusions(self, exclusions: Iterable[str]) -> None:
        """Ignore any path containing one of these strings."""
        with self._lock:
            self._exclusions = list(exclusions)

    def set_settling_delay(self, delay: float) -> None:
        """Wait this many seconds of quiet on a path before reporting it."""
        with self._lock:
            self._settling = delay

    def watch(self, root: str | os.PathLike[str], callback: FileEventCallback) -> None:
        """Watch root and its subdirectories, sending changes to callback."""
        root = os.fspath(root)
        with self._lock:
            self._callbacks[root] = callback
        try:
            self._add_directory(root)
        except OSError as exc:
            raise OSError(f"failed to watch {root}: {exc}") from exc
        self.logger.info("Started watching %s", root)

    def watch_project(
        self, project_path: str | os.PathLike[str], callback: FileEventCallback
    ) -> None:
        """Watch every directory of a project tree that is not excluded."""
        project_path = os.fspath(project_path)

        def fail(exc: OSError) -> None:
            raise exc

        try:
            if os.path.isdir(project_path) and self.is_excluded(project_path):
                walker: Iterable[tuple[str, list[str], list[str]]] = ()
            else:
                walker = os.walk(project_path, onerror=fail)
            for directory, subdirs, _files in walker:
                subdirs[:] = [
                    name
                    for name in subdirs
                    if not self.is_excluded(os.path.join(directory, name))
                ]
                try:
                    self._schedule(directory)
                except OSError as exc:
                    self.logger.warning("Failed to watch directory %s: %s", directory, exc)
                else:
                    self.logger.debug("Watching directory: %s", directory)
        except OSError as exc:
            raise OSError(f"failed to walk project directory: {exc}") from exc

        with self._lock:
            self._callbacks[project_path] = callback

    def is_excluded(self, path: str) -> bool:
        """True if the path contains an exclusion or is a commonly ignored directory."""
        with self._lock:
            exclusions = list(self._exclusions)
        if any(pattern in path for pattern in exclusions):
            return True
        return os.path.basename(path.rstrip(os.sep)) in _COMMON_EXCLUSIONS

    def matches_pattern(self, path: str) -> bool:
        """True if the path matches one of the watch patterns."""
        with self._lock:
            patterns = list(self._patterns)
        if not patterns:
            return True
        base = os.path.basename(path)
        for pattern in patterns:
            if fnmatch.fnmatchcase(base, pattern):
                return True
            if "**" in pattern:
                parts = pattern.split("**")
                if len(parts) == 2:
                    prefix, suffix = parts
                    if suffix.startswith("/"):
                        suffix = suffix[1:]
                    if path.startswith(prefix) and (not suffix or path.endswith(suffix)):
                        return True
        return False

    def remove(self, path: str | os.PathLike[str]) -> None:
        """Stop watching one directory; raise ValueError if it was not watched."""
        path = os.fspath(path)
        with self._lock:
            self._callbacks.pop(path, None)
            watch = self._watches.pop(path, None)
        if watch is None:
            raise ValueError(f"can't remove non-existent watch: {path}")
        self._observer.unschedule(watch)

    def watched_paths(self) -> list[str]:
        """The directories being watched."""
        with self._lock:
            return list(self._watches)

    def _schedule(self, directory: str) -> None:
        with self._lock:
            if directory in self._watches:
                return
            watch = self._observer.schedule(self._handler, directory, recursive=False)
            self._watches[directory] = watch

    def _add_directory(self, directory: str) -> None:
        if self.is_excluded(directory):
            return
        self._schedule(directory)
        with os.scandir(directory) as entries:
            subdirs = [entry.path for entry in entries if entry.is_dir(follow_symlinks=False)]
        for subdir in subdirs:
            if self.is_excluded(subdir):
                continue
            try:
                self._add_directory(subdir)
            except OSError as exc:
                self.logger.warning("Failed to watch subdirectory %s: %s", subdir, exc)

    def _on_raw_event(self, event: FileSystemEvent) -> None:
        if self._closed:
            return
        kind = event.event_type
        if event.is_directory and kind == "modified":
            return
        src = os.fsdecode(event.src_path)
        if kind == "created":
            self._handle(src, EventType.CREATED)
        elif kind == "modified":
            self._handle(src, EventType.MODIFIED)
        elif kind == "deleted":
            self._handle(src, EventType.DELETED)
        elif kind == "moved":
            self._handle(src, EventType.RENAMED)
            dest = getattr(event, "dest_path", "")
            if dest:
                self._handle(os.fsdecode(dest), EventType.CREATED)

    def _handle(self, path: str, kind: EventType) -> None:
        if self.is_excluded(path) or not self.matches_pattern(path):
            return
        if kind is EventType.CREATED and os.path.isdir(path):
            try:
                self._add_directory(path)
            except OSError as exc:
                self.logger.warning("Failed to watch new directory %s: %s", path, exc)
        self._settle(path, kind)

    def _settle(self, path: str, kind: EventType) -> None:
        token = object()
        with self._lock:
            self._pending[path] = token
            delay = self._settling
        timer = threading.Timer(delay, self._fire, args=(path, kind, token))
        timer.daemon = True
        timer.start()

    def _fire(self, path: str, kind: EventType, token: object) -> None:
        with self._lock:
            if self._closed or self._pending.get(path) is not token:
                return
            del self._pending[path]
        self._dispatch(_convert(path, kind))

    def _dispatch(self, event: FileEvent) -> None:
        with self._lock:
            candidates = [
                (root, callback)
                for root, callback in self._callbacks.items()
                if event.path.startswith(root)
            ]
        if not candidates:
            return
        _root, callback = max(candidates, key=lambda item: len(item[0]))
        callback(event)


def _convert(path: str, kind: EventType) -> FileEvent:
    event = FileEvent(path=path, type=kind)
    try:
        info = os.stat(path)
    except OSError:
        if event.type is not EventType.DELETED:
            event.type = EventType.DELETED
        return event
    event.is_dir = os.path.isdir(path)
    event.size = info.st_size
    event.mode = info.st_mode
    event.mod_time = datetime.fromtimestamp(info.st_mtime, tz=timezone.utc)
    return event


class FallbackWatcher:
    """Feeds file events for a project into a queue without Watchman."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.watcher = FileSystemWatcher(logger)
        self._closed = False

    def __enter__(self) -> FallbackWatcher:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def watch(
        self, root: str | os.PathLike[str], patterns: Iterable[str], events: Any
    ) -> None:
        """Watch root for files matching patterns, putting each FileEvent into events."""
        self.watcher.set_patterns(patterns)

        def deliver(event: FileEvent) -> None:
            if not self._closed:
                events.put(event)

        self.watcher.watch_project(root, deliver)

    def close(self) -> None:
        """Stop watching."""
        self._closed = True
        self.watcher.close()

    def set_config(self, config: WatchmanConfig | None) -> None:
        """Apply the settling delay (milliseconds) and excluded directories."""
        if config is None:
            return
        if config.settling_delay > 0:
            self.watcher.set_settling_delay(config.settling_delay / 1000)
        if config.exclude_dirs:
            self.watcher.set_exclusions(config.exclude_dirs)