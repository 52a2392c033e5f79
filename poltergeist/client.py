"""File watching through Watchman, or through native notifications when Watchman is absent."""

from __future__ import annotations

import contextlib
import fnmatch
import logging
import os
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from poltergeist.fallback import FileSystemWatcher
from poltergeist.protocol import (
    EventType,
    FileEvent,
    SubscriptionQuery,
    WatchmanConnection,
    WatchmanError,
    WatchmanResponse,
    all_of_expression,
    any_of_expression,
    convert_watchman_file,
    match_expression,
    not_expression,
)
from poltergeist.targets import WatchmanConfig
from poltergeist.watch_config import ExclusionExpression

_SUBSCRIPTION_FIELDS = ["name", "size", "mtime_ms", "exists", "type", "new"]
_WATCH_FIELDS = ["name", "size", "mtime_ms", "exists", "type"]

_DEFAULT_EXCLUSIONS = (
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
    ".poltergeist",
)


@dataclass
class FileChange:
    """A changed file as reported to subscription callbacks."""

    name: str
    exists: bool = True
    type: str = "f"


@dataclass
class SubscriptionConfig:
    """What a subscription matches and which fields it asks for."""

    expression: list[Any] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)


FileChangeCallback = Callable[[list[FileChange]], None]


@dataclass
class _Subscription:
    name: str
    root: str
    expression: list[Any]
    callback: FileChangeCallback | None
    query: SubscriptionQuery | None = None


def default_exclusions() -> list[str]:
    """Directories left out of watching unless configured otherwise."""
    return list(_DEFAULT_EXCLUSIONS)


def _collect_patterns(expr: Any, patterns: list[str]) -> None:
    if not isinstance(expr, (list, tuple)) or not expr:
        return
    command = expr[0]
    if not isinstance(command, str):
        return
    if command == "match":
        if len(expr) > 1 and isinstance(expr[1], str):
            patterns.append(expr[1])
    elif command in ("anyof", "allof"):
        for item in expr[1:]:
            _collect_patterns(item, patterns)


def extract_patterns_from_expression(expr: Sequence[Any] | None) -> list[str]:
    """Return the glob patterns of the match terms in an expression; ["**"] if none."""
    if not expr:
        return ["**"]
    patterns: list[str] = []
    _collect_patterns(expr, patterns)
    return patterns or ["**"]


def _pattern_expression(pattern: str) -> list[Any]:
    return match_expression(pattern, "**" in pattern)


def _build_expression(
    patterns: Iterable[str], exclusions: Iterable[ExclusionExpression], use_defaults: bool
) -> list[Any]:
    expressions = [_pattern_expression(pattern) for pattern in patterns]

    excluded: list[Any] = []
    for exclusion in exclusions:
        if exclusion.type == "dir":
            excluded.extend(
                match_expression(f"**/{pattern}/**", True) for pattern in exclusion.patterns
            )
        else:
            excluded.extend(match_expression(pattern, False) for pattern in exclusion.patterns)
    if use_defaults:
        excluded.extend(
            match_expression(f"**/{directory}/**", True) for directory in _DEFAULT_EXCLUSIONS
        )

    if expressions and excluded:
        return all_of_expression(
            any_of_expression(*expressions), not_expression(any_of_expression(*excluded))
        )
    if expressions:
        return any_of_expression(*expressions)
    return match_expression("**", True)


def _default_config() -> WatchmanConfig:
    return WatchmanConfig(use_default_exclusions=True, settling_delay=1000, max_file_events=1000)


class UnifiedClient:
    """Watches a project with Watchman if it is running, else with native notifications."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        config: WatchmanConfig | None = None,
        connection_factory: Callable[[], Any] = WatchmanConnection.connect,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.config = config if config is not None else _default_config()
        self.project_root = ""
        self._lock = threading.RLock()
        self._subscriptions: dict[str, _Subscription] = {}
        self._pending: dict[str, tuple[object, threading.Timer]] = {}
        self._closed = threading.Event()
        self._settling = max(self.config.settling_delay, 0) / 1000
        self._conn: Any = None
        self._fs_watcher: FileSystemWatcher | None = None
        self._receiver: threading.Thread | None = None

        try:
            conn = connection_factory()
        except (WatchmanError, OSError) as exc:
            self.logger.info("Watchman not available (%s), using fsnotify fallback", exc)
        else:
            try:
                version = conn.version()
            except (WatchmanError, OSError, EOFError):
                with contextlib.suppress(Exception):
                    conn.close()
                self.logger.info("Watchman connection failed, using fsnotify fallback")
            else:
                self._conn = conn
                self.logger.info("Connected to Watchman version %s", version)

        if self._conn is None:
            try:
                watcher = FileSystemWatcher(self.logger)
            except OSError as exc:
                self.logger.error("Failed to create fsnotify watcher: %s", exc)
            else:
                self._fs_watcher = watcher
                if self.config.exclude_dirs:
                    watcher.set_exclusions(self.config.exclude_dirs)
                if self.config.settling_delay > 0:
                    watcher.set_settling_delay(self.config.settling_delay / 1000)

    @property
    def uses_watchman(self) -> bool:
        """True when changes come from a Watchman server."""
        return self._conn is not None

    def __enter__(self) -> UnifiedClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.disconnect()

    def connect(self) -> None:
        """Raise WatchmanError if no file watcher could be set up."""
        if self._conn is not None or self._fs_watcher is not None:
            return
        raise WatchmanError("no file watcher available")

    def disconnect(self) -> None:
        """Stop delivering events and close the watcher."""
        self._closed.set()
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for _token, timer in pending:
            timer.cancel()
        if self._conn is not None:
            self._conn.close()
        elif self._fs_watcher is not None:
            self._fs_watcher.close()

    def watch_project(self, project_path: str | os.PathLike[str]) -> None:
        """Start watching a project directory."""
        project_path = os.fspath(project_path)
        with self._lock:
            self.project_root = project_path

        if self._conn is not None:
            try:
                response = self._conn.watch_project(project_path)
            except (WatchmanError, OSError, EOFError) as exc:
                raise WatchmanError(f"failed to watch project: {exc}") from exc
            with self._lock:
                if response.relative_root:
                    self.project_root = os.path.join(response.watch, response.relative_root)
                else:
                    self.project_root = response.watch
            self.logger.info("Watching project with Watchman: %s", self.project_root)
        elif self._fs_watcher is not None:
            try:
                self._fs_watcher.watch_project(project_path, self._enqueue)
            except OSError as exc:
                raise OSError(f"failed to watch project with fsnotify: {exc}") from exc
            self.logger.info("Watching project with fsnotify: %s", project_path)
        else:
            raise WatchmanError("no file watcher available")

    def subscribe(
        self,
        root: str | os.PathLike[str],
        name: str,
        config: SubscriptionConfig,
        callback: FileChangeCallback | None,
        exclusions: Iterable[ExclusionExpression] | None = None,
    ) -> None:
        """Call callback with the changes under root that the subscription matches."""
        root = os.fspath(root)
        expression = list(config.expression)
        with self._lock:
            sub = _Subscription(name=name, root=root, expression=expression, callback=callback)

            if self._conn is not None:
                if expression:
                    final_expr: list[Any] = expression
                else:
                    final_expr = _build_expression(
                        [], exclusions or [], self.config.use_default_exclusions
                    )
                try:
                    clock = self._conn.clock(root)
                except (WatchmanError, OSError, EOFError) as exc:
                    self.logger.warning("Failed to get clock: %s", exc)
                    clock = ""
                sub.query = SubscriptionQuery(
                    expression=final_expr,
                    fields=list(_SUBSCRIPTION_FIELDS),
                    since=clock,
                    empty=True,
                )
                try:
                    self._conn.subscribe(root, name, sub.query)
                except (WatchmanError, OSError, EOFError) as exc:
                    raise WatchmanError(
                        f"failed to create Watchman subscription: {exc}"
                    ) from exc
                self._start_receiver()
            elif self._fs_watcher is not None:
                self._fs_watcher.set_patterns(extract_patterns_from_expression(expression))

            self._subscriptions[name] = sub
        self.logger.debug("Created subscription: %s", name)

    def unsubscribe(self, subscription_name: str) -> None:
        """Remove a subscription; raise KeyError if there is none of that name."""
        with self._lock:
            sub = self._subscriptions.pop(subscription_name, None)
        if sub is None:
            raise KeyError(f"subscription {subscription_name} not found")
        if self._conn is not None:
            self._conn.unsubscribe(sub.root, subscription_name)

    def is_connected(self) -> bool:
        """True if a watcher is available."""
        if self._conn is not None:
            return True
        return self._fs_watcher is not None

    def version(self) -> str:
        """The Watchman version, or "fsnotify" when using the fallback."""
        if self._conn is not None:
            return self._conn.version()
        return "fsnotify"

    def watch(
        self, root: str | os.PathLike[str], patterns: Iterable[str], events: Any
    ) -> str:
        """Watch root for files matching patterns, putting FileEvents into events.

        Returns the name of the subscription created.
        """
        root = os.fspath(root)
        self.watch_project(root)

        expressions = [_pattern_expression(pattern) for pattern in patterns]
        if expressions:
            final_expr = any_of_expression(*expressions)
        else:
            final_expr = match_expression("**", True)

        config = SubscriptionConfig(expression=final_expr, fields=list(_WATCH_FIELDS))

        def deliver(changes: list[FileChange]) -> None:
            for change in changes:
                kind = EventType.MODIFIED if change.exists else EventType.DELETED
                if change.type == "f" and change.exists:
                    kind = EventType.CREATED
                events.put(FileEvent(path=change.name, type=kind, is_dir=change.type == "d"))

        name = f"watch-{int(time.time())}"
        self.subscribe(root, name, config, deliver, None)
        return name

    def watched_paths(self) -> list[str]:
        """Directories watched by the fallback, or subscription roots under Watchman."""
        if self._fs_watcher is not None:
            return self._fs_watcher.watched_paths()
        with self._lock:
            return [sub.root for sub in self._subscriptions.values()]

    def _start_receiver(self) -> None:
        if self._receiver is not None:
            return
        self._receiver = threading.Thread(target=self._receive_events, daemon=True)
        self._receiver.start()

    def _receive_events(self) -> None:
        self.logger.debug("Starting Watchman event receiver")
        while not self._closed.is_set():
            conn = self._conn
            if conn is None:
                return
            try:
                response = conn.receive()
            except WatchmanError as exc:
                self.logger.debug("Error receiving Watchman event (will retry): %s", exc)
                time.sleep(0.1)
                continue
            except (EOFError, OSError, ValueError):
                self.logger.debug("Watchman connection closed, stopping event receiver")
                return
            if response.subscription:
                self._handle_response(response)
            elif response.log:
                self.logger.debug("Watchman log: %s", response.log)

    def _handle_response(self, response: WatchmanResponse) -> None:
        with self._lock:
            known = response.subscription in self._subscriptions
        if not known:
            self.logger.debug(
                "Received event for unknown subscription: %s", response.subscription
            )
            return
        for wf in response.files:
            self._enqueue(convert_watchman_file(response.root, wf))

    def _enqueue(self, event: FileEvent) -> None:
        token = object()
        with self._lock:
            if self._closed.is_set():
                return
            previous = self._pending.pop(event.path, None)
            if previous is not None:
                previous[1].cancel()
            timer = threading.Timer(self._settling, self._settled, args=(event, token))
            timer.daemon = True
            self._pending[event.path] = (token, timer)
        timer.start()

    def _settled(self, event: FileEvent, token: object) -> None:
        with self._lock:
            entry = self._pending.get(event.path)
            if entry is None or entry[0] is not token:
                return
            del self._pending[event.path]
        self._dispatch(event)

    def _dispatch(self, event: FileEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        matched = 0
        for sub in subscriptions:
            if not self._matches(event, sub):
                continue
            matched += 1
            change = FileChange(
                name=event.path,
                exists=event.type is not EventType.DELETED,
                type="d" if event.is_dir else "f",
            )
            if sub.callback is not None:
                sub.callback([change])
            else:
                self.logger.warning("No callback registered for subscription: %s", sub.name)
        if not matched:
            self.logger.debug("No matching subscriptions for event: %s", event.path)

    def _matches(self, event: FileEvent, sub: _Subscription) -> bool:
        if not event.path.startswith(sub.root):
            return False
        if sub.expression and self._conn is not None:
            return True
        base = os.path.basename(event.path)
        for pattern in extract_patterns_from_expression(sub.expression):
            if fnmatch.fnmatchcase(base, pattern):
                return True
            if "**" in pattern:
                parts = pattern.split("**")
                if len(parts) == 2:
                    prefix, suffix = parts
                    if suffix.startswith("/"):
                        suffix = suffix[1:]
                    rel = os.path.relpath(event.path, sub.root) if sub.root else event.path
                    if rel.startswith(prefix) and (not suffix or rel.endswith(suffix)):
                        return True
        return False


def create_client(
    logger: logging.Logger | None = None, config: WatchmanConfig | None = None
) -> UnifiedClient:
    """Create a client, with default settings when no config is given."""
    return UnifiedClient(logger, config)